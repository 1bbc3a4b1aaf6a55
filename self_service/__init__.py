"""
Self-Service Project Operator

Turns cluster-scoped Project resources into provisioned tenant namespaces:
a namespace per project plus a list of templated manifests applied inside it,
all owned by the Project so that deleting it cascades through the cluster
garbage collector.
"""

__version__ = "0.1.0"
