"""
Project Reconciliation

- model: Project resource, spec/status schemas and the CRD definition
- render: Placeholder substitution for manifest templates
- apply_manifests: REST path resolution and create-or-update with ownership
- wait: List-then-watch convergence waiter
- crd: CRD and admission webhook bundle lifecycle
- reconciler: Drives a Project to its provisioned state
- handlers: kopf handler registrations
"""
