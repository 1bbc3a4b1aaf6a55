from pydantic import field_validator
from pydantic_settings import BaseSettings
from functools import lru_cache

REINSTALL_POLICIES = ("always", "if-changed", "never")
FAILURE_POLICIES = ("Ignore", "Fail")

class Settings(BaseSettings):
    # Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_level: str = "INFO"

    # ==========================================================================
    # Kubernetes Connection
    # ==========================================================================
    # In-cluster service account is tried first, then the kubeconfig below
    # Empty kubeconfig means the default lookup (KUBECONFIG or ~/.kube/config)
    kubeconfig: str = ""
    kube_context: str = ""
    request_timeout_seconds: int = 10

    # Namespace the operator (and its admission webhook) runs in
    operator_namespace: str = "default"
    operator_name: str = "self-service-operator"

    # ==========================================================================
    # Admission Webhook Bundle
    # ==========================================================================
    webhook_service_name: str = "self-service-operator-webhook"
    webhook_port: int = 443
    webhook_target_port: int = 8443
    webhook_path: str = "/mutate-project"
    webhook_cert_validity_days: int = 365

    # Out-of-cluster runs (local development, tests) cannot receive admission
    # calls, so the MutatingWebhookConfiguration is removed again after install
    webhook_config_enabled: bool = True

    # failurePolicy of the webhook: "Ignore" or "Fail" (with "Fail", Project
    # writes are rejected while no admission endpoint answers)
    webhook_failure_policy: str = "Ignore"

    # CRD reinstall policy on startup: "always", "if-changed" or "never"
    # Reinstalling deletes every Project (and cascades to their namespaces)
    crd_reinstall: str = "if-changed"

    # ==========================================================================
    # Convergence Waiter
    # ==========================================================================
    wait_timeout_seconds: float = 30.0  # Budget for a single convergence wait
    watch_timeout_seconds: int = 10  # Server-side timeout of one watch request
    list_retry_interval_seconds: float = 0.1  # Fixed backoff between failed lists
    empty_watch_backoff_seconds: float = 0.25  # Backoff when a watch closes without events
    settle_delay_seconds: float = 0.1  # Trailing delay after a wait finishes

    # ==========================================================================
    # Reconciliation
    # ==========================================================================
    conflict_retry_attempts: int = 3  # Write attempts on resourceVersion conflicts
    reconcile_retry_delay_seconds: int = 30  # Delay before kopf retries a failed pass

    @field_validator("crd_reinstall")
    @classmethod
    def validate_crd_reinstall(cls, v):
        v = v.strip().lower()
        if v not in REINSTALL_POLICIES:
            raise ValueError(f"crd_reinstall must be one of {', '.join(REINSTALL_POLICIES)}")
        return v

    @field_validator("webhook_failure_policy")
    @classmethod
    def validate_webhook_failure_policy(cls, v):
        v = v.strip().capitalize()
        if v not in FAILURE_POLICIES:
            raise ValueError(f"webhook_failure_policy must be one of {', '.join(FAILURE_POLICIES)}")
        return v

    class Config:
        # For local development: looks for .env in the working directory
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra fields from .env file
        case_sensitive = False  # Allow lowercase env vars to match uppercase field names

@lru_cache()
def get_settings():
    return Settings()
