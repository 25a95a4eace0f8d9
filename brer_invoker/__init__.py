"""brer_invoker — Invocation reconciler for Kubernetes.

Provides:
    - JWT issuance for the invoker and per-pod identities
    - Invocation store HTTP client
    - Kubernetes pod adapter and pod template
    - Reconciliation pass, timeout policy and interval supervisor
"""

__version__ = "1.0.0"
