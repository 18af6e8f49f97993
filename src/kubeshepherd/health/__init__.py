from .kubectl import ADMIN_KUBECONFIG, KubectlError, KubectlRunner
from .verifier import HealthReport, HealthVerifier

__all__ = ["ADMIN_KUBECONFIG", "HealthReport", "HealthVerifier", "KubectlError", "KubectlRunner"]
