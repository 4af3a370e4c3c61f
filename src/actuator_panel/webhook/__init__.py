"""
Webhook package - Redeploys the web front end on pushes to the tracked branch.
"""

from .app import compute_signature, create_app, verify_signature
from .executor import DeploymentError, DeploymentExecutor, ShellDeploymentExecutor

__all__ = [
    "compute_signature",
    "create_app",
    "verify_signature",
    "DeploymentError",
    "DeploymentExecutor",
    "ShellDeploymentExecutor",
]
