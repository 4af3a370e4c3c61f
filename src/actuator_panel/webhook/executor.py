"""
Deployment executors used by the webhook.

The webhook only decides whether a push should be deployed; the executor
performs the deployment. ShellDeploymentExecutor pulls the repository and
restarts the web server container.
"""

import subprocess
from abc import ABC, abstractmethod

from actuator_panel.core.logging import get_logger

logger = get_logger()


class DeploymentError(Exception):
    """Raised when a deployment step fails."""
    pass


class DeploymentExecutor(ABC):
    """
    Abstract base class for deployment steps.

    Each step returns its output and raises DeploymentError on failure.
    """

    @abstractmethod
    def pull(self) -> str:
        """Update the working copy. Returns the command output."""
        pass

    @abstractmethod
    def restart(self) -> str:
        """Restart the served application. Returns the command output."""
        pass


class ShellDeploymentExecutor(DeploymentExecutor):
    """Runs git and docker as subprocesses."""

    def __init__(self, repo_path: str, container: str, timeout: float = 120.0):
        """
        Initialize the executor.

        Args:
            repo_path: Working copy to pull.
            container: Name of the container to restart.
            timeout: Maximum run time of each command in seconds.
        """
        self.repo_path = repo_path
        self.container = container
        self.timeout = timeout

    def pull(self) -> str:
        return self._run(["git", "pull"], cwd=self.repo_path)

    def restart(self) -> str:
        return self._run(["docker", "restart", self.container])

    def _run(self, command: list[str], cwd: str | None = None) -> str:
        """
        Execute a command and return its stdout.

        Raises:
            DeploymentError: If the command cannot be started, times out or
                exits with a non-zero code.
        """
        command_str = " ".join(command)
        logger.info(f"Executing: {command_str}")

        try:
            result = subprocess.run(
                command,
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.error(f"'{command_str}' could not be executed: {e}")
            raise DeploymentError(str(e)) from e

        if result.returncode != 0:
            stderr = result.stderr.strip()
            logger.error(f"'{command_str}' failed with exit code {result.returncode}: {stderr}")
            raise DeploymentError(
                f"Command failed with exit code {result.returncode}: {stderr}"
            )

        logger.debug(f"'{command_str}' output: {result.stdout.strip()}")
        return result.stdout
