"""
Flask app for the deployment webhook.

Endpoints:
- POST /deploy: Verify a push event and redeploy when the tracked file changed
- GET /status: Health check
"""

import hashlib
import hmac
from datetime import datetime, timezone
from typing import Any

from flask import Flask, jsonify, request

from actuator_panel.core.config import WebhookConfig
from actuator_panel.core.logging import get_logger
from actuator_panel.webhook.executor import DeploymentError, DeploymentExecutor

logger = get_logger()

SERVICE_NAME = "GitHub Webhook Deployment"
SIGNATURE_HEADER = "X-Hub-Signature-256"


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


def compute_signature(secret: str, body: bytes) -> str:
    """Signature header value for a request body."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(secret: str, body: bytes, signature: str) -> bool:
    """
    Check a signature header against the body.

    An empty secret never verifies.
    """
    if not secret:
        return False
    return hmac.compare_digest(compute_signature(secret, body), signature)


def touches_file(payload: dict[str, Any], filename: str) -> bool:
    """Check whether any commit of a push added or modified a file."""
    for commit in payload.get("commits") or []:
        if not isinstance(commit, dict):
            continue
        if filename in (commit.get("modified") or []) or filename in (commit.get("added") or []):
            return True
    return False


def create_app(config: WebhookConfig, executor: DeploymentExecutor) -> Flask:
    """
    Create the webhook app.

    Args:
        config: Webhook settings (secret, branch, tracked file).
        executor: Performs the pull and restart steps.

    Returns:
        Configured Flask application.
    """
    app = Flask(__name__)

    @app.route("/deploy", methods=["POST"])
    def deploy():
        body = request.get_data()
        signature = request.headers.get(SIGNATURE_HEADER)

        if signature is not None and not verify_signature(config.secret, body, signature):
            logger.error("Invalid webhook signature")
            return jsonify({"success": False, "message": "Invalid signature"}), 401

        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            payload = {}

        if payload.get("ref") != f"refs/heads/{config.branch}":
            return jsonify({
                "success": True,
                "message": "Ignored: Not a push to the main branch",
                "action": "none",
            })

        if not touches_file(payload, config.tracked_file):
            return jsonify({
                "success": True,
                "message": f"Ignored: No changes to {config.tracked_file}",
                "action": "none",
            })

        logger.info("Deploying updates to the web server")

        try:
            git_output = executor.pull()
        except DeploymentError as e:
            logger.error(f"Git pull error: {e}")
            return jsonify({"success": False, "message": "Git pull failed", "error": str(e)}), 500

        logger.info(f"Git pull output: {git_output.strip()}")

        try:
            executor.restart()
        except DeploymentError as e:
            logger.error(f"Restart error: {e}")
            return jsonify({"success": False, "message": "Restart failed", "error": str(e)}), 500

        return jsonify({
            "success": True,
            "message": "Deployment completed successfully",
            "gitOutput": git_output,
            "timestamp": _timestamp(),
        })

    @app.route("/status", methods=["GET"])
    def status():
        return jsonify({
            "status": "ok",
            "service": SERVICE_NAME,
            "timestamp": _timestamp(),
        })

    return app
