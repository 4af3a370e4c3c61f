"""Configuration management for the Actuator Panel.

Handles configuration loading with the following precedence (highest to lowest):
1. Environment variables
2. CLI arguments
3. Config file
4. Default values
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from actuator_panel.core.logging import get_logger

logger = get_logger()

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "actuator-panel" / "config.yaml"
DEFAULT_SETTINGS_PATH = Path.home() / ".config" / "actuator-panel" / "settings.yaml"

# Environment variable names
ENV_CONFIG_FILE = "ACTUATOR_PANEL_CONFIG"
ENV_DEVICE_USB_ID = "DEVICE_USB_ID"
ENV_DEVICE_DEV_PATH = "DEVICE_DEV_PATH"
ENV_DEVICE_BAUD_RATE = "DEVICE_BAUD_RATE"
ENV_DEVICE_PROFILE = "DEVICE_PROFILE"
ENV_WEBHOOK_SECRET = "WEBHOOK_SECRET"
ENV_WEBHOOK_REPO_PATH = "REPO_PATH"
ENV_WEBHOOK_CONTAINER = "NGINX_SERVICE_NAME"
ENV_WEBHOOK_PORT = "PORT"
ENV_SERIAL_LOG_FILE = "SERIAL_LOG_FILE"


@dataclass
class DeviceConfig:
    """Serial device and protocol timing settings."""

    usb_id: str | None = None
    path: str | None = None
    baud_rate: int = 115200
    profile: str = "handshake"
    handshake_timeout: float = 3000.0  # ms
    stale_after: float = 10000.0  # ms
    liveness_check_period: float = 5000.0  # ms
    read_retry_delay: float = 1000.0  # ms
    command_delay: float = 50.0  # ms


@dataclass
class WebhookConfig:
    """Deployment webhook settings."""

    address: str = "0.0.0.0"
    port: int = 9000
    secret: str = ""
    repo_path: str = "/app"
    container: str = "nginx"
    branch: str = "main"
    tracked_file: str = "index.html"


@dataclass
class Config:
    """Main configuration container."""

    device: DeviceConfig = field(default_factory=DeviceConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)
    serial_log_file: str | None = None
    settings_file: str | None = None

    @classmethod
    def load(
        cls,
        config_file: Path | str | None = None,
        cli_args: dict[str, Any] | None = None,
        skip_device_validation: bool = False,
    ) -> "Config":
        """Load configuration from all sources with proper precedence.

        Args:
            config_file: Path to configuration file. If None, uses default or env var.
            cli_args: Dictionary of CLI arguments.
            skip_device_validation: If True, skip validation of device settings
                (dry-run mode, webhook-only use).

        Returns:
            Loaded and merged configuration.

        Raises:
            ValueError: If no device is configured (unless skip_device_validation
                is True) or the configured protocol profile is unknown.
        """
        config = cls()

        if config_file is None:
            config_file = os.environ.get(ENV_CONFIG_FILE, str(DEFAULT_CONFIG_PATH))

        config_path = Path(config_file).expanduser()

        if config_path.exists():
            config = cls._load_from_file(config_path)

        if cli_args:
            config = cls._apply_cli_args(config, cli_args)

        config = cls._apply_env_vars(config)

        config._validate(skip_device_validation)

        return config

    @classmethod
    def _load_from_file(cls, path: Path) -> "Config":
        """Load configuration from YAML file.

        Both hyphenated and underscored keys are accepted.

        Args:
            path: Path to the YAML config file.

        Returns:
            Configuration loaded from file.
        """
        config = cls()

        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (yaml.YAMLError, OSError) as e:
            logger.warning(f"Failed to load config file {path}: {e}")
            return config

        device_data = data.get("device") or {}
        device = config.device
        if _lookup(device_data, "usb-id") is not None:
            device.usb_id = str(_lookup(device_data, "usb-id"))
        if "path" in device_data:
            device.path = str(device_data["path"])
        if _lookup(device_data, "baud-rate") is not None:
            device.baud_rate = int(_lookup(device_data, "baud-rate"))
        if "profile" in device_data:
            device.profile = str(device_data["profile"])
        if _lookup(device_data, "handshake-timeout") is not None:
            device.handshake_timeout = float(_lookup(device_data, "handshake-timeout"))
        if _lookup(device_data, "stale-after") is not None:
            device.stale_after = float(_lookup(device_data, "stale-after"))
        if _lookup(device_data, "liveness-check-period") is not None:
            device.liveness_check_period = float(_lookup(device_data, "liveness-check-period"))
        if _lookup(device_data, "read-retry-delay") is not None:
            device.read_retry_delay = float(_lookup(device_data, "read-retry-delay"))
        if _lookup(device_data, "command-delay") is not None:
            device.command_delay = float(_lookup(device_data, "command-delay"))

        webhook_data = data.get("webhook") or {}
        webhook = config.webhook
        if "address" in webhook_data:
            webhook.address = str(webhook_data["address"])
        if "port" in webhook_data:
            webhook.port = int(webhook_data["port"])
        if "secret" in webhook_data:
            webhook.secret = str(webhook_data["secret"])
        if _lookup(webhook_data, "repo-path") is not None:
            webhook.repo_path = str(_lookup(webhook_data, "repo-path"))
        if "container" in webhook_data:
            webhook.container = str(webhook_data["container"])
        if "branch" in webhook_data:
            webhook.branch = str(webhook_data["branch"])
        if _lookup(webhook_data, "tracked-file") is not None:
            webhook.tracked_file = str(_lookup(webhook_data, "tracked-file"))

        if _lookup(data, "serial-log-file") is not None:
            config.serial_log_file = str(_lookup(data, "serial-log-file"))

        if _lookup(data, "settings-file") is not None:
            config.settings_file = str(_lookup(data, "settings-file"))

        return config

    @classmethod
    def _apply_cli_args(cls, config: "Config", cli_args: dict[str, Any]) -> "Config":
        """Apply CLI arguments to configuration.

        Args:
            config: Existing configuration to modify.
            cli_args: Dictionary of CLI arguments.

        Returns:
            Modified configuration.
        """
        if cli_args.get("usb_id") is not None:
            config.device.usb_id = str(cli_args["usb_id"])

        if cli_args.get("dev_path") is not None:
            config.device.path = str(cli_args["dev_path"])

        if cli_args.get("baud_rate") is not None:
            config.device.baud_rate = int(cli_args["baud_rate"])

        if cli_args.get("profile") is not None:
            config.device.profile = str(cli_args["profile"])

        if cli_args.get("handshake_timeout") is not None:
            config.device.handshake_timeout = float(cli_args["handshake_timeout"])

        if cli_args.get("address") is not None:
            config.webhook.address = str(cli_args["address"])

        if cli_args.get("port") is not None:
            config.webhook.port = int(cli_args["port"])

        if cli_args.get("serial_log_file") is not None:
            config.serial_log_file = str(cli_args["serial_log_file"])

        if cli_args.get("settings_file") is not None:
            config.settings_file = str(cli_args["settings_file"])

        return config

    @classmethod
    def _apply_env_vars(cls, config: "Config") -> "Config":
        """Apply environment variables to configuration.

        Args:
            config: Existing configuration to modify.

        Returns:
            Modified configuration.
        """
        if ENV_DEVICE_USB_ID in os.environ:
            config.device.usb_id = os.environ[ENV_DEVICE_USB_ID]

        if ENV_DEVICE_DEV_PATH in os.environ:
            config.device.path = os.environ[ENV_DEVICE_DEV_PATH]

        if ENV_DEVICE_BAUD_RATE in os.environ:
            config.device.baud_rate = int(os.environ[ENV_DEVICE_BAUD_RATE])

        if ENV_DEVICE_PROFILE in os.environ:
            config.device.profile = os.environ[ENV_DEVICE_PROFILE]

        if ENV_WEBHOOK_SECRET in os.environ:
            config.webhook.secret = os.environ[ENV_WEBHOOK_SECRET]

        if ENV_WEBHOOK_REPO_PATH in os.environ:
            config.webhook.repo_path = os.environ[ENV_WEBHOOK_REPO_PATH]

        if ENV_WEBHOOK_CONTAINER in os.environ:
            config.webhook.container = os.environ[ENV_WEBHOOK_CONTAINER]

        if ENV_WEBHOOK_PORT in os.environ:
            config.webhook.port = int(os.environ[ENV_WEBHOOK_PORT])

        if ENV_SERIAL_LOG_FILE in os.environ:
            config.serial_log_file = os.environ[ENV_SERIAL_LOG_FILE]

        return config

    def _validate(self, skip_device_validation: bool = False) -> None:
        """Validate required configuration values.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        # Imported here to keep config loadable without the device package
        from actuator_panel.device.protocol import PROFILES

        if self.device.profile not in PROFILES:
            raise ValueError(
                f"Unknown protocol profile '{self.device.profile}'. "
                f"Available profiles: {', '.join(sorted(PROFILES))}"
            )

        if skip_device_validation:
            return

        usb_id_set = self.device.usb_id is not None and self.device.usb_id.strip()
        dev_path_set = self.device.path is not None and self.device.path.strip()

        if not usb_id_set and not dev_path_set:
            raise ValueError(
                "Either USB ID or device path is required but not set. Please provide one via:\n"
                "  USB ID:\n"
                f"    - Environment variable: {ENV_DEVICE_USB_ID}\n"
                "    - CLI argument: --usb-id or -d\n"
                "    - Config file: device.usb-id\n"
                "  OR device path:\n"
                f"    - Environment variable: {ENV_DEVICE_DEV_PATH}\n"
                "    - CLI argument: --dev\n"
                "    - Config file: device.path"
            )

    @property
    def settings_path(self) -> Path:
        """Location of the persistent panel settings."""
        if self.settings_file:
            return Path(self.settings_file).expanduser()
        return DEFAULT_SETTINGS_PATH

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary.

        Returns:
            Dictionary representation of configuration.
        """
        result: dict[str, Any] = {
            "device": {
                "usb_id": self.device.usb_id,
                "path": self.device.path,
                "baud_rate": self.device.baud_rate,
                "profile": self.device.profile,
                "handshake_timeout": self.device.handshake_timeout,
                "stale_after": self.device.stale_after,
                "liveness_check_period": self.device.liveness_check_period,
                "read_retry_delay": self.device.read_retry_delay,
                "command_delay": self.device.command_delay,
            },
            "webhook": {
                "address": self.webhook.address,
                "port": self.webhook.port,
                "repo_path": self.webhook.repo_path,
                "container": self.webhook.container,
                "branch": self.webhook.branch,
                "tracked_file": self.webhook.tracked_file,
            },
        }
        if self.serial_log_file is not None:
            result["serial_log_file"] = self.serial_log_file
        if self.settings_file is not None:
            result["settings_file"] = self.settings_file
        return result

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file.

        The webhook secret is never written out.

        Args:
            path: Path to save to. If None, uses default config path.
        """
        if path is None:
            path = DEFAULT_CONFIG_PATH

        save_path = Path(path).expanduser()
        save_path.parent.mkdir(parents=True, exist_ok=True)

        device_data: dict[str, Any] = {
            "baud-rate": self.device.baud_rate,
            "profile": self.device.profile,
            "handshake-timeout": self.device.handshake_timeout,
            "stale-after": self.device.stale_after,
            "liveness-check-period": self.device.liveness_check_period,
            "read-retry-delay": self.device.read_retry_delay,
            "command-delay": self.device.command_delay,
        }

        if self.device.usb_id is not None:
            device_data["usb-id"] = self.device.usb_id

        if self.device.path is not None:
            device_data["path"] = self.device.path

        data: dict[str, Any] = {
            "device": device_data,
            "webhook": {
                "address": self.webhook.address,
                "port": self.webhook.port,
                "repo-path": self.webhook.repo_path,
                "container": self.webhook.container,
                "branch": self.webhook.branch,
                "tracked-file": self.webhook.tracked_file,
            },
        }

        if self.serial_log_file is not None:
            data["serial-log-file"] = self.serial_log_file

        if self.settings_file is not None:
            data["settings-file"] = self.settings_file

        with open(save_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, default_flow_style=False)


def _lookup(data: dict[str, Any], key: str) -> Any:
    """Get a hyphenated key, falling back to its underscored spelling."""
    if key in data:
        return data[key]
    return data.get(key.replace("-", "_"))
