"""Configuration management for the Sleeping Bedrock Listener."""

import copy
import json
import logging
import re
from pathlib import Path
from typing import Dict, Any, Optional
import ipaddress

from .models import Settings


logger = logging.getLogger(__name__)


class ConfigManager:
    """Manages configuration loading, validation, and reloading."""

    def __init__(self, config_path: str = "config.json"):
        self.config_path = Path(config_path)
        self._config: Dict[str, Any] = {}
        self._default_config = self._get_default_config()

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration values."""
        return {
            "bedrock": {
                "enabled": True,
                "port": 19132,
                "bind_address": "0.0.0.0",
                "login_message": "§eServer is starting up, try joining again in a minute.",
                "motd": "§aJoin to start server",
                "hide_ip_in_logs": False,
                "shutdown_timeout": 5
            },
            "wake": {
                "wol_enabled": False,
                "mac_address": "AA:BB:CC:DD:EE:FF",
                "target_ip": "192.168.1.100",
                "network_mask": 24,
                "wol_retry_interval": 5,
                "wol_max_retries": 3,
                "start_command": "",
                "cooldown_seconds": 90
            },
            "logging": {
                "level": "INFO",
                "file": "/var/log/sleeping-bedrock.log",
                "max_size_mb": 10,
                "backup_count": 3,
                "console_output": True
            },
            "monitoring": {
                "health_check_enabled": True,
                "status_endpoint_port": 8080
            }
        }

    def load_config(self) -> Dict[str, Any]:
        """Load configuration from file with validation."""
        try:
            if not self.config_path.exists():
                logger.warning(f"Config file {self.config_path} not found, using defaults")
                self._config = copy.deepcopy(self._default_config)
                return self._config

            with open(self.config_path, 'r', encoding='utf-8') as f:
                loaded_config = json.load(f)

            # Merge with defaults to ensure all keys exist
            self._config = self._merge_config(self._default_config, loaded_config)

            # Validate configuration
            self._validate_config()

            logger.info(f"Configuration loaded successfully from {self.config_path}")
            return self._config

        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in config file: {e}")
            raise ValueError(f"Configuration file contains invalid JSON: {e}")
        except Exception as e:
            logger.error(f"Error loading configuration: {e}")
            raise

    def _merge_config(self, default: Dict[str, Any], loaded: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge loaded config with defaults."""
        result = copy.deepcopy(default)

        for key, value in loaded.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value

        return result

    def _validate_config(self) -> None:
        """Validate configuration values."""
        errors = []

        # Validate listener configuration
        bedrock = self._config["bedrock"]
        if not self._validate_port(bedrock["port"]):
            errors.append(f"Invalid Bedrock port: {bedrock['port']}")

        if not self._validate_ip_address(bedrock["bind_address"]):
            errors.append(f"Invalid bind address: {bedrock['bind_address']}")

        for key in ("login_message", "motd"):
            if not isinstance(bedrock[key], str):
                errors.append(f"Invalid {key}: {bedrock[key]!r}")

        if not isinstance(bedrock["hide_ip_in_logs"], bool):
            errors.append(f"Invalid hide_ip_in_logs value: {bedrock['hide_ip_in_logs']}")

        if not self._validate_positive(bedrock["shutdown_timeout"]):
            errors.append(f"Invalid shutdown timeout: {bedrock['shutdown_timeout']}")

        # Wake-on-LAN target is only checked when it will be used
        wake = self._config["wake"]
        if wake["wol_enabled"]:
            if not self._validate_ip_address(wake["target_ip"]):
                errors.append(f"Invalid target IP address: {wake['target_ip']}")

            if not self._validate_mac_address(wake["mac_address"]):
                errors.append(f"Invalid MAC address: {wake['mac_address']}")

        # Validate timing values
        for key in ("wol_retry_interval", "wol_max_retries"):
            if not self._validate_positive(wake[key]):
                errors.append(f"Invalid wake value for {key}: {wake[key]}")

        cooldown = wake["cooldown_seconds"]
        if isinstance(cooldown, bool) or not isinstance(cooldown, (int, float)) or cooldown < 0:
            errors.append(f"Invalid wake value for cooldown_seconds: {cooldown}")

        if not isinstance(wake["start_command"], str):
            errors.append(f"Invalid start command: {wake['start_command']!r}")

        # Validate logging configuration
        log_level = str(self._config["logging"]["level"]).upper()
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if log_level not in valid_levels:
            errors.append(f"Invalid log level: {log_level}. Must be one of {valid_levels}")

        # Validate monitoring configuration
        status_port = self._config["monitoring"]["status_endpoint_port"]
        if not self._validate_port(status_port):
            errors.append(f"Invalid status endpoint port: {status_port}")

        if errors:
            error_msg = "Configuration validation failed:\n" + "\n".join(errors)
            logger.error(error_msg)
            raise ValueError(error_msg)

    def _validate_ip_address(self, ip: str) -> bool:
        """Validate IP address format."""
        try:
            ipaddress.ip_address(ip)
            return True
        except ValueError:
            return False

    def _validate_mac_address(self, mac: str) -> bool:
        """Validate MAC address format."""
        mac_pattern = re.compile(r'^([0-9A-Fa-f]{2}[:-]){5}([0-9A-Fa-f]{2})$|^[0-9A-Fa-f]{12}$')
        return isinstance(mac, str) and bool(mac_pattern.match(mac))

    def _validate_port(self, port: int) -> bool:
        """Validate port number."""
        return isinstance(port, int) and not isinstance(port, bool) and 1 <= port <= 65535

    def _validate_positive(self, value: Any) -> bool:
        return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'bedrock.port')."""
        keys = key_path.split('.')
        value = self._config

        try:
            for key in keys:
                value = value[key]
            return value
        except (KeyError, TypeError):
            return default

    def get_settings(self) -> Settings:
        """Build the immutable listener settings from the loaded configuration."""
        # Lazily load on first use
        if not self._config:
            self.load_config()

        bedrock = self._config["bedrock"]
        return Settings(
            port=bedrock["port"],
            login_message=bedrock["login_message"],
            hide_ip_in_logs=bedrock["hide_ip_in_logs"],
            bind_address=bedrock["bind_address"],
            motd=bedrock["motd"],
            shutdown_timeout=bedrock["shutdown_timeout"]
        )

    def reload_config(self) -> bool:
        """Reload configuration from file."""
        old_config = copy.deepcopy(self._config)
        try:
            self.load_config()
            logger.info("Configuration reloaded successfully")
            return True
        except Exception as e:
            logger.error(f"Failed to reload configuration: {e}")
            # Restore old configuration
            self._config = old_config
            return False

    def save_example_config(self, path: Optional[str] = None) -> None:
        """Save an example configuration file with comments."""
        if path is None:
            path = "config.json.example"

        defaults = self._get_default_config()
        example_config = {
            "_comment_bedrock": "Sleeping Bedrock listener",
            "bedrock": {
                "_comment": "Players joining on this port are disconnected with login_message and wake the server",
                **defaults["bedrock"]
            },
            "_comment_wake": "What happens when a player tries to join",
            "wake": {
                "_comment": "Send Wake-on-LAN to mac_address and/or run start_command; cooldown_seconds applies when there is no command",
                **defaults["wake"]
            },
            "_comment_logging": "Logging configuration",
            "logging": defaults["logging"],
            "_comment_monitoring": "HTTP status endpoint",
            "monitoring": defaults["monitoring"]
        }

        with open(path, 'w', encoding='utf-8') as f:
            json.dump(example_config, f, indent=2, ensure_ascii=False)

        logger.info(f"Example configuration saved to {path}")

    @property
    def config(self) -> Dict[str, Any]:
        """Get the current configuration."""
        return copy.deepcopy(self._config)
