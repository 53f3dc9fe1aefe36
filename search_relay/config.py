"""Configuration management for the search relay."""

import os
from typing import Any
from urllib.parse import unquote

import yaml
from dotenv import load_dotenv

from search_relay.upstream.exceptions import ConfigurationError
from search_relay.upstream.models import BackoffStrategy, RetryPolicy

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), "config.yaml")

# Map service names to credential environment variables
SERVICE_KEY_MAP = {
    "chat": "DEEPSEEK_API_KEY",
    "twitter": "X_API_KEY",
    "apify": "APIFY_KEY",
}

RETRY_REQUIRED_KEYS = ["max_attempts", "initial_delay", "strategy"]


class Configuration:
    """Manages configuration and environment variables for the relay."""

    def __init__(self, config_path: str | None = None) -> None:
        """Initialize configuration from YAML and environment variables."""
        self.load_env()  # Load .env for API keys
        self.config_path = config_path or os.getenv(
            "SEARCH_RELAY_CONFIG", DEFAULT_CONFIG_PATH
        )
        self._config = self._load_yaml_config()

    @staticmethod
    def load_env() -> None:
        """Load environment variables from .env file."""
        load_dotenv()

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> "Configuration":
        """Build a configuration from an in-memory dict (environment still applies)."""
        instance = cls.__new__(cls)
        cls.load_env()
        instance.config_path = None
        instance._config = config
        return instance

    def _load_yaml_config(self) -> dict[str, Any]:
        """Load configuration from YAML file."""
        try:
            with open(self.config_path) as file:
                config = yaml.safe_load(file)
        except FileNotFoundError as e:
            raise ConfigurationError(
                f"Config file not found: {self.config_path}"
            ) from e
        if not isinstance(config, dict):
            raise ConfigurationError(
                f"Config file must be YAML dict, got {type(config)}"
            )
        return config

    def api_key(self, service: str) -> str:
        """Get the API key for an upstream service.

        Raises:
            ConfigurationError: If the key is unknown or not set.
        """
        env_key = SERVICE_KEY_MAP.get(service)
        if not env_key:
            raise ConfigurationError(
                f"Unknown service '{service}' - no API key mapping found"
            )

        api_key = os.getenv(env_key, "")
        if service == "twitter":
            # The bearer token is commonly stored URL-encoded
            api_key = unquote(api_key)
        if not api_key:
            raise ConfigurationError(
                f"{env_key} is not set in environment variables"
            )
        return api_key

    def get_config_dict(self) -> dict[str, Any]:
        """Get the full configuration dictionary."""
        return self._config

    def _require(self, section: dict[str, Any], keys: list[str], where: str) -> None:
        for key in keys:
            if key not in section:
                raise ConfigurationError(
                    f"{where}.{key} must be explicitly configured in config.yaml"
                )

    def get_server_config(self) -> dict[str, Any]:
        """Get HTTP server configuration.

        Returns:
            Server configuration with host, port and log_level.
        """
        server_config = self._config.get("server", {})
        self._require(server_config, ["host", "port"], "server")

        port = server_config["port"]
        if not isinstance(port, int) or not 0 < port < 65536:
            raise ConfigurationError("server.port must be an integer in 1..65535")

        return {"log_level": "info", **server_config}

    def get_http_client_config(self) -> dict[str, Any]:
        """Get shared HTTP client configuration.

        Raises:
            ConfigurationError: If required parameters are missing or invalid.
        """
        http_config = self._config.get("http_client", {})
        required_keys = [
            "connect_timeout", "read_timeout", "write_timeout", "pool_timeout",
            "max_connections", "max_keepalive",
        ]
        self._require(http_config, required_keys, "http_client")

        for key in ("connect_timeout", "read_timeout", "write_timeout", "pool_timeout"):
            if http_config[key] <= 0:
                raise ConfigurationError(f"http_client.{key} must be positive")
        if http_config["max_connections"] < 1:
            raise ConfigurationError("http_client.max_connections must be at least 1")
        if http_config["max_keepalive"] > http_config["max_connections"]:
            raise ConfigurationError(
                "http_client.max_keepalive must be <= max_connections"
            )

        return http_config

    def _get_service_config(self, service: str, required: list[str]) -> dict[str, Any]:
        services = self._config.get("services", {})
        if service not in services:
            raise ConfigurationError(
                f"services.{service} must be explicitly configured in config.yaml"
            )
        service_config = services[service]
        self._require(service_config, required, f"services.{service}")
        return service_config

    def get_retry_config(self, service: str) -> dict[str, Any]:
        """Get the retry section for a service.

        Raises:
            ConfigurationError: If required retry parameters are missing or invalid.
        """
        service_config = self._get_service_config(service, ["retry"])
        retry_config = service_config["retry"]
        self._require(retry_config, RETRY_REQUIRED_KEYS, f"services.{service}.retry")

        if retry_config["max_attempts"] < 1:
            raise ConfigurationError(
                f"services.{service}.retry.max_attempts must be at least 1"
            )
        valid_strategies = [s.value for s in BackoffStrategy]
        if retry_config["strategy"] not in valid_strategies:
            raise ConfigurationError(
                f"services.{service}.retry.strategy must be one of: "
                f"{valid_strategies}"
            )
        return retry_config

    def get_chat_config(self) -> dict[str, Any]:
        """Get chat completion provider configuration."""
        chat_config = self._get_service_config(
            "chat", ["url", "model", "max_tokens", "temperature", "context_items"]
        )
        if chat_config["max_tokens"] < 1:
            raise ConfigurationError("services.chat.max_tokens must be at least 1")
        if not 0 <= chat_config["temperature"] <= 2:
            raise ConfigurationError("services.chat.temperature must be in 0..2")
        return chat_config

    def get_twitter_config(self) -> dict[str, Any]:
        """Get Twitter recent-search configuration."""
        return self._get_service_config("twitter", ["url", "default_max_results"])

    def get_apify_config(self) -> dict[str, Any]:
        """Get Apify actor configuration."""
        apify_config = self._get_service_config(
            "apify",
            ["base_url", "actor_id", "default_max_results", "wait_for_finish",
             "max_run_wait", "read_timeout"],
        )
        if apify_config["max_run_wait"] < apify_config["wait_for_finish"]:
            raise ConfigurationError(
                "services.apify.max_run_wait must be >= wait_for_finish"
            )
        # Apify holds the connection for up to wait_for_finish seconds
        if apify_config["read_timeout"] <= apify_config["wait_for_finish"]:
            raise ConfigurationError(
                "services.apify.read_timeout must be greater than wait_for_finish"
            )
        return apify_config

    def get_logging_config(self) -> dict[str, Any]:
        """Get logging configuration from YAML."""
        return self._config.get("logging", {"level": "INFO"})

    def validate(self) -> None:
        """Check every section and credential once, before services are built.

        Raises:
            ConfigurationError: On the first missing or invalid setting.
        """
        self.get_server_config()
        self.get_http_client_config()
        self.get_chat_config()
        self.get_twitter_config()
        self.get_apify_config()
        for service in SERVICE_KEY_MAP:
            self.get_retry_config(service)
            self.api_key(service)


def build_retry_policy(retry_config: dict[str, Any]) -> RetryPolicy:
    """Turn a validated retry section into a RetryPolicy."""
    kwargs: dict[str, Any] = {
        "max_attempts": retry_config["max_attempts"],
        "initial_delay": float(retry_config["initial_delay"]),
        "strategy": BackoffStrategy(retry_config["strategy"]),
    }
    for key in ("backoff_factor", "max_delay", "max_rate_limit_wait"):
        if key in retry_config:
            kwargs[key] = retry_config[key]
    if "reset_header" in retry_config:
        kwargs["reset_header"] = retry_config["reset_header"]
    return RetryPolicy(**kwargs)
