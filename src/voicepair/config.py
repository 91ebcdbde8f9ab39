"""Configuration schema for the pairing server.

Defines Pydantic models for loading and validating server configuration
from YAML files and environment variables.
"""

from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator


class WebSocketConfig(BaseModel):
    """WebSocket transport configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host address")  # noqa: S104
    port: int = Field(default=8080, ge=1024, le=65535, description="Bind port")
    max_connections: int = Field(default=1000, ge=1, description="Maximum concurrent connections")
    max_message_size: int = Field(
        default=2**20,
        ge=1024,
        description="Maximum inbound frame size in bytes (voice chunks are base64 text)",
    )
    send_queue_size: int = Field(
        default=256,
        ge=1,
        description="Outbound message buffer per connection; overflow is dropped",
    )
    ping_interval_s: float | None = Field(
        default=20.0,
        description="Keepalive ping interval in seconds (None disables pings)",
    )


class GeoConfig(BaseModel):
    """Region lookup configuration.

    The lookup service is queried with the client address substituted into
    ``lookup_url`` and must answer with a JSON object carrying the region code
    under ``region_field``. Any failure falls back to ``default_region``.

    Example usage:
        ```yaml
        geo:
          enabled: true
          lookup_url: "http://ip-api.com/json/{ip}?fields=status,countryCode"
          region_field: "countryCode"
          timeout_s: 1.5
        ```
    """

    enabled: bool = Field(default=False, description="Enable HTTP region lookup")
    lookup_url: str = Field(
        default="http://ip-api.com/json/{ip}?fields=status,countryCode",
        description="Lookup URL template, must contain '{ip}'",
    )
    region_field: str = Field(
        default="countryCode",
        description="JSON field holding the region code in the lookup response",
    )
    timeout_s: float = Field(default=1.5, gt=0, le=30.0, description="Lookup timeout")
    default_region: str = Field(
        default="unknown",
        description="Region assigned when the origin cannot be resolved",
    )
    trust_forwarded_for: bool = Field(
        default=True,
        description="Use the first X-Forwarded-For hop as the client address",
    )
    cache_size: int = Field(default=4096, ge=0, description="Resolved address cache entries")
    static_regions: dict[str, str] = Field(
        default_factory=dict,
        description="Fixed address -> region overrides consulted before the lookup",
    )

    @field_validator("lookup_url")
    @classmethod
    def validate_lookup_url(cls, v: str) -> str:
        """Validate that the URL template has an address placeholder."""
        if "{ip}" not in v:
            raise ValueError(f"geo lookup_url must contain '{{ip}}' placeholder, got '{v}'")
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"geo lookup_url must be an http(s) URL, got '{v}'")
        return v

    @field_validator("static_regions")
    @classmethod
    def validate_static_regions(cls, v: dict[str, str]) -> dict[str, str]:
        """Normalize static region codes to upper case."""
        return {address: region.upper() for address, region in v.items()}


class MatchmakingConfig(BaseModel):
    """Matchmaking behavior configuration."""

    waiting_message: str = Field(
        default="Waiting for partner...",
        description="Message sent when no partner is currently available",
    )
    partner_unavailable_message: str = Field(
        default="Partner unavailable, finding another...",
        description="Message sent when the selected partner vanished before notification",
    )
    error_message: str = Field(
        default="Failed to process message",
        description="Message sent in response to malformed inbound frames",
    )
    seed: int | None = Field(
        default=None,
        description="Random seed for partner selection (tests and reproducible runs)",
    )


class HealthConfig(BaseModel):
    """HTTP health/metrics endpoint configuration."""

    enabled: bool = Field(default=True, description="Serve health and metrics endpoints")
    host: str = Field(default="127.0.0.1", description="Bind host address")
    port: int | None = Field(
        default=None,
        ge=1024,
        le=65535,
        description="Bind port (defaults to WebSocket port + 1)",
    )


class VoicePairConfig(BaseModel):
    """Root server configuration."""

    websocket: WebSocketConfig = Field(default_factory=WebSocketConfig)
    geo: GeoConfig = Field(default_factory=GeoConfig)
    matchmaking: MatchmakingConfig = Field(default_factory=MatchmakingConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)

    # Operational settings
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    graceful_shutdown_timeout_s: int = Field(
        default=10,
        ge=1,
        description="Graceful shutdown timeout in seconds",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate logging level name."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}, got '{v}'")
        return v.upper()

    @model_validator(mode="after")
    def validate_health_port(self) -> "VoicePairConfig":
        """Require an explicit health port when WebSocket port + 1 is out of range."""
        if self.health.enabled and self.health.port is None and self.websocket.port >= 65535:
            raise ValueError(
                f"health.port must be set when websocket.port is {self.websocket.port} "
                "(the default WebSocket port + 1 is not a valid port)"
            )
        return self

    @property
    def health_port(self) -> int:
        """Port of the health server (explicit or WebSocket port + 1)."""
        if self.health.port is not None:
            return self.health.port
        return self.websocket.port + 1

    @classmethod
    def from_yaml(cls, path: Path) -> "VoicePairConfig":
        """Load configuration from YAML file with environment variable overrides.

        Args:
            path: Path to YAML configuration file

        Returns:
            Loaded configuration

        Raises:
            FileNotFoundError: If configuration file doesn't exist
            ValueError: If YAML is invalid or validation fails
        """
        import os

        import yaml  # type: ignore[import-untyped]

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Configuration root must be a mapping: {path}")

        # Apply WebSocket environment variable overrides
        if host := os.getenv("VOICEPAIR_HOST"):
            data.setdefault("websocket", {})["host"] = host

        if port := os.getenv("VOICEPAIR_PORT"):
            data.setdefault("websocket", {})["port"] = int(port)

        if log_level := os.getenv("VOICEPAIR_LOG_LEVEL"):
            data["log_level"] = log_level

        # Apply geo lookup environment variable overrides
        if geo_enabled := os.getenv("GEO_LOOKUP_ENABLED"):
            data.setdefault("geo", {})["enabled"] = geo_enabled.lower() in ("true", "1", "yes")

        if geo_url := os.getenv("GEO_LOOKUP_URL"):
            data.setdefault("geo", {})["lookup_url"] = geo_url

        return cls.model_validate(data)

    @classmethod
    def from_yaml_with_defaults(cls, path: Path | None = None) -> "VoicePairConfig":
        """Load configuration from YAML or use defaults if file doesn't exist.

        Args:
            path: Optional path to YAML configuration file

        Returns:
            Loaded configuration or defaults
        """
        if path is not None and path.exists():
            return cls.from_yaml(path)

        return cls()
