"""Unit tests for server configuration.

Tests configuration loading, validation, defaults, and environment overrides.
"""

from pathlib import Path

import pytest
import yaml

from voicepair.config import (
    GeoConfig,
    HealthConfig,
    MatchmakingConfig,
    VoicePairConfig,
    WebSocketConfig,
)


def test_websocket_config_defaults() -> None:
    """Test WebSocket configuration defaults."""
    config = WebSocketConfig()
    assert config.host == "0.0.0.0"  # noqa: S104
    assert config.port == 8080
    assert config.max_connections == 1000
    assert config.max_message_size == 2**20
    assert config.send_queue_size == 256


def test_websocket_config_validation() -> None:
    """Test WebSocket port bounds."""
    assert WebSocketConfig(port=9000).port == 9000

    with pytest.raises(ValueError):
        WebSocketConfig(port=80)

    with pytest.raises(ValueError):
        WebSocketConfig(port=70000)


def test_geo_config_defaults() -> None:
    """Test region lookup is opt-in and defaults to 'unknown'."""
    config = GeoConfig()
    assert config.enabled is False
    assert config.default_region == "unknown"
    assert "{ip}" in config.lookup_url
    assert config.trust_forwarded_for is True


def test_geo_config_lookup_url_requires_placeholder() -> None:
    """Test lookup URL validation."""
    with pytest.raises(ValueError, match="placeholder"):
        GeoConfig(lookup_url="http://example.com/json")

    with pytest.raises(ValueError, match="http"):
        GeoConfig(lookup_url="ftp://example.com/{ip}")


def test_geo_config_static_regions_uppercased() -> None:
    """Test static region overrides are normalized."""
    config = GeoConfig(static_regions={"203.0.113.5": "de"})
    assert config.static_regions == {"203.0.113.5": "DE"}


def test_matchmaking_config_defaults() -> None:
    """Test default user-facing messages."""
    config = MatchmakingConfig()
    assert config.waiting_message == "Waiting for partner..."
    assert config.partner_unavailable_message == "Partner unavailable, finding another..."
    assert config.error_message == "Failed to process message"
    assert config.seed is None


def test_log_level_validation() -> None:
    """Test log level is validated and upper-cased."""
    assert VoicePairConfig(log_level="debug").log_level == "DEBUG"

    with pytest.raises(ValueError, match="log_level"):
        VoicePairConfig(log_level="chatty")


def test_health_port_defaults_to_next_port() -> None:
    """Test health port derivation."""
    config = VoicePairConfig(websocket=WebSocketConfig(port=9000))
    assert config.health_port == 9001

    config = VoicePairConfig(health=HealthConfig(port=9100))
    assert config.health_port == 9100


def test_health_port_out_of_range() -> None:
    """Test the last valid WebSocket port needs an explicit health port."""
    with pytest.raises(ValueError, match="health.port must be set"):
        VoicePairConfig(websocket=WebSocketConfig(port=65535))

    config = VoicePairConfig(
        websocket=WebSocketConfig(port=65535), health=HealthConfig(port=9100)
    )
    assert config.health_port == 9100

    config = VoicePairConfig(
        websocket=WebSocketConfig(port=65535), health=HealthConfig(enabled=False)
    )
    assert config.websocket.port == 65535


def test_from_yaml(tmp_path: Path) -> None:
    """Test loading configuration from YAML."""
    path = tmp_path / "voicepair.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "websocket": {"port": 9500},
                "geo": {"default_region": "ZZ"},
                "log_level": "warning",
            }
        )
    )

    config = VoicePairConfig.from_yaml(path)

    assert config.websocket.port == 9500
    assert config.geo.default_region == "ZZ"
    assert config.log_level == "WARNING"


def test_from_yaml_env_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Test environment variables override YAML values."""
    path = tmp_path / "voicepair.yaml"
    path.write_text(yaml.safe_dump({"websocket": {"port": 9500}}))

    monkeypatch.setenv("VOICEPAIR_PORT", "9600")
    monkeypatch.setenv("VOICEPAIR_HOST", "127.0.0.1")
    monkeypatch.setenv("GEO_LOOKUP_ENABLED", "true")
    monkeypatch.setenv("GEO_LOOKUP_URL", "https://geo.example/{ip}")

    config = VoicePairConfig.from_yaml(path)

    assert config.websocket.port == 9600
    assert config.websocket.host == "127.0.0.1"
    assert config.geo.enabled is True
    assert config.geo.lookup_url == "https://geo.example/{ip}"


def test_from_yaml_empty_file(tmp_path: Path) -> None:
    """Test an empty YAML file yields defaults."""
    path = tmp_path / "empty.yaml"
    path.write_text("")

    assert VoicePairConfig.from_yaml(path) == VoicePairConfig()


def test_from_yaml_missing_file(tmp_path: Path) -> None:
    """Test missing configuration file."""
    with pytest.raises(FileNotFoundError):
        VoicePairConfig.from_yaml(tmp_path / "missing.yaml")


def test_from_yaml_with_defaults(tmp_path: Path) -> None:
    """Test fallback to defaults when the file does not exist."""
    assert VoicePairConfig.from_yaml_with_defaults(None) == VoicePairConfig()
    assert VoicePairConfig.from_yaml_with_defaults(tmp_path / "nope.yaml") == VoicePairConfig()


def test_shipped_config_file_loads() -> None:
    """Test the sample configuration in configs/ is valid."""
    path = Path(__file__).parent.parent.parent / "configs" / "voicepair.yaml"
    config = VoicePairConfig.from_yaml(path)
    assert config.websocket.port == 8080
    assert config.health.port is None
