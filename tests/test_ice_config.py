"""
Tests for the Relay Credential Configuration
"""

from src.relay.ice_config import (
    DEFAULT_TURN_URL,
    ICE_CANDIDATE_POOL_SIZE,
    get_ice_servers,
    ice_config_from_env,
)


def test_default_credential_set():
    """Test the STUN and TURN entries built from defaults."""
    config = get_ice_servers()

    assert config["iceCandidatePoolSize"] == ICE_CANDIDATE_POOL_SIZE
    urls = [entry["urls"] for entry in config["iceServers"]]
    assert urls[:2] == [
        "stun:stun.l.google.com:19302",
        "stun:stun1.l.google.com:19302",
    ]
    assert urls[2:] == [
        f"turn:{DEFAULT_TURN_URL}:80",
        f"turn:{DEFAULT_TURN_URL}:443",
        f"turn:{DEFAULT_TURN_URL}:443?transport=tcp",
    ]
    for entry in config["iceServers"][:2]:
        assert "username" not in entry


def test_credentials_from_environment():
    """Test that TURN_* variables override the defaults."""
    config = ice_config_from_env(
        {
            "TURN_URL": "turn.example.com",
            "TURN_USERNAME": "alice",
            "TURN_CREDENTIAL": "secret",
        }
    )

    turn = [e for e in config["iceServers"] if e["urls"].startswith("turn:")]
    assert len(turn) == 3
    assert all(e["urls"].startswith("turn:turn.example.com:") for e in turn)
    assert all(e["username"] == "alice" for e in turn)
    assert all(e["credential"] == "secret" for e in turn)


def test_empty_environment_uses_defaults():
    """Test that blank variables fall back to defaults."""
    assert ice_config_from_env({"TURN_URL": ""}) == get_ice_servers()
