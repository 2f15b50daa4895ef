"""
Relay Credential Configuration

Builds the STUN/TURN server list clients need to establish a peer link
across NAT. TURN settings come from the environment and fall back to the
public Open Relay project credentials.
"""

import os
from typing import Any, Dict, Mapping, Optional

DEFAULT_TURN_URL = "openrelay.metered.ca"
DEFAULT_TURN_USERNAME = "openrelayproject"
DEFAULT_TURN_CREDENTIAL = "openrelayproject"
ICE_CANDIDATE_POOL_SIZE = 10

PUBLIC_STUN_URLS = [
    "stun:stun.l.google.com:19302",
    "stun:stun1.l.google.com:19302",
]


def get_ice_servers(
    turn_url: str = DEFAULT_TURN_URL,
    turn_username: str = DEFAULT_TURN_USERNAME,
    turn_credential: str = DEFAULT_TURN_CREDENTIAL,
) -> Dict[str, Any]:
    """
    Build the relay credential set.

    Args:
        turn_url: TURN host, without scheme or port
        turn_username: TURN username
        turn_credential: TURN credential

    Returns:
        dict: {"iceServers": [...], "iceCandidatePoolSize": int}
    """
    servers = [{"urls": url} for url in PUBLIC_STUN_URLS]
    for suffix in (":80", ":443", ":443?transport=tcp"):
        servers.append(
            {
                "urls": f"turn:{turn_url}{suffix}",
                "username": turn_username,
                "credential": turn_credential,
            }
        )
    return {
        "iceServers": servers,
        "iceCandidatePoolSize": ICE_CANDIDATE_POOL_SIZE,
    }


def ice_config_from_env(
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """Build the relay credential set from TURN_* environment variables."""
    env = os.environ if environ is None else environ
    return get_ice_servers(
        turn_url=env.get("TURN_URL") or DEFAULT_TURN_URL,
        turn_username=env.get("TURN_USERNAME") or DEFAULT_TURN_USERNAME,
        turn_credential=env.get("TURN_CREDENTIAL") or DEFAULT_TURN_CREDENTIAL,
    )
