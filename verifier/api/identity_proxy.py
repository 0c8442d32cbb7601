"""
Farcaster identity lookup, proxied so the Neynar API key never reaches the
browser. Read-only; a failure here never affects verification.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

import requests

log = logging.getLogger("touchgrass.api")

NEYNAR_BULK_BY_ADDRESS_URL = "https://api.neynar.com/v2/farcaster/user/bulk-by-address"
ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")
LOOKUP_TIMEOUT_SECONDS = 10


def lookup_farcaster_profile(
    address: str,
    api_key: Optional[str],
    session: Optional[requests.Session] = None,
) -> tuple[int, dict]:
    """Returns (http_status, body) ready to be sent to the client."""
    if not address or not ADDRESS_PATTERN.match(address):
        return 400, {"success": False, "message": "Invalid Ethereum address format"}

    if not api_key:
        # identity falls back to other sources on the frontend
        return 503, {"success": False, "message": "Farcaster lookup not available"}

    http = session or requests
    try:
        response = http.get(
            NEYNAR_BULK_BY_ADDRESS_URL,
            params={"addresses": address},
            headers={"accept": "application/json", "api_key": api_key},
            timeout=LOOKUP_TIMEOUT_SECONDS,
        )
        if not response.ok:
            log.warning(f"[IDENTITY] Neynar API error: {response.status_code}")
            return response.status_code, {"success": False, "message": "Farcaster lookup failed"}

        data = response.json()
    except (requests.RequestException, ValueError) as e:
        log.error(f"[IDENTITY] Farcaster proxy error: {e}")
        return 500, {"success": False, "message": "Farcaster lookup failed"}

    if not isinstance(data, dict):
        log.error(f"[IDENTITY] Unexpected Neynar body type: {type(data).__name__}")
        return 500, {"success": False, "message": "Farcaster lookup failed"}

    users = data.get(address.lower())
    if users is not None and not isinstance(users, list):
        log.error(f"[IDENTITY] Unexpected Neynar users entry: {type(users).__name__}")
        return 500, {"success": False, "message": "Farcaster lookup failed"}

    user = users[0] if users else None
    if user is not None and not isinstance(user, dict):
        log.error(f"[IDENTITY] Unexpected Neynar user entry: {type(user).__name__}")
        return 500, {"success": False, "message": "Farcaster lookup failed"}

    if user:
        return 200, {
            "success": True,
            "name":    user.get("display_name") or user.get("username"),
            "avatar":  user.get("pfp_url"),
        }
    return 200, {"success": False, "message": "No Farcaster profile found"}
