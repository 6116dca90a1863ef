"""Viettel Post partner API client with a cached owner token."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional

import requests

from .errors import CarrierError, ConfigurationError

logger = logging.getLogger("mixer.viettelpost")

VTP_BASE_URL = "https://partner.viettelpost.vn/v2"
TOKEN_TTL_SEC = 23 * 60 * 60


class ViettelPostClient:
    """Fee quotes and warehouse lookup against the Viettel Post partner API."""

    def __init__(
        self,
        username: str,
        password: str,
        base_url: str = VTP_BASE_URL,
        timeout: int = 20,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
    ):
        if not username or not password:
            raise ConfigurationError("Viettel Post credentials not configured")
        self.username = username
        self.password = password
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self._clock = clock
        self._token: Optional[str] = None
        self._token_expiry = 0.0

    def get_token(self) -> str:
        """Purpose: Return a valid partner token, logging in when the cache expired.
        Inputs/Outputs: No inputs; returns the token string.
        Side Effects / State: Caches the token for 23 hours. Concurrent refreshes are
            harmless since logging in again yields an equivalent token.
        Dependencies: /user/login then /user/ownerconnect for the long-lived token.
        Failure Modes: Raises CarrierError when login returns no token.
        Testing Notes: Two calls inside the window must trigger one login.
        """
        if self._token and self._clock() < self._token_expiry:
            return self._token

        credentials = {"USERNAME": self.username, "PASSWORD": self.password}
        login = self._post("/user/login", credentials, context="login")
        login_token = _token_from(login)
        if not login_token:
            logger.error("login failed message=%s", login.get("message"))
            raise CarrierError(login.get("message") or "Login failed")

        connect = self._post("/user/ownerconnect", credentials, token=login_token, context="ownerconnect")
        owner_token = _token_from(connect)
        # ownerconnect is unavailable for some accounts; the login token still works.
        self._token = owner_token or login_token
        self._token_expiry = self._clock() + TOKEN_TTL_SEC
        logger.info("token obtained owner_connect=%s", bool(owner_token))
        return self._token

    def list_inventories(self) -> Dict[str, Any]:
        return self._get("/user/listInventory", token=self.get_token(), context="listInventory")

    def calculate_shipping(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._post("/order/getPriceAll", payload, token=self.get_token(), context="getPriceAll")

    def _headers(self, token: Optional[str]) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Token"] = token
        return headers

    def _post(self, path: str, body: Dict[str, Any], token: Optional[str] = None, context: str = "") -> Dict[str, Any]:
        resp = self.session.post(
            f"{self.base_url}{path}", json=body, headers=self._headers(token), timeout=self.timeout
        )
        return safe_json(resp, context)

    def _get(self, path: str, token: Optional[str] = None, context: str = "") -> Dict[str, Any]:
        resp = self.session.get(f"{self.base_url}{path}", headers=self._headers(token), timeout=self.timeout)
        return safe_json(resp, context)


def _token_from(body: Dict[str, Any]) -> Optional[str]:
    data = body.get("data")
    return data.get("token") if isinstance(data, dict) else None


def safe_json(resp: Any, context: str) -> Dict[str, Any]:
    """Decode a Viettel Post body; empty or non-JSON bodies become an error dict."""
    text = resp.text or ""
    logger.debug("vtp %s response=%s", context, text[:500])
    if not text.strip():
        logger.error("vtp %s empty response", context)
        return {"error": True, "message": "Viettel Post returned empty response"}
    try:
        data = resp.json()
    except ValueError:
        logger.error("vtp %s invalid JSON body=%s", context, text[:200])
        return {"error": True, "message": "Invalid JSON response from Viettel Post", "raw": text[:200]}
    return data if isinstance(data, dict) else {"data": data}
