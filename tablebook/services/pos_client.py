from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from tablebook.core.config import get_settings

logger = logging.getLogger(__name__)

API_VERSION = "2024-01-18"


class PosClient:
    """Read-only point-of-sale API client used to enrich webhook payloads."""

    def __init__(self, base_url: str | None = None, access_token: str | None = None, timeout: float | None = None):
        settings = get_settings()
        self.base_url = (base_url or settings.pos_api_base_url).rstrip("/")
        self.access_token = access_token if access_token is not None else settings.pos_access_token
        self.timeout = timeout or settings.pos_api_timeout_seconds

    def is_configured(self) -> bool:
        return bool(self.access_token)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Square-Version": API_VERSION,
            "Accept": "application/json",
        }

    def _get(self, path: str, key: str) -> Optional[dict[str, Any]]:
        if not self.is_configured():
            return None
        with httpx.Client(timeout=self.timeout) as client:
            r = client.get(f"{self.base_url}{path}", headers=self._headers())
            r.raise_for_status()
            data = r.json()
        return data.get(key)

    def fetch_order(self, order_id: str) -> Optional[dict[str, Any]]:
        return self._get(f"/v2/orders/{order_id}", "order")

    def fetch_payment(self, payment_id: str) -> Optional[dict[str, Any]]:
        return self._get(f"/v2/payments/{payment_id}", "payment")
