"""
native_client.py — Native WhatsApp client channel (paired web session).

The browser automation that actually drives WhatsApp Web runs as a
separate bridge process. This adapter only talks to that bridge over
HTTP and tracks whether its session is paired.

═══════════════════════════════════════════════════════════════════════════
BRIDGE PROTOCOL
═══════════════════════════════════════════════════════════════════════════

    GET  {bridge}/status     → {"paired": true, "state": "CONNECTED"}
    POST {bridge}/messages   ← {"to": "919876543210", "body": "..."}
                             → 2xx accepted
                               409 session not paired (session lost)

═══════════════════════════════════════════════════════════════════════════
PAIRING LIFECYCLE
═══════════════════════════════════════════════════════════════════════════

    UNINITIALIZED ──(bridge reports paired / mark_paired())──▶ READY
         ▲                                                       │
         │                                 (unpaired, 409, bridge gone)
         │                                                       ▼
         └───────────────(re-paired)──────────────────────── DEGRADED

The pairing watch polls the bridge at a fixed interval for the whole
process lifetime, because the QR-code scan can happen at any moment and a
paired session can silently drop.

Phone numbers are sent as bare digits; a 10-digit local number gets the
91 country code.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Optional

import httpx

from backend.app.core.errors import TransportFailureError
from backend.app.notifications.channels.base import NotificationChannel
from backend.app.notifications.models import ChannelName, Readiness

logger = logging.getLogger(__name__)

DEFAULT_COUNTRY_CODE = "91"
DEFAULT_TIMEOUT_SECONDS = 15.0


def normalize_phone_number(phone_number: str, country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """
    Reduce a phone number to the digits WhatsApp expects.

    "+91 98765-43210" → "919876543210"
    "9876543210"      → "919876543210"
    """
    digits = re.sub(r"\D", "", phone_number)
    if len(digits) == 10:
        return f"{country_code}{digits}"
    return digits


class NativeClientChannel(NotificationChannel):
    """Delivery through a paired WhatsApp-Web session."""

    name = ChannelName.NATIVE

    def __init__(
        self,
        *,
        bridge_url: Optional[str] = None,
        poll_interval_seconds: float = 5.0,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        country_code: str = DEFAULT_COUNTRY_CODE,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        super().__init__()
        self.bridge_url = bridge_url.rstrip("/") if bridge_url else None
        self.poll_interval_seconds = poll_interval_seconds
        self.timeout_seconds = timeout_seconds
        self.country_code = country_code
        self._http_client = http_client
        self._owns_client = http_client is None
        self._watch_task: Optional[asyncio.Task] = None
        self._set_readiness(Readiness.UNINITIALIZED, "waiting for pairing")

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout_seconds)
            self._owns_client = True
        return self._http_client

    # ── Pairing state ──

    def mark_paired(self) -> None:
        """Pairing handshake completed (QR code scanned)."""
        self._set_readiness(Readiness.READY, "connected and ready")

    def mark_session_lost(self, reason: str = "session lost") -> None:
        """A paired session dropped; stop routing to this channel."""
        if self._readiness == Readiness.READY:
            self._set_readiness(Readiness.DEGRADED, reason)

    async def check_pairing(self) -> Readiness:
        """Poll the bridge once and update readiness from its answer."""
        if not self.bridge_url:
            return self._readiness

        try:
            response = await self._get_client().get(f"{self.bridge_url}/status")
            response.raise_for_status()
            data = response.json()
            if not isinstance(data, dict):
                raise ValueError(f"unexpected status body: {str(data)[:100]}")
            paired = bool(data.get("paired"))
        except (httpx.HTTPError, ValueError) as exc:
            logger.debug(
                "Bridge status check failed: %s", exc,
                extra={"channel": self.name.value},
            )
            self.mark_session_lost("bridge unreachable")
            return self._readiness

        if paired:
            self.mark_paired()
        elif self._readiness == Readiness.READY:
            self.mark_session_lost()
        return self._readiness

    async def _watch_pairing(self) -> None:
        logger.info(
            "Watching WhatsApp-Web bridge %s for pairing (every %.1fs)",
            self.bridge_url, self.poll_interval_seconds,
            extra={"channel": self.name.value},
        )
        while True:
            try:
                await self.check_pairing()
            except Exception:
                logger.exception(
                    "Pairing check raised; watch continues",
                    extra={"channel": self.name.value},
                )
            await asyncio.sleep(self.poll_interval_seconds)

    # ── Lifecycle ──

    async def start(self) -> None:
        if not self.bridge_url:
            logger.info(
                "No WhatsApp-Web bridge configured — native channel waits for "
                "an explicit pairing",
                extra={"channel": self.name.value},
            )
            return
        if self._watch_task is None:
            self._watch_task = asyncio.create_task(
                self._watch_pairing(), name="native-client-pairing-watch",
            )

    async def stop(self) -> None:
        if self._watch_task is not None:
            self._watch_task.cancel()
            try:
                await self._watch_task
            except asyncio.CancelledError:
                pass
            self._watch_task = None
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
        logger.info("Native client channel stopped", extra={"channel": self.name.value})

    # ── Delivery ──

    async def send(self, destination: str, body: str) -> bool:
        if not self.bridge_url:
            raise TransportFailureError(self.name.value, "no bridge configured")

        payload = {
            "to": normalize_phone_number(destination, self.country_code),
            "body": body,
        }

        try:
            response = await self._get_client().post(
                f"{self.bridge_url}/messages", json=payload,
            )
        except httpx.TimeoutException as exc:
            raise TransportFailureError(self.name.value, f"timeout: {exc}") from exc
        except httpx.HTTPError as exc:
            self.mark_session_lost("bridge unreachable")
            raise TransportFailureError(self.name.value, str(exc)) from exc

        if response.status_code == 409:
            self.mark_session_lost()
            raise TransportFailureError(self.name.value, "session not paired")

        if response.status_code >= 400:
            raise TransportFailureError(
                self.name.value,
                f"bridge returned HTTP {response.status_code}",
                http_status=response.status_code,
            )

        logger.info(
            "WhatsApp message handed to paired web session",
            extra={"channel": self.name.value},
        )
        return True
