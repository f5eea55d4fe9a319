"""
hosted_api.py — Hosted WhatsApp messaging API channel (Twilio-compatible).

Delivery mechanism:
    • HTTP REST API over httpx (form-encoded, basic auth with SID/token)
    • Sender/recipient addressed as "whatsapp:+<E.164>"
    • Credentials validated ONCE when the channel starts

═══════════════════════════════════════════════════════════════════════════
PROVIDER CALLS
═══════════════════════════════════════════════════════════════════════════

    Validate:  GET  {base}/2010-04-01/Accounts/{sid}.json
    Send:      POST {base}/2010-04-01/Accounts/{sid}/Messages.json
               From=whatsapp:+14155238886  To=whatsapp:+9198...  Body=...

Provider error codes with special handling:

    Code     Meaning                              Raised as
    ─────    ─────────────────────────────────    ───────────────────────────
    20003    authentication failed                AuthenticationRejectedError
    21614    recipient not joined the sandbox     RecipientNotRegisteredError
    other    any 4xx/5xx, network, timeout        TransportFailureError

═══════════════════════════════════════════════════════════════════════════
READINESS
═══════════════════════════════════════════════════════════════════════════

    credentials absent     → UNAVAILABLE "credentials not configured"
    validation rejected    → UNAVAILABLE "credentials invalid"   (permanent)
    validation unreachable → UNAVAILABLE "provider unreachable"  (permanent)
    validation crashed     → UNAVAILABLE "credential check failed" (permanent)
    validation ok          → READY       "connected and ready"

There is no automatic re-validation; a restart picks up fixed credentials.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from backend.app.core.errors import (
    AuthenticationRejectedError,
    ConfigurationMissingError,
    RecipientNotRegisteredError,
    TransportFailureError,
)
from backend.app.notifications.channels.base import NotificationChannel
from backend.app.notifications.models import ChannelName, Readiness

logger = logging.getLogger(__name__)

API_VERSION = "2010-04-01"
ERROR_AUTHENTICATION = 20003
ERROR_NOT_IN_SANDBOX = 21614
DEFAULT_TIMEOUT_SECONDS = 15.0


def _redact_sid(account_sid: str) -> str:
    return f"{account_sid[:6]}…" if len(account_sid) > 6 else "***"


def _whatsapp_address(number: str) -> str:
    number = number.strip()
    return number if number.startswith("whatsapp:") else f"whatsapp:{number}"


def _json_object(response: httpx.Response) -> Dict[str, Any]:
    """Response body as a dict; {} for non-JSON or non-object bodies."""
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _provider_error(response: httpx.Response) -> Dict[str, Any]:
    data = _json_object(response)
    if not data:
        return {"code": None, "message": response.text[:200]}
    return {"code": data.get("code"), "message": data.get("message", "")}


class HostedApiChannel(NotificationChannel):
    """WhatsApp delivery through a hosted messaging provider."""

    name = ChannelName.HOSTED_API

    def __init__(
        self,
        *,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: str = "+14155238886",
        base_url: str = "https://api.twilio.com",
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        super().__init__()
        self.account_sid = (account_sid or "").strip()
        self.auth_token = (auth_token or "").strip()
        self.from_number = from_number
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._http_client = http_client
        self._owns_client = http_client is None
        self._init_task: Optional[asyncio.Task] = None
        self._validated = False

    # ── HTTP client ──

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout_seconds)
            self._owns_client = True
        return self._http_client

    def _auth(self) -> httpx.BasicAuth:
        return httpx.BasicAuth(self.account_sid, self.auth_token)

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{API_VERSION}/Accounts/{self.account_sid}{path}"

    # ── Lifecycle ──

    async def start(self) -> None:
        if self._init_task is None:
            self._init_task = asyncio.create_task(
                self._initialize(), name="hosted-api-credential-check",
            )

    async def _initialize(self) -> None:
        try:
            await self.validate_credentials()
        except (ConfigurationMissingError, AuthenticationRejectedError, TransportFailureError):
            pass  # readiness already set and logged
        except Exception:
            self._set_readiness(Readiness.UNAVAILABLE, "credential check failed")
            logger.exception(
                "Hosted API credential check raised unexpectedly",
                extra={"channel": self.name.value},
            )

    async def stop(self) -> None:
        if self._init_task is not None and not self._init_task.done():
            self._init_task.cancel()
            try:
                await self._init_task
            except asyncio.CancelledError:
                pass
        self._init_task = None
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
        logger.info("Hosted API channel stopped", extra={"channel": self.name.value})

    async def validate_credentials(self) -> None:
        """
        Check credentials against the provider, once per process.

        Raises
        ------
        ConfigurationMissingError
            SID or token not configured.
        AuthenticationRejectedError
            Provider rejected the credentials.
        TransportFailureError
            Provider unreachable during validation.
        """
        if self._validated:
            return
        self._validated = True

        if not self.account_sid or not self.auth_token:
            self._set_readiness(Readiness.UNAVAILABLE, "credentials not configured")
            logger.info(
                "Hosted API credentials not found — set TWILIO_ACCOUNT_SID and "
                "TWILIO_AUTH_TOKEN to enable real WhatsApp delivery",
                extra={"channel": self.name.value},
            )
            raise ConfigurationMissingError(self.name.value)

        redacted = _redact_sid(self.account_sid)
        logger.info(
            "Validating hosted API credentials for account %s", redacted,
            extra={"channel": self.name.value},
        )

        try:
            response = await self._get_client().get(self._url(".json"), auth=self._auth())
        except httpx.HTTPError as exc:
            self._set_readiness(Readiness.UNAVAILABLE, "provider unreachable")
            logger.error(
                "Hosted API credential check failed for account %s: %s",
                redacted, exc,
                extra={"channel": self.name.value},
            )
            raise TransportFailureError(self.name.value, str(exc)) from exc

        if response.status_code == 401 or (
            response.status_code >= 400
            and _provider_error(response)["code"] == ERROR_AUTHENTICATION
        ):
            self._set_readiness(Readiness.UNAVAILABLE, "credentials invalid")
            logger.error(
                "Hosted API rejected credentials for account %s (HTTP %d) — "
                "verify the account SID and auth token",
                redacted, response.status_code,
                extra={"channel": self.name.value, "status_code": response.status_code},
            )
            raise AuthenticationRejectedError(
                self.name.value, account=redacted, http_status=response.status_code,
            )

        if response.status_code >= 400:
            self._set_readiness(Readiness.UNAVAILABLE, "provider unreachable")
            err = _provider_error(response)
            logger.error(
                "Hosted API credential check returned HTTP %d: %s",
                response.status_code, err["message"],
                extra={"channel": self.name.value, "status_code": response.status_code},
            )
            raise TransportFailureError(
                self.name.value, err["message"] or f"HTTP {response.status_code}",
            )

        friendly = _json_object(response).get("friendly_name", "")
        self._set_readiness(Readiness.READY, "connected and ready")
        logger.info(
            "Hosted API authenticated (account %s %s) — sending from %s",
            redacted, friendly, self.from_number,
            extra={"channel": self.name.value},
        )

    # ── Delivery ──

    def join_hint(self) -> str:
        """Sandbox opt-in instruction for a recipient."""
        code = self.account_sid[2:8] if self.account_sid else "sandbox"
        return f'send "join {code}" to {self.from_number}'

    async def send(self, destination: str, body: str) -> bool:
        if not self.account_sid or not self.auth_token:
            raise ConfigurationMissingError(self.name.value)

        form = {
            "From": _whatsapp_address(self.from_number),
            "To": _whatsapp_address(destination),
            "Body": body,
        }

        try:
            response = await self._get_client().post(
                self._url("/Messages.json"), data=form, auth=self._auth(),
            )
        except httpx.TimeoutException as exc:
            raise TransportFailureError(self.name.value, f"timeout: {exc}") from exc
        except httpx.HTTPError as exc:
            raise TransportFailureError(self.name.value, str(exc)) from exc

        if response.status_code >= 400:
            err = _provider_error(response)
            if err["code"] == ERROR_NOT_IN_SANDBOX:
                logger.info(
                    "Recipient has not joined the WhatsApp sandbox — they must %s",
                    self.join_hint(),
                    extra={"channel": self.name.value},
                )
                raise RecipientNotRegisteredError(
                    self.name.value, provider_code=ERROR_NOT_IN_SANDBOX,
                )
            if response.status_code == 401 or err["code"] == ERROR_AUTHENTICATION:
                raise AuthenticationRejectedError(
                    self.name.value, http_status=response.status_code,
                )
            raise TransportFailureError(
                self.name.value,
                err["message"] or f"HTTP {response.status_code}",
                provider_code=err["code"],
                http_status=response.status_code,
            )

        sid = _json_object(response).get("sid", "")
        logger.info(
            "WhatsApp message accepted by hosted API (sid=%s)", sid,
            extra={"channel": self.name.value},
        )
        return True
