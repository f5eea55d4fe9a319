"""
router.py — Notification delivery router.

Takes a rendered message and a destination, walks the channels in fixed
priority order and stops at the first one that reports success.

═══════════════════════════════════════════════════════════════════════════
DISPATCH FLOW
═══════════════════════════════════════════════════════════════════════════

    ┌─────────────────────┐
    │ NotificationRequest │  validated at construction
    └─────────┬───────────┘  (MalformedRequestError is the only
              │               error a caller ever sees)
              ▼
    ┌─────────────────────┐   not ready → chain entry "not_ready",
    │ 1. native           │──────────────────────────────────────┐
    └─────────┬───────────┘   send() False / raises → next       │
              │ success                                          ▼
              │               ┌─────────────────────┐            │
              │               │ 2. hosted-api       │◀───────────┘
              │               └─────────┬───────────┘
              │                         │ failure (incl. 21614 opt-in)
              │                         ▼
              │               ┌─────────────────────┐
              │               │ 3. recording        │  always ready,
              │               └─────────┬───────────┘  never fails
              ▼                         ▼
    ┌──────────────────────────────────────────────┐
    │ DeliveryResult (one per dispatch)            │
    │   channel_used, succeeded, attempts[...]     │
    └──────────────────────────────────────────────┘

Attempts run sequentially: trying the paid API in parallel with the free
native session would waste a message whenever the native session works.

═══════════════════════════════════════════════════════════════════════════
TIMEOUTS
═══════════════════════════════════════════════════════════════════════════

Each send is wrapped in asyncio.wait_for(send_timeout_seconds). A hung
transport becomes a failed chain entry with code "timeout" and the chain
moves on. A timeout of 0 (or None) disables the wrapper and leaves
timeouts to the channel's own transport.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Union

from backend.app.core.config import Settings, settings as default_settings
from backend.app.core.errors import ChannelError, MalformedRequestError
from backend.app.notifications.channels import (
    HostedApiChannel,
    NativeClientChannel,
    NotificationChannel,
    RecordingChannel,
)
from backend.app.notifications.models import (
    CHANNEL_PRIORITY,
    ChannelAttempt,
    ChannelName,
    ChannelStatus,
    DeliveryResult,
    LeaveStatusPayload,
    NotificationRequest,
    Readiness,
)
from backend.app.notifications.templates import (
    format_destination_for_log,
    format_status_change_message,
)

logger = logging.getLogger(__name__)


class NotificationRouter:
    """
    Ordered fallback over outbound channels.

    Parameters
    ----------
    channels : iterable of NotificationChannel
        Adapters to route over. They are ordered by CHANNEL_PRIORITY
        regardless of the order given. A RecordingChannel is added when
        none is supplied, so dispatch can always succeed.
    send_timeout_seconds : float | None
        Per-channel send timeout; 0/None disables it.
    redact_destinations : bool
        Mask destinations in failure logs (production).
    """

    def __init__(
        self,
        channels: Iterable[NotificationChannel],
        *,
        send_timeout_seconds: Optional[float] = 20.0,
        redact_destinations: bool = False,
    ) -> None:
        self._channels: Dict[ChannelName, NotificationChannel] = {}
        for channel in channels:
            if channel.name in self._channels:
                raise ValueError(f"Duplicate channel: {channel.name.value}")
            self._channels[channel.name] = channel
        if ChannelName.RECORDING not in self._channels:
            self._channels[ChannelName.RECORDING] = RecordingChannel()

        self.send_timeout_seconds = send_timeout_seconds or None
        self.redact_destinations = redact_destinations
        self._started = False

    # ── Lifecycle ──

    async def start(self) -> None:
        """Launch each channel's background initializer."""
        if self._started:
            return
        self._started = True
        for channel in self.channels:
            await channel.start()
        logger.info(
            "Notification router started: %s",
            ", ".join(f"{s.channel.value}={s.readiness.value}" for s in self.readiness()),
        )

    async def stop(self) -> None:
        """Stop all channels; errors in one channel do not block the rest."""
        if not self._started:
            return
        self._started = False
        for channel in reversed(self.channels):
            try:
                await channel.stop()
            except Exception as exc:
                logger.error(
                    "Error stopping channel %s: %s", channel.name.value, exc,
                    extra={"channel": channel.name.value},
                )
        logger.info("Notification router stopped")

    # ── Readiness ──

    @property
    def channels(self) -> List[NotificationChannel]:
        """Registered channels in priority order."""
        return [self._channels[n] for n in CHANNEL_PRIORITY if n in self._channels]

    def get_channel(self, name: Union[str, ChannelName]) -> NotificationChannel:
        key = ChannelName(name)
        try:
            return self._channels[key]
        except KeyError:
            raise KeyError(f"Channel not registered: {key.value}") from None

    def report_readiness(self, channel: Union[str, ChannelName]) -> ChannelStatus:
        """Last known readiness of one channel. No I/O."""
        key = ChannelName(channel)
        adapter = self._channels.get(key)
        if adapter is None:
            return ChannelStatus(key, Readiness.UNAVAILABLE, "not configured")
        return adapter.report_readiness()

    def readiness(self) -> List[ChannelStatus]:
        return [c.report_readiness() for c in self.channels]

    def readiness_summary(self) -> Dict[str, str]:
        """Human-readable status per channel, for dashboards."""
        return {s.channel.value: s.detail for s in self.readiness()}

    # ── Dispatch ──

    async def _attempt(
        self,
        channel: NotificationChannel,
        request: NotificationRequest,
    ) -> ChannelAttempt:
        attempt = ChannelAttempt(channel=channel.name)
        start = time.perf_counter()
        try:
            send = channel.send(request.destination, request.body)
            if self.send_timeout_seconds:
                ok = await asyncio.wait_for(send, timeout=self.send_timeout_seconds)
            else:
                ok = await send
            attempt.succeeded = bool(ok)
            if not attempt.succeeded:
                attempt.error_code = "send_failed"
        except asyncio.TimeoutError:
            attempt.error_code = "timeout"
            attempt.error_message = f"no response within {self.send_timeout_seconds}s"
        except ChannelError as exc:
            attempt.error_code = exc.attempt_code
            attempt.error_message = exc.message
        except Exception as exc:
            attempt.error_code = "transport_failure"
            attempt.error_message = f"{type(exc).__name__}: {exc}"
        attempt.duration_ms = (time.perf_counter() - start) * 1000
        return attempt

    async def dispatch(self, request: NotificationRequest) -> DeliveryResult:
        """
        Deliver one request through the first channel that succeeds.

        Parameters
        ----------
        request : NotificationRequest

        Returns
        -------
        DeliveryResult
            Never raises for channel failures; the recording channel makes
            ``succeeded`` True at worst.

        Raises
        ------
        MalformedRequestError
            ``request`` is not a NotificationRequest.
        """
        if not isinstance(request, NotificationRequest):
            raise MalformedRequestError(
                "dispatch expects a NotificationRequest",
                field="request",
            )

        result = DeliveryResult(destination=request.destination)
        log_dest = format_destination_for_log(request.destination, self.redact_destinations)
        log_extra = {"delivery_id": result.delivery_id, "category": request.category}

        for name in request.channels_in_order():
            channel = self._channels.get(name)
            if channel is None:
                continue

            status = channel.report_readiness()
            if not status.is_ready:
                result.attempts.append(ChannelAttempt(
                    channel=name,
                    succeeded=False,
                    error_code="not_ready",
                    error_message=f"{status.readiness.value}: {status.detail}",
                ))
                logger.debug(
                    "Skipping %s for %s (%s)", name.value, result.delivery_id, status.detail,
                    extra={**log_extra, "channel": name.value},
                )
                continue

            attempt = await self._attempt(channel, request)
            result.attempts.append(attempt)

            if attempt.succeeded:
                result.channel_used = name
                result.succeeded = True
                break

            logger.warning(
                "Delivery %s via %s to %s failed [%s] %s — falling through",
                result.delivery_id, name.value, log_dest,
                attempt.error_code, attempt.error_message or "",
                extra={**log_extra, "channel": name.value, "destination": log_dest},
            )

        result.completed_at = datetime.now(timezone.utc)

        if result.succeeded:
            logger.info(
                "Delivery %s to %s via %s after %d attempt(s)",
                result.delivery_id, log_dest, result.channel_used.value,
                len(result.attempts),
                extra={**log_extra, "channel": result.channel_used.value},
            )
        else:
            logger.error(
                "Delivery %s to %s failed on every channel: %s",
                result.delivery_id, log_dest,
                [a.channel.value for a in result.attempts],
                extra=log_extra,
            )
        return result

    async def dispatch_leave_status(
        self,
        destination: str,
        payload: LeaveStatusPayload,
    ) -> DeliveryResult:
        """Render a leave status change and dispatch it."""
        body = format_status_change_message(
            payload.applicant_name,
            payload.leave_type,
            payload.date_range,
            payload.status,
            payload.reviewer_name,
            payload.comments,
        )
        return await self.dispatch(NotificationRequest(
            destination=destination,
            body=body,
            category="leave_status",
        ))


def build_router(config: Optional[Settings] = None) -> NotificationRouter:
    """Construct the router and its channels from settings."""
    cfg = config or default_settings
    if not cfg.hosted_api_configured:
        logger.info("Hosted API not configured; native and recording channels only")
    return NotificationRouter(
        [
            NativeClientChannel(
                bridge_url=cfg.WHATSAPP_BRIDGE_URL,
                poll_interval_seconds=cfg.WHATSAPP_BRIDGE_POLL_SECONDS,
            ),
            HostedApiChannel(
                account_sid=cfg.TWILIO_ACCOUNT_SID,
                auth_token=cfg.TWILIO_AUTH_TOKEN,
                from_number=cfg.TWILIO_PHONE_NUMBER,
                base_url=cfg.TWILIO_API_BASE_URL,
            ),
            RecordingChannel(
                log_path=cfg.RECORDING_LOG_PATH,
                history_size=cfg.RECORDING_HISTORY_SIZE,
            ),
        ],
        send_timeout_seconds=cfg.CHANNEL_SEND_TIMEOUT_SECONDS,
        redact_destinations=cfg.is_production,
    )
