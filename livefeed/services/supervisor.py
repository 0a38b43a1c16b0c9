"""
Connection supervisor.
Owns one logical feed channel: connect, heartbeat, liveness, fixed-delay reconnect and teardown.

States: IDLE -> CONNECTING -> LIVE <-> DEGRADED -> RECONNECTING -> CONNECTING ... -> CLOSED
"""

import json
import logging
import uuid
from typing import Any, Callable, Optional

from livefeed.config import DeliveryMode, FeedConfig
from livefeed.errors import DecodeError, TransportError, create_structured_error_response
from livefeed.observability.metrics import (
    record_channel_state,
    record_connect_attempt,
    record_message,
    record_ping,
    record_reconnect,
)
from livefeed.protocols.scheduler import Scheduler, TimerHandle
from livefeed.schemas.feed import ChannelHealth, ChannelState
from livefeed.services.normalizer import decode_message
from livefeed.services.transports import Transport, default_transport_factory
from livefeed.util.scheduler import LoopScheduler

logger = logging.getLogger("feed_supervisor")

PING_MESSAGE = json.dumps({"type": "ping"})

StateCallback = Callable[[ChannelState, ChannelState], None]


def is_pong(payload: Any) -> bool:
    """Heartbeat acknowledgement frames are not data."""
    if isinstance(payload, str):
        return payload.strip().lower() == "pong"
    return isinstance(payload, dict) and payload.get("type") == "pong"


class _AttemptListener:
    """Routes transport events for one connection attempt back to the supervisor."""

    def __init__(self, supervisor: "ConnectionSupervisor", attempt: int):
        self._supervisor = supervisor
        self._attempt = attempt

    def on_open(self) -> None:
        self._supervisor._handle_open(self._attempt)

    def on_message(self, raw: str) -> None:
        self._supervisor._handle_message(self._attempt, raw)

    def on_close(self, reason: str) -> None:
        self._supervisor._handle_failure(self._attempt, TransportError(f"Channel closed: {reason}"))

    def on_error(self, error: Exception) -> None:
        self._supervisor._handle_failure(self._attempt, error)


class ConnectionSupervisor:
    """Lifecycle owner for one streaming or polling channel."""

    def __init__(
        self,
        config: FeedConfig,
        on_payload: Callable[[Any], None],
        *,
        scheduler: Optional[Scheduler] = None,
        transport_factory: Optional[Callable[[], Transport]] = None,
        on_state_change: Optional[StateCallback] = None,
    ):
        self.config = config
        self.channel_id = str(uuid.uuid4())
        self._on_payload = on_payload
        self._on_state_change = on_state_change
        self._scheduler = scheduler or LoopScheduler()
        self._transport_factory = transport_factory or default_transport_factory(config)

        self.state = ChannelState.IDLE
        self._transport: Optional[Transport] = None
        self._attempt_seq = 0
        self._current_attempt: Optional[int] = None

        # Timer handles owned by the supervisor
        self._heartbeat_timer: Optional[TimerHandle] = None
        self._poll_timer: Optional[TimerHandle] = None
        self._reconnect_timer: Optional[TimerHandle] = None

        # Health metrics
        self.attempts = 0
        self.reconnects = 0
        self.messages = 0
        self.pings_sent = 0
        self.pongs_received = 0
        self.decode_errors = 0
        self.transport_errors = 0
        self.last_inbound_ts: Optional[float] = None

    @property
    def is_streaming(self) -> bool:
        return self.config.mode == DeliveryMode.STREAM

    @property
    def transport(self) -> Optional[Transport]:
        return self._transport

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Open the channel for the first time."""
        if self.state != ChannelState.IDLE:
            logger.warning(f"[supervisor] start() ignored in state {self.state.value}")
            return
        logger.info(f"[supervisor] Starting {self.config.mode.value} channel {self.channel_id} -> {self.config.endpoint}")
        self._connect()

    def teardown(self) -> None:
        """Cancel every timer, close the transport and stop for good. Safe in any state."""
        if self.state == ChannelState.CLOSED:
            return
        self._cancel_reconnect()
        self._release_transport()
        self._set_state(ChannelState.CLOSED)
        logger.info(f"[supervisor] Channel {self.channel_id} torn down")

    def _connect(self) -> None:
        self._reconnect_timer = None
        if self.state == ChannelState.CLOSED:
            return

        self._attempt_seq += 1
        attempt = self._attempt_seq
        self._current_attempt = attempt
        self.attempts += 1
        record_connect_attempt(self.config.mode.value)
        self._set_state(ChannelState.CONNECTING)

        try:
            transport = self._transport_factory()
            self._transport = transport
            transport.open(_AttemptListener(self, attempt))
        except Exception as e:
            self._handle_failure(attempt, TransportError(f"Failed to open channel: {e}"))

    def _release_transport(self) -> None:
        """Drop the current attempt: timers off, transport closed, late events ignored."""
        self._current_attempt = None
        self._cancel_heartbeat()
        self._cancel_poll()
        transport, self._transport = self._transport, None
        if transport is not None:
            try:
                transport.close()
            except Exception as e:
                logger.warning(f"[supervisor] Error closing transport: {e}")

    def _is_current(self, attempt: int) -> bool:
        return attempt == self._current_attempt and self.state != ChannelState.CLOSED

    # ------------------------------------------------------------------
    # Transport events
    # ------------------------------------------------------------------

    def _handle_open(self, attempt: int) -> None:
        if not self._is_current(attempt):
            logger.debug(f"[supervisor] Ignoring open from stale attempt {attempt}")
            return
        self.last_inbound_ts = self._scheduler.time()
        self._set_state(ChannelState.LIVE)
        if self.is_streaming:
            self._schedule_heartbeat()

    def _handle_message(self, attempt: int, raw: str) -> None:
        if not self._is_current(attempt):
            logger.debug(f"[supervisor] Ignoring message from stale attempt {attempt}")
            return

        self.last_inbound_ts = self._scheduler.time()
        if self.state in (ChannelState.DEGRADED, ChannelState.CONNECTING):
            self._set_state(ChannelState.LIVE)

        self._deliver(raw)

        if not self.is_streaming and self._is_current(attempt):
            self._schedule_poll()

    def _deliver(self, raw: str) -> None:
        """Decode one message and hand it to the owner unless it is a pong."""
        if is_pong(raw):
            self._count_pong()
            return

        try:
            payload = decode_message(raw)
        except DecodeError as e:
            # Local to this message: handed on as unparseable, channel stays up
            self.decode_errors += 1
            record_message("decode_error")
            logger.warning(f"[supervisor] {e.message} {e.details}")
            payload = None

        if is_pong(payload):
            self._count_pong()
            return

        self.messages += 1
        record_message("data")
        try:
            self._on_payload(payload)
        except Exception as e:
            logger.error(f"[supervisor] Error processing message: {e}")

    def _count_pong(self) -> None:
        self.pongs_received += 1
        record_message("pong")
        logger.debug("[supervisor] Pong received")

    def _handle_failure(self, attempt: int, error: Exception) -> None:
        if not self._is_current(attempt):
            logger.debug(f"[supervisor] Ignoring failure from stale attempt {attempt}: {error}")
            return

        self.transport_errors += 1
        self._release_transport()
        self._set_state(ChannelState.RECONNECTING)
        self._schedule_reconnect(error)

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _schedule_reconnect(self, error: Exception) -> None:
        self._cancel_reconnect()
        delay_ms = self.config.reconnect_delay_ms
        self.reconnects += 1
        record_reconnect(self.config.mode.value)

        # Log structured JSON for monitoring
        logger.warning(json.dumps({
            "evt": "feed_reconnect",
            "channel_id": self.channel_id,
            "sleep_ms": delay_ms,
            "reason": create_structured_error_response(error),
            "reconnects": self.reconnects
        }))

        self._reconnect_timer = self._scheduler.call_later(delay_ms / 1000.0, self._connect)

    def _cancel_reconnect(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

    def _schedule_heartbeat(self) -> None:
        self._cancel_heartbeat()
        self._heartbeat_timer = self._scheduler.call_later(
            self.config.heartbeat_interval_ms / 1000.0, self._heartbeat_tick
        )

    def _cancel_heartbeat(self) -> None:
        if self._heartbeat_timer is not None:
            self._heartbeat_timer.cancel()
            self._heartbeat_timer = None

    def _heartbeat_tick(self) -> None:
        self._heartbeat_timer = None
        if self._transport is None or self.state not in (ChannelState.LIVE, ChannelState.DEGRADED):
            return

        timeout_s = self.config.liveness_timeout_ms / 1000.0
        if timeout_s > 0 and self.last_inbound_ts is not None:
            silence = self._scheduler.time() - self.last_inbound_ts
            if silence >= 2 * timeout_s:
                self._handle_failure(
                    self._current_attempt,
                    TransportError("No inbound traffic", details={"silence_s": round(silence, 3)})
                )
                return
            if silence >= timeout_s and self.state == ChannelState.LIVE:
                logger.warning(f"[supervisor] No inbound traffic for {silence:.1f}s, channel degraded")
                self._set_state(ChannelState.DEGRADED)

        if self.state == ChannelState.LIVE:
            if self._transport.send(PING_MESSAGE):
                self.pings_sent += 1
                record_ping()
                logger.debug(f"[supervisor] Ping sent (total: {self.pings_sent})")

        self._schedule_heartbeat()

    def _schedule_poll(self) -> None:
        self._cancel_poll()
        self._poll_timer = self._scheduler.call_later(
            self.config.poll_interval_ms / 1000.0, self._poll_tick
        )

    def _cancel_poll(self) -> None:
        if self._poll_timer is not None:
            self._poll_timer.cancel()
            self._poll_timer = None

    def _poll_tick(self) -> None:
        self._poll_timer = None
        if self._transport is None or self.state not in (ChannelState.LIVE, ChannelState.DEGRADED):
            return
        self._transport.poll()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def _set_state(self, new_state: ChannelState) -> None:
        old_state = self.state
        if new_state == old_state:
            return
        self.state = new_state
        record_channel_state(new_state.value)
        logger.info(f"[supervisor] {old_state.value} -> {new_state.value}")
        if self._on_state_change is not None:
            try:
                self._on_state_change(old_state, new_state)
            except Exception as e:
                logger.error(f"[supervisor] State listener failed: {e}")

    def last_inbound_s_ago(self) -> Optional[float]:
        if self.last_inbound_ts is None:
            return None
        return self._scheduler.time() - self.last_inbound_ts

    def get_health_metrics(self) -> ChannelHealth:
        """Get channel health metrics."""
        age = self.last_inbound_s_ago()
        return ChannelHealth(
            state=self.state,
            mode=self.config.mode.value,
            endpoint=self.config.endpoint,
            attempts=self.attempts,
            reconnects=self.reconnects,
            messages=self.messages,
            pings_sent=self.pings_sent,
            pongs_received=self.pongs_received,
            decode_errors=self.decode_errors,
            transport_errors=self.transport_errors,
            last_inbound_s_ago=round(age, 3) if age is not None else None,
        )
