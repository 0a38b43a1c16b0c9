"""
Feed engine.
Applies supervisor-delivered messages through the normalizer and change detector
and publishes immutable snapshots to subscribers.
"""

import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

from livefeed.config import DisconnectPolicy, FeedConfig
from livefeed.observability.metrics import record_no_data, record_snapshot
from livefeed.protocols.scheduler import Scheduler, TimerHandle
from livefeed.schemas.feed import ChannelHealth, ChannelState, FeedSnapshot, InstrumentRecord, Token
from livefeed.services.change_detector import detect_changes
from livefeed.services.normalizer import NoData, normalize
from livefeed.services.supervisor import ConnectionSupervisor
from livefeed.services.transports import Transport
from livefeed.util.scheduler import LoopScheduler

logger = logging.getLogger("feed_engine")

NO_DATA_MESSAGE = "Market is closed or not able to get records. Please try again after some time."

OUTAGE_STATES = (ChannelState.DEGRADED, ChannelState.RECONNECTING)

# States whose entry republishes the current snapshot
RESTAMP_STATES = (ChannelState.LIVE, ChannelState.DEGRADED, ChannelState.RECONNECTING)

SnapshotCallback = Callable[[FeedSnapshot], None]


class FeedEngine:
    """Owns the published snapshot and the price memory for one feed."""

    def __init__(
        self,
        config: FeedConfig,
        *,
        scheduler: Optional[Scheduler] = None,
        transport_factory: Optional[Callable[[], Transport]] = None,
    ):
        self.config = config
        self._scheduler = scheduler or LoopScheduler()

        # Survive reconnects
        self._prices: Dict[Token, float] = {}
        self._snapshot = FeedSnapshot()

        # token -> generation of the message that made it flash
        self._active_flashes: Dict[Token, int] = {}
        self._flash_timers: Dict[int, TimerHandle] = {}
        self._grace_timer: Optional[TimerHandle] = None
        self._generation = 0
        self._sequence = 0
        self._awaiting_data = False
        self._stopped = False

        self._subscribers: List[SnapshotCallback] = []

        self.supervisor = ConnectionSupervisor(
            config,
            self.handle_payload,
            scheduler=self._scheduler,
            transport_factory=transport_factory,
            on_state_change=self._on_channel_state,
        )

    # ------------------------------------------------------------------
    # Owner surface
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._stopped:
            logger.warning("[feed_engine] start() after stop() ignored")
            return
        self.supervisor.start()

    def stop(self) -> None:
        """Tear down the channel and cancel every pending engine timer."""
        if self._stopped:
            return
        self._stopped = True
        self.supervisor.teardown()
        self._cancel_flash_timers()
        self._cancel_grace_timer()
        logger.info("[feed_engine] Stopped")

    @property
    def snapshot(self) -> FeedSnapshot:
        return self._snapshot

    @property
    def channel_state(self) -> ChannelState:
        return self.supervisor.state

    @property
    def prices(self) -> Dict[Token, float]:
        """Copy of the price memory used for change detection."""
        return dict(self._prices)

    @property
    def pending_timers(self) -> int:
        """Engine-owned timers still scheduled (flash clears and grace period)."""
        return len(self._flash_timers) + (1 if self._grace_timer is not None else 0)

    def subscribe(self, callback: SnapshotCallback) -> Callable[[], None]:
        """Register a snapshot listener. Returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def get_health(self) -> ChannelHealth:
        return self.supervisor.get_health_metrics()

    # ------------------------------------------------------------------
    # Message handling
    # ------------------------------------------------------------------

    def handle_payload(self, raw: Any) -> None:
        """Apply one decoded message. Called by the supervisor in arrival order."""
        if self._stopped:
            return
        result = normalize(raw)
        if isinstance(result, NoData):
            self._apply_no_data(result.reason)
        else:
            self._apply_records(result)

    def _apply_no_data(self, reason: str) -> None:
        record_no_data(reason)
        logger.info(f"[feed_engine] No data ({reason})")
        self._clear_records()

    def _apply_records(self, records: List[InstrumentRecord]) -> None:
        flash_set, self._prices = detect_changes(self._prices, records)

        self._generation += 1
        generation = self._generation
        for token in flash_set:
            self._active_flashes[token] = generation

        present = {record.token for record in records}
        for token in [t for t in self._active_flashes if t not in present]:
            del self._active_flashes[token]

        self._awaiting_data = False
        self._cancel_grace_timer()
        self._publish(records, error="")

        if flash_set:
            self._flash_timers[generation] = self._scheduler.call_later(
                self.config.flash_duration_ms / 1000.0, self._clear_flash, generation
            )
            logger.debug(f"[feed_engine] Flash gen={generation} tokens={sorted(map(str, flash_set))}")

    def _clear_flash(self, generation: int) -> None:
        """Drop flashes still owned by this generation; later flashes stay."""
        self._flash_timers.pop(generation, None)
        expired = [t for t, g in self._active_flashes.items() if g == generation]
        if not expired:
            return
        for token in expired:
            del self._active_flashes[token]
        self._publish(self._snapshot.records, error=self._snapshot.error)

    def _clear_records(self) -> None:
        self._cancel_flash_timers()
        self._active_flashes.clear()
        self._cancel_grace_timer()
        self._publish((), error=NO_DATA_MESSAGE)

    # ------------------------------------------------------------------
    # Channel state
    # ------------------------------------------------------------------

    def _on_channel_state(self, old: ChannelState, new: ChannelState) -> None:
        if self._stopped:
            return

        if new in OUTAGE_STATES and old not in OUTAGE_STATES:
            self._awaiting_data = True
            if self._snapshot.records:
                if self.config.disconnect_policy == DisconnectPolicy.CLEAR:
                    logger.info(f"[feed_engine] Channel {new.value}, clearing snapshot")
                    self._clear_records()
                    return
                if self.config.disconnect_grace_ms is not None and self._grace_timer is None:
                    self._grace_timer = self._scheduler.call_later(
                        self.config.disconnect_grace_ms / 1000.0, self._grace_expired
                    )
                    logger.info(
                        f"[feed_engine] Channel {new.value}, keeping snapshot for {self.config.disconnect_grace_ms}ms"
                    )

        # Same records, current state stamp
        if new in RESTAMP_STATES:
            self._publish(self._snapshot.records, error=self._snapshot.error)

    def _grace_expired(self) -> None:
        self._grace_timer = None
        if self._awaiting_data and not self._stopped:
            logger.warning("[feed_engine] No fresh data within grace period, clearing snapshot")
            self._clear_records()

    # ------------------------------------------------------------------
    # Publication
    # ------------------------------------------------------------------

    def _publish(self, records: Iterable[InstrumentRecord], error: str) -> None:
        published = []
        for record in records:
            flash = record.token in self._active_flashes
            if record.flash != flash:
                record = record.model_copy(update={"flash": flash})
            published.append(record)

        self._sequence += 1
        self._snapshot = FeedSnapshot(
            records=tuple(published),
            flash_tokens=frozenset(r.token for r in published if r.flash),
            error=error,
            channel_state=self.supervisor.state,
            sequence=self._sequence,
            published_at=time.time(),
        )
        started = time.perf_counter()
        for callback in list(self._subscribers):
            try:
                callback(self._snapshot)
            except Exception as e:
                logger.error(f"[feed_engine] Snapshot subscriber failed: {e}")
        record_snapshot(
            len(published), len(self._snapshot.flash_tokens), (time.perf_counter() - started) * 1000
        )

    def _cancel_flash_timers(self) -> None:
        for handle in self._flash_timers.values():
            handle.cancel()
        self._flash_timers.clear()

    def _cancel_grace_timer(self) -> None:
        if self._grace_timer is not None:
            self._grace_timer.cancel()
            self._grace_timer = None
