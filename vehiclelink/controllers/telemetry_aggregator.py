"""
Telemetry Aggregator

Folds the manager's decoded-message stream into a TelemetrySnapshot and
publishes it at a fixed cadence instead of per message:

- each message kind updates only its own field group and that group's
  timestamp; other groups are untouched
- every tick re-emits the current snapshot with staleness recomputed per
  group, whether or not anything arrived since the last tick
- a stale group keeps its last value

Consumption and emission run as separate tasks, so a burst of frames never
delays a tick and a stalled link never stops ticks.
"""

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable, Dict, Optional

from ..communication.messages import DecodedMessage, Heartbeat
from ..communication.telemetry import (
    FieldGroup,
    GROUP_NAMES,
    TelemetrySnapshot,
    TelemetryUpdate,
    group_for,
    merge_message,
)
from ..communication.telemetry_observer import TelemetrySubject
from ..utils.config import AggregatorConfig

if TYPE_CHECKING:
    from ..communication.comm_manager import CommManager

logger = logging.getLogger(__name__)


class TelemetryAggregator:
    """
    Coalesce-and-tick telemetry aggregator.

    Usage:
        aggregator = TelemetryAggregator(manager)
        aggregator.subscribe(lambda update: render(update.snapshot))
        await aggregator.start()
        ...
        await aggregator.stop()
    """

    def __init__(
        self,
        manager: Optional["CommManager"] = None,
        config: Optional[AggregatorConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize aggregator.

        Args:
            manager: Source of decoded messages and statistics (None for manual ``ingest``)
            config: Cadence and staleness settings
            clock: Monotonic time source
        """
        self.manager = manager
        self.config = config or (manager.config.aggregator if manager is not None else AggregatorConfig())
        self._clock = clock
        self._groups: Dict[str, FieldGroup] = {name: FieldGroup() for name in GROUP_NAMES}
        self._snapshot = TelemetrySnapshot()
        self._tick = 0
        self._subject: TelemetrySubject[TelemetryUpdate] = TelemetrySubject()
        self._consume_task: Optional[asyncio.Task] = None
        self._tick_task: Optional[asyncio.Task] = None
        self.messages_ingested = 0
        self.messages_ignored = 0

    @property
    def snapshot(self) -> TelemetrySnapshot:
        """Last emitted snapshot."""
        return self._snapshot

    @property
    def tracked_system_id(self) -> Optional[int]:
        """Configured system id, else the vehicle the manager locked on to."""
        if self.config.system_id is not None:
            return self.config.system_id
        if self.manager is not None and self.manager.vehicle is not None:
            return self.manager.vehicle[0]
        return None

    @property
    def is_running(self) -> bool:
        return self._tick_task is not None and not self._tick_task.done()

    def subscribe(self, callback: Callable[[TelemetryUpdate], None]) -> int:
        """Subscribe to updates; returns an ID for ``unsubscribe``."""
        return self._subject.subscribe(callback)

    def unsubscribe(self, subscription_id: int) -> None:
        self._subject.unsubscribe(subscription_id)

    def updates(self, maxsize: int = 1) -> AsyncIterator[TelemetryUpdate]:
        """Async iterator over emitted updates (latest wins for slow consumers)."""
        return self._subject.stream(maxsize)

    async def start(self) -> None:
        """Start consuming messages and ticking."""
        if self.is_running:
            return
        if self.manager is not None:
            self._consume_task = asyncio.create_task(self._consume_loop())
        self._tick_task = asyncio.create_task(self._tick_loop())
        logger.info(f"Telemetry aggregator started at {self.config.rate_hz:g} Hz")

    async def stop(self) -> None:
        """
        Stop both loops and end open update streams.

        Callback subscriptions are kept, so ``start()`` may be called again.
        """
        for task in (self._consume_task, self._tick_task):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._consume_task = None
        self._tick_task = None
        self._subject.end_streams()
        logger.info("Telemetry aggregator stopped")

    def ingest(self, message: DecodedMessage, system_id: Optional[int] = None,
               received_at: Optional[float] = None) -> bool:
        """
        Fold one decoded message into its field group.

        Ground-station heartbeats and messages from systems other than the
        tracked one are ignored.

        Returns:
            True if the message updated a group
        """
        tracked = self.tracked_system_id
        if tracked is not None and system_id is not None and system_id != tracked:
            self.messages_ignored += 1
            return False

        group = group_for(message)
        if group is None or (isinstance(message, Heartbeat) and message.is_ground_station):
            self.messages_ignored += 1
            return False

        previous = self._groups[group].value
        self._groups[group] = FieldGroup(
            value=merge_message(previous, message),
            updated_at=received_at if received_at is not None else self._clock(),
            stale=False,
        )
        self.messages_ingested += 1
        return True

    def build_snapshot(self, now: Optional[float] = None) -> TelemetrySnapshot:
        """Snapshot of current groups with staleness recomputed at ``now``."""
        now = self._clock() if now is None else now
        groups: Dict[str, Any] = {}
        for name in GROUP_NAMES:
            group = self._groups[name].with_staleness(now, self.config.stale_threshold(name))
            self._groups[name] = group
            groups[name] = group
        return TelemetrySnapshot(
            timestamp=now,
            tick=self._tick,
            system_id=self.tracked_system_id,
            **groups,
        )

    def emit(self) -> TelemetryUpdate:
        """Build and publish one update."""
        self._tick += 1
        self._snapshot = self.build_snapshot()
        statistics = self.manager.statistics if self.manager is not None else None
        update = TelemetryUpdate(snapshot=self._snapshot, statistics=statistics)
        self._subject.notify(update)
        return update

    async def _consume_loop(self) -> None:
        async for inbound in self.manager.messages():
            self.ingest(inbound.message, inbound.system_id, inbound.received_at)

    async def _tick_loop(self) -> None:
        interval = self.config.interval
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while True:
            self.emit()
            next_tick += interval
            delay = next_tick - loop.time()
            if delay < 0:
                # Fell behind; resume the cadence from now
                next_tick = loop.time()
                delay = 0
            await asyncio.sleep(delay)
