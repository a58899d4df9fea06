from __future__ import annotations

from collections.abc import Awaitable, Callable

from phue2mqtt.const import POLL_FAILURE_LIMIT, POLL_TASK_NAME
from phue2mqtt.correlation import correlation_context
from phue2mqtt.exceptions import GatewayError
from phue2mqtt.link.translator import DeviceTranslator
from phue2mqtt.logging_abstraction import get_logger
from phue2mqtt.scheduler import TaskScheduler
from phue2mqtt.structs import GatewaySessionProtocol

logger = get_logger(__name__)

GatewayLostCallback = Callable[[], Awaitable[None]]


class PollLoop:
    """Re-enumerate cached device types every ``interval`` seconds and publish drift.

    Ticks run on the scheduler, so a tick never overlaps the previous one and
    stopping the loop cancels the pending sleep. After ``failure_limit``
    consecutive ticks in which no enumeration succeeded, ``on_gateway_lost``
    is awaited so the owner can drop the session and verify it again.
    """

    lp: str = "PollLoop:"

    def __init__(
        self,
        scheduler: TaskScheduler,
        translator: DeviceTranslator,
        interval: float,
        on_gateway_lost: GatewayLostCallback | None = None,
        failure_limit: int = POLL_FAILURE_LIMIT,
    ) -> None:
        self.scheduler: TaskScheduler = scheduler
        self.translator: DeviceTranslator = translator
        self.interval: float = interval
        self.on_gateway_lost: GatewayLostCallback | None = on_gateway_lost
        self.failure_limit: int = failure_limit
        self.failures: int = 0
        self.session: GatewaySessionProtocol | None = None

    @property
    def running(self) -> bool:
        return self.scheduler.is_scheduled(POLL_TASK_NAME)

    def start(self, session: GatewaySessionProtocol) -> None:
        self.session = session
        self.failures = 0
        _ = self.scheduler.schedule_recurring(POLL_TASK_NAME, self.tick, self.interval)
        logger.info("%s polling every %ss", self.lp, self.interval)

    async def stop(self) -> None:
        self.session = None
        await self.scheduler.cancel(POLL_TASK_NAME)
        logger.debug("%s stopped", self.lp)

    async def tick(self) -> int:
        """One diff pass. Returns the number of publishes it issued."""
        lp = f"{self.lp}tick:"
        session = self.session
        if session is None:
            return 0
        changes = 0
        attempted = succeeded = 0
        with correlation_context():
            for device_type in self.translator.cached_types():
                attempted += 1
                try:
                    payloads = await session.enumerate(device_type)
                except GatewayError as e:
                    logger.warning("%s enumerating %s failed: %s", lp, device_type, e)
                    continue
                succeeded += 1
                if not self.translator.active or self.session is not session:
                    logger.debug("%s link stopped, discarding %s results", lp, device_type)
                    return changes
                for payload in payloads:
                    changes += await self.translator.apply_snapshot(payload)
            if attempted and not succeeded:
                await self._record_failure(lp)
            else:
                self.failures = 0
        if changes:
            logger.debug("%s %d change(s) published", lp, changes)
        return changes

    async def _record_failure(self, lp: str) -> None:
        self.failures += 1
        if self.failures < self.failure_limit:
            return
        logger.error(
            "%s gateway unreachable for %d consecutive polls",
            lp,
            self.failures,
            extra={"limit": self.failure_limit},
        )
        self.failures = 0
        if self.on_gateway_lost is not None:
            await self.on_gateway_lost()
