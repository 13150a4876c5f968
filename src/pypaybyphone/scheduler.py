"""Renewal scheduler: on-demand parking and the periodic sweep."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime

from .const import SWEEP_INTERVAL_SECONDS
from .engine import PayByPhone
from .exceptions import PyPayByPhoneError, ValidationError
from .models import BookedSession, RenewalState
from .store import RenewalStore
from .util import mask_license_plate, utcnow

_LOGGER = logging.getLogger(__name__)

EngineFactory = Callable[[str], Awaitable[PayByPhone]]


class RenewalScheduler:
    """Keep vehicles parked until their requested duration is used up.

    A booking never spawns a sleeping task. It writes the vehicle's next check
    time to the store and the sweep, which runs every ``interval`` seconds,
    books the next increment once that time has passed. Pending renewals
    therefore survive a restart when the store is file-backed.

    ``engine_factory`` receives a license plate and returns a freshly
    bootstrapped engine for that vehicle's account.
    """

    def __init__(
        self,
        store: RenewalStore,
        engine_factory: EngineFactory,
        *,
        interval: float = SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if interval <= 0:
            raise ValidationError("interval must be positive.")
        self._store = store
        self._engine_factory = engine_factory
        self._interval = interval
        self._clock = clock
        self._task: asyncio.Task[None] | None = None

    @property
    def store(self) -> RenewalStore:
        return self._store

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def park(self, engine: PayByPhone, minutes: int) -> BookedSession:
        """Park now and record when the booked session must be continued."""
        result = await engine.park(minutes)
        await self._store.set(engine.license_plate, result.renewal)
        self._log_renewal(engine.license_plate, result.renewal)
        return result.session

    async def run_once(self, now: datetime | None = None) -> list[str]:
        """Renew every due vehicle once and return the plates that were renewed."""
        now = now or self._clock()
        due = await self._store.due(now)
        if not due:
            return []
        _LOGGER.debug("Sweep found %s due vehicles", len(due))
        results = await asyncio.gather(
            *(self._renew(plate, state) for plate, state in due),
            return_exceptions=True,
        )
        renewed: list[str] = []
        for (plate, _state), result in zip(due, results, strict=True):
            if isinstance(result, Exception):
                _LOGGER.error(
                    "Renewal for %s failed unexpectedly",
                    mask_license_plate(plate),
                    exc_info=result,
                )
            elif isinstance(result, BaseException):
                raise result
            elif result:
                renewed.append(plate)
        return renewed

    async def _renew(self, plate: str, state: RenewalState) -> bool:
        masked = mask_license_plate(plate)
        if not state.is_active:
            return False
        if not await self._store.claim(plate, state):
            _LOGGER.debug("Renewal for %s already in progress", masked)
            return False
        try:
            engine = await self._engine_factory(plate)
            result = await engine.park(state.remaining_minutes)
        except PyPayByPhoneError:
            _LOGGER.exception("Renewal for %s failed; retrying next sweep", masked)
            await self._store.release(plate)
            return False
        except BaseException:
            await self._store.release(plate)
            raise
        committed = await self._store.commit(plate, state, result.renewal)
        if committed:
            self._log_renewal(plate, result.renewal)
        return committed

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="pypaybyphone-sweep")

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        _LOGGER.info("Renewal sweep started (interval %ss)", self._interval)
        while True:
            try:
                await self.run_once()
            except Exception:
                _LOGGER.exception("Renewal sweep pass failed")
            await asyncio.sleep(self._interval)

    def _log_renewal(self, plate: str, state: RenewalState) -> None:
        masked = mask_license_plate(plate)
        if state.is_active:
            _LOGGER.info(
                "Next renewal of %s at %s for another %s minutes",
                masked,
                state.next_check,
                state.remaining_minutes,
            )
        else:
            _LOGGER.info("Requested duration for %s is covered", masked)
