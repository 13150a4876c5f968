"""Per-vehicle renewal state shared by on-demand parking and the sweep."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from .exceptions import ConfigError, ValidationError
from .models import RenewalState
from .util import format_utc_timestamp, mask_license_plate, normalize_license_plate, parse_timestamp

_LOGGER = logging.getLogger(__name__)


class ReadWriteLock:
    """Asyncio reader-writer lock; waiting writers block new readers."""

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer and self._waiting_writers == 0)
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                self._cond.notify_all()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        async with self._cond:
            self._waiting_writers += 1
            try:
                await self._cond.wait_for(lambda: not self._writer and self._readers == 0)
            finally:
                self._waiting_writers -= 1
                self._cond.notify_all()
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()


class RenewalStore:
    """Mapping of license plate to RenewalState.

    States are replaced as whole immutable objects under the write lock, so a
    reader never sees ``next_check`` from one booking and ``remaining_minutes``
    from another.

    When ``path`` is given the JSON file is the source of truth: reads go to
    the file and every write re-reads it before replacing a single entry, so
    entries written by an earlier run or by another process are kept. Claims
    are tracked per process.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self._lock = ReadWriteLock()
        self._states: dict[str, RenewalState] = {}
        self._in_flight: set[str] = set()
        self._path = Path(path) if path is not None else None

    async def load(self) -> None:
        """Read the state file now; raises ConfigError when it is unreadable."""
        if self._path is None:
            return
        async with self._lock.write():
            await self._refresh()
        _LOGGER.debug("Loaded %s renewal states from %s", len(self._states), self._path)

    async def get(self, plate: str) -> RenewalState | None:
        key = normalize_license_plate(plate)
        async with self._lock.read():
            states = await self._snapshot()
        return states.get(key)

    async def set(self, plate: str, state: RenewalState) -> None:
        key = normalize_license_plate(plate)
        self._require_state(state)
        async with self._lock.write():
            await self._refresh()
            self._states[key] = state
            await self._persist()
        _LOGGER.debug(
            "Renewal state for %s set to next_check=%s remaining=%s",
            mask_license_plate(key),
            state.next_check,
            state.remaining_minutes,
        )

    async def items(self) -> list[tuple[str, RenewalState]]:
        async with self._lock.read():
            states = await self._snapshot()
        return list(states.items())

    async def due(self, now: datetime) -> list[tuple[str, RenewalState]]:
        """Return active states whose check time has arrived and nobody is renewing."""
        async with self._lock.read():
            states = await self._snapshot()
            return [
                (plate, state)
                for plate, state in states.items()
                if state.is_due(now) and plate not in self._in_flight
            ]

    async def claim(self, plate: str, expected: RenewalState | None) -> bool:
        """Mark ``plate`` as being renewed if its state is still ``expected``."""
        key = normalize_license_plate(plate)
        async with self._lock.write():
            await self._refresh()
            if key in self._in_flight or self._states.get(key) != expected:
                return False
            self._in_flight.add(key)
            return True

    async def release(self, plate: str) -> None:
        key = normalize_license_plate(plate)
        async with self._lock.write():
            self._in_flight.discard(key)

    async def commit(
        self,
        plate: str,
        expected: RenewalState | None,
        state: RenewalState,
    ) -> bool:
        """Compare-and-swap ``expected`` for ``state`` and release any claim.

        The swap only happens when nobody changed the entry since ``expected``
        was read and the new check time is strictly later than the old one.
        """
        key = normalize_license_plate(plate)
        self._require_state(state)
        async with self._lock.write():
            self._in_flight.discard(key)
            await self._refresh()
            current = self._states.get(key)
            if current != expected:
                _LOGGER.info("Renewal state for %s changed concurrently", mask_license_plate(key))
                return False
            if expected is not None and state.next_check <= expected.next_check:
                _LOGGER.info("Renewal for %s did not move the check time", mask_license_plate(key))
                return False
            self._states[key] = state
            await self._persist()
        return True

    async def _snapshot(self) -> dict[str, RenewalState]:
        if self._path is None:
            return self._states
        return await asyncio.to_thread(_read_states, self._path)

    async def _refresh(self) -> None:
        if self._path is not None:
            self._states = await asyncio.to_thread(_read_states, self._path)

    async def _persist(self) -> None:
        if self._path is None:
            return
        payload = {
            plate: {
                "next_check": format_utc_timestamp(state.next_check),
                "remaining_minutes": state.remaining_minutes,
            }
            for plate, state in self._states.items()
        }
        await asyncio.to_thread(_write_states, self._path, payload)

    def _require_state(self, state: Any) -> None:
        if not isinstance(state, RenewalState):
            raise ValidationError("state must be a RenewalState.")
        if state.next_check.tzinfo is None:
            raise ValidationError("next_check must include timezone information.")


def _read_states(path: Path) -> dict[str, RenewalState]:
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError("Renewal state file is not valid JSON.") from exc
    if not isinstance(data, dict):
        raise ConfigError("Renewal state file must contain an object.")
    states: dict[str, RenewalState] = {}
    for plate, item in data.items():
        if not isinstance(item, dict):
            raise ConfigError("Renewal state entries must be objects.")
        remaining = item.get("remaining_minutes")
        if isinstance(remaining, bool) or not isinstance(remaining, int):
            raise ConfigError("remaining_minutes must be an integer.")
        try:
            next_check = parse_timestamp(item.get("next_check"))
            key = normalize_license_plate(plate)
        except ValidationError as exc:
            raise ConfigError("Renewal state file contains an invalid entry.") from exc
        states[key] = RenewalState(next_check=next_check, remaining_minutes=remaining)
    return states


def _write_states(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(f"{path.suffix}.tmp")
    tmp_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
    tmp_path.replace(path)
