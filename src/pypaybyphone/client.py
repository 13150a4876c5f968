"""Client facade for configured accounts and the renewal scheduler."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from pathlib import Path

import aiohttp

from .config import Account, load_accounts
from .const import SWEEP_INTERVAL_SECONDS
from .engine import PayByPhone
from .exceptions import NotFoundError, ValidationError
from .models import BookedSession, Quote, RenewalState, Vehicle
from .scheduler import RenewalScheduler
from .store import RenewalStore
from .util import normalize_license_plate

_DEFAULT_TIMEOUT = aiohttp.ClientTimeout(total=30)


class Client:
    """Facade used by the request layer.

    Accounts are addressed by their configured name. Engines are bootstrapped
    on first use and cached; the sweep always bootstraps a fresh engine.
    """

    def __init__(
        self,
        accounts: Iterable[Account],
        session: aiohttp.ClientSession | None = None,
        *,
        store: RenewalStore | None = None,
        base_url: str | None = None,
        timeout: aiohttp.ClientTimeout | None = None,
        sweep_interval: float = SWEEP_INTERVAL_SECONDS,
    ) -> None:
        self._accounts = {account.name: account for account in accounts}
        self._session = session
        self._owns_session = session is None
        self._base_url = base_url
        self._timeout = timeout or _DEFAULT_TIMEOUT
        self._store = store or RenewalStore()
        self._engines: dict[str, PayByPhone] = {}
        self._engine_locks: dict[str, asyncio.Lock] = {}
        self._scheduler = RenewalScheduler(
            self._store,
            self._fresh_engine_for_plate,
            interval=sweep_interval,
        )

    @classmethod
    def from_config(
        cls,
        path: str | Path,
        session: aiohttp.ClientSession | None = None,
        *,
        state_path: str | Path | None = None,
        **kwargs,
    ) -> Client:
        store = RenewalStore(state_path) if state_path is not None else None
        return cls(load_accounts(path), session, store=store, **kwargs)

    async def __aenter__(self) -> Client:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._scheduler.stop()
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    @property
    def store(self) -> RenewalStore:
        return self._store

    @property
    def scheduler(self) -> RenewalScheduler:
        return self._scheduler

    def list_accounts(self) -> list[Account]:
        return list(self._accounts.values())

    async def bootstrap(self, name: str) -> PayByPhone:
        """Return the logged-in engine for account ``name``."""
        account = self._get_account(name)
        lock = self._engine_locks.setdefault(account.name, asyncio.Lock())
        async with lock:
            engine = self._engines.get(account.name)
            if engine is None:
                engine = self._new_engine(account)
                await engine.login()
                self._engines[account.name] = engine
        return engine

    async def park(self, name: str, minutes: int) -> BookedSession:
        engine = await self.bootstrap(name)
        return await self._scheduler.park(engine, minutes)

    async def check(self, name: str) -> BookedSession:
        engine = await self.bootstrap(name)
        return await engine.check_active_session()

    async def list_vehicles(self, name: str) -> list[Vehicle]:
        engine = await self.bootstrap(name)
        return await engine.list_vehicles()

    async def quote(self, name: str, minutes: int) -> Quote:
        engine = await self.bootstrap(name)
        return await engine.quote(minutes)

    async def get_renewal_state(self, name: str) -> RenewalState | None:
        account = self._get_account(name)
        return await self._store.get(account.license_plate)

    async def start_scheduler(self) -> None:
        await self._store.load()
        self._scheduler.start()

    async def stop_scheduler(self) -> None:
        await self._scheduler.stop()

    def _get_account(self, name: str) -> Account:
        if not isinstance(name, str) or not name:
            raise ValidationError("Account name is required.")
        account = self._accounts.get(name)
        if account is None:
            raise NotFoundError(f"Account {name!r} not found.")
        return account

    def _new_engine(self, account: Account) -> PayByPhone:
        return PayByPhone(
            self._ensure_session(),
            account.credentials,
            base_url=self._base_url,
            timeout=self._timeout,
        )

    async def _fresh_engine_for_plate(self, plate: str) -> PayByPhone:
        normalized = normalize_license_plate(plate)
        for account in self._accounts.values():
            if normalize_license_plate(account.license_plate) == normalized:
                engine = self._new_engine(account)
                await engine.login()
                return engine
        raise NotFoundError("No configured account for this license plate.")

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session
