"""Public data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True, slots=True)
class Credentials:
    license_plate: str
    location_id: str
    login: str
    password: str = field(repr=False)
    payment_account_id: str = field(repr=False)


@dataclass(frozen=True, slots=True)
class AuthToken:
    token_type: str
    access_token: str = field(repr=False)
    expires_in: int | None = None
    refresh_token: str | None = field(default=None, repr=False)
    scope: str | None = None

    @property
    def header_value(self) -> str:
        return f"{self.token_type} {self.access_token}"


@dataclass(frozen=True, slots=True)
class RateOption:
    rate_option_id: str
    name: str
    option_type: str


@dataclass(frozen=True, slots=True)
class Cost:
    amount: float
    currency: str


@dataclass(frozen=True, slots=True)
class Quote:
    quote_id: str
    location_id: str
    license_plate: str
    start_time: datetime
    expiry_time: datetime
    total_cost: Cost | None = None


@dataclass(frozen=True, slots=True)
class SessionSegment:
    start_time: datetime
    end_time: datetime
    cost: float
    fees: float


@dataclass(frozen=True, slots=True)
class BookedSession:
    session_id: str
    license_plate: str
    location_id: str
    start_time: datetime
    expire_time: datetime
    rate_option_id: str | None = None
    total_cost: Cost | None = None
    segments: tuple[SessionSegment, ...] = ()
    is_renewable: bool = False


@dataclass(frozen=True, slots=True)
class Vehicle:
    vehicle_id: str
    license_plate: str
    country: str
    jurisdiction: str
    vehicle_type: str


@dataclass(frozen=True, slots=True)
class RenewalState:
    """When to look at a vehicle again and how many minutes are still owed."""

    next_check: datetime
    remaining_minutes: int

    @property
    def is_active(self) -> bool:
        return self.remaining_minutes > 0

    def is_due(self, now: datetime) -> bool:
        return self.is_active and self.next_check <= now


@dataclass(frozen=True, slots=True)
class ParkingResult:
    session: BookedSession
    quote: Quote
    requested_minutes: int
    renewal: RenewalState
