"""pypaybyphone package."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

from .client import Client
from .config import Account, load_accounts
from .engine import PayByPhone
from .exceptions import (
    AuthError,
    BookingError,
    BootstrapError,
    BootstrapFailure,
    ConfigError,
    NoActiveSession,
    NotFoundError,
    ParseError,
    PyPayByPhoneError,
    ServiceError,
    TransportError,
    ValidationError,
)
from .models import (
    AuthToken,
    BookedSession,
    Cost,
    Credentials,
    ParkingResult,
    Quote,
    RateOption,
    RenewalState,
    SessionSegment,
    Vehicle,
)
from .scheduler import RenewalScheduler
from .store import RenewalStore

try:
    __version__ = version("pypaybyphone")
except PackageNotFoundError:  # pragma: no cover - not installed
    __version__ = "0.0.0"

__all__ = [
    "Account",
    "AuthError",
    "AuthToken",
    "BookedSession",
    "BookingError",
    "BootstrapError",
    "BootstrapFailure",
    "Client",
    "ConfigError",
    "Cost",
    "Credentials",
    "NoActiveSession",
    "NotFoundError",
    "ParkingResult",
    "ParseError",
    "PayByPhone",
    "PyPayByPhoneError",
    "Quote",
    "RateOption",
    "RenewalScheduler",
    "RenewalState",
    "RenewalStore",
    "ServiceError",
    "SessionSegment",
    "TransportError",
    "ValidationError",
    "Vehicle",
    "__version__",
    "load_accounts",
]
