"""PayByPhone session engine: quote, book and verify parking sessions."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any

import aiohttp

from .bootstrap import bootstrap
from .const import (
    DURATION_TIME_UNIT,
    PAYMENT_METHOD_TYPE,
    PROBE_DURATION_MINUTES,
    QUOTE_ENDPOINT,
    RATE_OPTIONS_ENDPOINT,
    SESSION_CREATE_ENDPOINT,
    SESSION_PERIOD_TYPE,
    SESSIONS_ENDPOINT,
    VEHICLES_ENDPOINT,
)
from .exceptions import (
    AuthError,
    BookingError,
    NoActiveSession,
    ParseError,
    ServiceError,
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
    SessionSegment,
    Vehicle,
)
from .transport import RawResponse, Transport
from .util import (
    format_utc_timestamp,
    mask_license_plate,
    normalize_license_plate,
    parse_timestamp,
    plan_renewal,
)

_LOGGER = logging.getLogger(__name__)


class PayByPhone:
    """Engine for one vehicle account.

    Credentials, the access token and the account id are private to the
    instance. ``login`` runs the bootstrap once; afterwards every call that the
    service rejects with 401/403 is retried once after a fresh bootstrap.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        credentials: Credentials,
        *,
        base_url: str | None = None,
        timeout: aiohttp.ClientTimeout | None = None,
    ) -> None:
        if not isinstance(credentials, Credentials):
            raise ValidationError("credentials must be a Credentials instance.")
        self._transport = Transport(session, base_url=base_url, timeout=timeout)
        self._credentials = credentials
        self._plate = normalize_license_plate(credentials.license_plate)
        self._account_id: str | None = None
        self._logged_in = False
        self._login_lock = asyncio.Lock()

    @property
    def license_plate(self) -> str:
        return self._plate

    @property
    def location_id(self) -> str:
        return self._credentials.location_id

    @property
    def account_id(self) -> str | None:
        return self._account_id

    @property
    def logged_in(self) -> bool:
        return self._logged_in

    async def login(self) -> None:
        """Run the credential bootstrap if it has not run yet."""
        if self._logged_in:
            return
        async with self._login_lock:
            if not self._logged_in:
                await self._bootstrap()

    async def list_vehicles(self) -> list[Vehicle]:
        """Return the vehicles registered on the profile."""
        response = await self._call("GET", VEHICLES_ENDPOINT)
        self._expect_success(response, "Vehicle listing")
        return self._map_vehicle_list(response.parse_json())

    async def get_rate_options(self) -> list[RateOption]:
        """Return rate options for the vehicle at its lot."""
        account_id = await self._require_account_id()
        response = await self._call(
            "GET",
            RATE_OPTIONS_ENDPOINT.format(location_id=self.location_id),
            params={"parkingAccountId": account_id, "licensePlate": self._plate},
        )
        self._expect_success(response, "Rate option listing")
        return self._map_rate_option_list(response.parse_json())

    async def get_quote(self, duration: int, rate_option_id: str) -> Quote:
        """Ask the service for a price and time window for ``duration`` minutes."""
        duration = self._require_minutes(duration)
        account_id = await self._require_account_id()
        params = {
            "locationId": self.location_id,
            "rateOptionId": rate_option_id,
            "durationQuantity": duration,
            "durationTimeUnit": DURATION_TIME_UNIT,
            "licensePlate": self._plate,
        }
        response = await self._call(
            "GET",
            QUOTE_ENDPOINT.format(account_id=account_id),
            params=params,
        )
        self._expect_success(response, "Quote request")
        return self._map_quote(response.parse_json())

    async def post_quote(self, quote: Quote, duration: int, rate_option_id: str) -> BookedSession:
        """Book ``quote`` and return the session as the service now reports it."""
        duration = self._require_minutes(duration)
        account_id = await self._require_account_id()
        payload = {
            "licensePlate": self._plate,
            "locationId": self.location_id,
            "stall": None,
            "rateOptionId": rate_option_id,
            "startTime": format_utc_timestamp(quote.start_time),
            "quoteId": quote.quote_id,
            "duration": {"quantity": duration, "timeUnit": DURATION_TIME_UNIT},
            "paymentMethod": {
                "paymentMethodType": PAYMENT_METHOD_TYPE,
                "payload": {
                    "paymentAccountId": self._credentials.payment_account_id,
                    "cvv": None,
                },
            },
        }
        response = await self._call(
            "POST",
            SESSION_CREATE_ENDPOINT.format(account_id=account_id),
            params=payload,
        )
        if response.status != 202:
            raise BookingError(status=response.status, body=response.text)
        _LOGGER.info("Booking accepted for %s", mask_license_plate(self._plate))
        # The creation response does not carry the session; read it back.
        return await self.check_active_session()

    async def list_sessions(self) -> list[BookedSession]:
        """Return the account's current parking sessions."""
        account_id = await self._require_account_id()
        response = await self._call(
            "GET",
            SESSIONS_ENDPOINT.format(account_id=account_id),
            params={"periodType": SESSION_PERIOD_TYPE},
        )
        self._expect_success(response, "Session listing")
        return self._map_session_list(response.parse_json())

    async def check_active_session(self, license_plate: str | None = None) -> BookedSession:
        """Return the current session of the vehicle or raise NoActiveSession."""
        plate = normalize_license_plate(license_plate) if license_plate else self._plate
        sessions = await self.list_sessions()
        session = self._select_session(sessions, plate)
        if session is None:
            raise NoActiveSession("No active parking session found.")
        return session

    async def quote(self, minutes: int) -> Quote:
        """Quote ``minutes`` against the first rate option."""
        rate_option = self._first_rate_option(await self.get_rate_options())
        return await self.get_quote(minutes, rate_option.rate_option_id)

    async def park(self, requested_minutes: int) -> ParkingResult:
        """Book one probe-sized session and report what is still owed.

        The service cannot promise quotes far ahead, so the engine books the
        smallest chargeable increment and leaves the rest to renewal.
        """
        requested_minutes = self._require_minutes(requested_minutes)
        masked = mask_license_plate(self._plate)
        _LOGGER.info("Parking %s for %s minutes", masked, requested_minutes)
        rate_option = self._first_rate_option(await self.get_rate_options())
        quote = await self.get_quote(PROBE_DURATION_MINUTES, rate_option.rate_option_id)
        planned = plan_renewal(quote.start_time, requested_minutes, quote.expiry_time)
        if planned.is_active:
            _LOGGER.info(
                "Quote for %s ends at %s; renewal at %s for another %s minutes",
                masked,
                quote.expiry_time,
                planned.next_check,
                planned.remaining_minutes,
            )
        session = await self.post_quote(quote, PROBE_DURATION_MINUTES, rate_option.rate_option_id)
        renewal = plan_renewal(quote.start_time, requested_minutes, session.expire_time)
        return ParkingResult(
            session=session,
            quote=quote,
            requested_minutes=requested_minutes,
            renewal=renewal,
        )

    async def _call(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
    ) -> RawResponse:
        await self.login()
        for attempt in range(2):
            token = self._transport.token
            response = await self._transport.request(method, path, params)
            if response.status not in (401, 403):
                return response
            if attempt == 0:
                _LOGGER.warning(
                    "Access token rejected for %s; bootstrapping again",
                    mask_license_plate(self._plate),
                )
                await self._reauthenticate(token)
        raise AuthError("Authentication failed after re-bootstrap.")

    async def _reauthenticate(self, rejected: AuthToken | None) -> None:
        """Bootstrap again unless a concurrent call already replaced ``rejected``."""
        async with self._login_lock:
            if self._transport.token is not rejected:
                return
            await self._bootstrap()

    async def _bootstrap(self) -> None:
        _LOGGER.debug("Login started for %s", mask_license_plate(self._plate))
        self._account_id = await bootstrap(self._transport, self._credentials)
        self._logged_in = True
        _LOGGER.debug("Login completed for %s", mask_license_plate(self._plate))

    async def _require_account_id(self) -> str:
        await self.login()
        if self._account_id is None:
            raise AuthError("Authentication required.")
        return self._account_id

    def _require_minutes(self, value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError("Duration must be an integer number of minutes.")
        if value <= 0:
            raise ValidationError("Duration must be positive.")
        return value

    def _expect_success(self, response: RawResponse, action: str) -> None:
        if not response.ok:
            raise ServiceError(
                f"{action} failed with status {response.status}.",
                detail=response.text or None,
            )

    def _first_rate_option(self, options: list[RateOption]) -> RateOption:
        if not options:
            raise ServiceError(
                "No rate options available for this vehicle and lot.",
                error_code="no_rate_option",
            )
        return options[0]

    def _select_session(
        self,
        sessions: list[BookedSession],
        license_plate: str,
    ) -> BookedSession | None:
        matches = [session for session in sessions if session.license_plate == license_plate]
        if not matches:
            return None
        return max(matches, key=lambda session: session.expire_time)

    def _map_rate_option_list(self, data: Any) -> list[RateOption]:
        if data is None:
            return []
        if not isinstance(data, list):
            raise ParseError("Rate option listing was not a list.")
        options: list[RateOption] = []
        for item in data:
            if not isinstance(item, dict):
                continue
            options.append(
                RateOption(
                    rate_option_id=self._coerce_response_id(
                        item.get("rateOptionId"), "rate option id"
                    ),
                    name=str(item.get("name") or ""),
                    option_type=str(item.get("type") or ""),
                )
            )
        return options

    def _map_quote(self, data: Any) -> Quote:
        if not isinstance(data, dict):
            raise ParseError("Quote response was not an object.")
        return Quote(
            quote_id=self._coerce_response_id(data.get("quoteId"), "quote id"),
            location_id=str(data.get("locationId") or self.location_id),
            license_plate=self._parse_plate(data.get("licensePlate") or self._plate),
            start_time=self._parse_time(data.get("parkingStartTime"), "parkingStartTime"),
            expiry_time=self._parse_time(data.get("parkingExpiryTime"), "parkingExpiryTime"),
            total_cost=self._map_cost(data.get("totalCost")),
        )

    def _map_session_list(self, data: Any) -> list[BookedSession]:
        if data is None:
            return []
        if not isinstance(data, list):
            raise ParseError("Session listing was not a list.")
        return [self._map_session(item) for item in data if isinstance(item, dict)]

    def _map_session(self, item: dict[str, Any]) -> BookedSession:
        vehicle = item.get("vehicle")
        if not isinstance(vehicle, dict):
            raise ParseError("Session is missing its vehicle.")
        rate_option = item.get("rateOption")
        rate_option_id = None
        if isinstance(rate_option, dict) and rate_option.get("rateOptionId") is not None:
            rate_option_id = str(rate_option["rateOptionId"])
        segments = item.get("segments")
        return BookedSession(
            session_id=self._coerce_response_id(item.get("parkingSessionId"), "session id"),
            license_plate=self._parse_plate(vehicle.get("licensePlate")),
            location_id=str(item.get("locationId") or ""),
            start_time=self._parse_time(item.get("startTime"), "startTime"),
            expire_time=self._parse_time(item.get("expireTime"), "expireTime"),
            rate_option_id=rate_option_id,
            total_cost=self._map_cost(item.get("totalCost")),
            segments=tuple(
                self._map_segment(segment)
                for segment in (segments if isinstance(segments, list) else [])
                if isinstance(segment, dict)
            ),
            is_renewable=item.get("isRenewable") is True,
        )

    def _map_segment(self, item: dict[str, Any]) -> SessionSegment:
        return SessionSegment(
            start_time=self._parse_time(item.get("parkingStart"), "parkingStart"),
            end_time=self._parse_time(item.get("parkingEnd"), "parkingEnd"),
            cost=self._parse_float(item.get("cost")),
            fees=self._parse_float(item.get("fees")),
        )

    def _map_vehicle_list(self, data: Any) -> list[Vehicle]:
        if data is None:
            return []
        if not isinstance(data, list):
            raise ParseError("Vehicle listing was not a list.")
        vehicles: list[Vehicle] = []
        for item in data:
            if not isinstance(item, dict):
                continue
            vehicles.append(
                Vehicle(
                    vehicle_id=self._coerce_response_id(item.get("vehicleId"), "vehicle id"),
                    license_plate=self._parse_plate(item.get("licensePlate")),
                    country=str(item.get("country") or ""),
                    jurisdiction=str(item.get("jurisdiction") or ""),
                    vehicle_type=str(item.get("type") or ""),
                )
            )
        return vehicles

    def _map_cost(self, data: Any) -> Cost | None:
        if not isinstance(data, dict):
            return None
        return Cost(
            amount=self._parse_float(data.get("amount")),
            currency=str(data.get("currency") or ""),
        )

    def _parse_time(self, value: Any, field: str) -> datetime:
        if not isinstance(value, str) or not value:
            raise ParseError(f"Response missing {field}.")
        try:
            return parse_timestamp(value)
        except ValidationError as exc:
            raise ParseError(f"Response included invalid {field}.") from exc

    def _parse_plate(self, value: Any) -> str:
        if not isinstance(value, str):
            raise ParseError("Response included an invalid license plate.")
        try:
            return normalize_license_plate(value)
        except ValidationError as exc:
            raise ParseError("Response included an invalid license plate.") from exc

    def _parse_float(self, value: Any) -> float:
        if value is None or isinstance(value, bool):
            return 0.0
        if isinstance(value, int | float):
            return float(value)
        if isinstance(value, str):
            try:
                return float(value.strip())
            except ValueError:
                return 0.0
        return 0.0

    def _coerce_response_id(self, value: Any, field: str) -> str:
        if value is None:
            raise ParseError(f"Response missing {field}.")
        text = str(value).strip()
        if not text:
            raise ParseError(f"Response missing {field}.")
        return text
