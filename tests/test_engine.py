from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from pypaybyphone.engine import PayByPhone
from pypaybyphone.exceptions import (
    AuthError,
    BookingError,
    NoActiveSession,
    ParseError,
    ServiceError,
    ValidationError,
)
from pypaybyphone.models import AuthToken, Cost, Credentials

T = datetime(2024, 5, 1, 9, 0, tzinfo=UTC)
BASE = "https://consumer.paybyphoneapis.com"


class _FakeResponse:
    def __init__(self, *, status: int = 200, text_data: str = "") -> None:
        self.status = status
        self._text_data = text_data

    async def text(self) -> str:
        return self._text_data


class _FakeRequestContext:
    def __init__(self, response: _FakeResponse) -> None:
        self._response = response

    async def __aenter__(self) -> _FakeResponse:
        return self._response

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class _SequenceSession:
    def __init__(self, results: list[_FakeResponse]) -> None:
        self._results = results
        self.calls: list[dict[str, Any]] = []

    def request(self, method: str, url: str, **kwargs: Any) -> _FakeRequestContext:
        self.calls.append({"method": method, "url": url, "kwargs": kwargs})
        return _FakeRequestContext(self._results[len(self.calls) - 1])


def _json(data: object, status: int = 200) -> _FakeResponse:
    return _FakeResponse(status=status, text_data=json.dumps(data))


def _iso(value: datetime) -> str:
    return value.isoformat().replace("+00:00", "Z")


def _rate_options() -> _FakeResponse:
    return _json(
        [
            {"rateOptionId": "r1", "name": "Standard", "type": "Normal"},
            {"rateOptionId": "r2", "name": "Resident", "type": "Resident"},
        ]
    )


def _quote(start: datetime = T, minutes: int = 15) -> _FakeResponse:
    return _json(
        {
            "quoteId": "q1",
            "locationId": "75001",
            "licensePlate": "AB123CD",
            "parkingStartTime": _iso(start),
            "parkingExpiryTime": _iso(start + timedelta(minutes=minutes)),
            "totalCost": {"amount": 0.6, "currency": "EUR"},
        }
    )


def _session_item(
    plate: str,
    start: datetime,
    minutes: int = 15,
    session_id: str = "s1",
) -> dict[str, Any]:
    expire = start + timedelta(minutes=minutes)
    return {
        "parkingSessionId": session_id,
        "vehicle": {"licensePlate": plate, "id": 1, "type": "Car"},
        "locationId": "75001",
        "startTime": _iso(start),
        "expireTime": _iso(expire),
        "rateOption": {"rateOptionId": "r1", "type": "Normal"},
        "totalCost": {"amount": 0.6, "currency": "EUR"},
        "segments": [
            {
                "parkingStart": _iso(start),
                "parkingEnd": _iso(expire),
                "cost": 0.6,
                "fees": 0,
            }
        ],
        "isRenewable": True,
    }


def _sessions(start: datetime = T) -> _FakeResponse:
    return _json(
        [
            _session_item("ZZ999ZZ", start - timedelta(hours=1), session_id="other"),
            _session_item("ab-123-cd", start),
        ]
    )


def _engine(session: _SequenceSession) -> PayByPhone:
    engine = PayByPhone(
        session,  # type: ignore[arg-type]
        Credentials(
            license_plate="AB-123-CD",
            location_id="75001",
            login="user",
            password="pass",
            payment_account_id="pay-1",
        ),
    )
    engine._transport.api_key = "key"
    engine._transport.token = AuthToken(token_type="Bearer", access_token="abc")
    engine._account_id = "acc-1"
    engine._logged_in = True
    return engine


@pytest.mark.asyncio
async def test_get_rate_options_queries_lot_and_plate() -> None:
    session = _SequenceSession([_rate_options()])
    options = await _engine(session).get_rate_options()
    assert [option.rate_option_id for option in options] == ["r1", "r2"]
    call = session.calls[0]
    assert call["url"] == f"{BASE}/parking/locations/75001/rateOptions"
    assert call["kwargs"]["params"] == {"parkingAccountId": "acc-1", "licensePlate": "AB123CD"}


@pytest.mark.asyncio
async def test_quote_uses_first_rate_option() -> None:
    session = _SequenceSession([_rate_options(), _quote(minutes=60)])
    quote = await _engine(session).quote(60)
    assert quote.quote_id == "q1"
    assert quote.expiry_time == T + timedelta(minutes=60)
    assert quote.total_cost == Cost(amount=0.6, currency="EUR")
    params = session.calls[1]["kwargs"]["params"]
    assert session.calls[1]["url"] == f"{BASE}/parking/accounts/acc-1/quote"
    assert params == {
        "locationId": "75001",
        "rateOptionId": "r1",
        "durationQuantity": 60,
        "durationTimeUnit": "Minutes",
        "licensePlate": "AB123CD",
    }


@pytest.mark.asyncio
async def test_park_books_probe_and_plans_renewal() -> None:
    session = _SequenceSession(
        [_rate_options(), _quote(), _FakeResponse(status=202), _sessions()]
    )
    result = await _engine(session).park(45)

    assert result.session.session_id == "s1"
    assert result.session.license_plate == "AB123CD"
    assert result.session.start_time == T
    assert result.session.expire_time == T + timedelta(minutes=15)
    assert result.session.segments[0].cost == 0.6
    assert result.requested_minutes == 45
    assert result.renewal.next_check == T + timedelta(minutes=16)
    assert result.renewal.remaining_minutes == 29

    assert session.calls[1]["kwargs"]["params"]["durationQuantity"] == 15
    post = session.calls[2]
    assert post["method"] == "POST"
    assert post["url"] == f"{BASE}/parking/accounts/acc-1/sessions/"
    assert post["kwargs"]["json"] == {
        "licensePlate": "AB123CD",
        "locationId": "75001",
        "stall": None,
        "rateOptionId": "r1",
        "startTime": "2024-05-01T09:00:00Z",
        "quoteId": "q1",
        "duration": {"quantity": 15, "timeUnit": "Minutes"},
        "paymentMethod": {
            "paymentMethodType": "PaymentAccount",
            "payload": {"paymentAccountId": "pay-1", "cvv": None},
        },
    }
    assert session.calls[3]["kwargs"]["params"] == {"periodType": "Current"}


@pytest.mark.asyncio
async def test_park_within_probe_window_is_satisfied() -> None:
    session = _SequenceSession(
        [_rate_options(), _quote(), _FakeResponse(status=202), _sessions()]
    )
    result = await _engine(session).park(10)
    assert result.renewal.remaining_minutes <= 0
    assert not result.renewal.is_active


@pytest.mark.asyncio
async def test_park_then_check_round_trip() -> None:
    session = _SequenceSession(
        [_rate_options(), _quote(), _FakeResponse(status=202), _sessions(), _sessions()]
    )
    engine = _engine(session)
    result = await engine.park(45)
    checked = await engine.check_active_session()
    assert checked.start_time == result.session.start_time
    assert checked.expire_time == result.session.expire_time
    assert result.renewal.next_check == checked.expire_time + timedelta(minutes=1)


@pytest.mark.asyncio
async def test_park_without_rate_options_books_nothing() -> None:
    session = _SequenceSession([_json([])])
    with pytest.raises(ServiceError) as excinfo:
        await _engine(session).park(45)
    assert excinfo.value.error_code == "no_rate_option"
    assert len(session.calls) == 1


@pytest.mark.asyncio
async def test_park_rejected_booking_raises_with_body() -> None:
    body = '{"message": "Quote expired"}'
    session = _SequenceSession(
        [_rate_options(), _quote(), _FakeResponse(status=400, text_data=body)]
    )
    with pytest.raises(BookingError) as excinfo:
        await _engine(session).park(45)
    assert excinfo.value.status == 400
    assert excinfo.value.body == body
    assert len(session.calls) == 3


@pytest.mark.asyncio
async def test_post_quote_only_accepts_202() -> None:
    session = _SequenceSession([_rate_options(), _quote(), _json({"ok": True}, status=200)])
    engine = _engine(session)
    quote = await engine.quote(15)
    with pytest.raises(BookingError):
        await engine.post_quote(quote, 15, "r1")


@pytest.mark.asyncio
async def test_check_active_session_matches_plate() -> None:
    session = _SequenceSession([_sessions()])
    found = await _engine(session).check_active_session()
    assert found.session_id == "s1"


@pytest.mark.asyncio
async def test_check_active_session_for_other_plate() -> None:
    session = _SequenceSession([_sessions()])
    found = await _engine(session).check_active_session("zz-999-zz")
    assert found.session_id == "other"


@pytest.mark.asyncio
async def test_check_active_session_without_match() -> None:
    session = _SequenceSession([_json([_session_item("ZZ999ZZ", T)])])
    with pytest.raises(NoActiveSession):
        await _engine(session).check_active_session()


@pytest.mark.asyncio
async def test_check_active_session_prefers_latest_expiry() -> None:
    session = _SequenceSession(
        [
            _json(
                [
                    _session_item("AB123CD", T, session_id="old"),
                    _session_item("AB123CD", T + timedelta(minutes=16), session_id="new"),
                ]
            )
        ]
    )
    found = await _engine(session).check_active_session()
    assert found.session_id == "new"


@pytest.mark.asyncio
async def test_session_listing_with_bad_timestamp() -> None:
    item = _session_item("AB123CD", T)
    item["expireTime"] = "not a time"
    session = _SequenceSession([_json([item])])
    with pytest.raises(ParseError):
        await _engine(session).list_sessions()


@pytest.mark.asyncio
async def test_list_vehicles() -> None:
    session = _SequenceSession(
        [
            _json(
                [
                    {
                        "vehicleId": "v1",
                        "legacyVehicleId": 42,
                        "licensePlate": "ab-123-cd",
                        "country": "FR",
                        "jurisdiction": "FR",
                        "type": "Car",
                    }
                ]
            )
        ]
    )
    vehicles = await _engine(session).list_vehicles()
    assert vehicles[0].vehicle_id == "v1"
    assert vehicles[0].license_plate == "AB123CD"
    assert vehicles[0].vehicle_type == "Car"


@pytest.mark.asyncio
async def test_unexpected_status_raises_service_error() -> None:
    session = _SequenceSession([_FakeResponse(status=500, text_data="oops")])
    with pytest.raises(ServiceError) as excinfo:
        await _engine(session).list_sessions()
    assert excinfo.value.detail == "oops"


@pytest.mark.asyncio
async def test_park_rejects_invalid_duration() -> None:
    engine = _engine(_SequenceSession([]))
    with pytest.raises(ValidationError):
        await engine.park(0)
    with pytest.raises(ValidationError):
        await engine.park(True)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_rejected_token_retries_once_after_bootstrap(monkeypatch: pytest.MonkeyPatch) -> None:
    session = _SequenceSession([_FakeResponse(status=401), _sessions()])
    engine = _engine(session)
    calls = {"reauth": 0}

    async def _fake_reauth(rejected: AuthToken | None) -> None:
        calls["reauth"] += 1

    monkeypatch.setattr(engine, "_reauthenticate", _fake_reauth)

    sessions = await engine.list_sessions()
    assert len(sessions) == 2
    assert calls["reauth"] == 1
    assert len(session.calls) == 2


@pytest.mark.asyncio
async def test_second_rejection_raises_auth_error(monkeypatch: pytest.MonkeyPatch) -> None:
    session = _SequenceSession([_FakeResponse(status=401), _FakeResponse(status=403)])
    engine = _engine(session)
    calls = {"reauth": 0}

    async def _fake_reauth(rejected: AuthToken | None) -> None:
        calls["reauth"] += 1

    monkeypatch.setattr(engine, "_reauthenticate", _fake_reauth)

    with pytest.raises(AuthError):
        await engine.list_sessions()
    assert calls["reauth"] == 1


@pytest.mark.asyncio
async def test_login_runs_bootstrap_once(monkeypatch: pytest.MonkeyPatch) -> None:
    engine = PayByPhone(
        _SequenceSession([]),  # type: ignore[arg-type]
        Credentials(
            license_plate="AB123CD",
            location_id="75001",
            login="user",
            password="pass",
            payment_account_id="pay-1",
        ),
    )
    calls = {"count": 0}

    async def _fake_bootstrap(transport, credentials) -> str:
        calls["count"] += 1
        return "acc-9"

    monkeypatch.setattr("pypaybyphone.engine.bootstrap", _fake_bootstrap)

    await engine.login()
    await engine.login()
    assert engine.account_id == "acc-9"
    assert engine.logged_in is True
    assert calls["count"] == 1


@pytest.mark.asyncio
async def test_concurrent_logins_bootstrap_once(monkeypatch: pytest.MonkeyPatch) -> None:
    engine = PayByPhone(
        _SequenceSession([]),  # type: ignore[arg-type]
        Credentials(
            license_plate="AB123CD",
            location_id="75001",
            login="user",
            password="pass",
            payment_account_id="pay-1",
        ),
    )
    calls = {"count": 0}

    async def _fake_bootstrap(transport, credentials) -> str:
        calls["count"] += 1
        await asyncio.sleep(0)
        return "acc-9"

    monkeypatch.setattr("pypaybyphone.engine.bootstrap", _fake_bootstrap)

    await asyncio.gather(engine.login(), engine.login(), engine.login())
    assert calls["count"] == 1


@pytest.mark.asyncio
async def test_concurrent_rejections_bootstrap_once(monkeypatch: pytest.MonkeyPatch) -> None:
    session = _SequenceSession(
        [_FakeResponse(status=401), _FakeResponse(status=401), _sessions(), _sessions()]
    )
    engine = _engine(session)
    calls = {"count": 0}

    async def _fake_bootstrap(transport, credentials) -> str:
        calls["count"] += 1
        await asyncio.sleep(0)
        transport.token = AuthToken(token_type="Bearer", access_token="fresh")
        return "acc-1"

    monkeypatch.setattr("pypaybyphone.engine.bootstrap", _fake_bootstrap)

    first, second = await asyncio.gather(engine.list_sessions(), engine.list_sessions())

    assert len(first) == 2
    assert len(second) == 2
    assert calls["count"] == 1
    assert session.calls[-1]["kwargs"]["headers"]["Authorization"] == "Bearer fresh"
