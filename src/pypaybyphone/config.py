"""Account configuration loading."""

from __future__ import annotations

import json
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any

from .exceptions import ConfigError, ValidationError
from .models import Credentials
from .util import normalize_license_plate

SCHEMA_FILENAME = "accounts.schema.json"


@dataclass(frozen=True, slots=True)
class Account:
    name: str
    credentials: Credentials

    @property
    def license_plate(self) -> str:
        return self.credentials.license_plate


def load_accounts_schema() -> dict:
    schema_path = resources.files("pypaybyphone") / SCHEMA_FILENAME
    return json.loads(schema_path.read_text(encoding="utf-8"))


def _require_str(data: dict, key: str, context: str) -> str:
    value = data.get(key)
    if isinstance(value, int) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{context} {key} must be a non-empty string.")
    return value.strip()


def _build_account(data: Any, index: int) -> Account:
    context = f"Account #{index}"
    if not isinstance(data, dict):
        raise ConfigError(f"{context} must be a JSON object.")
    missing = [key for key in ("name", "plate", "lot", "pay_by_phone") if key not in data]
    if missing:
        raise ConfigError(f"{context} missing keys: {', '.join(missing)}.")
    name = _require_str(data, "name", context)
    try:
        plate = normalize_license_plate(_require_str(data, "plate", context))
    except ValidationError as exc:
        raise ConfigError(f"{context} plate is not a valid license plate.") from exc
    lot = _require_str(data, "lot", context)
    pay_by_phone = data["pay_by_phone"]
    if not isinstance(pay_by_phone, dict):
        raise ConfigError(f"{context} pay_by_phone must be a JSON object.")
    return Account(
        name=name,
        credentials=Credentials(
            license_plate=plate,
            location_id=lot,
            login=_require_str(pay_by_phone, "login", context),
            password=_require_str(pay_by_phone, "password", context),
            payment_account_id=_require_str(pay_by_phone, "payment_account_id", context),
        ),
    )


def parse_accounts(data: Any) -> list[Account]:
    if not isinstance(data, dict):
        raise ConfigError("Account configuration must be a JSON object.")
    raw_accounts = data.get("accounts")
    if not isinstance(raw_accounts, list):
        raise ConfigError("Account configuration must contain an accounts list.")
    accounts = [_build_account(item, index) for index, item in enumerate(raw_accounts)]
    names = [account.name for account in accounts]
    if len(set(names)) != len(names):
        raise ConfigError("Account names must be unique.")
    plates = [account.license_plate for account in accounts]
    if len(set(plates)) != len(plates):
        raise ConfigError("Account license plates must be unique.")
    return accounts


def load_accounts(path: str | Path) -> list[Account]:
    config_path = Path(path)
    if not config_path.is_file():
        raise ConfigError(f"Account configuration not found: {config_path}.")
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError("Account configuration is not valid JSON.") from exc
    return parse_accounts(data)
