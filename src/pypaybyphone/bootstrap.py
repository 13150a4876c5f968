"""Credential bootstrap: API key, access token and account id."""

from __future__ import annotations

import logging
import re
from typing import Any

from .const import ACCOUNTS_ENDPOINT, API_KEY_PATTERN, API_KEY_SCRIPT_URL, TOKEN_CLIENT_ID, TOKEN_URL
from .exceptions import AuthError, BootstrapError, BootstrapFailure, ParseError, ServiceError
from .models import AuthToken, Credentials
from .transport import Transport

_LOGGER = logging.getLogger(__name__)
_API_KEY_RE = re.compile(API_KEY_PATTERN)


def extract_api_key(text: str) -> str:
    match = _API_KEY_RE.search(text or "")
    if match is None or not match.group(1):
        raise BootstrapError(
            BootstrapFailure.API_KEY_NOT_FOUND,
            "API key pattern not found in the script resource.",
        )
    return match.group(1)


async def fetch_api_key(transport: Transport) -> str:
    _LOGGER.debug("Fetching API key")
    response = await transport.fetch_text(API_KEY_SCRIPT_URL)
    return extract_api_key(response.text)


async def fetch_token(transport: Transport, credentials: Credentials) -> AuthToken:
    _LOGGER.debug("Fetching access token")
    form = {
        "grant_type": "password",
        "username": credentials.login,
        "password": credentials.password,
        "client_id": TOKEN_CLIENT_ID,
    }
    response = await transport.post_form(TOKEN_URL, form)
    if not response.ok:
        raise BootstrapError(
            BootstrapFailure.AUTH_REJECTED,
            f"Token request rejected with status {response.status}.",
        )
    try:
        data = response.parse_json()
    except ParseError as exc:
        raise BootstrapError(
            BootstrapFailure.AUTH_REJECTED,
            "Token response was not valid JSON.",
        ) from exc
    return _map_token(data)


async def fetch_account_id(transport: Transport) -> str:
    _LOGGER.debug("Fetching account id")
    response = await transport.request("GET", ACCOUNTS_ENDPOINT)
    if response.status in (401, 403):
        raise AuthError("Access token was rejected while listing accounts.")
    if not response.ok:
        raise ServiceError(f"Account listing failed with status {response.status}.")
    data = response.parse_json()
    if not isinstance(data, list):
        raise ParseError("Account listing was not a list.")
    if not data:
        raise BootstrapError(BootstrapFailure.NO_ACCOUNT, "No parking account on this login.")
    first = data[0]
    account_id = first.get("id") if isinstance(first, dict) else None
    if account_id is None or not str(account_id).strip():
        raise ParseError("Account listing entry has no id.")
    return str(account_id).strip()


async def bootstrap(transport: Transport, credentials: Credentials) -> str:
    """Authenticate ``transport`` and return the caller's account id.

    The previous key and token stay installed until both replacements are
    fetched.
    """
    api_key = await fetch_api_key(transport)
    token = await fetch_token(transport, credentials)
    transport.api_key = api_key
    transport.token = token
    return await fetch_account_id(transport)


def _map_token(data: Any) -> AuthToken:
    if not isinstance(data, dict):
        raise BootstrapError(BootstrapFailure.AUTH_REJECTED, "Token response was not an object.")
    token_type = data.get("token_type")
    access_token = data.get("access_token")
    if not isinstance(token_type, str) or not token_type:
        raise BootstrapError(BootstrapFailure.AUTH_REJECTED, "Token response missing token_type.")
    if not isinstance(access_token, str) or not access_token:
        raise BootstrapError(
            BootstrapFailure.AUTH_REJECTED,
            "Token response missing access_token.",
        )
    expires_in = data.get("expires_in")
    if isinstance(expires_in, bool) or not isinstance(expires_in, int):
        expires_in = None
    refresh_token = data.get("refresh_token")
    scope = data.get("scope")
    return AuthToken(
        token_type=token_type,
        access_token=access_token,
        expires_in=expires_in,
        refresh_token=refresh_token if isinstance(refresh_token, str) else None,
        scope=scope if isinstance(scope, str) else None,
    )
