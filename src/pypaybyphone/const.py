"""Constants for the PayByPhone service."""

from datetime import timedelta

API_KEY_SCRIPT_URL = "https://m2.paybyphone.fr/static/js/main.0aec44c0.chunk.js"
API_KEY_PATTERN = r'paymentService:\{[^}]*apiKey:"(.*?)"'

TOKEN_URL = "https://auth.paybyphoneapis.com/token"
TOKEN_CLIENT_ID = "paybyphone_webapp"

CONSUMER_BASE_URL = "https://consumer.paybyphoneapis.com"

ACCOUNTS_ENDPOINT = "/parking/accounts"
RATE_OPTIONS_ENDPOINT = "/parking/locations/{location_id}/rateOptions"
QUOTE_ENDPOINT = "/parking/accounts/{account_id}/quote"
SESSIONS_ENDPOINT = "/parking/accounts/{account_id}/sessions"
SESSION_CREATE_ENDPOINT = "/parking/accounts/{account_id}/sessions/"
VEHICLES_ENDPOINT = "/identity/profileservice/v1/members/vehicles/paybyphone"

API_KEY_HEADER = "x-api-key"
API_VERSION_HEADER = "x-pbp-version"
CLIENT_TYPE_HEADER = "X-Pbp-ClientType"
AUTHORIZATION_HEADER = "Authorization"

DEFAULT_API_VERSION = "2"
DEFAULT_CLIENT_TYPE = "WebApp"

DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/58.0.3029.110 Safari/537.3"
    ),
    "Accept-Language": "en-US,en;q=0.5",
    "Accept-Encoding": "gzip, deflate",
    "Referer": "https://paybyphone.com/",
    "Origin": "https://paybyphone.com",
    "DNT": "1",
    "Connection": "keep-alive",
    "Accept": "application/json, text/plain, */*",
}

DURATION_TIME_UNIT = "Minutes"
PAYMENT_METHOD_TYPE = "PaymentAccount"
SESSION_PERIOD_TYPE = "Current"

# Smallest chargeable increment; every booking is made in this size.
PROBE_DURATION_MINUTES = 15

RENEWAL_MARGIN = timedelta(minutes=1)
SWEEP_INTERVAL_SECONDS = 60
