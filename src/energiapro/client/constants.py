from __future__ import annotations
# API endpoints (relative to the base URL)
DEFAULT_BASE_URL = "https://web2.holdigaz.ch/espace-client-api/api"
AUTH_ENDPOINT = "authenticate.php"
DATA_ENDPOINT = "index.php"

# Installations request
INSTALLATIONS_SCOPE = "installation-lpn-list"
INSTALLATIONS_NUM_INST_PLACEHOLDER = "0"
CONTINUATION_KEY = "continuation"

# Authentication
BCRYPT_COST = 11
TOKEN_TTL_SECONDS = 60 * 60
TOKEN_SAFETY_MARGIN_SECONDS = 5 * 60

# Request retry configuration
DEFAULT_TIMEOUT_SECONDS = 30
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_MIN_WAIT = 1.0
DEFAULT_RETRY_MAX_WAIT = 30.0

# Date range limits (days)
DEFAULT_MAX_WINDOW_DAYS = 31
DATE_FORMAT = "%Y-%m-%d"

# Error reporting
ERROR_BODY_SNIPPET_LIMIT = 512
UTF8_BOM = "\ufeff"

# HTTP status codes
AUTH_FAILURE_STATUS_CODES = {401, 403}
RATE_LIMITED_STATUS_CODE = 429

# API error codes returned in the "errorCode" field
API_SUCCESS_CODE = "0"
API_ERROR_CODES = {
    "1": "method_not_post",
    "2": "secret_key_already_used",
    "3": "scope_not_found",
    "4": "max_sessions_reached",
    "5": "missing_parameters",
    "6": "missing_ssl",
    "10": "invalid_username",
    "11": "missing_password",
    "12": "portal_account_disabled",
    "15": "api_account_disabled",
    "100": "no_lpn_data",
    "110": "no_installations",
    "210": "token_corrupted",
    "220": "token_invalid",
}
TOKEN_ERROR_CODES = {"210", "220"}
CREDENTIAL_ERROR_CODES = {"10", "11", "12", "15"}
NO_DATA_ERROR_CODES = {"100", "110"}

__all__ = [
    "DEFAULT_BASE_URL",
    "AUTH_ENDPOINT",
    "DATA_ENDPOINT",
    "INSTALLATIONS_SCOPE",
    "INSTALLATIONS_NUM_INST_PLACEHOLDER",
    "CONTINUATION_KEY",
    "BCRYPT_COST",
    "TOKEN_TTL_SECONDS",
    "TOKEN_SAFETY_MARGIN_SECONDS",
    "DEFAULT_TIMEOUT_SECONDS",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_RETRY_MIN_WAIT",
    "DEFAULT_RETRY_MAX_WAIT",
    "DEFAULT_MAX_WINDOW_DAYS",
    "DATE_FORMAT",
    "ERROR_BODY_SNIPPET_LIMIT",
    "UTF8_BOM",
    "AUTH_FAILURE_STATUS_CODES",
    "RATE_LIMITED_STATUS_CODE",
    "API_SUCCESS_CODE",
    "API_ERROR_CODES",
    "TOKEN_ERROR_CODES",
    "CREDENTIAL_ERROR_CODES",
    "NO_DATA_ERROR_CODES",
]
