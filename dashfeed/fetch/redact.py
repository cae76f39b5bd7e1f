"""Header and URL redaction utilities for logging."""

import re


# Headers that must never appear in logs
SENSITIVE_HEADERS = frozenset(
    {
        "authorization",
        "cookie",
        "x-api-key",
        "x-cg-pro-api-key",
        "cg-api-key",
        "proxy-authorization",
        "set-cookie",
    }
)

# Query parameters that carry credentials
SENSITIVE_QUERY_PARAMS = ("apikey", "api_key", "key", "token", "x_cg_pro_api_key")

REDACTED_VALUE = "[REDACTED]"

_USERINFO_PATTERN = re.compile(r"(https?://)([^:/@]+):([^@/]+)@")
_QUERY_PATTERN = re.compile(
    r"([?&](?:" + "|".join(SENSITIVE_QUERY_PARAMS) + r")=)[^&#]*",
    re.IGNORECASE,
)


def redact_headers(headers: dict[str, str]) -> dict[str, str]:
    """Redact sensitive headers for logging.

    Replaces the values of Authorization, provider API-key headers and
    cookies with [REDACTED] for safe logging.

    Args:
        headers: Original headers dictionary.

    Returns:
        New dictionary with sensitive values redacted.
    """
    result: dict[str, str] = {}
    for key, value in headers.items():
        if is_sensitive_header(key):
            result[key] = REDACTED_VALUE
        else:
            result[key] = value
    return result


def is_sensitive_header(header_name: str) -> bool:
    """Check if a header name is sensitive.

    Args:
        header_name: The header name to check.

    Returns:
        True if the header should be redacted.
    """
    return header_name.lower() in SENSITIVE_HEADERS


def redact_url(url: str, secrets: tuple[str, ...] = ()) -> str:
    """Redact credentials from a URL.

    Handles user:password@ userinfo, credential query parameters such as
    ``apiKey=...``, and any known secret embedded in the path (some
    providers put the key between host and path).

    Args:
        url: URL that may contain credentials.
        secrets: Literal secret values to mask wherever they appear.

    Returns:
        URL with credentials redacted.
    """
    redacted = _USERINFO_PATTERN.sub(r"\1[REDACTED]:[REDACTED]@", url)
    redacted = _QUERY_PATTERN.sub(r"\1" + REDACTED_VALUE, redacted)
    for secret in secrets:
        if secret:
            redacted = redacted.replace(secret, REDACTED_VALUE)
    return redacted
