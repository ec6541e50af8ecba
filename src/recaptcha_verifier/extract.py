"""
Token and origin extraction from incoming requests.
"""

from typing import Mapping
from urllib.parse import parse_qs

from .markup import DEFAULT_FIELD_NAME


# Header carrying the token for non-form (fetch/XHR) submissions
TOKEN_HEADER = "x-recaptcha-token"

# Methods that submit data and therefore require a token
UNSAFE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


def requires_token(method: str, methods: frozenset[str] = UNSAFE_METHODS) -> bool:
    """Check whether a request method is gated."""
    return method.upper() in methods


def token_from_headers(headers: Mapping[str, str]) -> str | None:
    """
    Read the token header, case-insensitively.

    Examples:
        >>> token_from_headers({"X-Recaptcha-Token": "abc"})
        'abc'
        >>> token_from_headers({"host": "example.com"}) is None
        True
    """
    for key, value in headers.items():
        if key.lower() == TOKEN_HEADER and value:
            return value.strip()
    return None


def is_form_body(content_type: str | None) -> bool:
    if not content_type:
        return False
    return content_type.split(";", 1)[0].strip().lower() == FORM_CONTENT_TYPE


def token_from_form_body(body: bytes, field_name: str = DEFAULT_FIELD_NAME) -> str | None:
    """
    Read the token field from a url-encoded form body.

    Examples:
        >>> token_from_form_body(b"name=Ann&g-recaptcha-response=tok")
        'tok'
    """
    if not body:
        return None
    values = parse_qs(body.decode("utf-8", errors="replace")).get(field_name)
    if not values:
        return None
    return values[0].strip() or None


def host_without_port(host: str | None) -> str | None:
    """
    Strip the port from a Host header value.

    Examples:
        >>> host_without_port("example.com:8080")
        'example.com'
        >>> host_without_port("[::1]:8000")
        '::1'
    """
    if not host:
        return None
    if host.startswith("["):
        end = host.find("]")
        if end != -1:
            return host[1:end]
    return host.rsplit(":", 1)[0] if host.count(":") == 1 else host
