"""
WSGI middleware for reCAPTCHA verification (Flask).
"""

from __future__ import annotations

import json
from io import BytesIO
from typing import Any, Callable, Iterable

from ..client import RecaptchaVerifier
from ..config import RecaptchaConfig
from ..extract import (
    UNSAFE_METHODS,
    host_without_port,
    is_form_body,
    requires_token,
    token_from_form_body,
    token_from_headers,
)
from ..markup import DEFAULT_FIELD_NAME
from ..models import RecaptchaState, VerificationRequest

DECISION_HEADER = "X-Recaptcha-Decision"
REJECTED_ERROR = "reCAPTCHA verification failed"
ENVIRON_KEY = "recaptcha.state"


def _extract_headers(environ: dict[str, Any]) -> dict[str, str]:
    """Extract HTTP headers from WSGI environ."""
    headers: dict[str, str] = {}
    for key, value in environ.items():
        if key.startswith("HTTP_"):
            # HTTP_X_RECAPTCHA_TOKEN -> x-recaptcha-token
            headers[key[5:].replace("_", "-").lower()] = value
    return headers


def _read_body(environ: dict[str, Any]) -> bytes:
    """Read the request body and put it back for downstream apps."""
    try:
        length = int(environ.get("CONTENT_LENGTH") or 0)
    except ValueError:
        return b""
    if length <= 0 or "wsgi.input" not in environ:
        return b""
    body = environ["wsgi.input"].read(length)
    environ["wsgi.input"] = BytesIO(body)
    return body


def _hostname(environ: dict[str, Any]) -> str | None:
    return host_without_port(environ.get("HTTP_HOST") or environ.get("SERVER_NAME"))


class RecaptchaWSGIMiddleware:
    """
    WSGI middleware that verifies reCAPTCHA tokens on submitting requests.

    Attaches state to `environ["recaptcha.state"]` with:
    - checked: bool - whether the request method was gated
    - result: VerificationResult | None - verification result if checked

    Args:
        app: WSGI application
        config: Shared RecaptchaConfig (ignored when verifier is given)
        verifier: Pre-built RecaptchaVerifier
        action: Expected action name, or None to skip the action check
        require_verified: If True, return 403 for missing or failed tokens.
            If False (default), operate in observe mode - attach state but allow all.
        field_name: Form field holding the token
        methods: Request methods to gate

    Example (Flask):
        >>> app = Flask(__name__)
        >>> app.wsgi_app = RecaptchaWSGIMiddleware(app.wsgi_app, config,
        ...                                        require_verified=True)
    """

    def __init__(
        self,
        app: Callable[..., Iterable[bytes]],
        config: RecaptchaConfig | None = None,
        *,
        verifier: RecaptchaVerifier | None = None,
        action: str | None = None,
        require_verified: bool = False,
        field_name: str = DEFAULT_FIELD_NAME,
        methods: frozenset[str] = UNSAFE_METHODS,
    ):
        self.app = app
        self.verifier = verifier or RecaptchaVerifier(config)
        self.action = action
        self.require_verified = require_verified
        self.field_name = field_name
        self.methods = frozenset(m.upper() for m in methods)

    def _token(self, environ: dict[str, Any]) -> str | None:
        token = token_from_headers(_extract_headers(environ))
        if token:
            return token
        if is_form_body(environ.get("CONTENT_TYPE")):
            return token_from_form_body(_read_body(environ), self.field_name)
        return None

    def __call__(
        self,
        environ: dict[str, Any],
        start_response: Callable[..., Any],
    ) -> Iterable[bytes]:
        method = environ.get("REQUEST_METHOD", "GET")
        if not requires_token(method, self.methods):
            environ[ENVIRON_KEY] = RecaptchaState(checked=False, result=None)
            return self.app(environ, start_response)

        result = self.verifier.verify_sync(
            VerificationRequest(
                token=self._token(environ) or "",
                expected_action=self.action,
                remote_ip=environ.get("REMOTE_ADDR"),
                hostname=_hostname(environ),
            )
        )

        environ[ENVIRON_KEY] = RecaptchaState(checked=True, result=result)

        if self.require_verified and not result.decision:
            return self._error_response(start_response, REJECTED_ERROR)

        def custom_start_response(
            status: str,
            response_headers: list[tuple[str, str]],
            exc_info: Any = None,
        ) -> Any:
            decision = "allow" if result.decision else "observe"
            response_headers.append((DECISION_HEADER, decision))
            return start_response(status, response_headers, exc_info)

        return self.app(environ, custom_start_response)

    def _error_response(
        self,
        start_response: Callable[..., Any],
        error: str,
    ) -> Iterable[bytes]:
        """Return 403 error response."""
        body = json.dumps({"error": error}).encode("utf-8")
        start_response(
            "403 Forbidden",
            [
                ("Content-Type", "application/json"),
                ("Content-Length", str(len(body))),
                (DECISION_HEADER, "deny"),
            ],
        )
        return [body]
