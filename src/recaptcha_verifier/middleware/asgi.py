"""
ASGI middleware for reCAPTCHA verification (FastAPI/Starlette).
"""

from typing import Any, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from ..client import RecaptchaVerifier
from ..config import RecaptchaConfig
from ..extract import (
    UNSAFE_METHODS,
    is_form_body,
    requires_token,
    token_from_form_body,
    token_from_headers,
)
from ..markup import DEFAULT_FIELD_NAME
from ..models import RecaptchaState, VerificationRequest

DECISION_HEADER = "X-Recaptcha-Decision"
REJECTED_ERROR = "reCAPTCHA verification failed"


class RecaptchaASGIMiddleware(BaseHTTPMiddleware):
    """
    ASGI middleware that verifies reCAPTCHA tokens on submitting requests.

    Attaches state to `request.state.recaptcha` with:
    - checked: bool - whether the request method was gated
    - result: VerificationResult | None - verification result if checked

    The token is read from the X-Recaptcha-Token header, or from the
    form field (default "g-recaptcha-response") of url-encoded bodies.

    Args:
        app: ASGI application
        config: Shared RecaptchaConfig (ignored when verifier is given)
        verifier: Pre-built RecaptchaVerifier
        action: Expected action name, or None to skip the action check
        require_verified: If True, return 403 for missing or failed tokens.
            If False (default), operate in observe mode - attach state but allow all.
        field_name: Form field holding the token
        methods: Request methods to gate

    Example (FastAPI):
        >>> app = FastAPI()
        >>> app.add_middleware(RecaptchaASGIMiddleware, config=config,
        ...                    action="contact_form", require_verified=True)
    """

    def __init__(
        self,
        app: Any,
        config: RecaptchaConfig | None = None,
        *,
        verifier: RecaptchaVerifier | None = None,
        action: str | None = None,
        require_verified: bool = False,
        field_name: str = DEFAULT_FIELD_NAME,
        methods: frozenset[str] = UNSAFE_METHODS,
    ):
        super().__init__(app)
        self.verifier = verifier or RecaptchaVerifier(config)
        self.action = action
        self.require_verified = require_verified
        self.field_name = field_name
        self.methods = frozenset(m.upper() for m in methods)

    async def _token(self, request: Request) -> str | None:
        token = token_from_headers(request.headers)
        if token:
            return token
        if is_form_body(request.headers.get("content-type")):
            return token_from_form_body(await request.body(), self.field_name)
        return None

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Any],
    ) -> Response:
        if not requires_token(request.method, self.methods):
            request.state.recaptcha = RecaptchaState(checked=False, result=None)
            return await call_next(request)

        token = await self._token(request)
        result = await self.verifier.verify(
            VerificationRequest(
                token=token or "",
                expected_action=self.action,
                remote_ip=request.client.host if request.client else None,
                hostname=request.url.hostname,
            )
        )

        request.state.recaptcha = RecaptchaState(checked=True, result=result)

        if self.require_verified and not result.decision:
            return JSONResponse(
                status_code=403,
                content={"error": REJECTED_ERROR},
                headers={DECISION_HEADER: "deny"},
            )

        response = await call_next(request)
        response.headers[DECISION_HEADER] = "allow" if result.decision else "observe"
        return response
