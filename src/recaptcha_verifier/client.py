"""
Verifier client for the reCAPTCHA siteverify service.
"""

from __future__ import annotations

import math
from typing import Any

import httpx
import structlog

from .config import RecaptchaConfig, resolve
from .models import FailureKind, VerificationRequest, VerificationResult

log = structlog.get_logger(__name__)


def _check_token(token: str | None) -> VerificationResult | None:
    """
    Reject an empty token before any network call.

    Returns None if the token can be sent to the service.
    """
    if token:
        return None

    log.info("recaptcha_token_missing", failure=FailureKind.TOKEN_MISSING.value)
    return VerificationResult(
        succeeded=False,
        decision=False,
        failure=FailureKind.TOKEN_MISSING,
        reason="No reCAPTCHA token submitted",
    )


def _unavailable(error: Exception | str) -> VerificationResult:
    """Build the result for a service that could not be reached or understood."""
    if isinstance(error, Exception):
        detail = f"{type(error).__name__}: {error}"
        error_type = type(error).__name__
    else:
        detail = error
        error_type = "InvalidResponse"

    log.error(
        "recaptcha_remote_unavailable",
        failure=FailureKind.REMOTE_UNAVAILABLE.value,
        error=detail,
        error_type=error_type,
    )
    return VerificationResult(
        succeeded=False,
        decision=False,
        failure=FailureKind.REMOTE_UNAVAILABLE,
        reason=f"Verification service unavailable ({detail})",
    )


def _as_score(value: Any) -> float | None:
    """Parse a reported score. Raises ValueError if it is not a finite number."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"score {value!r} is not a number")
    try:
        score = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"score {value!r} is not a number") from None
    if not math.isfinite(score):
        raise ValueError(f"score {value!r} is not finite")
    return score


def _shape_error(data: dict[str, Any]) -> str | None:
    """Name the first field with an unexpected type, or None if all are usable."""
    codes = data.get("error-codes")
    if codes is not None and (
        not isinstance(codes, list) or not all(isinstance(c, str) for c in codes)
    ):
        return "error-codes is not a list of strings"
    for field in ("action", "hostname", "challenge_ts"):
        value = data.get(field)
        if value is not None and not isinstance(value, str):
            return f"{field} is not a string"
    return None


class RecaptchaVerifier:
    """
    Client for the reCAPTCHA v3 siteverify endpoint.

    Calls the service, then applies the local policy: success flag, score
    threshold, expected action and (optionally) hostname. Network failures
    and malformed responses become a rejected result; nothing is raised.

    Args:
        config: Shared RecaptchaConfig. Optional when secret is given.
        secret: Secret key override
        score_threshold: Minimum accepted score override
        verify_url: siteverify endpoint override
        verify_hostname: Hostname check override
        timeout_s: Request timeout override. Default: 10.0
        http_client: Optional httpx.Client reused by verify_sync
        async_http_client: Optional httpx.AsyncClient reused by verify

    Raises:
        MissingCredential: If no secret is available after resolution

    Example:
        >>> verifier = RecaptchaVerifier(config)
        >>> result = await verifier.verify(
        ...     VerificationRequest(token=token, expected_action="contact_form")
        ... )
        >>> if result.decision:
        ...     print(f"Human, score {result.score}")
    """

    def __init__(
        self,
        config: RecaptchaConfig | None = None,
        *,
        secret: str | None = None,
        score_threshold: float | None = None,
        verify_url: str | None = None,
        verify_hostname: bool | None = None,
        timeout_s: float | None = None,
        http_client: httpx.Client | None = None,
        async_http_client: httpx.AsyncClient | None = None,
    ):
        settings = resolve(
            config,
            {
                "secret": secret,
                "score_threshold": score_threshold,
                "verify_url": verify_url,
                "verify_hostname": verify_hostname,
                "timeout_s": timeout_s,
            },
            require=("secret",),
            owner="RecaptchaVerifier",
        )
        self._secret = settings.secret
        self.verify_url = settings.verify_url
        self.score_threshold = settings.score_threshold
        self.verify_hostname = settings.verify_hostname
        self.timeout_s = settings.timeout_s
        self._http_client = http_client
        self._async_http_client = async_http_client

    def __repr__(self) -> str:
        return (
            f"RecaptchaVerifier(verify_url={self.verify_url!r}, "
            f"score_threshold={self.score_threshold!r}, "
            f"verify_hostname={self.verify_hostname!r})"
        )

    async def verify(self, request: VerificationRequest) -> VerificationResult:
        """
        Verify a token asynchronously.

        Args:
            request: Token and expected constraints

        Returns:
            VerificationResult with the final decision
        """
        missing = _check_token(request.token)
        if missing is not None:
            return missing

        payload = self._build_payload(request)

        try:
            if self._async_http_client is not None:
                response = await self._async_http_client.post(
                    self.verify_url,
                    data=payload,
                    timeout=self.timeout_s,
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                    response = await client.post(self.verify_url, data=payload)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            return _unavailable(e)

        return self._parse_response(request, response)

    def verify_sync(self, request: VerificationRequest) -> VerificationResult:
        """
        Verify a token synchronously.

        Args:
            request: Token and expected constraints

        Returns:
            VerificationResult with the final decision
        """
        missing = _check_token(request.token)
        if missing is not None:
            return missing

        payload = self._build_payload(request)

        try:
            if self._http_client is not None:
                response = self._http_client.post(
                    self.verify_url,
                    data=payload,
                    timeout=self.timeout_s,
                )
            else:
                with httpx.Client(timeout=self.timeout_s) as client:
                    response = client.post(self.verify_url, data=payload)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            return _unavailable(e)

        return self._parse_response(request, response)

    def _build_payload(self, request: VerificationRequest) -> dict[str, str]:
        payload = {
            "secret": self._secret,
            "response": request.token,
        }
        if request.remote_ip:
            payload["remoteip"] = request.remote_ip
        return payload

    def _parse_response(
        self,
        request: VerificationRequest,
        response: httpx.Response,
    ) -> VerificationResult:
        """Parse the siteverify response and apply the local policy."""
        if response.status_code >= 400:
            return _unavailable(f"HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError:
            return _unavailable(f"Invalid JSON response (HTTP {response.status_code})")

        if not isinstance(data, dict):
            return _unavailable("Unexpected response shape")

        shape_error = _shape_error(data)
        if shape_error is not None:
            return _unavailable(f"Unexpected response shape: {shape_error}")

        try:
            score = _as_score(data.get("score"))
        except ValueError as e:
            return _unavailable(f"Unexpected response shape: {e}")

        result = VerificationResult(
            succeeded=bool(data.get("success", False)),
            decision=False,
            score=score,
            action=data.get("action"),
            hostname=data.get("hostname"),
            challenge_ts=data.get("challenge_ts"),
            error_codes=list(data.get("error-codes") or []),
        )
        return self._apply_policy(request, result)

    def _apply_policy(
        self,
        request: VerificationRequest,
        result: VerificationResult,
    ) -> VerificationResult:
        threshold = (
            self.score_threshold
            if request.score_threshold is None
            else request.score_threshold
        )
        verify_hostname = (
            self.verify_hostname
            if request.verify_hostname is None
            else request.verify_hostname
        )

        reason: str | None = None
        if not result.succeeded:
            codes = ", ".join(result.error_codes) or "none"
            reason = f"Service rejected token (error codes: {codes})"
        elif result.score is not None and result.score < threshold:
            reason = f"Score {result.score} below threshold {threshold}"
        elif (
            request.expected_action is not None
            and result.action is not None
            and result.action != request.expected_action
        ):
            reason = (
                f"Action mismatch: expected {request.expected_action}, "
                f"got {result.action}"
            )
        elif verify_hostname and result.hostname is not None:
            expected = (request.hostname or "").lower()
            if result.hostname.lower() != expected:
                reason = (
                    f"Hostname mismatch: expected {request.hostname}, "
                    f"got {result.hostname}"
                )

        if reason is not None:
            log.warning(
                "recaptcha_rejected",
                failure=FailureKind.POLICY_REJECTED.value,
                reason=reason,
                score=result.score,
                action=result.action,
                error_codes=result.error_codes,
            )
            result.failure = FailureKind.POLICY_REJECTED
            result.reason = reason
            return result

        log.debug(
            "recaptcha_verified",
            score=result.score,
            action=result.action,
            hostname=result.hostname,
        )
        result.decision = True
        return result
