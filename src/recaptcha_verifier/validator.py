"""
Field validator that gates form submissions on reCAPTCHA verification.
"""

from __future__ import annotations

from typing import Any, Mapping, Protocol

import httpx

from .client import RecaptchaVerifier
from .config import RecaptchaConfig
from .models import FailureKind, VerificationRequest, VerificationResult

DEFAULT_MESSAGE = "The verification code is incorrect."
DEFAULT_MISSING_MESSAGE = "reCAPTCHA verification failed. Please try again."


class FieldBinding(Protocol):
    """The three operations consumed from a form framework."""

    def get_field_value(self, model: Any, attribute: str) -> str | None: ...

    def set_field_error(self, model: Any, attribute: str, message: str) -> None: ...

    def render_hidden_input(
        self, name: str, value: str, attributes: Mapping[str, str]
    ) -> str: ...


class RecaptchaValidator:
    """
    Validates the reCAPTCHA token held in a form field.

    Settings not given here come from the shared config, then from defaults.

    Args:
        config: Shared RecaptchaConfig
        action: Expected action name, or None to skip the action check
        message: Error for a failed verification
        missing_message: Error for an empty token
        secret, score_threshold, verify_url, verify_hostname, timeout_s:
            Per-validator overrides
        http_client, async_http_client: Optional httpx clients to reuse

    Example:
        >>> validator = RecaptchaValidator(config, action="contact_form")
        >>> validator.validate_attribute(binding, form, "recaptcha",
        ...                              remote_ip=ip, hostname=host)
    """

    def __init__(
        self,
        config: RecaptchaConfig | None = None,
        *,
        action: str | None = None,
        message: str | None = None,
        missing_message: str | None = None,
        secret: str | None = None,
        score_threshold: float | None = None,
        verify_url: str | None = None,
        verify_hostname: bool | None = None,
        timeout_s: float | None = None,
        http_client: httpx.Client | None = None,
        async_http_client: httpx.AsyncClient | None = None,
    ):
        self.verifier = RecaptchaVerifier(
            config,
            secret=secret,
            score_threshold=score_threshold,
            verify_url=verify_url,
            verify_hostname=verify_hostname,
            timeout_s=timeout_s,
            http_client=http_client,
            async_http_client=async_http_client,
        )
        self.action = action
        self.message = message or DEFAULT_MESSAGE
        self.missing_message = missing_message or DEFAULT_MISSING_MESSAGE
        # Most recent result, for diagnostics only
        self.last_result: VerificationResult | None = None

    def _request(
        self,
        value: str | None,
        remote_ip: str | None,
        hostname: str | None,
    ) -> VerificationRequest:
        return VerificationRequest(
            token=(value or "").strip(),
            expected_action=self.action,
            remote_ip=remote_ip,
            hostname=hostname,
        )

    def error_message(self, result: VerificationResult) -> str | None:
        """User-facing message for a result, or None if it passed."""
        if result.decision:
            return None
        if result.failure is FailureKind.TOKEN_MISSING:
            return self.missing_message
        return self.message

    def check(
        self,
        value: str | None,
        *,
        remote_ip: str | None = None,
        hostname: str | None = None,
    ) -> VerificationResult:
        """Verify a raw token and return the full result."""
        result = self.verifier.verify_sync(self._request(value, remote_ip, hostname))
        self.last_result = result
        return result

    async def acheck(
        self,
        value: str | None,
        *,
        remote_ip: str | None = None,
        hostname: str | None = None,
    ) -> VerificationResult:
        """Async variant of check."""
        result = await self.verifier.verify(self._request(value, remote_ip, hostname))
        self.last_result = result
        return result

    def validate_value(
        self,
        value: str | None,
        *,
        remote_ip: str | None = None,
        hostname: str | None = None,
    ) -> str | None:
        """Verify a raw token. Returns the error message, or None if valid."""
        return self.error_message(self.check(value, remote_ip=remote_ip, hostname=hostname))

    async def avalidate_value(
        self,
        value: str | None,
        *,
        remote_ip: str | None = None,
        hostname: str | None = None,
    ) -> str | None:
        """Async variant of validate_value."""
        result = await self.acheck(value, remote_ip=remote_ip, hostname=hostname)
        return self.error_message(result)

    def validate_attribute(
        self,
        binding: FieldBinding,
        model: Any,
        attribute: str,
        *,
        remote_ip: str | None = None,
        hostname: str | None = None,
    ) -> VerificationResult:
        """
        Verify the token in model.attribute and attach an error on failure.

        Returns:
            The VerificationResult
        """
        value = binding.get_field_value(model, attribute)
        result = self.check(value, remote_ip=remote_ip, hostname=hostname)
        error = self.error_message(result)
        if error is not None:
            binding.set_field_error(model, attribute, error)
        return result

    async def avalidate_attribute(
        self,
        binding: FieldBinding,
        model: Any,
        attribute: str,
        *,
        remote_ip: str | None = None,
        hostname: str | None = None,
    ) -> VerificationResult:
        """Async variant of validate_attribute."""
        value = binding.get_field_value(model, attribute)
        result = await self.acheck(value, remote_ip=remote_ip, hostname=hostname)
        error = self.error_message(result)
        if error is not None:
            binding.set_field_error(model, attribute, error)
        return result
