"""
Data models for reCAPTCHA verification.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field


class FailureKind(str, enum.Enum):
    """Why a verification was rejected."""

    TOKEN_MISSING = "token_missing"
    REMOTE_UNAVAILABLE = "remote_unavailable"
    POLICY_REJECTED = "policy_rejected"


@dataclass
class VerificationRequest:
    """
    One validation attempt.

    Attributes:
        token: Opaque token submitted by the client
        expected_action: Action name the token must carry, or None to skip the check
        score_threshold: Minimum score; None inherits the verifier's threshold
        verify_hostname: Origin check toggle; None inherits the verifier's setting
        remote_ip: Caller's address, forwarded to the service as an advisory signal
        hostname: Host the form was served from, compared when the origin check is on
    """
    token: str
    expected_action: str | None = None
    score_threshold: float | None = None
    verify_hostname: bool | None = None
    remote_ip: str | None = None
    hostname: str | None = None


@dataclass
class VerificationResult:
    """
    Outcome of a single verification.

    Attributes:
        succeeded: The service accepted the token as valid and unexpired
        score: Human-likeness score reported by the service (v3 only)
        action: Action name reported by the service
        hostname: Hostname the token was issued on
        challenge_ts: Timestamp of the challenge (ISO 8601)
        error_codes: Error codes reported by the service, in order
        decision: Final pass/fail after local policy checks
        failure: Failure category when decision is False
        reason: Diagnostic detail for logs, never shown to end users
    """
    succeeded: bool
    decision: bool
    score: float | None = None
    action: str | None = None
    hostname: str | None = None
    challenge_ts: str | None = None
    error_codes: list[str] = field(default_factory=list)
    failure: FailureKind | None = None
    reason: str | None = None


@dataclass
class RecaptchaState:
    """
    reCAPTCHA state attached to requests by the middleware.

    Attributes:
        checked: Whether the request went through verification
        result: Verification result if checked
    """
    checked: bool
    result: VerificationResult | None = None
