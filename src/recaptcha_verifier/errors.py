"""
Exceptions raised by the reCAPTCHA verifier.

Validation-time failures (missing token, unreachable service, policy
rejection) are reported on VerificationResult.failure instead of being raised.
"""


class RecaptchaError(Exception):
    """Base class for all reCAPTCHA verifier errors."""


class ConfigurationError(RecaptchaError, ValueError):
    """Invalid reCAPTCHA configuration. Raised at initialization."""


class MissingCredential(ConfigurationError):
    """Site key or secret is absent after configuration resolution."""

    def __init__(self, field: str, owner: str = "RecaptchaConfig"):
        self.field = field
        super().__init__(f"{owner}.{field} must be set.")


class AcquisitionFailed(RecaptchaError):
    """The challenge script could not produce a token."""

    def __init__(self, action: str, message: str):
        self.action = action
        super().__init__(f"Token acquisition for action '{action}' failed: {message}")
