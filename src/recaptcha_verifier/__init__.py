"""
reCAPTCHA v3 verifier for Python

Acquire score-based reCAPTCHA tokens at submit time and verify them
server-side against score, action and hostname constraints.
"""

from .acquisition import (
    AcquisitionController,
    AcquisitionState,
    ChallengeExecutor,
    ContentObserver,
    FormSurface,
    SubmitOutcome,
)
from .client import RecaptchaVerifier
from .config import EffectiveConfig, RecaptchaConfig, resolve
from .errors import AcquisitionFailed, ConfigurationError, MissingCredential, RecaptchaError
from .markup import sanitize_action
from .middleware.wsgi import RecaptchaWSGIMiddleware
from .models import FailureKind, RecaptchaState, VerificationRequest, VerificationResult
from .validator import FieldBinding, RecaptchaValidator
from .widget import RecaptchaWidget

__version__ = "0.1.0"

__all__ = [
    "AcquisitionController",
    "AcquisitionState",
    "ChallengeExecutor",
    "ContentObserver",
    "FormSurface",
    "SubmitOutcome",
    "RecaptchaVerifier",
    "EffectiveConfig",
    "RecaptchaConfig",
    "resolve",
    "AcquisitionFailed",
    "ConfigurationError",
    "MissingCredential",
    "RecaptchaError",
    "sanitize_action",
    "FailureKind",
    "RecaptchaState",
    "VerificationRequest",
    "VerificationResult",
    "FieldBinding",
    "RecaptchaValidator",
    "RecaptchaWidget",
    "RecaptchaWSGIMiddleware",
]


# ASGI middleware requires starlette
try:
    from .middleware.asgi import RecaptchaASGIMiddleware
    __all__.append("RecaptchaASGIMiddleware")
except ImportError:
    pass
