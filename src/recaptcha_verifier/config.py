"""
Configuration for reCAPTCHA v3 verification and rendering.

One RecaptchaConfig is built at startup and passed explicitly to the
verifier, validators and widgets. Each of those resolves its own effective
settings with resolve(): explicit override > shared config > default.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Any, Iterable, Mapping

from .errors import ConfigurationError, MissingCredential

DEFAULT_VERIFY_URL = "https://www.google.com/recaptcha/api/siteverify"
DEFAULT_SCRIPT_URL = "https://www.google.com/recaptcha/api.js"
DEFAULT_SCORE_THRESHOLD = 0.5
DEFAULT_TIMEOUT_S = 10.0

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})


def _check_threshold(value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ConfigurationError(
            f"score_threshold must be between 0.0 and 1.0, got {value}"
        )


def _check_timeout(value: float) -> None:
    if value <= 0:
        raise ConfigurationError(f"timeout_s must be positive, got {value}")


@dataclass(frozen=True)
class RecaptchaConfig:
    """
    Process-wide reCAPTCHA settings. Read-only after construction.

    Args:
        site_key: Public site key embedded in rendered markup
        secret: Secret key used for server-side verification
        score_threshold: Minimum accepted score (0.0 - 1.0). Default 0.5
        verify_url: siteverify endpoint
        script_url: Challenge script URL
        verify_hostname: Whether to compare the reported hostname with the serving host
        timeout_s: Verification request timeout in seconds. Default 10.0

    Raises:
        MissingCredential: If site_key or secret is empty
        ConfigurationError: If score_threshold or timeout_s is out of range

    Example:
        >>> config = RecaptchaConfig(site_key="6Lc...", secret="6Lc...")
        >>> config.score_threshold
        0.5
    """
    site_key: str
    secret: str
    score_threshold: float = DEFAULT_SCORE_THRESHOLD
    verify_url: str = DEFAULT_VERIFY_URL
    script_url: str = DEFAULT_SCRIPT_URL
    verify_hostname: bool = False
    timeout_s: float = DEFAULT_TIMEOUT_S

    def __post_init__(self) -> None:
        if not self.site_key:
            raise MissingCredential("site_key")
        if not self.secret:
            raise MissingCredential("secret")
        _check_threshold(self.score_threshold)
        _check_timeout(self.timeout_s)

    @classmethod
    def from_env(
        cls,
        prefix: str = "RECAPTCHA_",
        environ: Mapping[str, str] | None = None,
    ) -> "RecaptchaConfig":
        """
        Build a config from environment variables.

        Reads ``{prefix}SITE_KEY``, ``{prefix}SECRET``, ``{prefix}SCORE_THRESHOLD``,
        ``{prefix}VERIFY_URL``, ``{prefix}SCRIPT_URL``, ``{prefix}VERIFY_HOSTNAME``
        and ``{prefix}TIMEOUT``. Unset optional variables fall back to defaults.
        """
        env = os.environ if environ is None else environ

        def get(name: str, default: str) -> str:
            return env.get(prefix + name, default)

        try:
            score_threshold = float(get("SCORE_THRESHOLD", str(DEFAULT_SCORE_THRESHOLD)))
            timeout_s = float(get("TIMEOUT", str(DEFAULT_TIMEOUT_S)))
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric {prefix}* setting: {e}") from e

        return cls(
            site_key=get("SITE_KEY", ""),
            secret=get("SECRET", ""),
            score_threshold=score_threshold,
            verify_url=get("VERIFY_URL", DEFAULT_VERIFY_URL),
            script_url=get("SCRIPT_URL", DEFAULT_SCRIPT_URL),
            verify_hostname=get("VERIFY_HOSTNAME", "false").lower() in _TRUE_VALUES,
            timeout_s=timeout_s,
        )


@dataclass(frozen=True)
class EffectiveConfig:
    """Settings in effect for one verifier, validator or widget."""
    site_key: str | None
    secret: str | None
    score_threshold: float
    verify_url: str
    script_url: str
    verify_hostname: bool
    timeout_s: float


_DEFAULTS: dict[str, Any] = {
    "site_key": None,
    "secret": None,
    "score_threshold": DEFAULT_SCORE_THRESHOLD,
    "verify_url": DEFAULT_VERIFY_URL,
    "script_url": DEFAULT_SCRIPT_URL,
    "verify_hostname": False,
    "timeout_s": DEFAULT_TIMEOUT_S,
}

CONFIG_FIELDS = tuple(f.name for f in fields(EffectiveConfig))


def resolve(
    shared: RecaptchaConfig | None,
    overrides: Mapping[str, Any] | None = None,
    *,
    require: Iterable[str] = (),
    owner: str = "RecaptchaConfig",
) -> EffectiveConfig:
    """
    Resolve effective settings.

    For each field the explicit override wins when present and not None,
    then the shared config value, then the built-in default.

    Args:
        shared: Process-wide config, or None
        overrides: Per-call overrides keyed by field name
        require: Credential fields that must be non-empty ("site_key", "secret")
        owner: Name used in error messages

    Returns:
        EffectiveConfig

    Raises:
        MissingCredential: If a required field is empty after resolution
        ConfigurationError: On unknown override keys or out-of-range values
    """
    overrides = overrides or {}
    unknown = set(overrides) - set(CONFIG_FIELDS)
    if unknown:
        raise ConfigurationError(
            f"Unknown {owner} setting(s): {', '.join(sorted(unknown))}"
        )

    values: dict[str, Any] = {}
    for name in CONFIG_FIELDS:
        value = overrides.get(name)
        if value is None and shared is not None:
            value = getattr(shared, name)
        if value is None:
            value = _DEFAULTS[name]
        values[name] = value

    for name in require:
        if not values.get(name):
            raise MissingCredential(name, owner)

    _check_threshold(values["score_threshold"])
    _check_timeout(values["timeout_s"])

    return EffectiveConfig(**values)
