"""
Hidden-field markup contract shared by the widget and the acquisition controller.
"""

import re
from typing import Mapping

from markupsafe import Markup


# Attributes carried by the hidden token input
MARKER_ATTRIBUTE = "data-recaptcha"
SITEKEY_ATTRIBUTE = "data-sitekey"
ACTION_ATTRIBUTE = "data-action"

DEFAULT_ACTION = "form_submit"
DEFAULT_FIELD_NAME = "g-recaptcha-response"

# Seconds an injected token may still be submitted; the service expires tokens after two minutes
DEFAULT_TOKEN_TTL_S = 110.0
DEFAULT_FAILURE_MESSAGE = "reCAPTCHA verification failed. Please try again."

_ACTION_DISALLOWED = re.compile(r"[^A-Za-z0-9_]")


def sanitize_action(action: str | None) -> str:
    """
    Make an action name acceptable to the verification service.

    Every character outside ``[A-Za-z0-9_]`` becomes ``_``.

    Examples:
        >>> sanitize_action("contact form!")
        'contact_form_'
        >>> sanitize_action("")
        'form_submit'
    """
    if not action:
        return DEFAULT_ACTION
    return _ACTION_DISALLOWED.sub("_", action)


def is_marker(attributes: Mapping[str, str] | None) -> bool:
    """Check whether an input's attributes mark it as the token field."""
    if not attributes:
        return False
    return attributes.get(MARKER_ATTRIBUTE) == "true"


def marker_attributes(site_key: str, action: str) -> dict[str, str]:
    """Attributes the acquisition controller looks for on the hidden input."""
    return {
        MARKER_ATTRIBUTE: "true",
        SITEKEY_ATTRIBUTE: site_key,
        ACTION_ATTRIBUTE: sanitize_action(action),
    }


def render_hidden_input(
    name: str,
    value: str = "",
    attributes: Mapping[str, str] | None = None,
) -> Markup:
    """
    Render ``<input type="hidden">`` with escaped attributes.

    Attributes with a None value are skipped.

    Examples:
        >>> render_hidden_input("token", "", {"data-action": "login"})
        Markup('<input type="hidden" name="token" value="" data-action="login">')
    """
    parts = [
        Markup('type="hidden"'),
        Markup('name="{}"').format(name),
        Markup('value="{}"').format(value),
    ]
    for key, attr_value in (attributes or {}).items():
        if attr_value is None:
            continue
        parts.append(Markup('{}="{}"').format(key, attr_value))
    return Markup("<input ") + Markup(" ").join(parts) + Markup(">")


def render_tag(tag: str, content: str, attributes: Mapping[str, str] | None = None) -> Markup:
    """Wrap already-rendered content in an element."""
    attrs = Markup("").join(
        Markup(' {}="{}"').format(key, value)
        for key, value in (attributes or {}).items()
    )
    return Markup("<{}{}>").format(tag, attrs) + Markup(content) + Markup("</{}>").format(tag)


__all__ = [
    "MARKER_ATTRIBUTE",
    "SITEKEY_ATTRIBUTE",
    "ACTION_ATTRIBUTE",
    "DEFAULT_ACTION",
    "DEFAULT_FIELD_NAME",
    "DEFAULT_TOKEN_TTL_S",
    "DEFAULT_FAILURE_MESSAGE",
    "sanitize_action",
    "is_marker",
    "marker_attributes",
    "render_hidden_input",
    "render_tag",
]
