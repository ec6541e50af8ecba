"""
Server-side rendering of the reCAPTCHA v3 hidden field and client assets.
"""

from __future__ import annotations

import json
from functools import lru_cache
from importlib import resources
from typing import Any, Mapping
from urllib.parse import urlencode

from markupsafe import Markup

from .config import RecaptchaConfig, resolve
from .markup import (
    DEFAULT_ACTION,
    DEFAULT_FAILURE_MESSAGE,
    DEFAULT_FIELD_NAME,
    DEFAULT_TOKEN_TTL_S,
    marker_attributes,
    render_hidden_input,
    render_tag,
    sanitize_action,
)
from .validator import FieldBinding

DEFAULT_BUSY_LABEL = "Verifying..."


@lru_cache(maxsize=1)
def _controller_source() -> str:
    return (
        resources.files("recaptcha_verifier")
        .joinpath("static/recaptcha-form.js")
        .read_text(encoding="utf-8")
    )


def _js_literal(value: Any) -> str:
    """JSON literal that is safe inside an inline <script> element."""
    return (
        json.dumps(value)
        .replace("<", "\\u003c")
        .replace(">", "\\u003e")
        .replace("&", "\\u0026")
    )


class RecaptchaWidget:
    """
    Renders the hidden token input and the scripts that fill it on submit.

    Tokens are fetched when the form is submitted, not at page load.

    Args:
        config: Shared RecaptchaConfig
        action: Action name reported to the service. Sanitized to [A-Za-z0-9_].
        site_key: Site key override
        script_url: Challenge script URL override
        token_ttl_s: How long an acquired token may be submitted. Default: 110
        failure_message: Alert shown when no token could be obtained
        busy_label: Submit button label while a token is being fetched

    Raises:
        MissingCredential: If no site key is available after resolution

    Example (Jinja):
        >>> widget = RecaptchaWidget(config, action="contact_form")
        >>> template.render(recaptcha=widget.render("recaptcha"),
        ...                 recaptcha_assets=widget.render_assets())
    """

    def __init__(
        self,
        config: RecaptchaConfig | None = None,
        *,
        action: str = DEFAULT_ACTION,
        site_key: str | None = None,
        script_url: str | None = None,
        token_ttl_s: float = DEFAULT_TOKEN_TTL_S,
        failure_message: str = DEFAULT_FAILURE_MESSAGE,
        busy_label: str = DEFAULT_BUSY_LABEL,
    ):
        settings = resolve(
            config,
            {"site_key": site_key, "script_url": script_url},
            require=("site_key",),
            owner="RecaptchaWidget",
        )
        self.site_key = settings.site_key
        self.script_url = settings.script_url
        self.action = sanitize_action(action)
        self.token_ttl_s = token_ttl_s
        self.failure_message = failure_message
        self.busy_label = busy_label

    def input_attributes(self, input_id: str | None = None) -> dict[str, str]:
        """Attributes of the hidden input, including the marker contract."""
        attributes: dict[str, str] = {}
        if input_id:
            attributes["id"] = input_id
        attributes.update(marker_attributes(self.site_key, self.action))
        return attributes

    def render(
        self,
        name: str = DEFAULT_FIELD_NAME,
        *,
        binding: FieldBinding | None = None,
        input_id: str | None = None,
        wrapper: bool = False,
        extra_attributes: Mapping[str, str] | None = None,
    ) -> Markup:
        """
        Render the hidden token input.

        Args:
            name: Input name the validator reads the token from
            binding: Form framework binding; its render_hidden_input is used when given
            input_id: Element id. Default: "<name>-recaptcha"
            wrapper: Wrap the input in <div class="recaptcha-widget">
            extra_attributes: Additional attributes for the input
        """
        attributes = self.input_attributes(input_id or f"{name}-recaptcha")
        if extra_attributes:
            attributes.update(extra_attributes)

        if binding is not None:
            html = Markup(binding.render_hidden_input(name, "", attributes))
        else:
            html = render_hidden_input(name, "", attributes)

        if wrapper:
            return render_tag("div", html, {"class": "recaptcha-widget"})
        return html

    def script_src(self) -> str:
        """Challenge script URL with the site key as the render parameter."""
        separator = "&" if "?" in self.script_url else "?"
        return f"{self.script_url}{separator}{urlencode({'render': self.site_key})}"

    def controller_script(self) -> str:
        """Browser acquisition controller with this widget's settings filled in."""
        return (
            _controller_source()
            .replace("__SITE_KEY__", _js_literal(self.site_key))
            .replace("__TOKEN_TTL_MS__", str(int(self.token_ttl_s * 1000)))
            .replace("__FAILURE_MESSAGE__", _js_literal(self.failure_message))
            .replace("__BUSY_LABEL__", _js_literal(self.busy_label))
        )

    def render_assets(self, nonce: str | None = None) -> Markup:
        """
        Render the challenge script include and the controller script.

        Include once per page, in the head or before </body>.
        """
        script_attrs = {"nonce": nonce} if nonce else {}
        include = render_tag("script", "", {"src": self.script_src(), **script_attrs})
        inline = render_tag("script", self.controller_script(), script_attrs)
        return include + Markup("\n") + inline
