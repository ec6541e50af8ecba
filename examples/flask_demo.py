"""
Flask demo: contact form protected by reCAPTCHA v3.

Usage:
    # Install dependencies
    pip install -e ".[flask]"

    # Run the server
    flask --app examples.flask_demo run --port 8010

    # Or directly
    python examples/flask_demo.py

Environment variables:
    RECAPTCHA_SITE_KEY - reCAPTCHA v3 site key (required)
    RECAPTCHA_SECRET - reCAPTCHA v3 secret key (required)
    RECAPTCHA_SCORE_THRESHOLD - Minimum accepted score (default: 0.5)
    RECAPTCHA_VERIFY_HOSTNAME - Set to "true" to enforce the hostname check
"""

from flask import Flask, render_template_string, request

from recaptcha_verifier import RecaptchaConfig, RecaptchaValidator, RecaptchaWidget
from recaptcha_verifier.markup import render_hidden_input
from recaptcha_verifier.extract import host_without_port

# Fails here, at startup, if the keys are missing
CONFIG = RecaptchaConfig.from_env()

widget = RecaptchaWidget(CONFIG, action="contact_form")
validator = RecaptchaValidator(CONFIG, action="contact_form")

app = Flask(__name__)

PAGE = """
<!doctype html>
<html>
<head>{{ recaptcha_assets }}</head>
<body>
  {% if sent %}<p>Thanks, {{ name }}!</p>{% endif %}
  <form method="post">
    <input name="name" value="{{ name or '' }}">
    {% for error in errors.get("recaptcha", []) %}<p class="error">{{ error }}</p>{% endfor %}
    {{ recaptcha }}
    <button type="submit">Send</button>
  </form>
</body>
</html>
"""


class FlaskFormBinding:
    """Field binding over request.form."""

    def __init__(self):
        self.errors: dict[str, list[str]] = {}

    def get_field_value(self, model, attribute):
        return model.get(attribute)

    def set_field_error(self, model, attribute, message):
        self.errors.setdefault(attribute, []).append(message)

    def render_hidden_input(self, name, value, attributes):
        return render_hidden_input(name, value, attributes)


@app.route("/", methods=["GET", "POST"])
def contact():
    """Contact form. POST is accepted only after verification passes."""
    binding = FlaskFormBinding()
    sent = False

    if request.method == "POST":
        validator.validate_attribute(
            binding,
            request.form,
            "recaptcha",
            remote_ip=request.remote_addr,
            hostname=host_without_port(request.host),
        )
        sent = not binding.errors

    return render_template_string(
        PAGE,
        sent=sent,
        name=request.form.get("name"),
        errors=binding.errors,
        recaptcha=widget.render("recaptcha", binding=binding),
        recaptcha_assets=widget.render_assets(),
    )


@app.route("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok"}


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=8010, debug=True)
