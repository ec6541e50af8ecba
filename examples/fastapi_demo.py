"""
FastAPI demo with reCAPTCHA v3 verification middleware.

Usage:
    # Install dependencies
    pip install -e ".[fastapi,asgi]"

    # Run the server
    uvicorn examples.fastapi_demo:app --port 8009 --reload

    # Or directly
    python examples/fastapi_demo.py

Test with curl:
    # Page with the widget
    curl http://localhost:8009/

    # Submitting without a token is rejected in require mode
    curl -X POST http://localhost:8009/contact -d name=Ann

Environment variables:
    RECAPTCHA_SITE_KEY - reCAPTCHA v3 site key (required)
    RECAPTCHA_SECRET - reCAPTCHA v3 secret key (required)
    RECAPTCHA_REQUIRE_VERIFIED - Set to "false" to only observe (default: require)
"""

import os

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse

from recaptcha_verifier import RecaptchaASGIMiddleware, RecaptchaConfig, RecaptchaWidget

# Configuration from environment
CONFIG = RecaptchaConfig.from_env()
REQUIRE_VERIFIED = os.getenv("RECAPTCHA_REQUIRE_VERIFIED", "true").lower() == "true"

app = FastAPI(
    title="reCAPTCHA Demo API",
    description="Contact form gated by reCAPTCHA v3",
    version="0.1.0",
)

app.add_middleware(
    RecaptchaASGIMiddleware,
    config=CONFIG,
    action="contact_form",
    require_verified=REQUIRE_VERIFIED,
)

widget = RecaptchaWidget(CONFIG, action="contact_form")


@app.get("/", response_class=HTMLResponse)
async def form():
    """Contact form with the hidden token field and controller script."""
    return f"""<!doctype html>
<html>
<head>{widget.render_assets()}</head>
<body>
  <form method="post" action="/contact">
    <input name="name">
    {widget.render()}
    <button type="submit">Send</button>
  </form>
</body>
</html>"""


@app.post("/contact")
async def contact(request: Request):
    """
    Accepts the submission.

    In require mode the middleware answers 403 before this handler runs
    unless the token verified.
    """
    state = request.state.recaptcha
    result = state.result
    return {
        "verified": result.decision,
        "score": result.score,
        "action": result.action,
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8009)
