"""
reCAPTCHA middleware for ASGI and WSGI frameworks.

Re-exports middleware classes for convenient imports:
    from recaptcha_verifier.middleware import RecaptchaASGIMiddleware
    from recaptcha_verifier.middleware import RecaptchaWSGIMiddleware
"""

from .wsgi import RecaptchaWSGIMiddleware

__all__: list[str] = ["RecaptchaWSGIMiddleware"]

# ASGI middleware (FastAPI, Starlette)
try:
    from .asgi import RecaptchaASGIMiddleware
    __all__.append("RecaptchaASGIMiddleware")
except ImportError:
    pass
