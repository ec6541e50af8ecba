"""Shared fixtures."""

import pytest
import respx

from recaptcha_verifier import RecaptchaConfig

VERIFY_URL = "http://localhost:8081/siteverify"


@pytest.fixture
def config():
    """Config pointing at a mocked verify endpoint."""
    return RecaptchaConfig(
        site_key="test-site-key",
        secret="test-secret",
        verify_url=VERIFY_URL,
    )


@pytest.fixture
def mock_service():
    """Create a respx mock for the verification service."""
    with respx.mock(assert_all_called=False) as mock:
        yield mock
