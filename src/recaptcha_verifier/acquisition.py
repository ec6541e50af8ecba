"""
Client-side token acquisition.

The controller intercepts form submissions, fetches a fresh token for the
form's action, writes it into the hidden field and re-submits the form once.
It drives any form surface implementing FormSurface (a headless browser
page, a UI toolkit form, a test double) and reaches the challenge script
through ChallengeExecutor. The browser rendition of the same state machine
ships as static/recaptcha-form.js and is emitted by RecaptchaWidget.
"""

from __future__ import annotations

import asyncio
import enum
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Mapping, Protocol

import structlog

from .config import RecaptchaConfig, resolve
from .errors import AcquisitionFailed
from .markup import (
    ACTION_ATTRIBUTE,
    DEFAULT_ACTION,
    DEFAULT_FAILURE_MESSAGE,
    DEFAULT_TOKEN_TTL_S,
    is_marker,
    sanitize_action,
)

log = structlog.get_logger(__name__)

DEFAULT_ACQUIRE_TIMEOUT_S = 10.0


class ChallengeExecutor(Protocol):
    """The challenge script's execute capability."""

    async def execute(self, site_key: str, action: str) -> str: ...


class FormSurface(Protocol):
    """What the controller needs from a form."""

    def token_field(self) -> Mapping[str, str] | None:
        """Attributes of the hidden token input, or None if the form has none."""
        ...

    def set_token(self, token: str) -> None: ...

    def set_busy(self, busy: bool) -> None:
        """Disable the submit control and show progress, or restore it."""
        ...

    def resubmit(self) -> None:
        """Re-run the form's own submission path (full navigation or partial update)."""
        ...

    def notify_failure(self, message: str) -> None: ...


class FormContainer(Protocol):
    """A document or inserted fragment that may hold forms."""

    def iter_forms(self) -> Iterable[FormSurface]: ...


class SubmitOutcome(str, enum.Enum):
    """What the caller should do with the submit attempt."""

    PASS_THROUGH = "pass_through"  # let the native submit proceed
    INTERCEPTED = "intercepted"  # cancel it, acquisition started
    BLOCKED = "blocked"  # cancel it, acquisition already in flight


@dataclass
class AcquisitionState:
    """
    Per-form acquisition state.

    Attributes:
        handled: Listeners are attached
        processing: An acquisition is in flight
        token_fresh: A token was just injected; the next submit passes through
        fresh_at: Clock reading when the token was injected
        action: Sanitized action name read from the hidden field
        task: The in-flight acquisition task, if any
    """
    handled: bool = False
    processing: bool = False
    token_fresh: bool = False
    fresh_at: float | None = None
    action: str = DEFAULT_ACTION
    task: asyncio.Task | None = None


class ContentObserver:
    """
    Callback list notified when new content is inserted into the page.

    Example:
        >>> observer = ContentObserver()
        >>> controller.init(document, observer)
        >>> observer.notify(fragment)  # binds forms inside fragment
    """

    def __init__(self) -> None:
        self._callbacks: list[Callable[[FormContainer], None]] = []

    def subscribe(self, callback: Callable[[FormContainer], None]) -> Callable[[], None]:
        """Register a callback. Returns a function that removes it."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def notify(self, container: FormContainer) -> None:
        for callback in list(self._callbacks):
            callback(container)


class AcquisitionController:
    """
    Acquires a token per submission and hands the form back for submitting.

    Per form: Idle -> Processing -> (Fresh | Failed) -> Idle. At most one
    acquisition is in flight per form; forms are independent of each other.

    Args:
        executor: Challenge script access, or None if it failed to load
        config: Shared RecaptchaConfig
        site_key: Site key override
        token_ttl_s: Seconds an injected token stays usable. Default: 110
        acquire_timeout_s: Bound on a single execute call. Default: 10
        failure_message: Shown through FormSurface.notify_failure
        clock: Monotonic clock, injectable for tests

    Raises:
        MissingCredential: If no site key is available after resolution
    """

    def __init__(
        self,
        executor: ChallengeExecutor | None,
        config: RecaptchaConfig | None = None,
        *,
        site_key: str | None = None,
        token_ttl_s: float = DEFAULT_TOKEN_TTL_S,
        acquire_timeout_s: float = DEFAULT_ACQUIRE_TIMEOUT_S,
        failure_message: str = DEFAULT_FAILURE_MESSAGE,
        clock: Callable[[], float] = time.monotonic,
    ):
        settings = resolve(
            config,
            {"site_key": site_key},
            require=("site_key",),
            owner="AcquisitionController",
        )
        self.site_key = settings.site_key
        self.executor = executor
        self.token_ttl_s = token_ttl_s
        self.acquire_timeout_s = acquire_timeout_s
        self.failure_message = failure_message
        self._clock = clock
        self._states: dict[int, tuple[FormSurface, AcquisitionState]] = {}
        self._initialized = False
        self._unsubscribe: Callable[[], None] | None = None

    def state(self, form: FormSurface) -> AcquisitionState | None:
        entry = self._states.get(id(form))
        return entry[1] if entry is not None else None

    async def get_token(self, action: str | None) -> str:
        """
        Request a token for an action from the challenge script.

        Raises:
            AcquisitionFailed: Script missing, execute rejected, timed out or empty
        """
        action = sanitize_action(action)
        if self.executor is None:
            raise AcquisitionFailed(action, "challenge script not loaded")

        try:
            token = await asyncio.wait_for(
                self.executor.execute(self.site_key, action),
                timeout=self.acquire_timeout_s,
            )
        except asyncio.TimeoutError as e:
            raise AcquisitionFailed(
                action, f"timed out after {self.acquire_timeout_s}s"
            ) from e
        except AcquisitionFailed:
            raise
        except Exception as e:
            raise AcquisitionFailed(action, str(e) or type(e).__name__) from e

        if not token:
            raise AcquisitionFailed(action, "empty token")
        return token

    def handle_form(self, form: FormSurface) -> bool:
        """
        Bind a form. Returns False if already bound or unmarked.
        """
        existing = self.state(form)
        if existing is not None and existing.handled:
            return False

        attributes = form.token_field()
        if not is_marker(attributes):
            return False

        self._states[id(form)] = (
            form,
            AcquisitionState(
                handled=True,
                action=sanitize_action(attributes.get(ACTION_ATTRIBUTE)),
            ),
        )
        return True

    def scan(self, container: FormContainer) -> int:
        """Bind every marked, unbound form in container. Returns how many were bound."""
        return sum(1 for form in container.iter_forms() if self.handle_form(form))

    def init(
        self,
        document: FormContainer,
        observer: ContentObserver | None = None,
    ) -> None:
        """Bind existing forms and watch for inserted ones. Runs once."""
        if self._initialized:
            return
        self._initialized = True
        self.scan(document)
        if observer is not None:
            self._unsubscribe = observer.subscribe(self.scan)

    def close(self) -> None:
        """Stop watching for inserted content."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def on_submit(self, form: FormSurface) -> SubmitOutcome:
        """
        Handle a submit attempt. Must be called from a running event loop.

        Returns:
            PASS_THROUGH to let the submission proceed, INTERCEPTED or BLOCKED
            to cancel it.
        """
        state = self.state(form)
        if state is None:
            return SubmitOutcome.PASS_THROUGH

        if state.processing:
            return SubmitOutcome.BLOCKED

        if state.token_fresh:
            state.token_fresh = False
            if self._clock() - (state.fresh_at or 0.0) <= self.token_ttl_s:
                return SubmitOutcome.PASS_THROUGH
            log.info("recaptcha_token_stale", action=state.action)

        state.processing = True
        form.set_busy(True)
        state.task = asyncio.get_running_loop().create_task(self._acquire(form, state))
        return SubmitOutcome.INTERCEPTED

    async def wait(self, form: FormSurface) -> str | None:
        """Wait for the form's in-flight acquisition. Returns the token, if any."""
        state = self.state(form)
        if state is None or state.task is None:
            return None
        return await state.task

    def unbind(self, form: FormSurface) -> bool:
        """
        Forget a form removed from the page. Cancels its in-flight acquisition.

        Returns False if the form was not bound.
        """
        entry = self._states.pop(id(form), None)
        if entry is None:
            return False
        task = entry[1].task
        if task is not None and not task.done():
            task.cancel()
        return True

    async def _acquire(self, form: FormSurface, state: AcquisitionState) -> str | None:
        try:
            token = await self.get_token(state.action)
            form.set_token(token)
            form.set_busy(False)
        except Exception as e:
            self._fail(form, state, e)
            return None
        finally:
            state.processing = False

        state.token_fresh = True
        state.fresh_at = self._clock()
        try:
            form.resubmit()
        except Exception as e:
            state.token_fresh = False
            self._fail(form, state, e)
            return None
        return token

    def _fail(self, form: FormSurface, state: AcquisitionState, error: Exception) -> None:
        log.warning(
            "recaptcha_acquisition_failed",
            action=state.action,
            error=str(error) or type(error).__name__,
            error_type=type(error).__name__,
        )
        for restore in (
            lambda: form.set_busy(False),
            lambda: form.notify_failure(self.failure_message),
        ):
            try:
                restore()
            except Exception:
                log.exception("recaptcha_form_restore_failed", action=state.action)
