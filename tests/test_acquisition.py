"""Tests for AcquisitionController."""

import asyncio

import pytest
from structlog.testing import capture_logs

from recaptcha_verifier import (
    AcquisitionController,
    AcquisitionFailed,
    ContentObserver,
    MissingCredential,
    SubmitOutcome,
)


class FakeExecutor:
    """Challenge executor returning canned tokens."""

    def __init__(self, token="token-1", error=None, gate=None):
        self.token = token
        self.error = error
        self.gate = gate
        self.calls = []

    async def execute(self, site_key, action):
        self.calls.append((site_key, action))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.token


class FakeForm:
    """Form surface recording what the controller does to it."""

    def __init__(self, action="contact_form", marked=True):
        self.attributes = (
            {"data-recaptcha": "true", "data-sitekey": "test-site-key", "data-action": action}
            if marked
            else {"name": "plain"}
        )
        self.token = ""
        self.busy_history = []
        self.resubmits = 0
        self.failures = []

    def token_field(self):
        return self.attributes

    def set_token(self, token):
        self.token = token

    def set_busy(self, busy):
        self.busy_history.append(busy)

    def resubmit(self):
        self.resubmits += 1

    def notify_failure(self, message):
        self.failures.append(message)


class BrokenForm(FakeForm):
    """Form whose hidden input went away before the token arrived."""

    def set_token(self, token):
        raise RuntimeError("detached input")


class UnsubmittableForm(FakeForm):
    """Form whose submission path raises."""

    def resubmit(self):
        raise RuntimeError("navigation blocked")


class FakeContainer:
    def __init__(self, *forms):
        self.forms = list(forms)

    def iter_forms(self):
        return iter(self.forms)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


async def wait_for_calls(executor, count=1):
    """Yield to the loop until the executor has seen count calls."""
    for _ in range(100):
        if len(executor.calls) >= count:
            return
        await asyncio.sleep(0)


@pytest.fixture
def executor():
    return FakeExecutor()


@pytest.fixture
def controller(config, executor):
    return AcquisitionController(executor, config)


class TestBinding:
    """Tests for handle_form, scan and init."""

    def test_binds_marked_form_once(self, controller):
        """A form is bound at most once."""
        form = FakeForm()
        assert controller.handle_form(form) is True
        assert controller.handle_form(form) is False
        assert controller.state(form).handled is True

    def test_ignores_unmarked_form(self, controller):
        """Forms without the marker field are left alone."""
        form = FakeForm(marked=False)
        assert controller.handle_form(form) is False
        assert controller.state(form) is None

    def test_action_read_and_sanitized(self, controller):
        form = FakeForm(action="contact form!")
        controller.handle_form(form)
        assert controller.state(form).action == "contact_form_"

    def test_init_binds_existing_forms(self, controller):
        marked, plain = FakeForm(), FakeForm(marked=False)
        controller.init(FakeContainer(marked, plain))
        assert controller.state(marked) is not None
        assert controller.state(plain) is None

    def test_init_is_idempotent(self, controller):
        """A second init neither rescans nor resubscribes."""
        observer = ContentObserver()
        controller.init(FakeContainer(), observer)
        late = FakeForm()
        controller.init(FakeContainer(late), observer)
        assert controller.state(late) is None
        assert len(observer._callbacks) == 1

    def test_inserted_content_is_scanned(self, controller):
        """Forms inserted after init are bound through the observer."""
        observer = ContentObserver()
        first = FakeForm()
        controller.init(FakeContainer(first), observer)

        inserted = FakeForm(action="signup")
        observer.notify(FakeContainer(first, inserted))

        assert controller.state(inserted).action == "signup"
        assert controller.handle_form(first) is False

    def test_close_unsubscribes(self, controller):
        observer = ContentObserver()
        controller.init(FakeContainer(), observer)
        controller.close()

        form = FakeForm()
        observer.notify(FakeContainer(form))
        assert controller.state(form) is None

    def test_missing_site_key(self, executor):
        with pytest.raises(MissingCredential, match="AcquisitionController.site_key"):
            AcquisitionController(executor)


class TestGetToken:
    """Tests for get_token."""

    @pytest.mark.asyncio
    async def test_action_sanitized_before_execute(self, controller, executor):
        """The execute call receives the sanitized action name."""
        token = await controller.get_token("contact form!")
        assert token == "token-1"
        assert executor.calls == [("test-site-key", "contact_form_")]

    @pytest.mark.asyncio
    async def test_script_not_loaded(self, config):
        controller = AcquisitionController(None, config)
        with pytest.raises(AcquisitionFailed, match="not loaded"):
            await controller.get_token("login")

    @pytest.mark.asyncio
    async def test_execute_rejection(self, config):
        controller = AcquisitionController(FakeExecutor(error=RuntimeError("blocked")), config)
        with pytest.raises(AcquisitionFailed, match="blocked") as exc_info:
            await controller.get_token("login")
        assert exc_info.value.action == "login"

    @pytest.mark.asyncio
    async def test_timeout(self, config):
        controller = AcquisitionController(
            FakeExecutor(gate=asyncio.Event()), config, acquire_timeout_s=0.01
        )
        with pytest.raises(AcquisitionFailed, match="timed out"):
            await controller.get_token("login")

    @pytest.mark.asyncio
    async def test_empty_token(self, config):
        controller = AcquisitionController(FakeExecutor(token=""), config)
        with pytest.raises(AcquisitionFailed, match="empty token"):
            await controller.get_token("login")


class TestSubmit:
    """Tests for the per-form submit state machine."""

    @pytest.mark.asyncio
    async def test_unbound_form_passes_through(self, controller, executor):
        assert controller.on_submit(FakeForm()) is SubmitOutcome.PASS_THROUGH
        assert executor.calls == []

    @pytest.mark.asyncio
    async def test_successful_cycle(self, controller, executor):
        """Intercept, acquire, inject, resubmit once, then pass through."""
        form = FakeForm()
        controller.handle_form(form)

        assert controller.on_submit(form) is SubmitOutcome.INTERCEPTED
        assert controller.state(form).processing is True

        assert await controller.wait(form) == "token-1"

        state = controller.state(form)
        assert form.token == "token-1"
        assert form.busy_history == [True, False]
        assert form.resubmits == 1
        assert state.processing is False
        assert state.token_fresh is True

        # The resubmission itself passes and consumes the fresh flag
        assert controller.on_submit(form) is SubmitOutcome.PASS_THROUGH
        assert state.token_fresh is False
        assert executor.calls == [("test-site-key", "contact_form")]

    @pytest.mark.asyncio
    async def test_rapid_submits_single_acquisition(self, config):
        """A second submit while processing is a no-op."""
        gate = asyncio.Event()
        executor = FakeExecutor(gate=gate)
        controller = AcquisitionController(executor, config)
        form = FakeForm()
        controller.handle_form(form)

        first = controller.on_submit(form)
        second = controller.on_submit(form)
        await wait_for_calls(executor)

        assert first is SubmitOutcome.INTERCEPTED
        assert second is SubmitOutcome.BLOCKED
        assert controller.on_submit(form) is SubmitOutcome.BLOCKED
        assert len(executor.calls) == 1

        gate.set()
        await controller.wait(form)
        assert form.resubmits == 1
        assert form.busy_history == [True, False]

    @pytest.mark.asyncio
    async def test_failure_restores_form(self, config):
        """A failed acquisition re-enables the form and tells the user."""
        controller = AcquisitionController(
            FakeExecutor(error=RuntimeError("network")), config,
            failure_message="Try again.",
        )
        form = FakeForm()
        controller.handle_form(form)

        with capture_logs() as logs:
            controller.on_submit(form)
            assert await controller.wait(form) is None

        state = controller.state(form)
        assert form.failures == ["Try again."]
        assert form.busy_history == [True, False]
        assert form.resubmits == 0
        assert form.token == ""
        assert state.processing is False
        assert state.token_fresh is False
        assert logs[0]["event"] == "recaptcha_acquisition_failed"

    @pytest.mark.asyncio
    async def test_no_automatic_retry(self, config):
        """After a failure the next user submit starts a new cycle."""
        executor = FakeExecutor(error=RuntimeError("network"))
        controller = AcquisitionController(executor, config)
        form = FakeForm()
        controller.handle_form(form)

        controller.on_submit(form)
        await controller.wait(form)
        assert len(executor.calls) == 1

        executor.error = None
        assert controller.on_submit(form) is SubmitOutcome.INTERCEPTED
        assert await controller.wait(form) == "token-1"
        assert len(executor.calls) == 2

    @pytest.mark.asyncio
    async def test_stale_token_reacquired(self, config, executor):
        """A fresh flag older than the TTL does not pass through."""
        clock = FakeClock()
        controller = AcquisitionController(executor, config, token_ttl_s=100, clock=clock)
        form = FakeForm()
        controller.handle_form(form)

        controller.on_submit(form)
        await controller.wait(form)

        clock.now += 101
        assert controller.on_submit(form) is SubmitOutcome.INTERCEPTED
        await controller.wait(form)
        assert len(executor.calls) == 2

    @pytest.mark.asyncio
    async def test_forms_are_independent(self, config):
        """Processing one form does not block another."""
        gate = asyncio.Event()
        executor = FakeExecutor(gate=gate)
        controller = AcquisitionController(executor, config)
        first, second = FakeForm(action="a"), FakeForm(action="b")
        controller.init(FakeContainer(first, second))

        assert controller.on_submit(first) is SubmitOutcome.INTERCEPTED
        assert controller.on_submit(second) is SubmitOutcome.INTERCEPTED

        gate.set()
        await asyncio.gather(controller.wait(first), controller.wait(second))
        assert sorted(action for _, action in executor.calls) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_form_error_does_not_leave_form_stuck(self, controller, executor):
        """A form that fails while taking the token is restored and can retry."""
        form = BrokenForm()
        controller.handle_form(form)

        with capture_logs() as logs:
            assert controller.on_submit(form) is SubmitOutcome.INTERCEPTED
            assert await controller.wait(form) is None

        state = controller.state(form)
        assert state.processing is False
        assert state.token_fresh is False
        assert form.busy_history == [True, False]
        assert form.failures == [controller.failure_message]
        assert logs[0]["event"] == "recaptcha_acquisition_failed"
        assert logs[0]["error_type"] == "RuntimeError"

        assert controller.on_submit(form) is SubmitOutcome.INTERCEPTED
        await controller.wait(form)
        assert len(executor.calls) == 2

    @pytest.mark.asyncio
    async def test_resubmit_error_reported(self, controller):
        """A failed resubmission is reported and the token is not treated as fresh."""
        form = UnsubmittableForm()
        controller.handle_form(form)

        controller.on_submit(form)
        assert await controller.wait(form) is None

        state = controller.state(form)
        assert form.token == "token-1"
        assert state.processing is False
        assert state.token_fresh is False
        assert form.failures == [controller.failure_message]


class TestUnbind:
    """Tests for releasing forms removed from the page."""

    def test_unbind_releases_state(self, controller):
        form = FakeForm()
        controller.handle_form(form)

        assert controller.unbind(form) is True
        assert controller.state(form) is None
        assert controller.unbind(form) is False
        assert controller.handle_form(form) is True

    @pytest.mark.asyncio
    async def test_unbind_cancels_acquisition(self, config):
        """An in-flight acquisition for a removed form is cancelled."""
        executor = FakeExecutor(gate=asyncio.Event())
        controller = AcquisitionController(executor, config)
        form = FakeForm()
        controller.handle_form(form)

        controller.on_submit(form)
        await wait_for_calls(executor)
        task = controller.state(form).task

        assert controller.unbind(form) is True
        await asyncio.gather(task, return_exceptions=True)

        assert task.cancelled()
        assert form.resubmits == 0
        assert form.token == ""
