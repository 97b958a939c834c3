"""
Tests for intuneappbuilder.lifecycle module.

Tests upload-state polling including:
- The pure evaluate() decision table
- Waiting until the desired state with an injected clock
- Failing fast on failure states
- Timing out on states that never settle
"""

from __future__ import annotations

import pytest

from conftest import content_file
from intuneappbuilder.exceptions import UploadStateError, UploadTimeoutError
from intuneappbuilder.lifecycle import LifecycleWaiter, WaitOutcome, evaluate
from intuneappbuilder.models import ContentFileRef, UploadState

pytestmark = pytest.mark.unit

REF = ContentFileRef("app-1", "microsoft.graph.win32LobApp", "1", "file-1")


class SequenceFetcher:
    """Returns queued states, repeating the last one."""

    def __init__(self, *states: UploadState | str) -> None:
        self.states = list(states)
        self.calls = 0

    def __call__(self, ref: ContentFileRef):
        assert ref == REF
        index = min(self.calls, len(self.states) - 1)
        self.calls += 1
        return content_file(self.states[index])


class TestEvaluate:
    """Tests for the state decision function."""

    def test_exact_match_is_done(self):
        """Test that the desired state is DONE."""
        assert (
            evaluate(UploadState.COMMIT_FILE_SUCCESS, UploadState.COMMIT_FILE_SUCCESS)
            is WaitOutcome.DONE
        )

    @pytest.mark.parametrize(
        "state",
        [
            UploadState.AZURE_STORAGE_URI_REQUEST_FAILED,
            UploadState.AZURE_STORAGE_URI_REQUEST_TIMED_OUT,
            UploadState.AZURE_STORAGE_URI_RENEWAL_FAILED,
            UploadState.AZURE_STORAGE_URI_RENEWAL_TIMED_OUT,
            UploadState.COMMIT_FILE_FAILED,
            UploadState.COMMIT_FILE_TIMED_OUT,
        ],
    )
    def test_failure_states_fail(self, state):
        """Test that any failure state fails, even for another step."""
        assert evaluate(state, UploadState.COMMIT_FILE_SUCCESS) is WaitOutcome.FAILED

    @pytest.mark.parametrize(
        "state",
        [
            UploadState.COMMIT_FILE_PENDING,
            UploadState.AZURE_STORAGE_URI_REQUEST_SUCCESS,
            UploadState.UNKNOWN,
            UploadState.TRANSIENT_ERROR,
            UploadState.SUCCESS,
        ],
    )
    def test_other_states_pending(self, state):
        """Test that non-matching, non-failure states keep polling."""
        assert evaluate(state, UploadState.COMMIT_FILE_SUCCESS) is WaitOutcome.PENDING


class TestLifecycleWaiter:
    """Tests for the polling driver."""

    def test_returns_when_done(self, fake_clock):
        """Test that the waiter returns the matching snapshot."""
        fetch = SequenceFetcher(
            UploadState.COMMIT_FILE_PENDING,
            UploadState.COMMIT_FILE_PENDING,
            UploadState.COMMIT_FILE_SUCCESS,
        )
        waiter = LifecycleWaiter(fetch, clock=fake_clock, sleep=fake_clock.sleep)

        result = waiter.wait_for(REF, UploadState.COMMIT_FILE_SUCCESS)

        assert result.upload_state is UploadState.COMMIT_FILE_SUCCESS
        assert fetch.calls == 3
        assert fake_clock.sleeps == [2.0, 2.0]

    def test_immediate_success_does_not_sleep(self, fake_clock):
        """Test that no sleep happens when the first poll matches."""
        fetch = SequenceFetcher(UploadState.AZURE_STORAGE_URI_REQUEST_SUCCESS)
        waiter = LifecycleWaiter(fetch, clock=fake_clock, sleep=fake_clock.sleep)

        waiter.wait_for(REF, UploadState.AZURE_STORAGE_URI_REQUEST_SUCCESS)

        assert fake_clock.sleeps == []

    def test_failure_state_raises(self, fake_clock):
        """Test that a failure state raises UploadStateError immediately."""
        fetch = SequenceFetcher(
            UploadState.COMMIT_FILE_PENDING, UploadState.COMMIT_FILE_FAILED
        )
        waiter = LifecycleWaiter(fetch, clock=fake_clock, sleep=fake_clock.sleep)

        with pytest.raises(UploadStateError) as exc_info:
            waiter.wait_for(REF, UploadState.COMMIT_FILE_SUCCESS)

        assert exc_info.value.state == "commitFileFailed"
        assert exc_info.value.desired == "commitFileSuccess"
        assert fetch.calls == 2

    def test_timeout_raises(self, fake_clock):
        """Test that a state that never settles times out."""
        fetch = SequenceFetcher(UploadState.AZURE_STORAGE_URI_REQUEST_PENDING)
        waiter = LifecycleWaiter(
            fetch, poll_interval=5, timeout=30, clock=fake_clock, sleep=fake_clock.sleep
        )

        with pytest.raises(UploadTimeoutError) as exc_info:
            waiter.wait_for(REF, UploadState.AZURE_STORAGE_URI_REQUEST_SUCCESS)

        err = exc_info.value
        assert err.last_state == "azureStorageUriRequestPending"
        assert err.desired == "azureStorageUriRequestSuccess"
        assert err.elapsed > 30
        # t=0,5,...,30 are within the timeout; t=35 gives up
        assert fetch.calls == 8

    def test_unknown_state_keeps_polling(self, fake_clock):
        """Test that unrecognized states are treated as pending."""
        fetch = SequenceFetcher("someNewState", UploadState.COMMIT_FILE_SUCCESS)
        waiter = LifecycleWaiter(fetch, clock=fake_clock, sleep=fake_clock.sleep)

        result = waiter.wait_for(REF, UploadState.COMMIT_FILE_SUCCESS)

        assert result.upload_state is UploadState.COMMIT_FILE_SUCCESS
        assert fetch.calls == 2
