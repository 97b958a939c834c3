# Copyright 2025 Roger Cibrian
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Content-file upload state polling.

Intune moves a content file through request, renewal and commit states
asynchronously. Each step of the publish flow waits for one desired state:

    azureStorageUriRequestPending -> azureStorageUriRequestSuccess
    azureStorageUriRenewalPending -> azureStorageUriRenewalSuccess
    commitFilePending             -> commitFileSuccess

The decision for one observed state is the pure function evaluate(). The
LifecycleWaiter drives it: fetch, evaluate, then either return, raise, or
sleep and poll again. Clock and sleep are injected so waits can be tested
without real time passing.

Example:
    ```python
    from intuneappbuilder.lifecycle import LifecycleWaiter
    from intuneappbuilder.models import UploadState

    waiter = LifecycleWaiter(graph.get_content_file)
    content_file = waiter.wait_for(ref, UploadState.COMMIT_FILE_SUCCESS)
    ```
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
import time

from intuneappbuilder.exceptions import UploadStateError, UploadTimeoutError
from intuneappbuilder.models import (
    FAILURE_STATES,
    ContentFile,
    ContentFileRef,
    UploadState,
)

DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_TIMEOUT = 600.0


class WaitOutcome(Enum):
    DONE = "done"
    FAILED = "failed"
    PENDING = "pending"


def evaluate(state: UploadState, desired: UploadState) -> WaitOutcome:
    """Classify an observed state against the desired one.

    Only an exact match is DONE; any failure or timed-out state is FAILED,
    including failures of a different step than the one being waited for.
    """
    if state == desired:
        return WaitOutcome.DONE
    if state in FAILURE_STATES:
        return WaitOutcome.FAILED
    return WaitOutcome.PENDING


class LifecycleWaiter:
    """Polls a content file until it reaches a desired upload state.

    Args:
        fetch: Callable returning the current ContentFile for a reference.
        poll_interval: Seconds between polls.
        timeout: Seconds after which waiting is abandoned.
        clock: Monotonic clock returning seconds.
        sleep: Sleep function taking seconds.
    """

    def __init__(
        self,
        fetch: Callable[[ContentFileRef], ContentFile],
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        timeout: float = DEFAULT_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._fetch = fetch
        self.poll_interval = poll_interval
        self.timeout = timeout
        self._clock = clock
        self._sleep = sleep

    def wait_for(self, ref: ContentFileRef, desired: UploadState) -> ContentFile:
        """Poll until the content file reports the desired state.

        Returns:
            The content file snapshot that matched.

        Raises:
            UploadStateError: As soon as a failure state is observed.
            UploadTimeoutError: When the timeout elapses without a match.
        """
        from intuneappbuilder.logging import get_global_logger

        logger = get_global_logger()
        logger.verbose("STATE", f"Waiting for uploadState {desired.value}")
        started = self._clock()
        polls = 0

        while True:
            content_file = self._fetch(ref)
            polls += 1
            state = content_file.upload_state
            outcome = evaluate(state, desired)
            elapsed = self._clock() - started

            if outcome is WaitOutcome.DONE:
                logger.verbose(
                    "STATE",
                    f"Reached {desired.value} after {elapsed:.1f}s ({polls} poll(s))",
                )
                return content_file
            if outcome is WaitOutcome.FAILED:
                raise UploadStateError(state.value, desired.value)
            if elapsed > self.timeout:
                raise UploadTimeoutError(state.value, desired.value, elapsed)

            logger.debug("STATE", f"uploadState is {state.value}, polling again")
            self._sleep(self.poll_interval)
