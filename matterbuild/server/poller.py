"""Turn an asynchronous remote build into a synchronous result."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from matterbuild.server.errors import (
    BuildUnreachable,
    JobNotFound,
    PollCancelled,
    TransientPollError,
)
from matterbuild.server.job_runner import (
    BuildPoll,
    BuildState,
    BuildStatus,
    InvocationHandle,
    JobRunner,
)

logger = logging.getLogger(__name__)

REACHABILITY_ATTEMPTS = 5
REACHABILITY_BACKOFF_S = 1.0
START_GRACE_S = 5.0
COMPLETION_INTERVAL_S = 1.0

SUCCESS = BuildStatus.SUCCESS.value


class BuildPoller:
    """Invoke a job and block until the specific build it created finishes.

    The reachability probe is bounded (``attempt * 1s`` backoff, five attempts);
    the completion wait is not. Setting ``cancel_event`` stops the wait at the
    next pause with :class:`PollCancelled`.
    """

    def __init__(
        self,
        runner: JobRunner,
        sleep: Callable[[float], None] | None = None,
        cancel_event: threading.Event | None = None,
        max_attempts: int = REACHABILITY_ATTEMPTS,
    ) -> None:
        self.runner = runner
        self.cancel_event = cancel_event
        self.max_attempts = max(1, int(max_attempts))
        if sleep is not None:
            self.sleep = sleep
        elif cancel_event is not None:
            self.sleep = cancel_event.wait
        else:
            self.sleep = time.sleep

    def run_and_wait(self, job: str, parameters: dict[str, str] | None = None) -> str:
        expected = self.runner.next_build_number(job)
        handle = self.runner.invoke(job, parameters, build_number=expected)
        logger.info("Waiting on %s #%s", job, handle.build_number)

        self._wait_until_reachable(handle)
        self._pause(START_GRACE_S)
        poll = self._poll_quietly(handle)
        while poll is None or poll.state != BuildState.FINISHED:
            self._pause(COMPLETION_INTERVAL_S)
            poll = self._poll_quietly(handle)

        logger.info("Build %s #%s finished: %s", job, handle.build_number, poll.result)
        return poll.result

    def _wait_until_reachable(self, handle: InvocationHandle) -> BuildPoll:
        last_error: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                poll = self.runner.poll_build(handle)
            except (JobNotFound, TransientPollError) as exc:
                last_error = exc
            else:
                if poll.state != BuildState.UNSTARTED:
                    return poll
                last_error = None
            if attempt >= self.max_attempts:
                break
            self._pause(attempt * REACHABILITY_BACKOFF_S)

        raise BuildUnreachable(
            f"Unable to get build for job {handle.job}: {handle.build_number}", last_error
        )

    def _poll_quietly(self, handle: InvocationHandle) -> BuildPoll | None:
        try:
            return self.runner.poll_build(handle)
        except (JobNotFound, TransientPollError) as exc:
            logger.warning("Poll of %s #%s failed: %s", handle.job, handle.build_number, exc)
            return None

    def _pause(self, seconds: float) -> None:
        if self._cancelled():
            raise PollCancelled("Build wait cancelled")
        self.sleep(seconds)
        if self._cancelled():
            raise PollCancelled("Build wait cancelled")

    def _cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()
