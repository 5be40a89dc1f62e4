"""Detached continuations that outlive the request that started them."""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)

COMPLETED = "completed"
STOPPED = "stopped"
FAILED = "failed"


@dataclass(frozen=True)
class ContinuationOutcome:
    name: str
    status: str
    detail: str = ""


class BackgroundTasks:
    """Spawn-and-forget runner; every continuation reports one outcome.

    Threads are daemonic and never joined: shutdown may abandon them mid-flight.
    Outcomes go to the log and to a bounded in-process record.
    """

    def __init__(self, inline: bool = False, history: int = 50) -> None:
        self.inline = inline
        self.outcomes: deque[ContinuationOutcome] = deque(maxlen=max(1, history))

    def spawn(
        self, name: str, continuation: Callable[[], ContinuationOutcome]
    ) -> threading.Thread | None:
        def _run() -> None:
            try:
                outcome = continuation()
            except Exception as exc:
                logger.exception("Background task %s failed", name)
                outcome = ContinuationOutcome(name=name, status=FAILED, detail=str(exc))
            self.report(outcome)

        if self.inline:
            _run()
            return None
        thread = threading.Thread(target=_run, name=f"matterbuild-{name}", daemon=True)
        thread.start()
        return thread

    def report(self, outcome: ContinuationOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.status == FAILED:
            logger.error("Background task %s failed: %s", outcome.name, outcome.detail)
        else:
            logger.info(
                "Background task %s %s %s", outcome.name, outcome.status, outcome.detail
            )

    def drain(self) -> list[ContinuationOutcome]:
        items: list[ContinuationOutcome] = []
        while self.outcomes:
            items.append(self.outcomes.popleft())
        return items
