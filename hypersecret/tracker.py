"""
Execution tracker.

Maps an opaque execution handle to the client-observable states
``submitted -> active -> {completed | failed}``. The tracker only ever sees
the handle, provider job status and the proof artifact; it never sees the
intent.
"""
import logging
import threading
from typing import Callable, Dict, Optional

import requests

from ._rate_limited_log import rate_limited_log
from .artifacts import load_proof
from .exceptions import HyperSecretError, truncate_message
from .jobs.exceptions import JobProviderError
from .jobs.transport import JobProvider, JobStatus
from .models import JobState, PipelineStep, TrackedState, TrackedStatus

logger = logging.getLogger(__name__)

WAITING_DETAIL = "Waiting for task..."
DEFAULT_POLL_INTERVAL = 5.0

_STATE_ORDER = [TrackedState.SUBMITTED, TrackedState.ACTIVE, TrackedState.COMPLETED, TrackedState.FAILED]


class ExecutionTracker:
    """
    Polling state machine for one execution handle.

    Transient provider errors never change the state. Once a terminal status
    is reached, ``poll`` returns it without contacting the provider again.
    """

    def __init__(self, provider: JobProvider, handle: str):
        self.provider = provider
        self.handle = handle
        self._status = TrackedStatus(state=TrackedState.SUBMITTED, raw_detail="Submitted")
        self._current_step: Optional[PipelineStep] = None

    @property
    def status(self) -> TrackedStatus:
        """Last known status"""
        return self._status

    def poll(self) -> TrackedStatus:
        """
        Query the provider once and return the derived status.

        Returns:
            The new status; on a transient error, a status with the last known
            state and a neutral waiting detail
        """
        if self._status.is_terminal:
            return self._status

        try:
            job = self.provider.status(self.handle)
        except (JobProviderError, requests.RequestException, OSError) as e:
            rate_limited_log(
                f"Status poll for {self.handle} failed: {e}",
                level="warning",
                interval=60,
                logger_instance=logger
            )
            return self._status.model_copy(update={"raw_detail": WAITING_DETAIL})

        if job.current_step is not None:
            self._current_step = job.current_step
        self._status = self._derive(job)
        logger.debug("Execution %s: %s (%s)", self.handle, self._status.state.value, self._status.raw_detail)
        return self._status

    def _derive(self, job: JobStatus) -> TrackedStatus:
        if job.state == JobState.COMPLETED:
            return TrackedStatus(
                state=TrackedState.COMPLETED,
                raw_detail=job.detail or "Completed",
                proof_excerpt=self._fetch_excerpt(),
            )

        if job.state == JobState.FAILED:
            return TrackedStatus(
                state=TrackedState.FAILED,
                raw_detail=job.detail or "Failed",
                error=truncate_message(job.error or "Execution failed"),
                failed_step=job.failed_step.value if job.failed_step else None,
            )

        if job.state in (JobState.ACTIVE, JobState.REVEALING):
            state = TrackedState.ACTIVE
        else:
            state = TrackedState.SUBMITTED
        # Never move backwards, e.g. active -> submitted on a lagging status
        if _STATE_ORDER.index(state) < _STATE_ORDER.index(self._status.state):
            state = self._status.state
        return TrackedStatus(state=state, raw_detail=job.detail or job.state.name.lower())

    def _fetch_excerpt(self) -> Optional[Dict]:
        # The job is complete even if its result cannot be read
        try:
            return load_proof(self.provider.fetch_result(self.handle)).excerpt()
        except (HyperSecretError, JobProviderError, requests.RequestException, OSError) as e:
            logger.warning("Could not fetch result for %s: %s", self.handle, truncate_message(e))
            return None

    def step_statuses(self) -> Dict[PipelineStep, str]:
        """
        Per-step display state: "completed", "active", "pending" or "failed".
        """
        state = self._status.state
        if state == TrackedState.COMPLETED:
            return {step: "completed" for step in PipelineStep}

        if state == TrackedState.FAILED and self._status.failed_step:
            failed = PipelineStep(self._status.failed_step)
            result = {}
            for step in PipelineStep:
                if step < failed:
                    result[step] = "completed"
                elif step == failed:
                    result[step] = "failed"
                else:
                    result[step] = "pending"
            return result

        result = {step: "pending" for step in PipelineStep}
        if self._current_step is not None:
            for step in PipelineStep:
                if step <= self._current_step:
                    result[step] = "completed"
            upcoming = self._current_step.next()
        else:
            upcoming = PipelineStep.first()
        if state == TrackedState.ACTIVE and upcoming is not None:
            result[upcoming] = "active"
        return result


class TrackerTask:
    """
    Cooperative polling task for an ExecutionTracker.

    Owns its cancellation token; stops on a terminal status or on ``cancel``.
    """

    def __init__(
        self,
        tracker: ExecutionTracker,
        interval: float = DEFAULT_POLL_INTERVAL,
        on_update: Optional[Callable[[TrackedStatus], None]] = None
    ):
        self.tracker = tracker
        self.interval = interval
        self.on_update = on_update
        self.last_status: Optional[TrackedStatus] = None
        self._cancel = threading.Event()
        self._thread = threading.Thread(
            target=self._run, name=f"tracker-{tracker.handle}", daemon=True
        )

    def _run(self) -> None:
        while not self._cancel.is_set():
            status = self.tracker.poll()
            self.last_status = status
            if self.on_update is not None:
                self.on_update(status)
            if status.is_terminal:
                return
            if self._cancel.wait(self.interval):
                return

    def start(self) -> "TrackerTask":
        self._thread.start()
        return self

    def cancel(self) -> None:
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def join(self, timeout: Optional[float] = None) -> None:
        self._thread.join(timeout)

    def wait(self, timeout: Optional[float] = None) -> Optional[TrackedStatus]:
        """Block until the task stops; returns the last status seen"""
        self.join(timeout)
        return self.last_status

    def __enter__(self):
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.cancel()
        self.join()
