"""
In-process job provider.

Runs the pipeline on a thread pool inside the host process. This is the
non-enclave fallback path: the fallback HTTP service and the ``run`` command
use it when no enclave is available.
"""
import logging
import os
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Union

from cachetools import TTLCache

from ..artifacts import write_failure, write_result
from ..codec import decode_intent
from ..exceptions import ExecutionFailedError, truncate_message
from ..models import ExecutionFailure, ExecutionProof, Intent, JobState, PipelineStep
from ..pipeline import PipelineOrchestrator
from .exceptions import AlreadyRegisteredError, JobNotFoundError, JobProviderError
from .transport import JobProvider, JobStatus

logger = logging.getLogger(__name__)


@dataclass
class _Job:
    handle: str
    intent: Intent
    state: JobState = JobState.UNSET
    detail: str = "Submitted"
    current_step: Optional[PipelineStep] = None
    proof: Optional[ExecutionProof] = None
    failure: Optional[ExecutionFailure] = None
    error: Optional[str] = None
    cancel_event: threading.Event = field(default_factory=threading.Event)
    done: threading.Event = field(default_factory=threading.Event)
    future: Optional[Future] = None


class LocalJobProvider(JobProvider):
    """
    Thread-pool job provider.

    Requester secrets are immutable once pushed, matching the enclave job
    framework. Each job gets a UUID handle and its own cancellation token.
    Finished jobs stay queryable for ``result_ttl`` seconds and are then
    forgotten; running jobs are never evicted.
    """

    def __init__(
        self,
        orchestrator: PipelineOrchestrator,
        max_workers: int = 4,
        output_dir: Optional[str] = None,
        enclave_private_key: Optional[Union[str, bytes]] = None,
        result_ttl: float = 3600,
        max_finished: int = 1024,
        timer: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the provider

        Args:
            orchestrator: Pipeline used for every job
            max_workers: Number of executions that may run concurrently
            output_dir: If set, each job writes its artifacts to
                ``<output_dir>/<handle>``
            enclave_private_key: Key for opening sealed intent payloads
            result_ttl: Seconds a finished job stays queryable
            max_finished: Most finished jobs kept; the oldest go first
            timer: Clock for result expiry
        """
        self.orchestrator = orchestrator
        self.output_dir = output_dir
        self.enclave_private_key = enclave_private_key
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="hypersecret-job")
        self._secrets: Dict[str, str] = {}
        self._jobs: Dict[str, _Job] = {}
        self._finished = TTLCache(maxsize=max_finished, ttl=result_ttl, timer=timer)
        self._lock = threading.RLock()

    def push_secret(self, slot: str, value: str) -> None:
        with self._lock:
            if slot in self._secrets:
                raise AlreadyRegisteredError(f"Secret slot {slot} already exists")
            self._secrets[slot] = value

    def submit(self, secret_slot: str = "1") -> str:
        """
        Decode the intent in ``secret_slot`` and start a job for it.

        Raises:
            JobProviderError: If the slot is empty
            ValidationError: If the stored payload is not a valid intent
        """
        with self._lock:
            payload = self._secrets.get(secret_slot)
        if payload is None:
            raise JobProviderError(f"No secret in slot {secret_slot}")
        return self.submit_intent(decode_intent(payload, self.enclave_private_key))

    def submit_intent(self, intent: Intent) -> str:
        """Start a job for an already validated intent and return its handle"""
        job = _Job(handle=str(uuid.uuid4()), intent=intent)
        with self._lock:
            self._jobs[job.handle] = job
            job.future = self._executor.submit(self._execute, job)
        logger.info("Job %s submitted", job.handle)
        return job.handle

    def _execute(self, job: _Job) -> None:
        def on_step(step: PipelineStep) -> None:
            with self._lock:
                job.current_step = step
                job.detail = step.value

        with self._lock:
            job.state = JobState.ACTIVE
            job.detail = "Running"

        try:
            self._run(job, on_step)
        finally:
            self._finish(job)

    def _finish(self, job: _Job) -> None:
        with self._lock:
            self._jobs.pop(job.handle, None)
            self._finished[job.handle] = job
        job.done.set()

    def _run(self, job: _Job, on_step) -> None:
        try:
            proof = self.orchestrator.run(job.intent, job.cancel_event, on_step)
        except ExecutionFailedError as e:
            with self._lock:
                job.failure = e.failure
                job.error = e.failure.message
                job.detail = f"Failed at {e.failure.failed_step.value}"
                job.state = JobState.FAILED
            self._write_artifacts(job, e.failure)
            return
        except Exception as e:
            logger.exception("Job %s crashed", job.handle)
            with self._lock:
                job.error = truncate_message(e)
                job.detail = "Failed"
                job.state = JobState.FAILED
            return

        with self._lock:
            job.proof = proof
            job.detail = "Completed"
            job.state = JobState.COMPLETED
        logger.info("Job %s completed", job.handle)
        self._write_artifacts(job, proof)

    def _write_artifacts(self, job: _Job, record: Union[ExecutionProof, ExecutionFailure]) -> None:
        if not self.output_dir:
            return
        try:
            if isinstance(record, ExecutionProof):
                write_result(record, self._job_dir(job))
            else:
                write_failure(record, self._job_dir(job))
        except OSError as e:
            logger.error("Could not write artifacts for job %s: %s", job.handle, e)

    def _job_dir(self, job: _Job) -> str:
        return os.path.join(self.output_dir, job.handle)

    def _get(self, handle: str) -> _Job:
        with self._lock:
            job = self._jobs.get(handle) or self._finished.get(handle)
        if job is None:
            raise JobNotFoundError(f"Unknown execution handle: {handle}")
        return job

    def status(self, handle: str) -> JobStatus:
        job = self._get(handle)
        with self._lock:
            return JobStatus(
                handle=job.handle,
                state=job.state,
                detail=job.detail,
                error=job.error,
                failed_step=job.failure.failed_step if job.failure else None,
                current_step=job.current_step,
            )

    def fetch_result(self, handle: str) -> bytes:
        job = self._get(handle)
        with self._lock:
            proof = job.proof
        if proof is None:
            raise JobProviderError(f"Job {handle} has no result")
        return proof.to_json().encode("utf-8")

    def get_proof(self, handle: str) -> Optional[ExecutionProof]:
        return self._get(handle).proof

    def get_failure(self, handle: str) -> Optional[ExecutionFailure]:
        return self._get(handle).failure

    def wait(self, handle: str, timeout: Optional[float] = None) -> JobStatus:
        """Block until a job reaches a terminal state or the timeout expires"""
        self._get(handle).done.wait(timeout)
        return self.status(handle)

    def cancel(self, handle: str) -> None:
        """Ask a running job to stop at its next cancellation point"""
        self._get(handle).cancel_event.set()

    def close(self) -> None:
        with self._lock:
            jobs = list(self._jobs.values())
        for job in jobs:
            if not job.state.is_terminal:
                job.cancel_event.set()
        self._executor.shutdown(wait=False, cancel_futures=True)

        # Queued jobs the pool dropped never ran
        for job in jobs:
            if job.future is not None and job.future.cancelled():
                with self._lock:
                    job.error = "Cancelled before start"
                    job.detail = "Cancelled"
                    job.state = JobState.FAILED
                self._finish(job)
