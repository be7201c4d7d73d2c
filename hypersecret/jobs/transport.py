"""
Provider layer for enclave job submission.

This module provides an abstraction over the services that run the pipeline
for an encoded intent: the in-process provider used on the fallback path and
the HTTP client for a remote fallback service.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from ..models import JobState, PipelineStep

logger = logging.getLogger(__name__)


@dataclass
class JobStatus:
    """
    Provider-side status of one job.

    ``current_step`` is the last pipeline step the job has completed, when
    the provider reports it.
    """
    handle: str
    state: JobState = JobState.UNSET
    detail: str = ""
    error: Optional[str] = None
    failed_step: Optional[PipelineStep] = None
    current_step: Optional[PipelineStep] = None


class JobProvider(ABC):
    """
    Abstract base class for job providers.

    A provider holds requester secrets, runs jobs against them and reports
    status and results by execution handle.
    """

    @abstractmethod
    def push_secret(self, slot: str, value: str) -> None:
        """
        Store a requester secret.

        Raises:
            AlreadyRegisteredError: If the slot already holds a secret
        """
        pass

    @abstractmethod
    def submit(self, secret_slot: str = "1") -> str:
        """
        Start a job for the intent stored in ``secret_slot``.

        Returns:
            Opaque execution handle, returned before the pipeline completes
        """
        pass

    @abstractmethod
    def status(self, handle: str) -> JobStatus:
        """
        Current status of a job.

        Raises:
            JobNotFoundError: If the handle is unknown
            JobProviderError: If the status could not be obtained
        """
        pass

    @abstractmethod
    def fetch_result(self, handle: str) -> bytes:
        """
        Raw bytes of the job's result artifact (the execution proof).

        Raises:
            JobProviderError: If the job has no result
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Release any open connections or workers."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def get_provider(kind: str = "local", **kwargs) -> JobProvider:
    """
    Get a job provider implementation.

    Args:
        kind: "local" for the in-process provider, "http" for a remote
            fallback service
        **kwargs: Passed to the provider's constructor

    Returns:
        Provider implementation

    Raises:
        ValueError: If the provider kind is unknown
    """
    if kind == "local":
        from .local_provider import LocalJobProvider
        logger.info("Using in-process job provider")
        return LocalJobProvider(**kwargs)
    if kind == "http":
        from .http_provider import HttpJobProvider
        logger.info("Using HTTP job provider")
        return HttpJobProvider(**kwargs)
    raise ValueError(f"Unknown job provider: {kind!r}. Available: local, http")
