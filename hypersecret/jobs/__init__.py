"""
Job submission for the HyperSecret pipeline.

A job provider accepts an encoded intent, runs the pipeline for it (inside an
enclave or, on the fallback path, in-process) and reports job status and
result artifacts keyed by an opaque execution handle.
"""
from .exceptions import JobProviderError, JobNotFoundError, AlreadyRegisteredError
from .transport import JobProvider, JobStatus, get_provider

__all__ = ['JobProvider', 'JobStatus', 'get_provider', 'JobProviderError',
           'JobNotFoundError', 'AlreadyRegisteredError']
