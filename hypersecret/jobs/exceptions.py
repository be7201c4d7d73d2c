"""
Exceptions for the job provider module.
"""


class JobProviderError(Exception):
    """Base exception for job provider errors."""
    pass


class JobNotFoundError(JobProviderError):
    """Raised when a provider has no job for the given handle."""
    pass


class AlreadyRegisteredError(JobProviderError):
    """Raised when a requester secret already exists in an immutable slot."""
    pass
