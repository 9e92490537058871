"""Exceptions that propagate out of pipeline components.

Upstream provider failures are not raised; they come back as
``UpstreamResult`` values (see ``ingestor.rpc_client``).
"""

from __future__ import annotations


class TokenWhaleTrackerError(Exception):
    """Base class for pipeline errors."""


class ConfigurationError(TokenWhaleTrackerError, ValueError):
    """A capability required by the command is not configured."""


class PrimaryFeedError(TokenWhaleTrackerError):
    """The bonding-curve candidate feed returned nothing usable."""


class UnknownJobError(TokenWhaleTrackerError, KeyError):
    """Raised when a job name is not registered."""

    def __init__(self, job_name: str) -> None:
        super().__init__(job_name)
        self.job_name = job_name

    def __str__(self) -> str:
        return f"Unknown job: {self.job_name}"
