"""Exceptions shared by the collector and the ingestion service."""
from __future__ import annotations


class GPUMetricsError(Exception):
    """Base class; anything below it is scoped to one cycle or one request."""


class ConfigError(GPUMetricsError):
    """Bad or missing configuration. Fatal at start-up."""


class ToolInvocationError(GPUMetricsError):
    """`nvidia-smi` could not be run or exited non-zero."""


class TransmissionError(GPUMetricsError):
    """The payload did not reach the ingestion service."""


class AuthenticationError(GPUMetricsError):
    """Unknown or unprovisioned api key."""


class PersistenceError(GPUMetricsError):
    """The metrics batch could not be committed."""
