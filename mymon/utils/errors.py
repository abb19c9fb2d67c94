"""Exceptions raised while enumerating, collecting and publishing."""

from typing import Optional


class MonitorError(Exception):
    """Base class for all target-scoped monitoring errors."""


class ConfigSourceError(MonitorError):
    """The configuration file or directory itself is missing or unreadable."""


class ConfigError(MonitorError):
    """A single target configuration is unreadable or malformed."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class TargetConnectionError(MonitorError, ConnectionError):
    """Cannot open or authenticate the connection to a target."""


class RequiredStepError(MonitorError):
    """One of the required collection steps failed."""

    def __init__(self, step: str, cause: BaseException):
        super().__init__(f"step '{step}' failed: {cause}")
        self.step = step
        self.cause = cause


class PipelineTimeout(MonitorError, TimeoutError):
    """The pipeline did not finish within its deadline."""

    def __init__(self, target_key: str, deadline: float):
        super().__init__(f"{target_key}: pipeline exceeded deadline of {deadline:.1f}s")
        self.target_key = target_key
        self.deadline = deadline


class PublishError(MonitorError):
    """The agent was unreachable or rejected the push."""

    def __init__(self, message: str, body: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.body = body
        self.status_code = status_code


class DiagnosticStepError(MonitorError):
    """The trailing process-list step failed."""
