"""Failures that end a toolkit command."""

from __future__ import annotations

from typing import Any, Dict, Optional


class ToolkitError(Exception):
    exit_code = 1


class PreconditionError(ToolkitError):
    """The cluster (or docker) is not usable from this host."""


class NotInstalledError(ToolkitError):
    def __init__(self, release_name: str):
        super().__init__(
            f"Unable to find deployment {release_name}. Admin toolkit does not "
            "appear to be installed. Please install first with\n  toolkit install"
        )
        self.release_name = release_name


class NotRunningError(ToolkitError):
    def __init__(self, release_name: str):
        super().__init__(
            "Admin toolkit is not running. Please start with\n  toolkit start"
        )
        self.release_name = release_name


class K8sApiError(ToolkitError):
    def __init__(
        self,
        status_code: int,
        message: str,
        raw_response: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(f"K8s API error {status_code}: {message}")
        self.status_code = status_code
        self.raw_response = raw_response


class NotFoundError(K8sApiError):
    pass


class ApplyError(ToolkitError):
    def __init__(self, message: str, raw_response: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.raw_response = raw_response


class ReadinessTimeoutError(ToolkitError):
    def __init__(self, name: str, phase: Optional[str], attempts: int):
        super().__init__(
            f"{name} did not become ready after {attempts} checks "
            f"(last status: {phase or 'unknown'})"
        )
        self.name = name
        self.phase = phase
        self.attempts = attempts


class TerminalPhaseError(ToolkitError):
    def __init__(self, name: str, cause: str):
        super().__init__(f"Something went wrong with {name}: {cause}")
        self.name = name
        self.cause = cause
