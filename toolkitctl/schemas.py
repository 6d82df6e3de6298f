from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field


class Action(str, Enum):
    INSTALL = "install"
    CLEANUP = "cleanup"

    def __str__(self) -> str:
        return self.value


class Phase(str, Enum):
    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: Optional[str]) -> "Phase":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class DeploymentConfig(BaseModel):
    """Everything the installer pod needs to know, fixed for one invocation."""

    model_config = ConfigDict(frozen=True)

    namespace: str
    image: str
    tag: str = "latest"
    image_pull_secret: str = "domino-quay-repos"
    release_name: str = "domino-admin-toolkit"
    installer_name: str = "toolkit-bootstrap"
    app_port: int = 8888
    daemonset_mode: bool = False
    daemonset_port: int = 5000
    ingress_enabled: bool = True
    action: Action = Action.INSTALL

    @property
    def image_ref(self) -> str:
        return f"{self.image}:{self.tag}"

    def with_action(self, action: Action) -> "DeploymentConfig":
        if action == self.action:
            return self
        return self.model_copy(update={"action": action})


class ResourceHandle(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: str
    name: str
    # None for cluster-scoped kinds
    namespace: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.kind.lower()}/{self.name}"


class ResourceBundle(BaseModel):
    """Ordered resource documents applied together."""

    model_config = ConfigDict(frozen=True)

    resources: Tuple[Dict[str, Any], ...] = ()

    def handles(self) -> Tuple[ResourceHandle, ...]:
        out = []
        for doc in self.resources:
            meta = doc.get("metadata", {})
            out.append(
                ResourceHandle(
                    kind=doc["kind"],
                    name=meta["name"],
                    namespace=meta.get("namespace"),
                )
            )
        return tuple(out)

    def find(self, kind: str) -> ResourceHandle:
        for handle in self.handles():
            if handle.kind == kind:
                return handle
        raise KeyError(kind)

    def to_yaml(self) -> str:
        return yaml.safe_dump_all(
            list(self.resources), sort_keys=False, explicit_start=True
        )


class ApplyResult(BaseModel):
    success: bool
    message: str
    raw_response: Optional[Dict[str, Any]] = None


class EventInfo(BaseModel):
    type: str = ""
    reason: str = ""
    message: str = ""
    last_seen: Optional[str] = None


class ToolkitStatus(BaseModel):
    installed: bool
    running: bool = False


# ---------------------------------------------------------------------- #
# Poll outcomes                                                          #
# ---------------------------------------------------------------------- #


class Reached(BaseModel):
    model_config = ConfigDict(frozen=True)

    phase: str
    attempts: int


class StillPending(BaseModel):
    model_config = ConfigDict(frozen=True)

    phase: Optional[str] = None
    attempts_left: int = 0
    attempts: int = 0


class PollError(BaseModel):
    model_config = ConfigDict(frozen=True)

    cause: str
    phase: Optional[str] = None
    attempts: int = 0


PollOutcome = Union[Reached, StillPending, PollError]


class InstallReport(BaseModel):
    """What an install or uninstall run observed, for the CLI to print."""

    release_name: str
    action: Action
    applied: List[ApplyResult] = Field(default_factory=list)
    installer_phase: Optional[str] = None
    toolkit_pod: Optional[str] = None
    toolkit_phase: Optional[str] = None
