from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any

import pytest

from toolkitctl.config import RELEASE_NAME, Settings
from toolkitctl.errors import ApplyError, NotFoundError, PreconditionError
from toolkitctl.orchestrator import ToolkitOrchestrator
from toolkitctl.schemas import (
    ApplyResult,
    DeploymentConfig,
    EventInfo,
    Phase,
    ResourceBundle,
    ResourceHandle,
)

NAMESPACE = "domino-platform"
TOOLKIT_POD = f"{RELEASE_NAME}-7d9f8-abcde"


class FakeCluster:
    """In-memory stand-in for K8sClient.

    The installer pod walks through ``installer_phases`` one sample at a time.
    When it reports Succeeded it does what install.sh would do: ACTION=install
    creates the toolkit deployment and a Running pod, ACTION=cleanup removes them.
    """

    base_url = "https://k8s.test"

    def __init__(self, namespace: str = NAMESPACE) -> None:
        self.namespace = namespace
        self.objects: dict[tuple[str, str], dict[str, Any]] = {}
        self.deployments: dict[str, int] = {}
        self.pods: dict[str, Phase] = {}
        self.installer_phases: list[Phase] = [Phase.PENDING, Phase.SUCCEEDED]
        self.toolkit_phases: list[Phase] = []
        self.images = {"nucleus-frontend": "quay.io/domino/nucleus-frontend:5.5.0"}
        self.secrets: dict[tuple[str, str], str] = {}
        self.logs: dict[str, list[str]] = {}
        self.events: dict[str, list[EventInfo]] = {}
        self.platform_namespaces = [namespace]
        self.reachable = True
        # pods that ignore deletion and stay Terminating
        self.stuck_pods: set[str] = set()

        self.calls: list[tuple[Any, ...]] = []
        self.applied: list[ResourceBundle] = []
        self.scale_calls: list[tuple[str, int]] = []
        self._phase_queue: list[Phase] = []
        self._script_ran = False

    # -- probes -------------------------------------------------------- #

    def version(self) -> dict[str, str]:
        self.calls.append(("version",))
        if not self.reachable:
            raise PreconditionError("cluster unreachable")
        return {"gitVersion": "v1.27.3"}

    def find_platform_namespace(self) -> str:
        self.calls.append(("find_platform_namespace",))
        if not self.platform_namespaces:
            raise PreconditionError("Unable to find the platform namespace")
        return self.platform_namespaces[0]

    def with_namespace(self, namespace: str) -> "FakeCluster":
        self.namespace = namespace
        return self

    # -- gateway ------------------------------------------------------- #

    def apply(self, bundle: ResourceBundle) -> list[ApplyResult]:
        self.calls.append(("apply",))
        results = []
        for doc in bundle.resources:
            key = (doc["kind"], doc["metadata"]["name"])
            if key in self.objects and doc["kind"] == "Pod":
                raise ApplyError(f"pods \"{key[1]}\" already exists")
            self.objects[key] = doc
            if doc["kind"] == "Pod":
                self._phase_queue = list(self.installer_phases)
                self._script_ran = False
            results.append(ApplyResult(success=True, message=f"Created {key[0]} '{key[1]}'."))
        self.applied.append(bundle)
        return results

    def delete_by_handles(self, handles) -> None:
        handles = list(handles)
        self.calls.append(("delete", tuple(str(h) for h in handles)))
        for handle in handles:
            if handle.kind == "Pod" and handle.name in self.stuck_pods:
                continue
            self.objects.pop((handle.kind, handle.name), None)

    def exists(self, handle: ResourceHandle) -> bool:
        return (handle.kind, handle.name) in self.objects

    def get_phase(self, handle: ResourceHandle) -> Phase:
        self.calls.append(("get_phase", handle.name))
        if handle.name in self.pods:
            if self.toolkit_phases:
                return self.toolkit_phases.pop(0)
            return self.pods[handle.name]

        doc = self.objects.get((handle.kind, handle.name))
        if doc is None:
            raise NotFoundError(404, f'pods "{handle.name}" not found')
        phase = self._phase_queue.pop(0) if len(self._phase_queue) > 1 else self._phase_queue[0]
        if phase == Phase.SUCCEEDED and not self._script_ran:
            self._script_ran = True
            self._run_install_script(doc)
        return phase

    def _run_install_script(self, pod_doc: dict[str, Any]) -> None:
        env = {e["name"]: e["value"] for e in pod_doc["spec"]["containers"][0]["env"]}
        release = env["RELEASE_NAME"]
        if env["ACTION"] == "install":
            self.deployments[release] = 1
            self.pods[TOOLKIT_POD] = Phase.RUNNING
        else:
            self.deployments.pop(release, None)
            self.pods.pop(TOOLKIT_POD, None)

    def find_pod_name(self, label_selector: str) -> str | None:
        self.calls.append(("find_pod_name", label_selector))
        return next(iter(self.pods), None)

    def stream_logs(self, handle: ResourceHandle, container=None, follow=True) -> Iterator[str]:
        self.calls.append(("stream_logs", handle.name, follow))
        yield from self.logs.get(handle.name, [])

    def list_events(self, involved_object: str) -> list[EventInfo]:
        self.calls.append(("list_events", involved_object))
        return self.events.get(involved_object, [])

    def deployment_exists(self, name: str) -> bool:
        self.calls.append(("deployment_exists", name))
        return name in self.deployments

    def get_container_image(self, deployment: str, container: str) -> str:
        if deployment not in self.images:
            raise NotFoundError(404, f'deployments.apps "{deployment}" not found')
        return self.images[deployment]

    def scale(self, name: str, replicas: int) -> None:
        self.scale_calls.append((name, replicas))
        self.deployments[name] = replicas
        if replicas:
            self.pods[TOOLKIT_POD] = Phase.RUNNING
        else:
            self.pods.pop(TOOLKIT_POD, None)

    def get_secret_value(self, name: str, key: str) -> str:
        return self.secrets.get((name, key), "")

    # -- helpers for tests --------------------------------------------- #

    def install_toolkit(self, running: bool = True) -> None:
        self.deployments[RELEASE_NAME] = 1 if running else 0
        if running:
            self.pods[TOOLKIT_POD] = Phase.RUNNING

    def installer_objects(self) -> list[tuple[str, str]]:
        return [key for key in self.objects if key[1].endswith("toolkit-bootstrap")]

    def called(self, name: str) -> list[tuple[Any, ...]]:
        return [c for c in self.calls if c[0] == name]


@pytest.fixture(autouse=True)
def _restore_root_logger() -> Iterator[None]:  # pyright: ignore[reportUnusedFunction]
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def fast_settings() -> Settings:
    return Settings(
        k8s_api_base_url="https://k8s.test",
        k8s_namespace=NAMESPACE,
        k8s_bearer_token="test-token",
        update_check=False,
        app_port=8888,
        daemonset_mode=False,
        daemonset_port=5000,
        ingress_enabled=True,
        installer_poll_interval=10,
        installer_poll_attempts=5,
        pod_poll_interval=5,
        pod_poll_attempts=5,
        delete_poll_interval=2,
        delete_poll_attempts=3,
    )


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def echoed() -> list[str]:
    return []


@pytest.fixture
def orchestrator(cluster, fast_settings, sleeps, echoed) -> ToolkitOrchestrator:
    return ToolkitOrchestrator(cluster, fast_settings, sleep=sleeps.append, echo=echoed.append)


@pytest.fixture
def install_config() -> DeploymentConfig:
    return DeploymentConfig(
        namespace=NAMESPACE,
        image="quay.io/domino/cre",
        tag="latest",
        daemonset_mode=False,
    )
