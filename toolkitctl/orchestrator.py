"""Install, uninstall, start, stop and inspect the admin toolkit.

Every call re-reads the cluster; nothing is remembered between invocations.
Install and uninstall both go through the one-shot installer pod rendered by
:mod:`toolkitctl.manifests`. Start and stop only scale the long-lived toolkit
deployment that the installer created.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Tuple

import requests

from .config import RELEASE_NAME, Settings, build_deployment_config, registry_of
from .config import settings as default_settings
from .errors import (
    K8sApiError,
    NotFoundError,
    NotInstalledError,
    NotRunningError,
    ReadinessTimeoutError,
    TerminalPhaseError,
    ToolkitError,
)
from .k8s_client import K8sClient
from .manifests import installer_handles, render
from .poller import poll_until
from .schemas import (
    Action,
    DeploymentConfig,
    InstallReport,
    Phase,
    PollOutcome,
    Reached,
    ResourceHandle,
    StillPending,
    ToolkitStatus,
)

logger = logging.getLogger(__name__)

INSTALLER_FAIL_PHASES = frozenset({Phase.FAILED, Phase.UNKNOWN})
TOOLKIT_FAIL_PHASES = frozenset({Phase.FAILED, Phase.UNKNOWN})

NUCLEUS_DEPLOYMENT = "nucleus-frontend"

# pseudo-phases used while waiting for a deleted pod to disappear
_GONE = "Gone"
_PRESENT = "Terminating"


class ToolkitOrchestrator:
    def __init__(
        self,
        client: K8sClient,
        cfg: Settings | None = None,
        sleep: Callable[[float], None] = time.sleep,
        echo: Callable[[str], None] = print,
        release_name: str = RELEASE_NAME,
    ):
        self.client = client
        self.settings = cfg or default_settings
        self.sleep = sleep
        self.echo = echo
        self.release_name = release_name

    @property
    def namespace(self) -> str:
        return self.client.namespace

    @property
    def toolkit_selector(self) -> str:
        return f"app.kubernetes.io/name={self.release_name}"

    # ------------------------------------------------------------------ #
    # Configuration                                                      #
    # ------------------------------------------------------------------ #

    def deployment_config(self, **overrides) -> DeploymentConfig:
        """Build the DeploymentConfig for this cluster.

        The registry the platform pulls from decides which toolkit image and
        pull secret are used, unless an image is given explicitly.
        """
        try:
            nucleus_image = self.client.get_container_image(NUCLEUS_DEPLOYMENT, NUCLEUS_DEPLOYMENT)
        except NotFoundError:
            nucleus_image = ""
        return build_deployment_config(
            self.namespace, registry_of(nucleus_image), self.settings, **overrides
        )

    # ------------------------------------------------------------------ #
    # Install / uninstall                                                #
    # ------------------------------------------------------------------ #

    def install(self, config: DeploymentConfig) -> InstallReport:
        config = config.with_action(Action.INSTALL)

        logger.info("Cleanup previously installed bootstrap if found")
        self._delete_installer(config)

        logger.info("Installing %s", config.release_name)
        report = self._run_installer(config)

        pod_name, outcome = self._wait_for_toolkit()
        if not isinstance(outcome, Reached):
            self._diagnose(pod_name or self.release_name, self.release_name, with_logs=pod_name is not None)
            self._raise_for(outcome, f"pod {pod_name or self.release_name}")

        logger.info("Pod is %s ok!", outcome.phase)
        report.toolkit_pod = pod_name
        report.toolkit_phase = outcome.phase
        return report

    def uninstall(self, config: DeploymentConfig) -> InstallReport:
        # pod env can't be updated in place, so the installer is recreated with ACTION=cleanup
        logger.info("Cleanup previously installed bootstrap if found")
        self._delete_installer(config)

        config = config.with_action(Action.CLEANUP)
        logger.info("Uninstalling %s if installed", config.release_name)
        report = self._run_installer(config)

        logger.info("Deleting uninstaller objects")
        try:
            self._delete_installer(config)
        except (ToolkitError, requests.RequestException) as e:
            logger.warning("Could not delete uninstaller objects, they will be removed on the next run: %s", e)
        return report

    def _run_installer(self, config: DeploymentConfig) -> InstallReport:
        bundle = render(config)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Applying installer bundle:\n%s", bundle.to_yaml())
        applied = self.client.apply(bundle)
        for result in applied:
            logger.debug(result.message)

        pod = bundle.find("Pod")
        outcome = poll_until(
            lambda: self.client.get_phase(pod),
            Phase.SUCCEEDED,
            INSTALLER_FAIL_PHASES,
            max_attempts=self.settings.installer_poll_attempts,
            interval=self.settings.installer_poll_interval,
            sleep=self.sleep,
            name=f"Installer {pod.name}",
        )
        if not isinstance(outcome, Reached):
            logger.error("Something went wrong running %s", pod.name)
            self._diagnose(pod.name, config.installer_name)
            self._raise_for(outcome, f"installer {pod.name}")

        self._print_logs(pod, config.installer_name)
        return InstallReport(
            release_name=config.release_name,
            action=config.action,
            applied=applied,
            installer_phase=outcome.phase,
        )

    def _delete_installer(self, config: DeploymentConfig) -> None:
        handles = installer_handles(config)
        self.client.delete_by_handles(handles)

        pod = handles[0]
        outcome = poll_until(
            lambda: _PRESENT if self.client.exists(pod) else _GONE,
            _GONE,
            max_attempts=self.settings.delete_poll_attempts,
            interval=self.settings.delete_poll_interval,
            sleep=self.sleep,
            name=f"Deleted {pod}",
        )
        if not isinstance(outcome, Reached):
            self._raise_for(outcome, str(pod))

    def _wait_for_toolkit(self) -> Tuple[Optional[str], PollOutcome]:
        found: dict = {}

        def sample() -> str:
            name = self.client.find_pod_name(self.toolkit_selector)
            if name is None:
                # the deployment has not created its pod yet
                return Phase.PENDING
            found["name"] = name
            return self.client.get_phase(self._pod_handle(name))

        outcome = poll_until(
            sample,
            Phase.RUNNING,
            TOOLKIT_FAIL_PHASES,
            max_attempts=self.settings.pod_poll_attempts,
            interval=self.settings.pod_poll_interval,
            sleep=self.sleep,
            name="Toolkit pod",
        )
        return found.get("name"), outcome

    @staticmethod
    def _raise_for(outcome: PollOutcome, name: str) -> None:
        if isinstance(outcome, StillPending):
            raise ReadinessTimeoutError(name, outcome.phase, outcome.attempts)
        raise TerminalPhaseError(name, outcome.cause)

    # ------------------------------------------------------------------ #
    # Diagnostics                                                        #
    # ------------------------------------------------------------------ #

    def _print_logs(self, handle: ResourceHandle, container: str) -> None:
        """Print what the pod has logged so far; a failed fetch is only a warning."""
        try:
            for line in self.client.stream_logs(handle, container=container, follow=False):
                self.echo(line)
        except (K8sApiError, requests.RequestException) as e:
            logger.warning("Unable to fetch logs for %s: %s", handle.name, e)

    def _diagnose(self, pod_name: str, container: str, with_logs: bool = True) -> None:
        """Print whatever the pod logged and its events; never raises."""
        if with_logs:
            self._print_logs(self._pod_handle(pod_name), container)

        logger.info("Check pod related events")
        try:
            events = self.client.list_events(pod_name)
        except (K8sApiError, requests.RequestException) as e:
            logger.warning("Unable to fetch events for %s: %s", pod_name, e)
            return
        if not events:
            self.echo(f"No events found for {pod_name}")
        for ev in events:
            self.echo(f"{ev.last_seen or '-'}  {ev.type}  {ev.reason}  {ev.message}")

    # ------------------------------------------------------------------ #
    # Start / stop / status                                              #
    # ------------------------------------------------------------------ #

    def is_installed(self) -> bool:
        return self.client.deployment_exists(self.release_name)

    def toolkit_pod_name(self) -> Optional[str]:
        return self.client.find_pod_name(self.toolkit_selector)

    def _running_pod(self) -> Optional[str]:
        pod_name = self.toolkit_pod_name()
        if not pod_name:
            return None
        try:
            phase = self.client.get_phase(self._pod_handle(pod_name))
        except NotFoundError:
            return None
        return pod_name if phase == Phase.RUNNING else None

    def is_running(self) -> bool:
        return self._running_pod() is not None

    def status(self) -> ToolkitStatus:
        if not self.is_installed():
            return ToolkitStatus(installed=False, running=False)
        return ToolkitStatus(installed=True, running=self.is_running())

    def start(self) -> bool:
        """Scale the toolkit up. Returns False when it was already running."""
        if self.is_running():
            logger.info("Admin toolkit is already running.")
            return False
        self.client.scale(self.release_name, 1)
        return True

    def stop(self) -> bool:
        """Scale the toolkit down. Returns False when it was already stopped."""
        if not self.is_running():
            logger.info("Admin toolkit is already not running.")
            return False
        self.client.scale(self.release_name, 0)
        return True

    def require_installed(self) -> None:
        if not self.is_installed():
            raise NotInstalledError(self.release_name)

    def require_running(self) -> str:
        pod_name = self._running_pod()
        if pod_name is None:
            raise NotRunningError(self.release_name)
        return pod_name

    # ------------------------------------------------------------------ #
    # Logs and credentials                                               #
    # ------------------------------------------------------------------ #

    def stream_toolkit_logs(self) -> None:
        pod_name = self.require_running()
        for line in self.client.stream_logs(self._pod_handle(pod_name), container=self.release_name):
            self.echo(line)

    def get_credentials(self) -> Tuple[str, str]:
        secret = f"{self.release_name}-http"
        username = self.client.get_secret_value(secret, "webui-login")
        password = self.client.get_secret_value(secret, "webui-password")
        return username, password

    def _pod_handle(self, name: str) -> ResourceHandle:
        return ResourceHandle(kind="Pod", name=name, namespace=self.namespace)
