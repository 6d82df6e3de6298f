"""Thin wrapper around kubectl for the interactive commands (exec, cp)."""

from __future__ import annotations

import contextlib
import logging
import os
import shlex
import subprocess
import tempfile
from typing import Any, Dict, Iterator, Optional, Sequence

import yaml

from .config import Settings, settings as default_settings
from .errors import PreconditionError, ToolkitError

logger = logging.getLogger(__name__)

KUBECONFIG_NAME = "toolkit"


class Kubectl:
    def __init__(self, namespace: str, cfg: Settings | None = None) -> None:
        cfg = cfg or default_settings
        self.namespace = namespace
        self.binary = cfg.kubectl_bin
        self.server = cfg.k8s_api_base_url
        self.token = cfg.k8s_bearer_token
        self.verify_ssl = cfg.verify_ssl

    def exec(self, pod: str, container: str, command: Sequence[str], tty: bool = True) -> int:
        """Run ``command`` in the container attached to this terminal; returns its exit code."""
        args = ["exec"]
        if tty:
            args.append("-ti")
        args.extend([pod, "-c", container, "--", *command])
        return self._run_attached(args)

    def copy_from_pod(self, pod: str, source: str, destination: str, container: Optional[str] = None) -> None:
        args = ["cp", f"{pod}:{source}", destination]
        if container:
            args.extend(["-c", container])
        result = self._run_attached(args)
        if result != 0:
            raise ToolkitError(f"Copying {source} out of {pod} failed with exit code {result}")

    def kubeconfig(self) -> Dict[str, Any]:
        """Kubeconfig pointing kubectl at the same API server as the REST client."""
        cluster: Dict[str, Any] = {"server": self.server}
        if not self.verify_ssl:
            cluster["insecure-skip-tls-verify"] = True
        user: Dict[str, Any] = {"token": self.token} if self.token else {}
        return {
            "apiVersion": "v1",
            "kind": "Config",
            "clusters": [{"name": KUBECONFIG_NAME, "cluster": cluster}],
            "users": [{"name": KUBECONFIG_NAME, "user": user}],
            "contexts": [
                {
                    "name": KUBECONFIG_NAME,
                    "context": {
                        "cluster": KUBECONFIG_NAME,
                        "user": KUBECONFIG_NAME,
                        "namespace": self.namespace,
                    },
                }
            ],
            "current-context": KUBECONFIG_NAME,
        }

    @contextlib.contextmanager
    def _environment(self) -> Iterator[Optional[Dict[str, str]]]:
        # without an API server setting kubectl keeps the caller's own kubeconfig
        if not self.server:
            yield None
            return

        # the token stays in a 0600 file instead of on the command line
        with tempfile.NamedTemporaryFile("w", prefix="toolkit-", suffix=".yaml", delete=False) as tf:
            yaml.safe_dump(self.kubeconfig(), tf, sort_keys=False)
        try:
            yield {**os.environ, "KUBECONFIG": tf.name}
        finally:
            os.unlink(tf.name)

    def _run_attached(self, args: list[str]) -> int:
        command = [self.binary, "-n", self.namespace, *args]
        logger.info("+ %s", shlex.join(command))
        with self._environment() as env:
            try:
                result = subprocess.run(command, env=env, check=False)
            except FileNotFoundError as e:
                raise PreconditionError(
                    f"{self.binary} is not installed. Please run this where you have kubectl set up."
                ) from e
        return result.returncode
