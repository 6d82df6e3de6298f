"""Minimal Kubernetes HTTP client for the toolkit's lifecycle operations."""

from __future__ import annotations

import base64
import json
import logging
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

import requests

from .config import Settings, settings as default_settings
from .errors import ApplyError, K8sApiError, NotFoundError, PreconditionError
from .schemas import ApplyResult, EventInfo, Phase, ResourceBundle, ResourceHandle

logger = logging.getLogger(__name__)

# kind -> (api prefix, plural, namespaced)
RESOURCE_PATHS: Dict[str, Tuple[str, str, bool]] = {
    "ServiceAccount": ("/api/v1", "serviceaccounts", True),
    "Pod": ("/api/v1", "pods", True),
    "Secret": ("/api/v1", "secrets", True),
    "Deployment": ("/apis/apps/v1", "deployments", True),
    "ClusterRoleBinding": ("/apis/rbac.authorization.k8s.io/v1", "clusterrolebindings", False),
}

# kinds where an existing object is left as is on apply
IDEMPOTENT_KINDS = frozenset({"ServiceAccount", "ClusterRoleBinding"})

PLATFORM_NAMESPACE_LABEL = "domino-platform"


class K8sClient:
    def __init__(
        self,
        namespace: str | None = None,
        base_url: str | None = None,
        cfg: Settings | None = None,
    ):
        cfg = cfg or default_settings
        if not base_url:
            base_url = cfg.k8s_api_base_url
        if not base_url:
            raise PreconditionError(
                "K8S_API_BASE_URL is not set. Please run this where the cluster API is configured."
            )

        self.settings = cfg
        self.base_url = base_url.rstrip("/")
        self.namespace = namespace or cfg.k8s_namespace
        self.verify_ssl = cfg.verify_ssl
        self.bearer_token = cfg.k8s_bearer_token
        self.timeout = cfg.request_timeout

    def with_namespace(self, namespace: str) -> "K8sClient":
        return K8sClient(namespace=namespace, base_url=self.base_url, cfg=self.settings)

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #

    def _headers(self, content_type: str = "application/json") -> Dict[str, str]:
        headers = {"Content-Type": content_type, "Accept": "application/json"}
        if self.bearer_token:
            headers["Authorization"] = f"Bearer {self.bearer_token}"
        return headers

    def _request(
        self,
        method: str,
        path: str,
        json_body: Dict[str, Any] | None = None,
        params: Dict[str, str] | None = None,
        content_type: str = "application/json",
    ) -> requests.Response:
        url = f"{self.base_url}{path}"
        resp = requests.request(
            method=method,
            url=url,
            headers=self._headers(content_type),
            json=json_body,
            params=params,
            verify=self.verify_ssl,
            timeout=self.timeout,
        )
        return resp

    @staticmethod
    def _body(resp: requests.Response) -> Dict[str, Any]:
        try:
            raw = resp.json()
        except (json.JSONDecodeError, ValueError):
            raw = {"raw_text": resp.text}
        return raw if isinstance(raw, dict) else {"raw": raw}

    def _check(self, resp: requests.Response) -> Dict[str, Any]:
        raw = self._body(resp)
        if resp.status_code < 300:
            return raw
        message = raw.get("message") or raw.get("raw_text") or resp.reason or ""
        if resp.status_code == 404:
            raise NotFoundError(resp.status_code, message, raw)
        raise K8sApiError(resp.status_code, message, raw)

    def _get(self, path: str, params: Dict[str, str] | None = None) -> Dict[str, Any]:
        return self._check(self._request("GET", path, params=params))

    def _collection_path(self, kind: str, namespace: str | None = None) -> str:
        try:
            prefix, plural, namespaced = RESOURCE_PATHS[kind]
        except KeyError:
            raise ApplyError(f"Unsupported kind: {kind}") from None
        if namespaced:
            return f"{prefix}/namespaces/{namespace or self.namespace}/{plural}"
        return f"{prefix}/{plural}"

    def _object_path(self, handle: ResourceHandle) -> str:
        return f"{self._collection_path(handle.kind, handle.namespace)}/{handle.name}"

    def _pod(self, name: str) -> ResourceHandle:
        return ResourceHandle(kind="Pod", name=name, namespace=self.namespace)

    # ------------------------------------------------------------------ #
    # Cluster probes                                                     #
    # ------------------------------------------------------------------ #

    def version(self) -> Dict[str, Any]:
        """Fail with PreconditionError unless the API server answers."""
        try:
            return self._get("/version")
        except (requests.RequestException, K8sApiError) as e:
            raise PreconditionError(
                f"Cluster API at {self.base_url} is not reachable ({e}). "
                "Please run this where you have cluster access set up."
            ) from e

    def find_platform_namespace(self) -> str:
        data = self._get(
            "/api/v1/namespaces", params={"labelSelector": PLATFORM_NAMESPACE_LABEL}
        )
        names = [item.get("metadata", {}).get("name") for item in data.get("items", [])]
        names = [n for n in names if n]
        if not names:
            raise PreconditionError(
                "Unable to find the platform namespace. It looks like you may be running "
                "admin toolkit against a Domino 3.x deployment. Only Domino 4.x+ is supported."
            )
        return names[0]

    # ------------------------------------------------------------------ #
    # Apply / delete the installer bundle                                #
    # ------------------------------------------------------------------ #

    def apply(self, bundle: ResourceBundle) -> List[ApplyResult]:
        """Create every resource in ``bundle`` in order."""
        results: List[ApplyResult] = []
        for manifest in bundle.resources:
            kind = manifest.get("kind")
            metadata = manifest.get("metadata", {})
            name = metadata.get("name", "<unnamed>")
            namespace = metadata.get("namespace", self.namespace)

            path = self._collection_path(kind, namespace)
            resp = self._request("POST", path, json_body=manifest)
            raw = self._body(resp)

            if resp.status_code in (200, 201):
                results.append(
                    ApplyResult(success=True, message=f"Created {kind} '{name}'.", raw_response=raw)
                )
                logger.debug("created %s/%s", kind, name)
                continue

            if resp.status_code == 409 and kind in IDEMPOTENT_KINDS:
                results.append(
                    ApplyResult(success=True, message=f"{kind} '{name}' unchanged.", raw_response=raw)
                )
                logger.debug("%s/%s already exists, unchanged", kind, name)
                continue

            raise ApplyError(
                f"Applying {kind} '{name}' failed with K8s API error {resp.status_code}: {raw}",
                raw_response=raw,
            )
        return results

    def delete_by_handles(self, handles: Iterable[ResourceHandle]) -> None:
        """Delete each object if present; a missing object is not an error."""
        for handle in handles:
            resp = self._request("DELETE", self._object_path(handle))
            if resp.status_code == 404:
                logger.debug("%s not found, nothing to delete", handle)
                continue
            self._check(resp)
            logger.info("%s deleted", handle)

    def exists(self, handle: ResourceHandle) -> bool:
        try:
            self._get(self._object_path(handle))
        except NotFoundError:
            return False
        return True

    # ------------------------------------------------------------------ #
    # Pods                                                               #
    # ------------------------------------------------------------------ #

    def get_phase(self, handle: ResourceHandle) -> Phase:
        data = self._get(self._object_path(handle))
        return Phase.parse(data.get("status", {}).get("phase"))

    def find_pod_name(self, label_selector: str) -> Optional[str]:
        data = self._get(
            f"/api/v1/namespaces/{self.namespace}/pods",
            params={"labelSelector": label_selector},
        )
        for item in data.get("items", []):
            name = item.get("metadata", {}).get("name")
            if name:
                return name
        return None

    def stream_logs(
        self,
        handle: ResourceHandle,
        container: str | None = None,
        follow: bool = True,
    ) -> Iterator[str]:
        """Yield log lines as the container writes them.

        With ``follow`` the iterator ends only when the container exits or the
        caller stops iterating.
        """
        params = {"follow": "true" if follow else "false"}
        if container:
            params["container"] = container

        url = f"{self.base_url}{self._object_path(handle)}/log"
        resp = requests.get(
            url,
            headers=self._headers(),
            params=params,
            verify=self.verify_ssl,
            timeout=None if follow else self.timeout,
            stream=True,
        )
        with resp:
            self._check_stream(resp)
            # text/plain without a charset would otherwise decode as ISO-8859-1
            resp.encoding = "utf-8"
            for line in resp.iter_lines(decode_unicode=True):
                if line is not None:
                    yield line

    def _check_stream(self, resp: requests.Response) -> None:
        if resp.status_code == 200:
            return
        message = resp.text
        if resp.status_code == 404:
            raise NotFoundError(resp.status_code, message)
        raise K8sApiError(resp.status_code, message)

    def list_events(self, involved_object: str) -> List[EventInfo]:
        data = self._get(
            f"/api/v1/namespaces/{self.namespace}/events",
            params={"fieldSelector": f"involvedObject.name={involved_object}"},
        )
        out: List[EventInfo] = []
        for item in data.get("items", []):
            last = item.get("lastTimestamp") or item.get("eventTime")
            out.append(
                EventInfo(
                    type=item.get("type", "") or "",
                    reason=item.get("reason", "") or "",
                    message=(item.get("message", "") or "").strip(),
                    last_seen=str(last) if last is not None else None,
                )
            )
        return out

    # ------------------------------------------------------------------ #
    # Deployments                                                        #
    # ------------------------------------------------------------------ #

    def deployment_exists(self, name: str) -> bool:
        return self.exists(ResourceHandle(kind="Deployment", name=name, namespace=self.namespace))

    def get_container_image(self, deployment: str, container: str) -> str:
        data = self._get(
            self._object_path(ResourceHandle(kind="Deployment", name=deployment, namespace=self.namespace))
        )
        containers = data.get("spec", {}).get("template", {}).get("spec", {}).get("containers", [])
        for c in containers:
            if c.get("name") == container:
                return c.get("image", "")
        return ""

    def scale(self, name: str, replicas: int) -> None:
        path = f"/apis/apps/v1/namespaces/{self.namespace}/deployments/{name}/scale"
        resp = self._request(
            "PATCH",
            path,
            json_body={"spec": {"replicas": replicas}},
            content_type="application/merge-patch+json",
        )
        self._check(resp)
        logger.info("deployment.apps/%s scaled to %d", name, replicas)

    # ------------------------------------------------------------------ #
    # Secrets                                                            #
    # ------------------------------------------------------------------ #

    def get_secret_value(self, name: str, key: str) -> str:
        data = self._get(
            self._object_path(ResourceHandle(kind="Secret", name=name, namespace=self.namespace))
        )
        encoded = data.get("data", {}).get(key)
        if not encoded:
            return ""
        return base64.b64decode(encoded).decode("utf-8")
