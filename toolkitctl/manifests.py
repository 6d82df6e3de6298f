"""DeploymentConfig → installer resource bundle.

The bundle is the installer's scaffolding: a service account, a cluster-admin
binding for it, and the one-shot pod that runs ``/app/install.sh`` with the
requested ACTION.
"""

from __future__ import annotations

from typing import Any, Dict, List, Tuple

from .schemas import DeploymentConfig, ResourceBundle, ResourceHandle

PODINFO_VOLUME = "podinfo"
PODINFO_MOUNT_PATH = "/etc/podinfo"


def _labels(config: DeploymentConfig) -> Dict[str, str]:
    return {
        "app.kubernetes.io/name": config.installer_name,
        "app.kubernetes.io/instance": config.installer_name,
    }


def binding_name(config: DeploymentConfig) -> str:
    return f"domino-{config.namespace}-{config.installer_name}"


# --------------------- Resource templates --------------------- #


def service_account(config: DeploymentConfig) -> Dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "ServiceAccount",
        "metadata": {
            "name": config.installer_name,
            "namespace": config.namespace,
            "labels": _labels(config),
        },
    }


def cluster_role_binding(config: DeploymentConfig) -> Dict[str, Any]:
    return {
        "apiVersion": "rbac.authorization.k8s.io/v1",
        "kind": "ClusterRoleBinding",
        "metadata": {
            "name": binding_name(config),
            "labels": _labels(config),
        },
        "subjects": [
            {
                "kind": "ServiceAccount",
                "name": config.installer_name,
                "namespace": config.namespace,
            }
        ],
        "roleRef": {
            "kind": "ClusterRole",
            "name": "cluster-admin",
            "apiGroup": "rbac.authorization.k8s.io",
        },
    }


def installer_env(config: DeploymentConfig) -> List[Dict[str, str]]:
    values = [
        ("DAEMONSET_MODE", str(config.daemonset_mode)),
        ("DAEMONSET_PORT", str(config.daemonset_port)),
        ("APP_PORT", str(config.app_port)),
        ("IMAGE", config.image),
        ("TAG", config.tag),
        ("IMAGE_PULLSECRET", config.image_pull_secret),
        ("PLATFORM_NAMESPACE", config.namespace),
        ("RELEASE_NAME", config.release_name),
        ("ACTION", config.action.value),
        ("INGRESS_ENABLED", "true" if config.ingress_enabled else "false"),
    ]
    return [{"name": name, "value": value} for name, value in values]


def installer_pod(config: DeploymentConfig) -> Dict[str, Any]:
    name = config.installer_name
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {
            "name": name,
            "namespace": config.namespace,
            "labels": _labels(config),
            "annotations": {"sidecar.istio.io/inject": "false"},
        },
        "spec": {
            "serviceAccountName": name,
            "securityContext": {
                "fsGroup": 0,
                "runAsGroup": 0,
                "runAsNonRoot": False,
                "runAsUser": 0,
            },
            "containers": [
                {
                    "name": name,
                    "image": config.image_ref,
                    "imagePullPolicy": "Always",
                    "command": ["/bin/bash", "-c", "--"],
                    "args": ["/app/install.sh"],
                    "volumeMounts": [
                        {
                            "name": PODINFO_VOLUME,
                            "mountPath": PODINFO_MOUNT_PATH,
                            "readOnly": True,
                        }
                    ],
                    "env": installer_env(config),
                }
            ],
            "restartPolicy": "Never",
            "imagePullSecrets": [{"name": config.image_pull_secret}],
            "volumes": [
                {
                    # read by install.sh to work out which k8s environment it is in
                    "name": PODINFO_VOLUME,
                    "downwardAPI": {
                        "items": [
                            {
                                "path": "labels",
                                "fieldRef": {"fieldPath": "metadata.labels"},
                            }
                        ]
                    },
                }
            ],
        },
    }


# --------------------- Public entrypoints --------------------- #


def render(config: DeploymentConfig) -> ResourceBundle:
    """Return the installer bundle for ``config``, always in the same order."""
    return ResourceBundle(
        resources=(
            service_account(config),
            cluster_role_binding(config),
            installer_pod(config),
        )
    )


def installer_handles(config: DeploymentConfig) -> Tuple[ResourceHandle, ...]:
    """Handles of every installer object, pod first so it is gone before its account."""
    return (
        ResourceHandle(kind="Pod", name=config.installer_name, namespace=config.namespace),
        ResourceHandle(
            kind="ServiceAccount", name=config.installer_name, namespace=config.namespace
        ),
        ResourceHandle(kind="ClusterRoleBinding", name=binding_name(config)),
    )
