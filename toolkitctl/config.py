import logging
import os
from dataclasses import dataclass
from typing import Optional, Tuple

from .schemas import Action, DeploymentConfig

logger = logging.getLogger(__name__)

RELEASE_NAME = "domino-admin-toolkit"
INSTALLER_NAME = "toolkit-bootstrap"

QUAY_IMAGE = "quay.io/domino/cre"
QUAY_PULLSECRET = "domino-quay-repos"
MIRRORS_IMAGE = "mirrors.domino.tech/domino/admin-toolkit"
MIRRORS_PULLSECRET = "domino-mirrors-repos"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class Settings:
    k8s_api_base_url: str = os.getenv("K8S_API_BASE_URL", "")
    k8s_namespace: str = os.getenv("K8S_NAMESPACE", "")
    verify_ssl: bool = _env_bool("K8S_VERIFY_SSL", "false")
    k8s_bearer_token: str | None = os.getenv("K8S_BEARER_TOKEN") or None
    request_timeout: float = float(os.getenv("K8S_REQUEST_TIMEOUT", "30"))

    log_level: str = os.getenv("TOOLKIT_LOG_LEVEL", "INFO")
    update_check: bool = _env_bool("TOOLKIT_UPDATE_CHECK", "true")
    version_url: str = os.getenv(
        "TOOLKIT_VERSION_URL", "https://toolkit.re.domino.tech:443/.toolkit_version"
    )
    image_archive_url: str = os.getenv(
        "TOOLKIT_IMAGE_ARCHIVE_URL",
        "https://domino-admin-toolkit-files.s3.us-west-2.amazonaws.com/domino-admin-toolkit.tar.gz",
    )
    kubectl_bin: str = os.getenv("TOOLKIT_KUBECTL", "kubectl")
    docker_bin: str = os.getenv("TOOLKIT_DOCKER", "docker")

    app_port: int = int(os.getenv("APP_PORT", "8888"))
    daemonset_mode: bool = os.getenv("DAEMONSET_MODE", "False").lower() == "true"
    daemonset_port: int = int(os.getenv("DAEMONSET_PORT", "5000"))
    ingress_enabled: bool = _env_bool("INGRESS_ENABLED", "true")

    installer_poll_interval: float = float(os.getenv("TOOLKIT_INSTALLER_POLL_INTERVAL", "10"))
    installer_poll_attempts: int = int(os.getenv("TOOLKIT_INSTALLER_POLL_ATTEMPTS", "21"))
    pod_poll_interval: float = float(os.getenv("TOOLKIT_POD_POLL_INTERVAL", "5"))
    pod_poll_attempts: int = int(os.getenv("TOOLKIT_POD_POLL_ATTEMPTS", "21"))
    delete_poll_interval: float = float(os.getenv("TOOLKIT_DELETE_POLL_INTERVAL", "2"))
    delete_poll_attempts: int = int(os.getenv("TOOLKIT_DELETE_POLL_ATTEMPTS", "30"))


settings = Settings()


def registry_of(image: str) -> str:
    """The registry host of an image reference, i.e. everything before the first slash."""
    return image.split("/", 1)[0] if image else ""


def resolve_image(registry: str, image: Optional[str] = None) -> Tuple[str, str]:
    """Pick the toolkit image and pull secret for the cluster's registry.

    An explicitly requested image always wins and keeps the default pull secret.
    """
    if image:
        return image, QUAY_PULLSECRET

    if registry.startswith("quay.io"):
        return QUAY_IMAGE, QUAY_PULLSECRET
    if registry.startswith("mirrors.domino.tech"):
        return MIRRORS_IMAGE, MIRRORS_PULLSECRET

    logger.warning(
        "Docker registry '%s' is not supported, you need to copy the toolkit's "
        "docker image to this registry first.\n"
        "Run this command from the host where you have both Internet and docker registry access:\n"
        "  toolkit push %s/%s\n"
        "Then run the toolkit where you have cluster access:\n"
        "  toolkit install --image %s/%s\n"
        "  toolkit pytest\n"
        "Now will try quay.io anyway.",
        registry,
        registry,
        RELEASE_NAME,
        registry,
        RELEASE_NAME,
    )
    return QUAY_IMAGE, QUAY_PULLSECRET


def build_deployment_config(
    namespace: str,
    registry: str,
    cfg: Optional[Settings] = None,
    *,
    image: Optional[str] = None,
    tag: Optional[str] = None,
    daemonset_mode: Optional[bool] = None,
    daemonset_port: Optional[int] = None,
    ingress_enabled: Optional[bool] = None,
    action: Action = Action.INSTALL,
) -> DeploymentConfig:
    """Merge settings defaults with command-line overrides into one DeploymentConfig."""
    cfg = cfg or settings
    resolved_image, pull_secret = resolve_image(registry, image)

    return DeploymentConfig(
        namespace=namespace,
        image=resolved_image,
        tag=tag or "latest",
        image_pull_secret=pull_secret,
        release_name=RELEASE_NAME,
        installer_name=INSTALLER_NAME,
        app_port=cfg.app_port,
        daemonset_mode=cfg.daemonset_mode if daemonset_mode is None else daemonset_mode,
        daemonset_port=cfg.daemonset_port if daemonset_port is None else daemonset_port,
        ingress_enabled=cfg.ingress_enabled if ingress_enabled is None else ingress_enabled,
        action=action,
    )
