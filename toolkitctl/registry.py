"""Mirror the toolkit image into a private registry."""

from __future__ import annotations

import logging
import shlex
import subprocess
from pathlib import Path

import requests

from .config import QUAY_IMAGE, Settings, settings as default_settings
from .errors import PreconditionError, ToolkitError

logger = logging.getLogger(__name__)

SOURCE_TAG = "slim"
TARGET_TAG = "v1-compatible"


def check_docker(cfg: Settings | None = None) -> None:
    cfg = cfg or default_settings
    try:
        result = subprocess.run(
            [cfg.docker_bin, "version"], capture_output=True, text=True, check=False
        )
    except FileNotFoundError:
        result = None
    if result is None or result.returncode != 0:
        raise PreconditionError(
            "docker is not configured. Please run this where you have docker set up."
        )


def download_archive(url: str, destination: Path, chunk_size: int = 1 << 20) -> Path:
    logger.info("Downloading %s", url)
    with requests.get(url, stream=True, timeout=60) as resp:
        resp.raise_for_status()
        with open(destination, "wb") as f:
            for chunk in resp.iter_content(chunk_size=chunk_size):
                f.write(chunk)
    return destination


def push_image(target_image: str, workdir: Path | None = None, cfg: Settings | None = None) -> str:
    """Load the published toolkit image and push it as ``target_image:v1-compatible``."""
    cfg = cfg or default_settings
    check_docker(cfg)

    workdir = workdir or Path.cwd()
    archive = download_archive(
        cfg.image_archive_url, workdir / Path(cfg.image_archive_url).name
    )

    target = f"{target_image}:{TARGET_TAG}"
    _run_docker(cfg, ["load", "-i", str(archive)])
    _run_docker(cfg, ["image", "tag", f"{QUAY_IMAGE}:{SOURCE_TAG}", target])
    _run_docker(cfg, ["image", "push", target])
    return target


def _run_docker(cfg: Settings, args: list[str]) -> None:
    command = [cfg.docker_bin, *args]
    logger.info("+ %s", shlex.join(command))
    result = subprocess.run(command, check=False)
    if result.returncode != 0:
        raise ToolkitError(f"{shlex.join(command)} failed with exit code {result.returncode}")
