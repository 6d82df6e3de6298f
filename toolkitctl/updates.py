"""Advisory check for a newer toolkit release. Never blocks a command."""

from __future__ import annotations

import logging
from typing import Optional

import requests

logger = logging.getLogger(__name__)

UPDATE_INSTRUCTIONS = "pip install --upgrade toolkitctl"


def fetch_latest_version(url: str, timeout: float = 5) -> Optional[str]:
    try:
        resp = requests.get(url, timeout=timeout)
    except requests.RequestException as e:
        logger.debug("version check failed: %s", e)
        return None
    if resp.status_code != 200:
        return None
    return resp.text.strip() or None


def check_for_updates(current: str, url: str, timeout: float = 5) -> Optional[str]:
    """Log a warning when ``url`` advertises a different version; return that version."""
    if current == "master":
        return None

    logger.info("Checking for updates")
    latest = fetch_latest_version(url, timeout=timeout)
    if latest is None:
        logger.warning(
            "Unable to reach toolkit repo, will continue with the current version %s", current
        )
        return None

    if latest != current:
        logger.warning(
            "An updated version of toolkit is available (%s, running %s). "
            "We recommend to update to the latest version and run again:\n  %s",
            latest,
            current,
            UPDATE_INSTRUCTIONS,
        )
    return latest
