"""Fetches the public network configuration document."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from ..config import settings
from ..core.errors import ConfigurationError

logger = logging.getLogger(__name__)


async def fetch_public_config(
    environment: Optional[str] = None,
    *,
    timeout_s: int = 20,
    client: Optional[httpx.AsyncClient] = None,
) -> Dict[str, Any]:
    """Download the contracts/forwarder/webhook map for an environment.

    The ``avoidTheCaches`` query parameter defeats the CDN cache so freshly
    deployed addresses are picked up.
    """
    env = environment or settings.environment
    url = settings.public_config_staging_url if env == "staging" else settings.public_config_url

    try:
        if client is not None:
            response = await client.get(url, params={"avoidTheCaches": 1})
        else:
            async with httpx.AsyncClient(timeout=timeout_s) as http:
                response = await http.get(url, params={"avoidTheCaches": 1})
        response.raise_for_status()
        document = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        raise ConfigurationError(f"Could not load public config from {url}: {exc}") from exc

    if not isinstance(document, dict):
        raise ConfigurationError(f"Public config at {url} is not an object")
    logger.info("Loaded public config for %s (%d networks)", env, len(document.get("contracts") or {}))
    return document
