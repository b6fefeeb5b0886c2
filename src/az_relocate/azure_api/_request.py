"""Low-level ARM verbs with throttling back-off.

Every helper raises :class:`requests.HTTPError` on a non-retryable failure,
except :func:`_arm_get` which maps ``404`` to ``None`` so callers can use it
as an existence probe.
"""

from __future__ import annotations

import logging
import time

import requests

from az_relocate.azure_api._auth import _get_headers

logger = logging.getLogger(__name__)

_MAX_THROTTLE_RETRIES = 3


def _retry_after(resp: requests.Response, attempt: int) -> int:
    """Seconds to wait after a 429, honouring ``Retry-After`` when sane."""
    try:
        return min(int(resp.headers.get("Retry-After", str(2**attempt))), 30)
    except (TypeError, ValueError):
        return 2**attempt


def _send(
    method: str,
    url: str,
    tenant_id: str | None,
    body: dict | None = None,
    timeout: int = 60,
) -> requests.Response:
    """Send one ARM request, retrying on HTTP 429."""
    headers = _get_headers(tenant_id)
    resp = None
    for attempt in range(_MAX_THROTTLE_RETRIES):
        resp = requests.request(method, url, headers=headers, json=body, timeout=timeout)
        if resp.status_code != 429:
            return resp
        wait_time = _retry_after(resp, attempt)
        logger.warning(
            "ARM %s throttled (429), retrying in %ss (attempt %s/%s)",
            method,
            wait_time,
            attempt + 1,
            _MAX_THROTTLE_RETRIES,
        )
        time.sleep(wait_time)
    assert resp is not None
    return resp


def _arm_get(url: str, tenant_id: str | None = None) -> dict | None:
    """GET a resource; ``None`` when it does not exist."""
    resp = _send("GET", url, tenant_id)
    if resp.status_code == 404:
        return None
    resp.raise_for_status()
    data: dict = resp.json()
    return data


def _arm_put(url: str, body: dict, tenant_id: str | None = None) -> dict:
    """PUT (create or update) a resource and return the accepted payload."""
    resp = _send("PUT", url, tenant_id, body=body)
    resp.raise_for_status()
    if not resp.content:
        return {}
    data: dict = resp.json()
    return data


def _arm_post(url: str, tenant_id: str | None = None) -> None:
    """POST an action (e.g. ``deallocate``); completion must be polled."""
    resp = _send("POST", url, tenant_id)
    resp.raise_for_status()


def _arm_delete(url: str, tenant_id: str | None = None) -> None:
    """DELETE a resource. A missing resource counts as deleted."""
    resp = _send("DELETE", url, tenant_id)
    if resp.status_code == 404:
        return
    resp.raise_for_status()
