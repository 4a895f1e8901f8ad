# -*- codeing = utf-8 -*-
# @Create: 2023-03-29 3:23 p.m.
# @Update: 2026-10-19 10:40 a.m.
# @Author: John Zhao
"""HTTP probing helper functions."""

import logging
from dataclasses import dataclass
from typing import Optional

import requests

import configuration

LOGGER = logging.getLogger(__name__)

USER_AGENT = "WebPulse/1.0"
DEFAULT_BACKEND_MARKER = "default backend - 404"
NGINX_NOT_FOUND_MARKERS = ("404 Not Found", "nginx")


@dataclass(frozen=True)
class Outcome:
    """Result of a single probe."""

    healthy: bool
    detail: str


def is_default_backend_page(body: str) -> bool:
    """Detect a reverse proxy error page served with a 200 status."""

    if DEFAULT_BACKEND_MARKER in body:
        return True
    return all(marker in body for marker in NGINX_NOT_FOUND_MARKERS)


def classify_response(url: str, status_code: int, body: str) -> Outcome:
    if status_code != 200:
        LOGGER.warning("monitor.probe.failure url=%s status=%s", url,
                       status_code)
        return Outcome(False, f"HTTP {status_code}")

    if is_default_backend_page(body):
        LOGGER.warning("monitor.probe.default_backend url=%s", url)
        LOGGER.debug("monitor.probe.default_backend_body url=%s body=%r", url,
                     body)
        return Outcome(False, "Nginx default backend detected")

    LOGGER.info("monitor.probe.success url=%s status=%s", url, status_code)
    return Outcome(True, f"HTTP {status_code}")


def probe(
    url: str,
    *,
    timeout: Optional[float] = None,
    session: Optional[requests.Session] = None,
) -> Outcome:
    """Perform a GET probe against ``url`` and classify the response.

    Transport errors never propagate; they are reported as an unhealthy
    ``Outcome`` carrying the error message.
    """

    resolved_timeout = configuration.DEFAULT_REQUEST_TIMEOUT if timeout is None else timeout
    getter = session.get if session is not None else requests.get

    try:
        response = getter(
            url,
            headers={"User-Agent": USER_AGENT},
            timeout=resolved_timeout,
        )
        body = response.text
    except requests.RequestException as exc:
        LOGGER.warning("monitor.probe.error url=%s error=%s", url, exc)
        return Outcome(False, f"Connection error: {exc}")

    return classify_response(url, response.status_code, body)
