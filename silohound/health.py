from __future__ import annotations

import time

import httpx


def check_health(
    url: str,
    timeout_s: float = 2.0,
    transport: httpx.BaseTransport | None = None,
) -> tuple[bool, str, float | None]:
    """Probe an HTTP endpoint published on the host.

    Any 2xx/3xx answer counts as reachable.
    Returns (is_reachable, message, latency_ms).
    """
    start = time.time()
    try:
        with httpx.Client(timeout=timeout_s, follow_redirects=False, transport=transport) as client:
            resp = client.get(url)
        latency_ms = round((time.time() - start) * 1000.0, 2)
        if resp.status_code >= 400:
            return False, f"HTTP {resp.status_code}", latency_ms
        return True, "Reachable", latency_ms
    except (httpx.ConnectError, httpx.ReadTimeout, httpx.ConnectTimeout):
        latency_ms = round((time.time() - start) * 1000.0, 2)
        return False, "No response", latency_ms
    except httpx.HTTPError as e:
        latency_ms = round((time.time() - start) * 1000.0, 2)
        return False, f"Error: {type(e).__name__}: {e}", latency_ms


def wait_for_http(
    url: str,
    max_wait_s: float,
    interval_s: float = 2.0,
    transport: httpx.BaseTransport | None = None,
) -> tuple[bool, str]:
    t0 = time.time()
    msg = "No response"
    while True:
        ok, msg, _ = check_health(url, transport=transport)
        if ok:
            return True, msg
        if time.time() - t0 >= max_wait_s:
            return False, msg
        time.sleep(interval_s)
