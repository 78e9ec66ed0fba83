import httpx

from silohound.health import check_health, wait_for_http


def _transport(status_code=200, exc=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if exc is not None:
            raise exc
        return httpx.Response(status_code, json={"data": {"server_version": "v5"}})

    return httpx.MockTransport(handler)


def test_check_health_ok():
    ok, msg, latency = check_health("http://127.0.0.1:8181/", transport=_transport())
    assert ok is True
    assert msg == "Reachable"
    assert latency is not None


def test_check_health_http_error():
    ok, msg, _ = check_health("http://127.0.0.1:8181/", transport=_transport(503))
    assert ok is False
    assert msg == "HTTP 503"


def test_check_health_no_response():
    ok, msg, _ = check_health(
        "http://127.0.0.1:8181/", transport=_transport(exc=httpx.ConnectError("refused"))
    )
    assert ok is False
    assert msg == "No response"


def test_wait_for_http_gives_up_after_deadline():
    ok, msg = wait_for_http(
        "http://127.0.0.1:8181/",
        max_wait_s=0,
        interval_s=0,
        transport=_transport(exc=httpx.ConnectError("refused")),
    )
    assert ok is False
    assert msg == "No response"


def test_wait_for_http_retries_until_up():
    answers = iter([502, 502, 200])

    def handler(request):
        return httpx.Response(next(answers))

    ok, msg = wait_for_http("http://127.0.0.1:8181/", max_wait_s=5, interval_s=0, transport=httpx.MockTransport(handler))
    assert ok is True
    assert msg == "Reachable"
