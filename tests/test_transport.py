import socket
import ssl
import threading
import time

import pytest
import requests

from regdigest import transport
from regdigest.errors import AuthRequestFailed, Cancelled, ManifestRequestFailed


def test_make_session(settings):
    session = transport.make_session(settings.replace(max_redirects=5, pool_maxsize=7))
    adapter = session.get_adapter("https://ghcr.io/v2/")
    assert isinstance(adapter, transport.TLSAdapter)
    assert adapter.ssl_context.minimum_version == ssl.TLSVersion.TLSv1_2
    assert adapter.ssl_context.verify_mode == ssl.CERT_REQUIRED
    assert session.max_redirects == 5
    assert session.verify is True
    assert adapter._pool_maxsize == 7


def test_make_session_tls_skip(settings):
    session = transport.make_session(settings.replace(tls_skip=True, tls_min_version="TLS1.3"))
    context = session.get_adapter("http://registry.local/").ssl_context
    assert session.verify is False
    assert context.verify_mode == ssl.CERT_NONE
    assert context.check_hostname is False
    assert context.minimum_version == ssl.TLSVersion.TLSv1_3


def test_default_session_is_shared():
    transport.reset_default_session()
    try:
        first = transport.get_default_session()
        assert transport.get_default_session() is first
        transport.reset_default_session()
        assert transport.get_default_session() is not first
    finally:
        transport.reset_default_session()


def test_context_without_deadline():
    ctx = transport.RequestContext()
    assert ctx.remaining() is None
    assert not ctx.done()
    assert ctx.timeout(10, 30) == (10, 30)
    ctx.check()


def test_context_deadline_caps_timeouts():
    ctx = transport.RequestContext(timeout=2)
    connect, read = ctx.timeout(10, 30)
    assert 0 < connect <= 2
    assert 0 < read <= 2


def test_context_expired():
    ctx = transport.RequestContext(timeout=0)
    time.sleep(0.001)
    assert ctx.done()
    with pytest.raises(Cancelled):
        ctx.check()


def test_context_cancel():
    ctx = transport.RequestContext(timeout=60)
    ctx.cancel()
    assert ctx.cancelled
    with pytest.raises(Cancelled):
        ctx.check()


def test_send_passes_headers_and_timeout(fake_registry, settings):
    fake_registry.add("GET", "https://r.example/v2/", status=200)

    with transport.send(None, "GET", "https://r.example/v2/", AuthRequestFailed,
                        headers={"User-Agent": "x"}) as response:
        assert response.status_code == 200

    assert fake_registry.requests[0].headers["User-Agent"] == "x"


def test_send_does_not_follow_redirects_by_default(fake_registry):
    fake_registry.redirect("HEAD", "https://r.example/v2/a/manifests/v1", "https://s.example/x")

    with transport.send(None, "HEAD", "https://r.example/v2/a/manifests/v1",
                        ManifestRequestFailed) as response:
        assert response.status_code == 302
    assert len(fake_registry.requests) == 1


def test_send_maps_transport_errors(fake_registry):
    fake_registry.add_answer("GET", "https://r.example/v2/", requests.Timeout("slow"))

    with pytest.raises(ManifestRequestFailed) as excinfo:
        transport.send(None, "GET", "https://r.example/v2/", ManifestRequestFailed)
    assert isinstance(excinfo.value.__cause__, requests.Timeout)


def test_send_reports_cancellation_during_request(fake_registry):
    ctx = transport.RequestContext()

    def cancel_then_time_out(request):
        ctx.cancel()
        return requests.Timeout("aborted", request=request)

    fake_registry.add_answer("GET", "https://r.example/v2/", cancel_then_time_out)

    with pytest.raises(Cancelled):
        transport.send(None, "GET", "https://r.example/v2/", AuthRequestFailed, ctx=ctx)


def test_send_checks_context_first(fake_registry):
    ctx = transport.RequestContext()
    ctx.cancel()

    with pytest.raises(Cancelled):
        transport.send(None, "GET", "https://r.example/v2/", AuthRequestFailed, ctx=ctx)
    assert fake_registry.requests == []


def test_run_returns_result_and_raises_errors():
    ctx = transport.RequestContext(timeout=5)
    assert ctx.run(lambda: 42) == 42

    def fail():
        raise requests.ConnectionError("refused")

    with pytest.raises(requests.ConnectionError):
        ctx.run(fail)


def test_abandoned_response_is_released(fake_registry):
    ctx = transport.RequestContext()
    release = threading.Event()

    def cancel_while_answering(request):
        ctx.cancel()
        release.wait(5)
        return (200, {}, b"late")

    fake_registry.add_answer("GET", "https://r.example/v2/", cancel_while_answering)

    with pytest.raises(Cancelled):
        transport.send(None, "GET", "https://r.example/v2/", AuthRequestFailed, ctx=ctx)

    release.set()
    deadline = time.monotonic() + 5
    while fake_registry.released < 1 and time.monotonic() < deadline:
        time.sleep(0.01)
    assert fake_registry.opened == fake_registry.released == 1


@pytest.fixture
def stalled_server():
    """
    URL of a local listener that completes the TCP handshake and never answers
    """
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(8)
    host, port = server.getsockname()
    yield f"http://{host}:{port}/v2/"
    server.close()


@pytest.fixture
def real_session(settings):
    session = transport.make_session(settings)
    session.trust_env = False
    yield session
    session.close()


def test_cancel_aborts_request_in_flight(stalled_server, real_session):
    ctx = transport.RequestContext()
    timer = threading.Timer(0.2, ctx.cancel)
    timer.start()
    started = time.monotonic()
    try:
        with pytest.raises(Cancelled):
            transport.send(real_session, "GET", stalled_server, AuthRequestFailed, ctx=ctx)
    finally:
        timer.cancel()
    assert time.monotonic() - started < 5


def test_deadline_aborts_request_in_flight(stalled_server, real_session):
    ctx = transport.RequestContext(timeout=0.3)
    started = time.monotonic()
    with pytest.raises(Cancelled):
        transport.send(real_session, "GET", stalled_server, AuthRequestFailed, ctx=ctx)
    assert time.monotonic() - started < 5
