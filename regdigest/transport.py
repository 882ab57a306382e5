"""
HTTP plumbing shared by the auth and manifest requests.

The process-wide requests.Session (get_default_session) is built from the
current Settings: TLS minimum version, optional verification skip, pool size
and redirect budget. Tests swap it for a session with fake adapters mounted.
"""
import logging
import ssl
import threading
import time

import requests
import requests.adapters

from regdigest.config import get_settings
from regdigest.errors import Cancelled

logger = logging.getLogger(__name__)

TLS_VERSION_MAP = {
    "TLS1.0": ssl.TLSVersion.TLSv1,
    "TLS1.1": ssl.TLSVersion.TLSv1_1,
    "TLS1.2": ssl.TLSVersion.TLSv1_2,
    "TLS1.3": ssl.TLSVersion.TLSv1_3,
}


class _AbortableCall:
    """
    One blocking call run on a worker thread that the caller may walk away from
    """

    def __init__(self, fn):
        self.fn = fn
        self.wakeup = threading.Event()
        self.lock = threading.Lock()
        self.finished = False
        self.abandoned = False
        self.result = None
        self.error = None

    def run(self):
        result = error = None
        try:
            result = self.fn()
        except Exception as e:
            error = e
        with self.lock:
            self.finished = True
            self.result, self.error = result, error
            abandoned = self.abandoned
        self.wakeup.set()
        if abandoned and result is not None:
            # Nobody will read it; give the connection back to the pool
            result.close()

    def abandon(self):
        """
        Give up on the call unless it already finished. Returns True if abandoned.
        """
        with self.lock:
            if not self.finished:
                self.abandoned = True
            return self.abandoned


class RequestContext:
    """
    Deadline and cancellation flag for one registry operation.

    A context may be shared between threads; cancel() can be called from
    any of them. Requests check the context before they start, cap their
    socket timeouts at the time left before the deadline, and run on a
    worker thread so that cancel() or the deadline releases the caller
    while the request is still in flight.
    """

    def __init__(self, timeout=None):
        self._deadline = None if timeout is None else time.monotonic() + timeout
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._wakeups = set()

    def cancel(self):
        self._cancelled.set()
        with self._lock:
            wakeups = list(self._wakeups)
        for wakeup in wakeups:
            wakeup.set()

    @property
    def cancelled(self):
        return self._cancelled.is_set()

    def remaining(self):
        if self._deadline is None:
            return None
        return max(self._deadline - time.monotonic(), 0.0)

    def done(self):
        return self.cancelled or self.remaining() == 0.0

    def check(self):
        if self.cancelled:
            raise Cancelled("operation cancelled")
        if self.remaining() == 0.0:
            raise Cancelled("deadline exceeded")

    def timeout(self, connect, read):
        """
        Return a (connect, read) timeout tuple bounded by the deadline
        """
        left = self.remaining()
        if left is None:
            return (connect, read)
        return (min(connect, left), min(read, left))

    def run(self, fn):
        """
        Call fn() and return its result, or raise Cancelled as soon as the
        context is cancelled or its deadline passes, whichever comes first.

        fn runs on a daemon thread. When the caller gives up, the thread is
        left to finish on its own socket timeout and the response it
        eventually returns is closed.
        """
        call = _AbortableCall(fn)
        with self._lock:
            self._wakeups.add(call.wakeup)
        try:
            if self.cancelled:
                call.wakeup.set()
            else:
                threading.Thread(
                    target=call.run, daemon=True, name="regdigest-request",
                ).start()
            call.wakeup.wait(self.remaining())
        finally:
            with self._lock:
                self._wakeups.discard(call.wakeup)

        if call.abandon():
            self.check()
            raise Cancelled("deadline exceeded")
        if call.error is not None:
            raise call.error
        return call.result


class TLSAdapter(requests.adapters.HTTPAdapter):
    """
    HTTPAdapter whose pools use a caller-provided SSLContext
    """

    def __init__(self, ssl_context, **kwargs):
        # HTTPAdapter.__init__ builds the pool manager, so set this first
        self.ssl_context = ssl_context
        super().__init__(**kwargs)

    def init_poolmanager(self, *args, **kwargs):
        kwargs["ssl_context"] = self.ssl_context
        return super().init_poolmanager(*args, **kwargs)

    def proxy_manager_for(self, *args, **kwargs):
        kwargs["ssl_context"] = self.ssl_context
        return super().proxy_manager_for(*args, **kwargs)


def make_ssl_context(settings):
    context = ssl.create_default_context()
    context.minimum_version = TLS_VERSION_MAP.get(
        settings.tls_min_version, ssl.TLSVersion.TLSv1_2
    )
    if settings.tls_skip:
        logger.debug("TLS verification disabled via REGISTRY_TLS_SKIP")
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


def make_session(settings=None):
    """
    Create a requests.Session configured for registry access
    """
    if settings is None:
        settings = get_settings()

    session = requests.Session()
    session.max_redirects = settings.max_redirects
    session.verify = not settings.tls_skip
    adapter = TLSAdapter(
        make_ssl_context(settings),
        pool_connections=settings.pool_maxsize,
        pool_maxsize=settings.pool_maxsize,
    )
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    logger.debug(
        f"Created registry session (tls_min_version={settings.tls_min_version}, "
        + f"tls_skip={settings.tls_skip}, max_redirects={settings.max_redirects})"
    )
    return session


_default_session = None
_default_session_lock = threading.Lock()


def get_default_session():
    global _default_session
    with _default_session_lock:
        if _default_session is None:
            _default_session = make_session()
        return _default_session


def set_default_session(session):
    global _default_session
    with _default_session_lock:
        _default_session = session


def reset_default_session():
    global _default_session
    with _default_session_lock:
        old, _default_session = _default_session, None
    if old is not None:
        old.close()


def send(
    session,
    method,
    url,
    failure,
    ctx=None,
    headers=None,
    allow_redirects=False,
):
    """
    Send one request and return the response.

    The caller owns the response and must close it, preferably with a
    with-statement. Transport errors are raised as `failure` (an error class
    such as AuthRequestFailed) with the requests exception as the cause;
    cancellation and deadline expiry are raised as Cancelled, also while the
    request is in flight when a ctx is given.
    """
    settings = get_settings()
    if session is None:
        session = get_default_session()

    def request(timeout):
        return session.request(
            method,
            url,
            headers=headers,
            timeout=timeout,
            allow_redirects=allow_redirects,
        )

    logger.debug(f"{method} {url}")
    try:
        if ctx is None:
            return request((settings.connect_timeout, settings.timeout))
        ctx.check()
        timeout = ctx.timeout(settings.connect_timeout, settings.timeout)
        return ctx.run(lambda: request(timeout))
    except requests.TooManyRedirects as e:
        if e.response is not None:
            e.response.close()
        raise failure(
            f"{method} {url} exceeded {session.max_redirects} redirects"
        ) from e
    except requests.RequestException as e:
        if ctx is not None and ctx.done():
            raise Cancelled(f"{method} {url} aborted: {e}") from e
        raise failure(f"{method} {url} failed: {e}") from e
