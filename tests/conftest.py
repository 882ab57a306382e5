import http
import io
import json

import pytest
import requests
import requests.adapters
from requests.structures import CaseInsensitiveDict

from regdigest import config, transport


class FakeBody(io.BytesIO):
    """
    Response body that reports back when its connection is released
    """

    def __init__(self, data, registry):
        super().__init__(data)
        self.registry = registry
        self.released = False

    def release_conn(self):
        if not self.released:
            self.released = True
            self.registry.released += 1


class FakeRegistry(requests.adapters.BaseAdapter):
    """
    Transport adapter answering requests from canned routes.

    Routes are keyed by method and URL without query string. A route holds a
    queue of answers; each request pops one until the last, which then keeps
    answering. An answer is (status, headers, body), an exception instance to
    raise, or a callable taking the request and returning either.
    """

    def __init__(self):
        super().__init__()
        self.routes = {}
        self.requests = []
        self.opened = 0
        self.released = 0

    def add(self, method, url, status=200, headers=None, body=b"", json_body=None):
        if json_body is not None:
            body = json.dumps(json_body)
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.add_answer(method, url, (status, headers or {}, body))

    def add_answer(self, method, url, answer):
        self.routes.setdefault((method, url), []).append(answer)

    def redirect(self, method, url, location, status=302):
        self.add(method, url, status=status, headers={"Location": location})

    def sent(self, method=None):
        return [r for r in self.requests if method is None or r.method == method]

    def send(self, request, stream=False, timeout=None, verify=True, cert=None, proxies=None):
        self.requests.append(request)
        answers = self.routes.get((request.method, request.url.split("?", 1)[0]))
        if not answers:
            raise requests.ConnectionError(
                f"no route for {request.method} {request.url}", request=request
            )
        answer = answers.pop(0) if len(answers) > 1 else answers[0]
        if callable(answer):
            answer = answer(request)
        if isinstance(answer, Exception):
            raise answer

        status, headers, body = answer
        response = requests.Response()
        response.status_code = status
        response.reason = http.HTTPStatus(status).phrase
        response.headers = CaseInsensitiveDict(headers)
        response.raw = FakeBody(body, self)
        response.url = request.url
        response.request = request
        response.connection = self
        self.opened += 1
        return response

    def close(self):
        pass


@pytest.fixture(autouse=True)
def settings():
    """
    Fixed process-wide settings for every test, restored afterwards
    """
    original = config.get_settings()
    current = config.Settings(user_agent="regdigest-test")
    config.set_settings(current)
    yield current
    config.set_settings(original)


@pytest.fixture
def fake_registry(settings):
    """
    A FakeRegistry mounted on the default session.

    Every response handed out must have been released by the end of the test.
    """
    fake = FakeRegistry()
    session = requests.Session()
    session.trust_env = False
    session.max_redirects = settings.max_redirects
    session.mount("https://", fake)
    session.mount("http://", fake)
    fake.session = session
    transport.set_default_session(session)
    yield fake
    transport.set_default_session(None)
    assert fake.opened == fake.released
