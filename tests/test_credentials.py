import base64
import json

import pytest

from regdigest.credentials import transform_auth


def b64(s):
    return base64.b64encode(s.encode()).decode()


def test_empty():
    assert transform_auth("") == ""


def test_json_credentials_are_reencoded():
    stored = b64(json.dumps({"username": "user", "password": "pass"}))
    assert transform_auth(stored) == b64("user:pass")


def test_extra_fields_are_ignored():
    stored = b64(json.dumps({
        "username": "user",
        "password": "s3cr:t",
        "serveraddress": "ghcr.io",
    }))
    assert transform_auth(stored) == b64("user:s3cr:t")


@pytest.mark.parametrize("stored", [
    b64("user:pass"),
    b64(json.dumps({"username": "user"})),
    b64(json.dumps({"username": "", "password": "pass"})),
    b64(json.dumps({"username": "user", "password": 12})),
    b64(json.dumps(["user", "pass"])),
    b64("not json at all"),
    "not base64!!",
    "ünïcode",
])
def test_passthrough(stored):
    assert transform_auth(stored) == stored


@pytest.mark.parametrize("stored", [
    "",
    b64("user:pass"),
    b64(json.dumps({"username": "user", "password": "pass"})),
    "garbage",
])
def test_idempotent(stored):
    once = transform_auth(stored)
    assert transform_auth(once) == once
