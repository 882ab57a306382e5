"""
Translate stored registry credentials into the form sent in Authorization.
"""
import base64
import binascii
import json


def transform_auth(registry_auth):
    """
    Convert a stored credential blob into base64("username:password").

    Docker stores credentials as base64 of a JSON object with username and
    password keys. When the blob decodes to such an object with both fields
    set, it is re-encoded as the basic auth pair the registries expect.
    Anything else (empty input, already encoded "user:pass", garbage) is
    returned unchanged: this never raises.
    """
    if not registry_auth:
        return ""

    try:
        decoded = base64.b64decode(registry_auth, validate=True)
        credentials = json.loads(decoded)
    except (binascii.Error, ValueError, TypeError):
        return registry_auth

    if not isinstance(credentials, dict):
        return registry_auth

    username = credentials.get("username")
    password = credentials.get("password")
    if not (isinstance(username, str) and username):
        return registry_auth
    if not (isinstance(password, str) and password):
        return registry_auth

    pair = f"{username}:{password}".encode("utf-8")
    return base64.b64encode(pair).decode("ascii")
