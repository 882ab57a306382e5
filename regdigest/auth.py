"""
Registry authentication: the /v2/ challenge probe and token exchange.

get_token probes https://<host>/v2/ and answers the challenge the registry
sends back:

- no challenge (200, any non-401, or a 401 without WWW-Authenticate):
  anonymous access, empty header
- Basic: the transformed credential is sent as-is
- Bearer: a token is requested from the realm with service and a pull scope
  for the repository path

The returned TokenGrant also records the host that actually serves tokens
(effective_host) and whether the probe followed an HTTP redirect to get its
answer, which the manifest requests use to pick their host.
"""
import dataclasses
import json
import logging
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from regdigest import challenge as challenges
from regdigest import transport
from regdigest.config import get_settings
from regdigest.errors import (
    AuthRequestFailed,
    InvalidChallenge,
    InvalidReference,
    NoCredentials,
    TokenResponseInvalid,
    UnsupportedChallenge,
)
from regdigest.reference import parse_image_reference

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class TokenGrant:
    header: str
    effective_host: str
    was_redirected: bool

    def __iter__(self):
        return iter((self.header, self.effective_host, self.was_redirected))


def get_registry_address(image_name):
    """
    Return the registry host serving image_name (Docker Hub as index.docker.io)
    """
    return parse_image_reference(image_name).host


def get_challenge_url(reference, settings=None):
    if settings is None:
        settings = get_settings()
    return f"{settings.scheme}://{reference.host}/v2/"


def get_auth_url(challenge, reference):
    """
    Build the token request URL for a bearer challenge.

    The scope always targets the repository path of the reference (including
    the library/ namespace on Docker Hub), whatever scope the registry
    suggested in the challenge.
    """
    realm = challenge.realm.strip()
    service = challenge.service
    if not realm or not service:
        raise InvalidChallenge(
            "challenge header did not include all values needed to construct "
            + f"an auth url: realm={realm!r} service={service!r}"
        )

    parts = urlsplit(realm)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise InvalidChallenge(f"invalid realm URL in challenge header: {realm!r}")

    query = parse_qsl(parts.query, keep_blank_values=True)
    query.append(("service", service))
    query.append(("scope", f"repository:{reference.repository_path}:pull"))
    return urlunsplit(
        (parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment)
    )


def _read_token(response):
    try:
        body = response.json()
    except ValueError as e:
        raise TokenResponseInvalid(
            f"failed to decode token response: {e}", status=_status_line(response)
        ) from e

    token = ""
    if isinstance(body, dict):
        token = body.get("token") or body.get("access_token") or ""
    if not isinstance(token, str) or not token:
        raise TokenResponseInvalid(
            "token response carried no token", status=_status_line(response)
        )
    return token


def _status_line(response):
    return f"{response.status_code} {response.reason or ''}".strip()


def get_bearer_header(challenge, reference, registry_auth, session=None, ctx=None):
    """
    Exchange a bearer challenge for an "Authorization: Bearer ..." value
    """
    auth_url = get_auth_url(challenge, reference)
    headers = {
        "Accept": "application/json",
        "User-Agent": get_settings().user_agent,
    }
    if registry_auth:
        logger.debug(f"Found credentials for {reference.name}")
        headers["Authorization"] = f"Basic {registry_auth}"
    else:
        logger.debug(f"No credentials found for {reference.name}")

    with transport.send(
        session, "GET", auth_url, AuthRequestFailed, ctx=ctx, headers=headers,
        allow_redirects=True,
    ) as response:
        token = _read_token(response)

    logger.debug(f"Retrieved bearer token for {reference.name}")
    return f"Bearer {token}"


def _host_of(url):
    return urlsplit(url).netloc


def negotiate(reference, registry_auth, session=None, ctx=None):
    """
    Run the challenge/token exchange for an already parsed reference
    """
    challenge_url = get_challenge_url(reference)
    challenge_host = _host_of(challenge_url)
    headers = {
        "Accept": "*/*",
        "User-Agent": get_settings().user_agent,
    }

    with transport.send(
        session, "GET", challenge_url, AuthRequestFailed, ctx=ctx,
        headers=headers, allow_redirects=True,
    ) as response:
        final_host = _host_of(response.url or challenge_url)
        redirected = bool(response.history) and final_host != challenge_host
        status = response.status_code
        www_authenticate = response.headers.get(challenges.CHALLENGE_HEADER, "")

    if redirected:
        logger.debug(f"Challenge probe for {reference.name} redirected to {final_host}")

    if status != 401:
        logger.debug(f"No authentication required for {reference.name} ({status})")
        return TokenGrant("", final_host, redirected)

    parsed = challenges.parse_www_authenticate(www_authenticate)
    if parsed is None:
        logger.debug(
            f"Empty {challenges.CHALLENGE_HEADER} header from {final_host}; "
            + "assuming no authentication required"
        )
        return TokenGrant("", final_host, redirected)

    if parsed.scheme == challenges.BASIC:
        if not registry_auth:
            raise NoCredentials(
                f"{final_host} requires basic auth but no credentials were provided"
            )
        logger.debug(f"Using basic auth for {reference.name}")
        return TokenGrant(f"Basic {registry_auth}", final_host, redirected)

    if parsed.scheme == challenges.BEARER:
        header = get_bearer_header(parsed, reference, registry_auth, session, ctx)
        effective_host = _host_of(parsed.realm.strip())
        logger.debug(f"Token for {reference.name} issued by {effective_host}")
        return TokenGrant(header, effective_host, redirected)

    logger.error(f"Unsupported challenge type from {final_host}: {www_authenticate}")
    raise UnsupportedChallenge(
        f"unsupported challenge type from registry: {parsed.raw_scheme or www_authenticate}"
    )


def get_token(container, registry_auth, session=None, ctx=None):
    """
    Fetch the Authorization header value for the registry of container's image.

    registry_auth is the credential in wire form (see
    regdigest.credentials.transform_auth). Returns a TokenGrant, which also
    unpacks as (header, effective_host, was_redirected).
    """
    image_name = getattr(container, "image_name", container)
    reference = parse_image_reference(image_name)
    if reference.tag is None:
        raise InvalidReference(f"{image_name} has no tag")
    return negotiate(reference, registry_auth, session, ctx)
