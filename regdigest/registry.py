"""
Interaction with the Docker Registry: resolve and compare manifest digests.

compare_digest asks the registry for the current digest of a container's
image tag with a HEAD request and falls back to a GET when the HEAD answer
is unusable. fetch_digest goes straight to the GET. Both authenticate
through regdigest.auth first, then talk to the manifest host:

- when the challenge probe was redirected to another host, the manifests
  are requested from that host
- a 401 or 404 to a HEAD is retried once against the other candidate host
  (original host <-> token host)
- a 3xx to a HEAD pointing at another host is retried once against it,
  without the Authorization header unless that host is one of the two above
- the GET fallback goes to the host the last HEAD was sent to
"""
import json
import logging
from urllib.parse import urljoin, urlsplit, urlunsplit

from regdigest import transport
from regdigest.auth import negotiate
from regdigest.config import get_settings
from regdigest.credentials import transform_auth
from regdigest.digest import digests_match, normalize_digest
from regdigest.errors import (
    InvalidDigestFormat,
    InvalidReference,
    InvalidRegistryResponse,
    ManifestRequestFailed,
    MissingImageInfo,
)
from regdigest.manifest import ACCEPT_MANIFESTS, build_manifest_url
from regdigest.reference import DOCKER_REGISTRY_HOST, parse_image_reference

logger = logging.getLogger(__name__)

CONTENT_DIGEST_HEADER = "Docker-Content-Digest"

# Registries known to serve HEAD requests without counting them against
# pull rate limits
HEAD_FRIENDLY_HOSTS = (DOCKER_REGISTRY_HOST, "ghcr.io")

JSON_CONTENT_TYPES = ("application/json", "application/vnd.oci", "application/vnd.docker")
MIN_PLAIN_DIGEST_LENGTH = 20


def _with_host(url, host):
    return urlunsplit(urlsplit(url)._replace(netloc=host))


def _status_line(response):
    return f"{response.status_code} {response.reason or ''}".strip()


def _is_success(status):
    return 200 <= status < 300


class _ManifestLookup:
    """
    Manifest requests for one reference after authentication.

    Holds only per-call state; a new lookup is built for every operation.
    """

    def __init__(self, reference, grant, session, ctx):
        self.reference = reference
        self.grant = grant
        self.session = session
        self.ctx = ctx
        self.url = build_manifest_url(reference)
        self.original_host = urlsplit(self.url).netloc
        # Host the last HEAD went to; the GET fallback follows it
        self.host = self.initial_host

    @property
    def initial_host(self):
        effective = self.grant.effective_host
        if self.grant.was_redirected and effective and effective != self.original_host:
            logger.debug(
                f"Challenge for {self.original_host} was redirected, requesting "
                + f"manifests from {effective}"
            )
            return effective
        return self.original_host

    def request(self, method, host):
        headers = {
            "Accept": ACCEPT_MANIFESTS,
            "User-Agent": get_settings().user_agent,
        }
        if self.grant.header and self.trusts(host):
            headers["Authorization"] = self.grant.header
        elif self.grant.header:
            logger.debug(f"Not sending credentials to {host}")
        return transport.send(
            self.session,
            method,
            _with_host(self.url, host),
            ManifestRequestFailed,
            ctx=self.ctx,
            headers=headers,
        )

    def trusts(self, host):
        """
        Credentials only go to the registry host or the host that issued them
        """
        return host in (self.original_host, self.grant.effective_host)

    def retry_host(self, status, host, location):
        """
        Return the host to retry a failed HEAD against, or None
        """
        if status in (401, 404):
            if host != self.original_host:
                return self.original_host
            effective = self.grant.effective_host
            if effective and effective != self.original_host:
                return effective
            return None
        if 300 <= status < 400 and location:
            target = urlsplit(urljoin(_with_host(self.url, host), location)).netloc
            if target and target != host:
                return target
        return None

    def head(self):
        """
        Return the normalized digest from a HEAD, or "" to ask for a GET
        """
        host = self.host
        retried = False
        while True:
            with self.request("HEAD", host) as response:
                status = response.status_code
                if _is_success(status):
                    return extract_head_digest(response)
                location = response.headers.get("Location", "")
                status_line = _status_line(response)

            next_host = None if retried else self.retry_host(status, host, location)
            if next_host is None:
                logger.debug(
                    f"HEAD for {self.reference} returned {status_line}; "
                    + "falling back to GET"
                )
                return ""

            logger.debug(f"HEAD on {host} returned {status_line}, retrying on {next_host}")
            host = self.host = next_host
            retried = True

    def get(self):
        with self.request("GET", self.host) as response:
            if not _is_success(response.status_code):
                raise InvalidRegistryResponse(
                    f"registry responded to GET {response.url} with an error",
                    status=_status_line(response),
                    auth_header=response.headers.get("WWW-Authenticate", ""),
                )
            return extract_get_digest(response)


def extract_head_digest(response):
    digest = response.headers.get(CONTENT_DIGEST_HEADER, "").strip()
    if not digest:
        raise InvalidRegistryResponse(
            "registry responded with invalid HEAD request",
            status=_status_line(response),
            auth_header=response.headers.get("WWW-Authenticate", ""),
        )
    return normalize_digest(digest)


def extract_get_digest(response):
    """
    Pull the digest out of a successful manifest GET.

    The Docker-Content-Digest header wins; otherwise the body is read either
    as a JSON document with a "digest" field or as a plain "sha256:<hex>".
    """
    digest = response.headers.get(CONTENT_DIGEST_HEADER, "").strip()
    if digest:
        return normalize_digest(digest)

    status = _status_line(response)
    body = response.content.decode("utf-8", errors="replace").strip()
    if not body:
        raise InvalidRegistryResponse("registry returned an empty manifest body", status=status)

    if body[0] in "{[":
        content_type = response.headers.get("Content-Type", "")
        if not any(t in content_type.lower() for t in JSON_CONTENT_TYPES):
            raise InvalidRegistryResponse(
                f"manifest body looks like JSON but Content-Type is {content_type!r}",
                status=status,
            )
        try:
            document = json.loads(body)
        except ValueError as e:
            raise InvalidRegistryResponse(
                f"failed to decode manifest body: {e}", status=status
            ) from e
        value = document.get("digest") if isinstance(document, dict) else None
        if not isinstance(value, str) or not value.strip():
            raise InvalidRegistryResponse("manifest body carried no digest", status=status)
        return normalize_digest(value.strip())

    if not body.startswith("sha256:") or len(body) < MIN_PLAIN_DIGEST_LENGTH:
        raise InvalidDigestFormat(f"invalid digest in response body: {body[:80]!r}")
    return normalize_digest(body)


def _lookup(container, registry_auth, session, ctx):
    registry_auth = transform_auth(registry_auth)
    reference = parse_image_reference(container.image_name)
    if reference.tag is None:
        raise InvalidReference(f"{container.image_name} has no tag")
    if session is None:
        session = transport.get_default_session()

    grant = negotiate(reference, registry_auth, session, ctx)
    if grant.header:
        logger.debug(f"Authenticated for {reference} via {grant.effective_host}")
    else:
        logger.debug(f"No authentication required for {reference}")
    return _ManifestLookup(reference, grant, session, ctx)


def compare_digest(container, registry_auth, ctx=None, session=None):
    """
    Return True if container's image matches the registry's digest for its tag.

    registry_auth is the stored credential blob (see transform_auth).
    """
    if not container.has_image_info:
        raise MissingImageInfo(f"container {container.name} has no image info")

    lookup = _lookup(container, registry_auth, session, ctx)
    remote_digest = lookup.head()
    if not remote_digest:
        remote_digest = lookup.get()

    matches = digests_match(container.image_info.repo_digests, remote_digest)
    logger.info(
        f"{container.name} ({container.image_name}): remote digest "
        + f"{remote_digest[:12]}, {'up to date' if matches else 'stale'}"
    )
    return matches


def fetch_digest(container, registry_auth, ctx=None, session=None):
    """
    Return the normalized registry digest of container's image tag via GET
    """
    lookup = _lookup(container, registry_auth, session, ctx)
    digest = lookup.get()
    logger.info(f"Resolved {lookup.reference} to {digest[:12]}")
    return digest


def warn_on_api_consumption(container):
    """
    Return True when checking this image is likely to hit rate-limited APIs.

    That is the case for registries known to support HEAD digest checks, and
    for references that cannot be parsed at all.
    """
    try:
        host = parse_image_reference(container.image_name).host
    except InvalidReference:
        return True
    return host in HEAD_FRIENDLY_HOSTS
