"""
Normalize image names into (host, repository path, tag or digest).

    nginx                      -> index.docker.io, library/nginx, tag latest
    docker.io/owner/app:v1     -> index.docker.io, owner/app, tag v1
    ghcr.io/org/sub/app        -> ghcr.io, org/sub/app, tag latest
    localhost:5000/app@sha256:… -> localhost:5000, app, digest sha256:…
"""

import dataclasses
import logging
import re
from typing import Optional

import docker.auth
import docker.errors
import docker.utils

from regdigest.errors import InvalidReference

logger = logging.getLogger(__name__)

DOCKER_REGISTRY_DOMAIN = "docker.io"
DOCKER_REGISTRY_HOST = "index.docker.io"
DEFAULT_TAG = "latest"

_PATH_COMPONENT = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
_TAG = re.compile(r"^[\w][\w.-]{0,127}$")
_DIGEST = re.compile(r"^[a-z0-9]+(?:[.+_-][a-z0-9]+)*:[0-9a-fA-F]{32,}$")


@dataclasses.dataclass(frozen=True)
class ImageReference:
    host: str
    repository_path: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    @property
    def name(self):
        return f"{self.host}/{self.repository_path}"

    def require_tag(self):
        """
        Return the tag, failing for references that are pinned by digest only
        """
        if not self.tag:
            raise InvalidReference(
                f"{self} has no tag; manifest lookups are tag-addressed"
            )
        return self.tag

    def __str__(self):
        ref = self.name
        if self.tag:
            ref += f":{self.tag}"
        if self.digest:
            ref += f"@{self.digest}"
        return ref


def parse_image_reference(image_name):
    """
    Parse a raw image name into an ImageReference.

    Unqualified Docker Hub names get the library/ namespace and every
    reference without a digest defaults to the latest tag. Raises
    InvalidReference for names that cannot be normalized.
    """
    if not image_name or image_name != image_name.strip():
        raise InvalidReference(f"Invalid image reference {image_name!r}")

    name, tag_or_digest = docker.utils.parse_repository_tag(image_name)
    tag = digest = None
    if tag_or_digest and "@" in image_name:
        digest = tag_or_digest
        # repo:tag@sha256:... keeps its tag
        name, tag = docker.utils.parse_repository_tag(name)
    else:
        tag = tag_or_digest

    try:
        host, path = docker.auth.resolve_repository_name(name)
    except docker.errors.InvalidRepository as e:
        raise InvalidReference(f"Invalid image reference {image_name!r}: {e}") from e

    if host == DOCKER_REGISTRY_DOMAIN:
        host = DOCKER_REGISTRY_HOST
        if "/" not in path:
            path = f"library/{path}"

    if not path or not all(_PATH_COMPONENT.match(p) for p in path.split("/")):
        raise InvalidReference(
            f"Invalid repository path {path!r} in image reference {image_name!r}"
        )
    if tag is not None and not _TAG.match(tag):
        raise InvalidReference(f"Invalid tag {tag!r} in image reference {image_name!r}")
    if digest is not None and not _DIGEST.match(digest):
        raise InvalidReference(
            f"Invalid digest {digest!r} in image reference {image_name!r}"
        )
    if tag is None and digest is None:
        tag = DEFAULT_TAG

    ref = ImageReference(host=host, repository_path=path, tag=tag, digest=digest)
    logger.debug(f"Parsed image reference {image_name!r} as {ref}")
    return ref
