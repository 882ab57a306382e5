"""
Manifest URLs and the media types requested for them.
"""
import logging

from regdigest.config import get_settings

logger = logging.getLogger(__name__)

MEDIA_DOCKER_MANIFEST_V1 = "application/vnd.docker.distribution.manifest.v1+json"
MEDIA_DOCKER_MANIFEST_V2 = "application/vnd.docker.distribution.manifest.v2+json"
MEDIA_OCI_MANIFEST_V1 = "application/vnd.oci.image.manifest.v1+json"
MEDIA_OCI_INDEX_V1 = "application/vnd.oci.image.index.v1+json"

MANIFEST_MEDIA_TYPES = (
    MEDIA_DOCKER_MANIFEST_V1,
    MEDIA_DOCKER_MANIFEST_V2,
    MEDIA_OCI_MANIFEST_V1,
    MEDIA_OCI_INDEX_V1,
)

ACCEPT_MANIFESTS = ", ".join(MANIFEST_MEDIA_TYPES)


def manifest_host(reference, settings=None):
    """
    Host serving manifests for reference, after applying the alias table
    """
    if settings is None:
        settings = get_settings()
    host = settings.resolve_alias(reference.host)
    if host != reference.host:
        logger.debug(f"Manifests for {reference.host} are served by {host}")
    return host


def build_manifest_url(reference, settings=None):
    """
    Return the tag-addressed manifest URL for reference.

    Raises InvalidReference for references pinned by digest only.
    """
    if settings is None:
        settings = get_settings()
    tag = reference.require_tag()
    host = manifest_host(reference, settings)
    url = f"{settings.scheme}://{host}/v2/{reference.repository_path}/manifests/{tag}"
    logger.debug(f"Built manifest URL {url}")
    return url
