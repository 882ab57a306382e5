"""
Digest normalization and comparison.

Registries report digests as "sha256:<hex>", local image metadata as
"<repository>@sha256:<hex>". Both are reduced to the bare hash before they
are compared.
"""
import logging

logger = logging.getLogger(__name__)

DIGEST_ALGORITHMS = ("sha256", "sha384", "sha512")


def normalize_digest(digest):
    """
    Strip recognized algorithm prefixes ("sha256:" etc.) from digest.

    A digest without a recognized prefix is returned unchanged.
    """
    normalized = digest
    while True:
        algorithm, sep, rest = normalized.partition(":")
        if not sep or algorithm not in DIGEST_ALGORITHMS:
            return normalized
        normalized = rest


def digests_match(local_digests, remote_digest):
    """
    Return True if any "<repo>@<digest>" entry matches remote_digest
    """
    remote = normalize_digest(remote_digest)
    for entry in local_digests:
        parts = entry.split("@")
        if len(parts) < 2:
            continue
        local = normalize_digest(parts[1])
        logger.debug(f"Comparing local digest {local} with remote {remote}")
        if local == remote:
            return True
    return False
