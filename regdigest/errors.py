"""
Error kinds raised while talking to a container registry.

Every error raised by regdigest derives from RegistryError so callers can
catch the whole family at once, or pick out a single kind.
"""


class RegistryError(Exception):
    """Base exception for all registry interaction errors."""


class ConfigError(RegistryError):
    """Configuration file missing or malformed."""


class InvalidReference(RegistryError):
    """Image name failed to normalize or lacks a tag where one is required."""


class NoCredentials(RegistryError):
    """Registry asked for basic auth but no credential was supplied."""


class UnsupportedChallenge(RegistryError):
    """WWW-Authenticate scheme is neither basic nor bearer."""


class InvalidChallenge(RegistryError):
    """Bearer challenge is missing realm or service, or the realm is unusable."""


class AuthRequestFailed(RegistryError):
    """Transport failure while probing for a challenge or fetching a token."""


class ManifestRequestFailed(RegistryError):
    """Transport failure while requesting a manifest."""


class MissingImageInfo(RegistryError):
    """Container carries no local image metadata to compare against."""


class Cancelled(RegistryError):
    """The caller's context was cancelled or its deadline passed."""


class _ResponseError(RegistryError):
    def __init__(self, message, status=None, auth_header=None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.auth_header = auth_header

    def __str__(self):
        details = []
        if self.status:
            details.append(f"status {self.status!r}")
        if self.auth_header:
            details.append(f"auth: {self.auth_header!r}")
        if details:
            return f"{self.message} ({', '.join(details)})"
        return self.message


class TokenResponseInvalid(_ResponseError):
    """Token endpoint answered with something other than a usable token."""


class InvalidRegistryResponse(_ResponseError):
    """Registry answered a manifest request without a usable digest."""


class InvalidDigestFormat(RegistryError):
    """A plain-text digest body failed validation."""
