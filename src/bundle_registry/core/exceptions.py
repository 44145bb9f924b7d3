"""Exception types raised by the bundle registry."""

from __future__ import annotations


class BundleRegistryError(Exception):
    """Base exception for all registry errors."""

    def __init__(self, message: str, details: str = "") -> None:
        self.message = message
        self.details = details
        super().__init__(f"{message}\n\n{details}" if details else message)


class SourceConfigError(BundleRegistryError):
    """A source definition is malformed (bad URL, unknown type, invalid config)."""


class SourceNotFoundError(BundleRegistryError):
    """A local source directory does not exist."""


class SourceAccessError(BundleRegistryError):
    """A remote or filesystem call failed in a way that aborts the operation."""

    def __init__(self, message: str, details: str = "", status_code: int | None = None) -> None:
        super().__init__(message, details)
        self.status_code = status_code


class SourceAuthError(SourceAccessError):
    """The remote rejected our credentials (401/403)."""


class ManifestError(BundleRegistryError):
    """A single manifest could not be parsed or mapped."""


class BundleFetchError(BundleRegistryError):
    """Candidates were found but none of them produced a bundle."""


class PackageRefError(BundleRegistryError):
    """A package reference failed validation and was not passed to the CLI."""


class RuntimeUnavailableError(BundleRegistryError):
    """The external package manager is not installed."""


class BundleDownloadError(BundleRegistryError):
    """Installing or downloading bundle content failed."""
