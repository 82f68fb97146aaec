"""Custom exceptions for tonynv-image."""


class ImageGenError(RuntimeError):
    """Base class for errors that abort the current build."""


class UsageError(ImageGenError):
    """Raised on bad or missing invocation parameters."""


class DependencyError(ImageGenError):
    """Raised when a required host tool is absent and cannot be installed."""


class DownloadError(ImageGenError):
    """Raised when a base image cannot be fetched."""


class MissingInputError(ImageGenError):
    """Raised when a requested supplemental file does not exist."""


class CustomizeError(ImageGenError):
    """Raised when the image copy or virt-customize fails."""


class NetworkSetupError(ImageGenError):
    """Raised when the libvirt network cannot be rebound."""
