"""Domain exceptions shared by services and routes."""
from __future__ import annotations


class InputError(ValueError):
    status_code = 400


class StorageError(RuntimeError):
    pass


class ProviderError(Exception):
    """A watermark-removal call failed.

    ``retryable`` is False for failures that another attempt cannot fix
    (bad credentials, a source image the provider will never fetch).
    """

    retryable = True

    def __init__(self, message: str, *, retryable: bool | None = None):
        super().__init__(message)
        if retryable is not None:
            self.retryable = retryable


class ProviderAuthError(ProviderError):
    retryable = False


class ProviderPermissionError(ProviderError):
    retryable = False


class SourceImageError(ProviderError):
    retryable = False


class ProviderResponseError(ProviderError):
    pass


class ProviderConfigError(ProviderError):
    retryable = False


class GalleryError(Exception):
    status_code = 500


class InvalidGalleryUrl(GalleryError):
    status_code = 400


class UnsupportedGallery(GalleryError):
    status_code = 400


class NoImagesFound(GalleryError):
    status_code = 404


class PasswordProtectedGallery(NoImagesFound):
    pass


class NotAGalleryPage(NoImagesFound):
    pass


class GalleryFetchError(GalleryError):
    status_code = 500
