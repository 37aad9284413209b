class MediaVaultError(Exception):
    """Base class."""


class InitError(MediaVaultError):
    """Schema bootstrap failed; the dependent request must be aborted."""


class DefaultCategoryMissing(InitError):
    pass


class DatabaseError(MediaVaultError):
    pass


class NotFoundError(MediaVaultError):
    pass


class ConflictError(MediaVaultError):
    pass


class CategoryProtectedError(MediaVaultError):
    pass


class ManifestError(MediaVaultError):
    pass


class BackendError(MediaVaultError):
    transient: bool = False


class TransientBackendError(BackendError):
    transient = True


class RateLimitedError(TransientBackendError):
    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class PermanentBackendError(BackendError):
    transient = False


class BlobNotFoundError(PermanentBackendError):
    pass
