"""
Error taxonomy shared by every storage backend

Only TransientError is worth retrying. NotFoundError and
PermissionDeniedError are terminal for the call that raised them.
"""

#-----------------------------------------------------------------------------

class StorageError(Exception):
    """Base class for all storage errors"""

    retryable = False

    def __init__(self, message: str = "", path: str = ""):
        super().__init__(message or path)
        self.path = path

#-----------------------------------------------------------------------------

class NotFoundError(StorageError, FileNotFoundError):
    """Target file or directory does not exist"""

    def __init__(self, message: str = "", path: str = ""):
        StorageError.__init__(self, message or f"File or directory does not exist: {path}", path)


class PermissionDeniedError(StorageError, PermissionError):
    """Local permission check failed or the backend rejected the credentials"""

    def __init__(self, message: str = "", path: str = ""):
        StorageError.__init__(self, message or f"Permission denied: {path}", path)


class TransientError(StorageError):
    """Network or remote service failure"""

    retryable = True


class TypeMismatchError(StorageError, TypeError):
    """Serialized attribute does not match the requested attribute type"""


class InvalidUrlError(StorageError, ValueError):
    """URL was not produced by this adapter"""


class StorageConfigurationError(StorageError):
    """Adapter could not be constructed from its options"""

#-----------------------------------------------------------------------------

class PartialFailureError(StorageError):
    """
    Bulk operation where only part of the work was done

    Attributes:
        failed: Mapping of path to the reason reported for it
        deleted: Paths that were deleted
    """

    def __init__(
        self,
        message : str = "",
        failed  : dict[str, str] | None = None,
        deleted : list[str] | None = None,
        path    : str = ""
    ):
        self.failed = dict(failed or {})
        self.deleted = list(deleted or [])

        if not message:
            message = f"{len(self.failed)} of {len(self.failed) + len(self.deleted)} deletions failed: " + \
                ", ".join(f"{k} ({v})" for k, v in self.failed.items())

        super().__init__(message, path)


class PartialMoveError(PartialFailureError):
    """Move copied the source but could not delete it, both copies remain"""

    def __init__(self, src: str, dst: str, reason: str = ""):
        self.src = src
        self.dst = dst

        super().__init__(
            message = f"Moved {src} to {dst} but failed to delete the source: {reason}",
            failed  = {src: reason},
            path    = src
        )

#-----------------------------------------------------------------------------
