from typing import Optional, Sequence


class DocVaultError(Exception):
    def __init__(self, *args, code: Optional[int] = None):
        super().__init__(*args)
        self.code = code


class ConfigurationError(DocVaultError):
    pass


class AuthError(DocVaultError):
    pass


class UploadError(DocVaultError):
    pass


class DownloadError(DocVaultError):
    pass


class MoveError(DocVaultError):
    pass


class UnsupportedMoveError(MoveError):
    pass


class FolderMoveError(MoveError):
    """A folder move stopped part way.

    Objects moved before the failure stay at their new location; ``unprocessed``
    lists every source path that still has to be handled.
    """

    def __init__(self, message: str, unprocessed: Sequence[str]):
        self.unprocessed = list(unprocessed)
        pending = ", ".join(self.unprocessed)
        super().__init__(f"{message}; unprocessed: {pending}")


class InvalidLocatorError(DocVaultError):
    pass


class StorageTimeoutError(DocVaultError, TimeoutError):
    pass


class PrintError(DocVaultError):
    pass


class EmailError(DocVaultError):
    pass


class DocumentError(DocVaultError):
    STAGES = ("render", "store", "print", "email")

    def __init__(self, stage: str, cause: Optional[BaseException] = None):
        if stage not in self.STAGES:
            raise ValueError(f"Unknown document stage: {stage}")
        self.stage = stage
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{stage} failed{detail}")
