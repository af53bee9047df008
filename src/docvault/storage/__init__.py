from docvault.storage.backend import (
    BackendKind,
    MoveRequest,
    RemoteEntry,
    StorageBackend,
    StorageLocator,
    UploadRequest,
)
from docvault.storage.nas import NasStorage
from docvault.storage.nas_session import NasSession, NasSessionManager
from docvault.storage.s3 import S3Storage

__all__ = [
    "BackendKind",
    "MoveRequest",
    "RemoteEntry",
    "StorageBackend",
    "StorageLocator",
    "UploadRequest",
    "NasStorage",
    "NasSession",
    "NasSessionManager",
    "S3Storage",
]
