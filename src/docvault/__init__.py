from docvault.config import Settings
from docvault.documents import Document, DocumentService, PageOptions, document_path
from docvault.folder_move import FolderMover
from docvault.router import StorageRouter, StoreOptions, StoreResult
from docvault.storage.backend import BackendKind, StorageLocator, UploadRequest

__all__ = [
    "Settings",
    "Document",
    "DocumentService",
    "PageOptions",
    "document_path",
    "FolderMover",
    "StorageRouter",
    "StoreOptions",
    "StoreResult",
    "BackendKind",
    "StorageLocator",
    "UploadRequest",
]
