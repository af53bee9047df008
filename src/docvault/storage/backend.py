from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol, runtime_checkable

from docvault.errors import InvalidLocatorError

REMOTE_SCHEME = "remote://"
LEGACY_REMOTE_SCHEME = "synology://"


class BackendKind(str, Enum):
    OBJECT_STORE = "object_store"
    REMOTE_FILE = "remote_file"


@dataclass(frozen=True)
class StorageLocator:
    backend_kind: BackendKind
    relative_path: str
    absolute_uri: str
    size_hint: Optional[int] = None

    @property
    def filename(self) -> str:
        return self.relative_path.rsplit("/", 1)[-1]

    def print_reference(self) -> str:
        # The printer resolves remote:// itself; never hand it the credentialed URL.
        if self.backend_kind is BackendKind.REMOTE_FILE:
            return f"{REMOTE_SCHEME}{self.relative_path}"
        return self.absolute_uri

    def to_dict(self) -> dict:
        data = {
            "backend": self.backend_kind.value,
            "relative_path": self.relative_path,
            "reference": self.print_reference(),
            "size": self.size_hint,
        }
        if self.backend_kind is BackendKind.OBJECT_STORE:
            data["uri"] = self.absolute_uri
        return data


@dataclass(frozen=True)
class UploadRequest:
    payload: bytes
    relative_path: str
    content_type: str = "application/pdf"
    document_kind: Optional[str] = None


@dataclass(frozen=True)
class MoveRequest:
    source_path: str
    destination_path: str


@dataclass(frozen=True)
class RemoteEntry:
    name: str
    relative_path: str
    is_dir: bool
    size: Optional[int] = None


def normalize_relative_path(path: str) -> str:
    normalized = path.strip().lstrip("/")
    if not normalized:
        raise InvalidLocatorError(f"Empty relative path: {path!r}")
    if any(part == ".." for part in normalized.split("/")):
        raise InvalidLocatorError(f"Relative path may not traverse upwards: {path!r}")
    return normalized


def ensure_relative(path: str) -> str:
    if not path or path.startswith("/"):
        raise InvalidLocatorError(
            f"Backend paths must be relative and non-empty, got {path!r}"
        )
    return path


def strip_remote_scheme(reference: str) -> Optional[str]:
    for scheme in (REMOTE_SCHEME, LEGACY_REMOTE_SCHEME):
        if reference.startswith(scheme):
            return reference[len(scheme) :]
    return None


@runtime_checkable
class StorageBackend(Protocol):
    kind: BackendKind

    def resolve(self, relative_path: str) -> str: ...
