from dataclasses import dataclass, field
from typing import Optional

from loguru import logger

from docvault.errors import (
    DocVaultError,
    FolderMoveError,
    InvalidLocatorError,
    MoveError,
    UnsupportedMoveError,
)
from docvault.router import OBJECT_URL_SCHEMES, StorageRouter
from docvault.storage.backend import (
    BackendKind,
    MoveRequest,
    strip_remote_scheme,
)
from docvault.storage.s3 import parse_s3_url


@dataclass
class FolderMoveResult:
    backend_kind: BackendKind
    source_path: str
    destination_path: str
    moved: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "backend": self.backend_kind.value,
            "from": self.source_path,
            "to": self.destination_path,
            "moved": self.moved,
        }


class FolderMover:
    """Relocates every artifact under one logical folder to another.

    The backend comes from the router's configuration at call time. On the
    NAS this is a single server-side move; on the object store each object is
    copied and then deleted, with no rollback when a later object fails.
    """

    def __init__(self, router: StorageRouter):
        self.router = router

    def _explicit_kind(self, reference: str) -> Optional[BackendKind]:
        if strip_remote_scheme(reference) is not None:
            return BackendKind.REMOTE_FILE
        if reference.startswith(OBJECT_URL_SCHEMES):
            return BackendKind.OBJECT_STORE
        return None

    def _check_buckets(self, request: MoveRequest) -> None:
        buckets = {
            parse_s3_url(path)[0]
            for path in (request.source_path, request.destination_path)
            if path.startswith(OBJECT_URL_SCHEMES)
        }
        if len(buckets) > 1:
            raise UnsupportedMoveError(
                f"Cross-bucket moves are not supported: {', '.join(sorted(buckets))}"
            )

    def resolve(self, request: MoveRequest) -> tuple[BackendKind, str, str]:
        active = self.router.active_backend()
        explicit = {
            kind
            for kind in (
                self._explicit_kind(request.source_path),
                self._explicit_kind(request.destination_path),
            )
            if kind is not None
        }
        if len(explicit) > 1:
            raise UnsupportedMoveError("Source and destination are on different backends")
        if explicit and explicit != {active}:
            raise UnsupportedMoveError(
                f"Move targets {explicit.pop().value} but the active backend is {active.value}"
            )

        self._check_buckets(request)

        _, source = self.router.parse_reference(request.source_path)
        _, destination = self.router.parse_reference(request.destination_path)
        return active, source.rstrip("/"), destination.rstrip("/")

    async def move_folder(self, old_path: str, new_path: str) -> FolderMoveResult:
        kind, source, destination = self.resolve(MoveRequest(old_path, new_path))
        if not source or not destination:
            raise InvalidLocatorError("Folder moves need a non-empty source and destination")
        if source == destination:
            raise MoveError(f"Source and destination are the same: {source}")
        if destination.startswith(f"{source}/"):
            raise MoveError(f"Cannot move {source} into itself ({destination})")

        logger.info(f"Moving folder {source} to {destination} on {kind.value}")
        if kind is BackendKind.REMOTE_FILE:
            return await self._move_remote(source, destination)
        return await self._move_objects(source, destination)

    async def _move_remote(self, source: str, destination: str) -> FolderMoveResult:
        nas = self.router.backend_for(BackendKind.REMOTE_FILE)
        async with self.router.sessions.session() as session:
            await nas.move(session, source, destination)
        return FolderMoveResult(
            BackendKind.REMOTE_FILE, source, destination, moved=[source]
        )

    async def _move_objects(self, source: str, destination: str) -> FolderMoveResult:
        s3 = self.router.backend_for(BackendKind.OBJECT_STORE)
        source_prefix = f"{source}/"
        destination_prefix = f"{destination}/"

        paths = await s3.list(source_prefix)
        if not paths:
            raise MoveError(f"Source does not exist: {source} has no objects")

        result = FolderMoveResult(BackendKind.OBJECT_STORE, source, destination)
        for index, path in enumerate(paths):
            target = destination_prefix + path[len(source_prefix) :]
            try:
                await s3.copy(path, target)
                await s3.delete(path)
            except DocVaultError as e:
                unprocessed = paths[index:]
                logger.error(
                    f"Folder move {source} -> {destination} stopped at {path}: {e}"
                )
                raise FolderMoveError(
                    f"Moving {path} to {target} failed after {len(result.moved)} of "
                    f"{len(paths)} objects: {e}",
                    unprocessed,
                ) from e
            result.moved.append(target)

        logger.info(f"Moved {len(result.moved)} objects from {source} to {destination}")
        return result
