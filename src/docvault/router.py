"""
Storage routing between the NAS and the object store.

The NAS is always tried first when it is enabled; the object store is only a
fallback for a failed NAS upload, never a second primary. With the NAS
disabled the object store is used directly and no NAS session is ever
requested.
"""

from dataclasses import dataclass, replace
from typing import Optional

from loguru import logger

from docvault.config import Settings
from docvault.errors import (
    AuthError,
    ConfigurationError,
    DocVaultError,
    InvalidLocatorError,
    PrintError,
    StorageTimeoutError,
    UploadError,
)
from docvault.printing import PrintJob, PrintResult, PrintService
from docvault.storage.backend import (
    BackendKind,
    RemoteEntry,
    StorageLocator,
    UploadRequest,
    normalize_relative_path,
    strip_remote_scheme,
)
from docvault.storage.filestation import FileStationClient
from docvault.storage.nas import NasStorage
from docvault.storage.nas_session import NasSessionManager
from docvault.storage.s3 import S3Storage

REMOTE_FAILURES = (AuthError, UploadError, StorageTimeoutError)
OBJECT_URL_SCHEMES = ("s3://", "http://", "https://")


@dataclass(frozen=True)
class StoreOptions:
    print: bool = False
    printer_name: Optional[str] = None


@dataclass(frozen=True)
class StoreResult:
    locator: StorageLocator
    print_result: Optional[PrintResult] = None
    print_error: Optional[PrintError] = None

    def to_dict(self) -> dict:
        return {
            "locator": self.locator.to_dict(),
            "printed": self.print_result is not None and self.print_result.ok,
            "print_error": str(self.print_error) if self.print_error else None,
        }


class StorageRouter:
    def __init__(
        self,
        s3: Optional[S3Storage] = None,
        nas: Optional[NasStorage] = None,
        sessions: Optional[NasSessionManager] = None,
        printer: Optional[PrintService] = None,
        fallback_enabled: bool = True,
    ):
        if (nas is None) != (sessions is None):
            raise ConfigurationError("NAS storage and its session manager go together")
        if nas is None and s3 is None:
            raise ConfigurationError("At least one storage backend is required")
        self.s3 = s3
        self.nas = nas
        self.sessions = sessions
        self.printer = printer
        self._fallback_enabled = fallback_enabled

    @classmethod
    def from_settings(cls, settings: Settings) -> "StorageRouter":
        s3 = None
        if settings.s3.enabled:
            s3 = S3Storage(
                bucket=settings.s3.bucket,
                region=settings.s3.region,
                prefix=settings.s3.prefix,
                endpoint_url=settings.s3.endpoint_url,
            )

        nas = sessions = None
        if settings.nas.enabled:
            client = FileStationClient(
                settings.nas.url,
                verify_ssl=settings.nas.verify_ssl,
                ca_file=settings.nas.ca_file,
                connect_timeout=settings.nas.connect_timeout,
                max_time=settings.nas.max_time,
            )
            nas = NasStorage(client, base_path=settings.nas.base_path)
            sessions = NasSessionManager(
                client,
                username=settings.nas.username,
                password=settings.nas.password,
                cache_enabled=settings.nas.session_cache,
                cache_ttl=settings.nas.session_ttl,
            )

        return cls(
            s3=s3,
            nas=nas,
            sessions=sessions,
            printer=PrintService(settings.printer_url),
            fallback_enabled=settings.fallback_enabled,
        )

    @property
    def nas_enabled(self) -> bool:
        return self.nas is not None

    @property
    def fallback_enabled(self) -> bool:
        return self._fallback_enabled and self.s3 is not None

    def active_backend(self) -> BackendKind:
        if self.nas_enabled:
            return BackendKind.REMOTE_FILE
        return BackendKind.OBJECT_STORE

    def backend_for(self, kind: BackendKind):
        backend = self.nas if kind is BackendKind.REMOTE_FILE else self.s3
        if backend is None:
            raise ConfigurationError(f"Backend {kind.value} is not enabled")
        return backend

    async def store(
        self, request: UploadRequest, options: Optional[StoreOptions] = None
    ) -> StoreResult:
        options = options or StoreOptions()
        request = replace(
            request, relative_path=normalize_relative_path(request.relative_path)
        )
        if not request.payload:
            raise UploadError(f"Refusing to store empty payload at {request.relative_path}")

        if self.nas_enabled:
            locator = await self._store_with_fallback(request)
        else:
            locator = await self.s3.upload(request)

        if not options.print:
            return StoreResult(locator=locator)
        return await self._print(locator, options.printer_name)

    async def _store_with_fallback(self, request: UploadRequest) -> StorageLocator:
        try:
            async with self.sessions.session() as session:
                return await self.nas.upload(session, request)
        except REMOTE_FAILURES as e:
            if not self.fallback_enabled:
                raise UploadError(
                    f"NAS upload of {request.relative_path} failed: {e}", code=e.code
                ) from e
            logger.warning(
                f"NAS upload of {request.relative_path} failed ({e}), falling back to object store"
            )
            remote_error = e

        try:
            return await self.s3.upload(request)
        except DocVaultError as fallback_error:
            logger.error(
                f"Object store fallback for {request.relative_path} failed: {fallback_error}"
            )
            raise fallback_error from remote_error

    async def _print(self, locator: StorageLocator, printer_name: Optional[str]) -> StoreResult:
        if self.printer is None:
            error = PrintError("No print service configured")
            return StoreResult(locator=locator, print_error=error)

        try:
            result = await self.printer.submit(PrintJob(locator, printer_name))
        except PrintError as e:
            logger.warning(f"Stored {locator.relative_path} but printing failed: {e}")
            return StoreResult(locator=locator, print_error=e)
        return StoreResult(locator=locator, print_result=result)

    def parse_reference(self, reference: str) -> tuple[BackendKind, str]:
        if not reference:
            raise InvalidLocatorError("Empty storage reference")

        remote_path = strip_remote_scheme(reference)
        if remote_path is not None:
            return BackendKind.REMOTE_FILE, normalize_relative_path(remote_path)

        if reference.startswith(OBJECT_URL_SCHEMES):
            if self.s3 is None:
                raise InvalidLocatorError(
                    f"{reference} points at the object store, which is not enabled"
                )
            return BackendKind.OBJECT_STORE, self.s3.relative_path_from_url(reference)

        if self.nas is not None and self.nas.base_path and reference.startswith(
            f"{self.nas.base_path}/"
        ):
            return BackendKind.REMOTE_FILE, self.nas.relative_to_base(reference)

        return self.active_backend(), normalize_relative_path(reference)

    async def fetch(self, reference: str) -> tuple[bytes, str]:
        kind, relative_path = self.parse_reference(reference)
        filename = relative_path.rsplit("/", 1)[-1]

        if kind is BackendKind.REMOTE_FILE:
            nas = self.backend_for(kind)
            async with self.sessions.session() as session:
                content = await nas.download(session, relative_path)
        else:
            content = await self.backend_for(kind).download(relative_path)
        return content, filename

    async def close(self) -> None:
        if self.sessions is not None:
            await self.sessions.close()

    async def list(self, directory: str) -> list[RemoteEntry]:
        kind, relative_dir = self.parse_reference(directory)
        if kind is BackendKind.REMOTE_FILE:
            nas = self.backend_for(kind)
            async with self.sessions.session() as session:
                return await nas.list(session, relative_dir)

        paths = await self.backend_for(kind).list(f"{relative_dir.rstrip('/')}/")
        return [
            RemoteEntry(name=path.rsplit("/", 1)[-1], relative_path=path, is_dir=False)
            for path in paths
        ]
