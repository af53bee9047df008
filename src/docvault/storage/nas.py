import asyncio
import posixpath
from typing import Optional
from urllib.parse import quote

import aiohttp
from loguru import logger

from docvault.errors import (
    DownloadError,
    MoveError,
    StorageTimeoutError,
    UploadError,
)
from docvault.storage.backend import (
    BackendKind,
    RemoteEntry,
    StorageLocator,
    UploadRequest,
    ensure_relative,
)
from docvault.storage.filestation import NO_SUCH_FILE, FileStationClient
from docvault.storage.nas_session import NasSession
from docvault.storage.staging import read_staged, staged_file

LIST_PAGE_SIZE = 500
MOVE_POLL_INTERVAL = 0.5


class NasStorage:
    kind = BackendKind.REMOTE_FILE

    def __init__(
        self,
        client: FileStationClient,
        base_path: str = "/data",
        poll_interval: float = MOVE_POLL_INTERVAL,
    ):
        self.client = client
        self.base_path = "/" + base_path.strip("/") if base_path.strip("/") else ""
        self.poll_interval = poll_interval

    def resolve(self, relative_path: str) -> str:
        return f"{self.base_path}/{ensure_relative(relative_path)}"

    def relative_to_base(self, full_path: str) -> str:
        prefix = f"{self.base_path}/"
        if full_path.startswith(prefix):
            return full_path[len(prefix) :]
        return full_path.lstrip("/")

    def download_url(self, session: NasSession, relative_path: str) -> str:
        query = quote(self.resolve(relative_path), safe="")
        return (
            f"{self.client.entry_url}?api=SYNO.FileStation.Download&version=2"
            f"&method=download&mode=download&path={query}&_sid={session.token}"
        )

    async def upload(self, session: NasSession, request: UploadRequest) -> StorageLocator:
        relative_path = ensure_relative(request.relative_path)
        directory, filename = posixpath.split(self.resolve(relative_path))

        form = aiohttp.FormData()
        form.add_field(
            "file",
            request.payload,
            filename=filename,
            content_type=request.content_type,
        )
        params = {
            "api": "SYNO.FileStation.Upload",
            "version": 2,
            "method": "upload",
            "path": directory,
            "create_parents": "true",
            "overwrite": "true",
            "_sid": session.token,
        }

        logger.debug(f"Uploading {len(request.payload)} bytes to NAS {directory}/{filename}")
        await self.client.call(params, UploadError, form=form)
        logger.info(f"Uploaded {relative_path} to NAS")

        return StorageLocator(
            backend_kind=self.kind,
            relative_path=relative_path,
            absolute_uri=self.download_url(session, relative_path),
            size_hint=len(request.payload),
        )

    async def download(self, session: NasSession, relative_path: str) -> bytes:
        full_path = self.resolve(relative_path)
        params = {
            "api": "SYNO.FileStation.Download",
            "version": 2,
            "method": "download",
            "mode": "download",
            "path": full_path,
            "_sid": session.token,
        }

        suffix = posixpath.splitext(full_path)[1]
        async with staged_file(suffix=suffix) as staged:
            size = await self.client.download_to(params, staged, DownloadError)
            if size == 0:
                raise DownloadError(f"Download of {relative_path} returned no content")
            content = await read_staged(staged)

        logger.info(f"Downloaded {relative_path} from NAS ({size} bytes)")
        return content

    async def exists(self, session: NasSession, relative_path: str) -> bool:
        params = {
            "api": "SYNO.FileStation.List",
            "version": 2,
            "method": "getinfo",
            "path": self.resolve(relative_path),
            "_sid": session.token,
        }
        try:
            data = await self.client.call(params, DownloadError)
        except DownloadError as e:
            if e.code == NO_SUCH_FILE:
                return False
            raise
        files = data.get("files") or []
        return bool(files) and "code" not in files[0]

    async def list(self, session: NasSession, directory: str) -> list[RemoteEntry]:
        folder_path = self.resolve(directory.rstrip("/"))
        entries: list[RemoteEntry] = []
        offset = 0

        while True:
            params = {
                "api": "SYNO.FileStation.List",
                "version": 2,
                "method": "list",
                "folder_path": folder_path,
                "offset": offset,
                "limit": LIST_PAGE_SIZE,
                "additional": '["size"]',
                "_sid": session.token,
            }
            data = await self.client.call(params, DownloadError)
            files = data.get("files") or []
            for item in files:
                size = (item.get("additional") or {}).get("size")
                entries.append(
                    RemoteEntry(
                        name=item["name"],
                        relative_path=self.relative_to_base(item["path"]),
                        is_dir=bool(item.get("isdir")),
                        size=None if item.get("isdir") else size,
                    )
                )
            offset += len(files)
            if not files or offset >= int(data.get("total", offset)):
                break

        logger.debug(f"Listed {len(entries)} entries in NAS {folder_path}")
        return entries

    async def move(
        self, session: NasSession, source_path: str, destination_path: str
    ) -> None:
        source = self.resolve(source_path.rstrip("/"))
        destination = self.resolve(destination_path.rstrip("/"))
        if source == destination:
            return

        try:
            if not await self.exists(session, source_path.rstrip("/")):
                raise MoveError(f"Source does not exist: {source_path}", code=NO_SUCH_FILE)
        except DownloadError as e:
            raise MoveError(f"Could not inspect move source {source_path}: {e}") from e

        source_dir, source_name = posixpath.split(source)
        target_dir, target_name = posixpath.split(destination)

        if source_dir != target_dir:
            await self._create_folder(session, target_dir)
            await self._relocate(session, source, target_dir)

        if source_name != target_name:
            await self._rename(session, f"{target_dir}/{source_name}", target_name)

        logger.info(f"Moved NAS {source_path} to {destination_path}")

    async def _create_folder(self, session: NasSession, folder: str) -> None:
        parent, name = posixpath.split(folder)
        params = {
            "api": "SYNO.FileStation.CreateFolder",
            "version": 2,
            "method": "create",
            "folder_path": parent or "/",
            "name": name,
            "force_parent": "true",
            "_sid": session.token,
        }
        try:
            await self.client.call(params, MoveError)
        except MoveError as e:
            raise MoveError(f"Cannot create destination folder {folder}: {e}", code=e.code) from e

    async def _relocate(self, session: NasSession, source: str, target_dir: str) -> None:
        params = {
            "api": "SYNO.FileStation.CopyMove",
            "version": 3,
            "method": "start",
            "path": source,
            "dest_folder_path": target_dir,
            "remove_src": "true",
            "overwrite": "false",
            "_sid": session.token,
        }
        data = await self.client.call(params, MoveError)
        task_id = data.get("taskid")
        if not task_id:
            return
        await self._wait_for_task(session, task_id)

    async def _wait_for_task(self, session: NasSession, task_id: str) -> None:
        params = {
            "api": "SYNO.FileStation.CopyMove",
            "version": 3,
            "method": "status",
            "taskid": task_id,
            "_sid": session.token,
        }
        loop = asyncio.get_running_loop()
        budget = self.client.timeout.total
        deadline = loop.time() + budget if budget is not None else None

        while True:
            data = await self.client.call(params, MoveError)
            if data.get("finished"):
                error = data.get("error")
                if error:
                    raise MoveError(f"Move task failed: {error}", code=_error_code(error))
                return
            if deadline is not None and loop.time() >= deadline:
                raise StorageTimeoutError(f"Move task {task_id} did not finish in time")
            await asyncio.sleep(self.poll_interval)

    async def _rename(self, session: NasSession, path: str, name: str) -> None:
        params = {
            "api": "SYNO.FileStation.Rename",
            "version": 2,
            "method": "rename",
            "path": path,
            "name": name,
            "_sid": session.token,
        }
        await self.client.call(params, MoveError)


def _error_code(error) -> Optional[int]:
    if isinstance(error, dict):
        return error.get("code")
    return None
