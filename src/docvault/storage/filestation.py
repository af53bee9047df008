"""
Thin aiohttp transport for the Synology DSM web API (FileStation).

Every call goes through one ``aiohttp.ClientSession`` with a bounded
``ClientTimeout``. Responses use the DSM JSON envelope::

    {"success": true, "data": {...}}
    {"success": false, "error": {"code": 408}}

Failures are raised as the error type the caller asks for, so the session
manager sees ``AuthError`` and the storage client sees ``UploadError`` etc.
Timeouts always surface as ``StorageTimeoutError``.
"""

import asyncio
import json
import ssl
from pathlib import Path
from typing import Any, Optional

import aiofiles
import aiohttp
from loguru import logger

from docvault.errors import DocVaultError, StorageTimeoutError

DOWNLOAD_CHUNK_SIZE = 64 * 1024

ERROR_DESCRIPTIONS = {
    100: "Unknown error",
    101: "Missing API, method or version parameter",
    102: "API does not exist",
    103: "Method does not exist",
    104: "Version not supported",
    105: "Insufficient privilege",
    106: "Session timed out",
    107: "Session interrupted by duplicate login",
    119: "Session id not found",
    400: "No such account or incorrect password",
    401: "Account disabled",
    402: "Permission denied",
    403: "Two-step verification code required",
    404: "Two-step verification failed",
    407: "Blocked IP address",
    408: "No such file or directory",
    414: "File already exists",
    416: "No space left on device",
    1000: "Failed to copy files or folders",
    1001: "Failed to move files or folders",
    1002: "An error occurred at the destination",
    1003: "Destination already contains the file",
    1100: "Failed to create a folder",
    1101: "Too many folders in the parent folder",
    1200: "Failed to rename",
    1800: "Upload content length mismatch",
    1801: "Upload timed out",
    1802: "Upload is missing the file name",
}

NO_SUCH_FILE = 408

# The NAS no longer accepts the sid; the session must be thrown away.
SESSION_INVALID_CODES = frozenset({106, 107, 119})


def describe_error(code: Optional[int]) -> str:
    if code is None:
        return "no error code returned"
    return f"{ERROR_DESCRIPTIONS.get(code, 'Unrecognized error')} (code {code})"


def webapi_root(url: str) -> str:
    cleaned = url.rstrip("/")
    if "/webapi" in cleaned:
        return cleaned.split("/webapi")[0] + "/webapi"
    return f"{cleaned}/webapi"


class FileStationClient:
    def __init__(
        self,
        url: str,
        verify_ssl: bool = True,
        ca_file: Optional[str] = None,
        connect_timeout: float = 30.0,
        max_time: float = 50.0,
    ):
        self.root = webapi_root(url)
        self.verify_ssl = verify_ssl
        self.ca_file = ca_file
        self.timeout = aiohttp.ClientTimeout(total=max_time, connect=connect_timeout)
        self._http: Optional[aiohttp.ClientSession] = None

    @property
    def auth_url(self) -> str:
        return f"{self.root}/auth.cgi"

    @property
    def entry_url(self) -> str:
        return f"{self.root}/entry.cgi"

    def _ssl_option(self) -> Any:
        if not self.verify_ssl:
            return False
        if self.ca_file:
            return ssl.create_default_context(cafile=self.ca_file)
        return None

    def _get_http(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            ssl_option = self._ssl_option()
            connector = (
                aiohttp.TCPConnector(ssl=ssl_option)
                if ssl_option is not None
                else aiohttp.TCPConnector()
            )
            self._http = aiohttp.ClientSession(
                connector=connector, timeout=self.timeout
            )
        return self._http

    async def call(
        self,
        params: dict,
        error: type[DocVaultError],
        *,
        cgi: str = "entry.cgi",
        form: Optional[aiohttp.FormData] = None,
    ) -> dict:
        url = f"{self.root}/{cgi}"
        api = f"{params.get('api')}.{params.get('method')}"
        http = self._get_http()
        logger.debug(f"FileStation call {api}")

        try:
            if form is None:
                request = http.get(url, params=params)
            else:
                request = http.post(url, params=params, data=form)
            async with request as response:
                if response.status >= 400:
                    raise error(f"{api} returned HTTP {response.status}")
                try:
                    body = await response.json(content_type=None)
                except (json.JSONDecodeError, ValueError) as e:
                    raise error(f"{api} returned a non-JSON response") from e
        except asyncio.TimeoutError as e:
            raise StorageTimeoutError(
                f"{api} exceeded {self.timeout.total}s budget"
            ) from e
        except aiohttp.ClientError as e:
            raise error(f"{api} transport failure: {e}") from e

        if not isinstance(body, dict) or not body.get("success"):
            code = None
            if isinstance(body, dict):
                code = (body.get("error") or {}).get("code")
            raise error(f"{api} failed: {describe_error(code)}", code=code)

        return body.get("data") or {}

    async def download_to(
        self, params: dict, destination: Path, error: type[DocVaultError]
    ) -> int:
        api = f"{params.get('api')}.{params.get('method')}"
        http = self._get_http()
        logger.debug(f"FileStation download {api}")
        written = 0

        try:
            async with http.get(self.entry_url, params=params) as response:
                if response.status >= 400:
                    raise error(f"{api} returned HTTP {response.status}")
                if response.content_type == "application/json":
                    try:
                        body = await response.json(content_type=None)
                    except (json.JSONDecodeError, ValueError) as e:
                        raise error(f"{api} returned a malformed JSON error") from e
                    code = None
                    if isinstance(body, dict):
                        code = (body.get("error") or {}).get("code")
                    raise error(f"{api} failed: {describe_error(code)}", code=code)
                async with aiofiles.open(destination, "wb") as f:
                    async for chunk in response.content.iter_chunked(
                        DOWNLOAD_CHUNK_SIZE
                    ):
                        await f.write(chunk)
                        written += len(chunk)
        except asyncio.TimeoutError as e:
            raise StorageTimeoutError(
                f"{api} exceeded {self.timeout.total}s budget"
            ) from e
        except aiohttp.ClientError as e:
            raise error(f"{api} transport failure: {e}") from e

        return written

    async def close(self) -> None:
        if self._http is not None and not self._http.closed:
            await self._http.close()
        self._http = None
