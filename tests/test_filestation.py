import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from docvault.errors import AuthError, DownloadError, StorageTimeoutError, UploadError
from docvault.storage.filestation import (
    FileStationClient,
    describe_error,
    webapi_root,
)

from conftest import AsyncContextManager

LOGIN_PARAMS = {"api": "SYNO.API.Auth", "method": "login"}


def _response(status=200, body=None, content_type="application/json"):
    response = MagicMock()
    response.status = status
    response.content_type = content_type
    response.json = AsyncMock(return_value=body)
    return response


@pytest.fixture
def client():
    return FileStationClient("https://nas.local:5001/webapi", max_time=5, connect_timeout=2)


def _patch_http(client, response=None, side_effect=None):
    http = MagicMock()
    if side_effect is not None:
        http.get = MagicMock(side_effect=side_effect)
        http.post = MagicMock(side_effect=side_effect)
    else:
        http.get = MagicMock(return_value=AsyncContextManager(response))
        http.post = MagicMock(return_value=AsyncContextManager(response))
    return patch.object(client, "_get_http", return_value=http), http


class TestWebapiRoot:
    def test_appends_webapi(self):
        assert webapi_root("https://nas.local:5001") == "https://nas.local:5001/webapi"

    def test_strips_entry_point(self):
        assert (
            webapi_root("https://nas.local:5001/webapi/entry.cgi")
            == "https://nas.local:5001/webapi"
        )

    def test_client_urls(self, client):
        assert client.auth_url == "https://nas.local:5001/webapi/auth.cgi"
        assert client.entry_url == "https://nas.local:5001/webapi/entry.cgi"
        assert client.timeout.total == 5
        assert client.timeout.connect == 2


class TestDescribeError:
    def test_known_code(self):
        assert describe_error(408) == "No such file or directory (code 408)"

    def test_unknown_code(self):
        assert "code 9999" in describe_error(9999)

    def test_missing_code(self):
        assert describe_error(None) == "no error code returned"


class TestCall:
    @pytest.mark.asyncio
    async def test_returns_data_on_success(self, client):
        response = _response(body={"success": True, "data": {"sid": "abc"}})
        patcher, http = _patch_http(client, response)

        with patcher:
            data = await client.call(LOGIN_PARAMS, AuthError, cgi="auth.cgi")

        assert data == {"sid": "abc"}
        http.get.assert_called_once()
        assert http.get.call_args.args[0] == "https://nas.local:5001/webapi/auth.cgi"

    @pytest.mark.asyncio
    async def test_posts_when_form_given(self, client):
        response = _response(body={"success": True})
        patcher, http = _patch_http(client, response)
        form = aiohttp.FormData()
        form.add_field("file", b"data", filename="a.pdf")

        with patcher:
            data = await client.call({"api": "SYNO.FileStation.Upload"}, UploadError, form=form)

        assert data == {}
        http.post.assert_called_once()
        assert http.post.call_args.kwargs["data"] is form
        http.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_raises_requested_error_with_code(self, client):
        response = _response(body={"success": False, "error": {"code": 400}})
        patcher, _ = _patch_http(client, response)

        with patcher:
            with pytest.raises(AuthError) as exc_info:
                await client.call(LOGIN_PARAMS, AuthError, cgi="auth.cgi")

        assert exc_info.value.code == 400
        assert "incorrect password" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_http_error_status(self, client):
        response = _response(status=401, body=None)
        patcher, _ = _patch_http(client, response)

        with patcher:
            with pytest.raises(AuthError, match="HTTP 401"):
                await client.call(LOGIN_PARAMS, AuthError, cgi="auth.cgi")

    @pytest.mark.asyncio
    async def test_non_json_response(self, client):
        response = _response()
        response.json = AsyncMock(side_effect=ValueError("Expecting value"))
        patcher, _ = _patch_http(client, response)

        with patcher:
            with pytest.raises(UploadError, match="non-JSON"):
                await client.call({"api": "SYNO.FileStation.Upload"}, UploadError)

    @pytest.mark.asyncio
    async def test_timeout_becomes_storage_timeout(self, client):
        patcher, _ = _patch_http(client, side_effect=asyncio.TimeoutError())

        with patcher:
            with pytest.raises(StorageTimeoutError) as exc_info:
                await client.call(LOGIN_PARAMS, AuthError, cgi="auth.cgi")

        assert isinstance(exc_info.value, TimeoutError)

    @pytest.mark.asyncio
    async def test_transport_failure(self, client):
        error = aiohttp.ClientConnectionError("connection refused")
        patcher, _ = _patch_http(client, side_effect=error)

        with patcher:
            with pytest.raises(AuthError, match="transport failure"):
                await client.call(LOGIN_PARAMS, AuthError, cgi="auth.cgi")


class TestDownloadTo:
    @pytest.mark.asyncio
    async def test_streams_content_to_file(self, client, tmp_path):
        response = _response(content_type="application/pdf")

        async def chunks(size):
            yield b"%PDF-"
            yield b"1.7"

        response.content.iter_chunked = chunks
        patcher, _ = _patch_http(client, response)
        destination = tmp_path / "download.pdf"

        with patcher:
            written = await client.download_to(
                {"api": "SYNO.FileStation.Download"}, destination, DownloadError
            )

        assert written == 8
        assert destination.read_bytes() == b"%PDF-1.7"

    @pytest.mark.asyncio
    async def test_json_envelope_is_an_error(self, client, tmp_path):
        response = _response(body={"success": False, "error": {"code": 408}})
        patcher, _ = _patch_http(client, response)

        with patcher:
            with pytest.raises(DownloadError) as exc_info:
                await client.download_to(
                    {"api": "SYNO.FileStation.Download"},
                    tmp_path / "missing.pdf",
                    DownloadError,
                )

        assert exc_info.value.code == 408

    @pytest.mark.asyncio
    async def test_malformed_json_error_body(self, client, tmp_path):
        response = _response()
        response.json = AsyncMock(
            side_effect=json.JSONDecodeError("Expecting value", "<html>", 0)
        )
        patcher, _ = _patch_http(client, response)
        destination = tmp_path / "broken.pdf"

        with patcher:
            with pytest.raises(DownloadError, match="malformed JSON"):
                await client.download_to(
                    {"api": "SYNO.FileStation.Download"}, destination, DownloadError
                )

        assert not destination.exists()

    @pytest.mark.asyncio
    async def test_json_body_that_is_not_an_envelope(self, client, tmp_path):
        response = _response(body=["unexpected"])
        patcher, _ = _patch_http(client, response)

        with patcher:
            with pytest.raises(DownloadError) as exc_info:
                await client.download_to(
                    {"api": "SYNO.FileStation.Download"},
                    tmp_path / "odd.pdf",
                    DownloadError,
                )

        assert exc_info.value.code is None


class TestClose:
    @pytest.mark.asyncio
    async def test_close_without_session_is_noop(self, client):
        await client.close()
        assert client._http is None
