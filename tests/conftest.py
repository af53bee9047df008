from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from docvault.storage.nas_session import NasSession

INVOICE_PATH = "klanten/acme/2025/facturen/INV-001.pdf"


class AsyncContextManager:
    def __init__(self, mock_obj):
        self.mock_obj = mock_obj

    async def __aenter__(self):
        return self.mock_obj

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        pass


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def filestation_client():
    """A FileStationClient stand-in whose calls succeed with an empty payload."""
    client = MagicMock()
    client.entry_url = "https://nas.local:5001/webapi/entry.cgi"
    client.timeout = aiohttp.ClientTimeout(total=1, connect=1)
    client.call = AsyncMock(return_value={})
    client.download_to = AsyncMock(return_value=0)
    client.close = AsyncMock()
    return client


@pytest.fixture
def nas_session():
    return NasSession(token="sid-123", issued_at=1000.0)


@pytest.fixture
def invoice_pdf():
    return b"%PDF-1.7\n" + b"0" * (10 * 1024 - 9)
