import asyncio
import json
from dataclasses import dataclass
from typing import Any, Optional

import aiohttp
from loguru import logger

from docvault.errors import PrintError
from docvault.storage.backend import StorageLocator


@dataclass(frozen=True)
class PrintJob:
    locator: StorageLocator
    printer_name: Optional[str] = None


@dataclass(frozen=True)
class PrintResult:
    ok: bool
    detail: Any = None


class PrintService:
    def __init__(self, endpoint_url: Optional[str], timeout: float = 30.0):
        self.endpoint_url = endpoint_url
        self.timeout = timeout

    async def submit(self, job: PrintJob) -> PrintResult:
        return await self.print(job.locator.print_reference(), job.printer_name)

    async def print(self, locator: str, printer_name: Optional[str] = None) -> PrintResult:
        if not self.endpoint_url:
            raise PrintError("Printer endpoint is not configured")

        payload = {"s3_url": locator, "printer": printer_name or None}
        logger.info(f"Printing {locator} on {printer_name or 'default printer'}")

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.endpoint_url,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    text = await response.text()
                    status = response.status
        except aiohttp.ClientError as e:
            raise PrintError(f"Print service unreachable: {e}") from e
        except asyncio.TimeoutError as e:
            raise PrintError(f"Print service timed out after {self.timeout}s") from e

        try:
            data = json.loads(text)
        except ValueError:
            raise PrintError(
                f"Print service returned a non-JSON response (HTTP {status})"
            ) from None

        if not 200 <= status < 300:
            message = data.get("error") if isinstance(data, dict) else None
            raise PrintError(message or f"Print service returned HTTP {status}")

        return PrintResult(ok=True, detail=data)
