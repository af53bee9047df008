import os
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

import aiofiles
import aiofiles.os
from loguru import logger


@asynccontextmanager
async def staged_file(
    suffix: str = "", directory: Optional[Path] = None
) -> AsyncIterator[Path]:
    """Reserve a temporary file that is removed when the block exits.

    Removal happens on success, on error and on cancellation, so transports
    may stream into the file without tracking cleanup themselves.
    """
    fd, name = tempfile.mkstemp(
        prefix="docvault-", suffix=suffix, dir=str(directory) if directory else None
    )
    os.close(fd)
    path = Path(name)
    try:
        yield path
    finally:
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass
        else:
            logger.debug(f"Removed staged file {path.name}")


async def read_staged(path: Path) -> bytes:
    async with aiofiles.open(path, "rb") as f:
        return await f.read()
