import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol, Sequence, runtime_checkable

import aiofiles
import aiofiles.os
from loguru import logger

from docvault.errors import DocumentError, DocVaultError, PrintError
from docvault.mailer import Attachment, EmailService, Sender
from docvault.router import StorageRouter, StoreOptions, StoreResult
from docvault.storage.backend import UploadRequest, normalize_relative_path


@dataclass(frozen=True)
class Margins:
    top: str = "1cm"
    right: str = "1cm"
    bottom: str = "1cm"
    left: str = "1cm"


@dataclass(frozen=True)
class PageOptions:
    format: Optional[str] = "A4"
    width: Optional[str] = None
    height: Optional[str] = None
    margins: Margins = field(default_factory=Margins)
    header_html: Optional[str] = None
    footer_html: Optional[str] = None
    emulate_print_media: bool = True
    print_background: bool = True

    @classmethod
    def label(cls, width: str, height: str) -> "PageOptions":
        zero = Margins("0", "0", "0", "0")
        return cls(format=None, width=width, height=height, margins=zero)

    @property
    def display_header_footer(self) -> bool:
        return bool(self.header_html or self.footer_html)


@runtime_checkable
class Renderer(Protocol):
    async def render(self, html: str, options: PageOptions) -> bytes: ...


@dataclass(frozen=True)
class Document:
    html: str
    relative_path: str
    document_kind: str
    page_options: PageOptions = field(default_factory=PageOptions)
    print: bool = False
    printer_name: Optional[str] = None


@dataclass(frozen=True)
class EmailMessage:
    to: str
    sender: Sender
    subject: str
    body_text: str


@dataclass(frozen=True)
class DocumentResult:
    store: StoreResult

    @property
    def print_error(self) -> Optional[PrintError]:
        return self.store.print_error

    def to_dict(self) -> dict:
        return self.store.to_dict()


def document_path(
    scope: str,
    document_type: str,
    filename: str,
    year: Optional[int] = None,
) -> str:
    if year is None:
        year = datetime.now(timezone.utc).year
    if not filename.lower().endswith(".pdf"):
        filename = f"{filename}.pdf"
    return normalize_relative_path(f"{scope.strip('/')}/{year}/{document_type}/{filename}")


class DocumentService:
    def __init__(
        self,
        renderer: Optional[Renderer],
        router: StorageRouter,
        mailer: Optional[EmailService] = None,
        dev_dir: Optional[Path] = None,
        require_print: bool = False,
    ):
        self.renderer = renderer
        self.router = router
        self.mailer = mailer
        self.dev_dir = dev_dir
        self.require_print = require_print

    async def _mirror(self, relative_path: str, html: str, pdf: bytes) -> None:
        target = self.dev_dir / relative_path
        await aiofiles.os.makedirs(target.parent, exist_ok=True)
        async with aiofiles.open(target.with_suffix(".html"), "w") as f:
            await f.write(html)
        async with aiofiles.open(target.with_suffix(".pdf"), "wb") as f:
            await f.write(pdf)
        logger.debug(f"Mirrored {relative_path} to {target.parent}")

    async def generate(self, document: Document) -> DocumentResult:
        if self.renderer is None:
            raise DocumentError("render", DocVaultError("no renderer configured"))
        try:
            relative_path = normalize_relative_path(document.relative_path)
        except DocVaultError as e:
            raise DocumentError("store", e) from e

        try:
            pdf = await self.renderer.render(document.html, document.page_options)
        except Exception as e:
            logger.error(f"Rendering {document.relative_path} failed: {e}")
            raise DocumentError("render", e) from e
        if not pdf:
            raise DocumentError("render", ValueError("renderer returned no content"))

        if self.dev_dir is not None:
            try:
                await self._mirror(relative_path, document.html, pdf)
            except OSError as e:
                logger.warning(f"Dev mirror for {document.relative_path} failed: {e}")

        request = UploadRequest(
            payload=pdf,
            relative_path=relative_path,
            document_kind=document.document_kind,
        )
        options = StoreOptions(print=document.print, printer_name=document.printer_name)
        try:
            stored = await self.router.store(request, options)
        except DocVaultError as e:
            raise DocumentError("store", e) from e

        if stored.print_error is not None and self.require_print:
            raise DocumentError("print", stored.print_error)
        return DocumentResult(store=stored)

    async def generate_many(self, documents: Sequence[Document]) -> list[DocumentResult]:
        return list(await asyncio.gather(*(self.generate(d) for d in documents)))

    async def email_document(
        self, message: EmailMessage, reference: Optional[str] = None
    ) -> dict:
        if self.mailer is None:
            raise DocumentError("email", DocVaultError("no email service configured"))

        attachment = None
        if reference:
            try:
                content, filename = await self.router.fetch(reference)
            except DocVaultError as e:
                raise DocumentError("store", e) from e
            attachment = Attachment(content=content, filename=filename)

        try:
            return await self.mailer.send(
                message.to,
                message.sender,
                message.subject,
                message.body_text,
                attachment=attachment,
            )
        except DocVaultError as e:
            raise DocumentError("email", e) from e
