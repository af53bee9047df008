import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from docvault.documents import (
    Document,
    DocumentService,
    EmailMessage,
    PageOptions,
    document_path,
)
from docvault.errors import (
    DocumentError,
    DownloadError,
    EmailError,
    PrintError,
    UploadError,
)
from docvault.mailer import Attachment, Sender
from docvault.router import StoreResult
from docvault.storage.backend import BackendKind, StorageLocator

from conftest import INVOICE_PATH


class FakeRenderer:
    def __init__(self, pdf=b"%PDF-1.7 rendered", delay=0.0, error=None):
        self.pdf = pdf
        self.delay = delay
        self.error = error
        self.calls = []

    async def render(self, html, options):
        self.calls.append((html, options))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.pdf


def _locator(relative_path=INVOICE_PATH):
    return StorageLocator(
        BackendKind.REMOTE_FILE, relative_path, f"https://nas.local/{relative_path}", 17
    )


@pytest.fixture
def router():
    router = MagicMock()

    async def store(request, options=None):
        return StoreResult(locator=_locator(request.relative_path))

    router.store = AsyncMock(side_effect=store)
    router.fetch = AsyncMock(return_value=(b"%PDF-1.7", "INV-001.pdf"))
    return router


@pytest.fixture
def mailer():
    mailer = MagicMock()
    mailer.send = AsyncMock(return_value={"status": 201, "body": "{}"})
    return mailer


@pytest.fixture
def invoice():
    return Document(
        html="<h1>Factuur INV-001</h1>",
        relative_path=INVOICE_PATH,
        document_kind="invoice",
    )


class TestPageOptions:
    def test_defaults(self):
        options = PageOptions()
        assert options.format == "A4"
        assert options.emulate_print_media is True
        assert options.print_background is True
        assert options.display_header_footer is False

    def test_label_has_explicit_size_and_no_margins(self):
        options = PageOptions.label("62mm", "29mm")
        assert options.format is None
        assert (options.width, options.height) == ("62mm", "29mm")
        assert options.margins.top == "0"

    def test_header_enables_header_footer(self):
        assert PageOptions(header_html="<span>Acme</span>").display_header_footer is True


class TestDocumentPath:
    def test_builds_layout(self):
        path = document_path("klanten/acme", "facturen", "INV-001", year=2025)
        assert path == INVOICE_PATH

    def test_keeps_pdf_extension(self):
        assert document_path("/klanten/acme/", "facturen", "INV-001.pdf", year=2025) == INVOICE_PATH


class TestGenerate:
    @pytest.mark.asyncio
    async def test_renders_and_stores(self, router, invoice):
        renderer = FakeRenderer()
        service = DocumentService(renderer, router)

        result = await service.generate(invoice)

        assert result.store.locator.relative_path == INVOICE_PATH
        assert result.print_error is None
        request = router.store.call_args.args[0]
        assert request.payload == b"%PDF-1.7 rendered"
        assert request.document_kind == "invoice"
        assert renderer.calls[0][1] == PageOptions()

    @pytest.mark.asyncio
    async def test_passes_print_options(self, router):
        document = Document(
            html="<p>label</p>",
            relative_path="klanten/acme/2025/stickers/S-1.pdf",
            document_kind="sticker",
            page_options=PageOptions.label("62mm", "29mm"),
            print=True,
            printer_name="Zebra",
        )

        await DocumentService(FakeRenderer(), router).generate(document)

        options = router.store.call_args.args[1]
        assert options.print is True
        assert options.printer_name == "Zebra"

    @pytest.mark.asyncio
    async def test_render_failure(self, router, invoice):
        service = DocumentService(FakeRenderer(error=RuntimeError("browser crashed")), router)

        with pytest.raises(DocumentError) as exc_info:
            await service.generate(invoice)

        assert exc_info.value.stage == "render"
        assert str(exc_info.value).startswith("render failed")
        router.store.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_render_output(self, router, invoice):
        service = DocumentService(FakeRenderer(pdf=b""), router)

        with pytest.raises(DocumentError) as exc_info:
            await service.generate(invoice)

        assert exc_info.value.stage == "render"

    @pytest.mark.asyncio
    async def test_missing_renderer(self, router, invoice):
        with pytest.raises(DocumentError) as exc_info:
            await DocumentService(None, router).generate(invoice)

        assert exc_info.value.stage == "render"

    @pytest.mark.asyncio
    async def test_store_failure(self, router, invoice):
        router.store.side_effect = UploadError("S3 upload failed")

        with pytest.raises(DocumentError) as exc_info:
            await DocumentService(FakeRenderer(), router).generate(invoice)

        assert exc_info.value.stage == "store"
        assert isinstance(exc_info.value.cause, UploadError)
        assert "store failed" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_print_failure_is_reported(self, router, invoice):
        error = PrintError("Printer offline")
        router.store.side_effect = None
        router.store.return_value = StoreResult(locator=_locator(), print_error=error)

        result = await DocumentService(FakeRenderer(), router).generate(invoice)

        assert result.print_error is error
        assert result.to_dict()["print_error"] == "Printer offline"

    @pytest.mark.asyncio
    async def test_print_failure_when_required(self, router, invoice):
        router.store.side_effect = None
        router.store.return_value = StoreResult(
            locator=_locator(), print_error=PrintError("Printer offline")
        )
        service = DocumentService(FakeRenderer(), router, require_print=True)

        with pytest.raises(DocumentError) as exc_info:
            await service.generate(invoice)

        assert exc_info.value.stage == "print"


class TestDevMirror:
    @pytest.mark.asyncio
    async def test_writes_html_and_pdf(self, router, invoice, tmp_path):
        service = DocumentService(FakeRenderer(), router, dev_dir=tmp_path)

        await service.generate(invoice)

        target = tmp_path / "klanten/acme/2025/facturen"
        assert (target / "INV-001.html").read_text() == "<h1>Factuur INV-001</h1>"
        assert (target / "INV-001.pdf").read_bytes() == b"%PDF-1.7 rendered"
        router.store.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_mirror_failure_does_not_block_storage(self, router, invoice, tmp_path):
        blocker = tmp_path / "mirror"
        blocker.write_text("not a directory")
        service = DocumentService(FakeRenderer(), router, dev_dir=blocker)

        result = await service.generate(invoice)

        assert result.store.locator.relative_path == INVOICE_PATH

    @pytest.mark.asyncio
    async def test_traversal_is_rejected_before_anything_is_written(
        self, router, tmp_path
    ):
        dev_dir = tmp_path / "mirror"
        renderer = FakeRenderer()
        service = DocumentService(renderer, router, dev_dir=dev_dir)
        document = Document(
            html="<h1>escape</h1>",
            relative_path="klanten/../../escape.pdf",
            document_kind="invoice",
        )

        with pytest.raises(DocumentError) as exc_info:
            await service.generate(document)

        assert exc_info.value.stage == "store"
        assert renderer.calls == []
        assert not dev_dir.exists()
        assert not (tmp_path / "escape.pdf").exists()
        router.store.assert_not_called()


class TestGenerateMany:
    @pytest.mark.asyncio
    async def test_results_in_input_order(self, router):
        documents = [
            Document(f"<p>{n}</p>", f"klanten/acme/2025/stickers/S-{n}.pdf", "sticker")
            for n in range(3)
        ]
        service = DocumentService(FakeRenderer(delay=0.01), router)

        results = await service.generate_many(documents)

        assert [r.store.locator.relative_path for r in results] == [
            d.relative_path for d in documents
        ]
        assert router.store.await_count == 3


class TestEmailDocument:
    @pytest.fixture
    def message(self):
        return EmailMessage(
            to="klant@example.com",
            sender=Sender("facturen@acme.nl", "Acme"),
            subject="Factuur INV-001",
            body_text="Zie bijlage",
        )

    @pytest.mark.asyncio
    async def test_attaches_fetched_document(self, router, mailer, message):
        service = DocumentService(None, router, mailer=mailer)

        await service.email_document(message, reference=f"remote://{INVOICE_PATH}")

        router.fetch.assert_awaited_once_with(f"remote://{INVOICE_PATH}")
        attachment = mailer.send.call_args.kwargs["attachment"]
        assert attachment == Attachment(content=b"%PDF-1.7", filename="INV-001.pdf")

    @pytest.mark.asyncio
    async def test_without_attachment(self, router, mailer, message):
        service = DocumentService(None, router, mailer=mailer)

        await service.email_document(message)

        router.fetch.assert_not_called()
        assert mailer.send.call_args.kwargs["attachment"] is None

    @pytest.mark.asyncio
    async def test_fetch_failure_is_store_stage(self, router, mailer, message):
        router.fetch.side_effect = DownloadError("returned no content")
        service = DocumentService(None, router, mailer=mailer)

        with pytest.raises(DocumentError) as exc_info:
            await service.email_document(message, reference=f"remote://{INVOICE_PATH}")

        assert exc_info.value.stage == "store"
        mailer.send.assert_not_called()

    @pytest.mark.asyncio
    async def test_send_failure_is_email_stage(self, router, mailer, message):
        mailer.send.side_effect = EmailError("HTTP 401")
        service = DocumentService(None, router, mailer=mailer)

        with pytest.raises(DocumentError) as exc_info:
            await service.email_document(message)

        assert exc_info.value.stage == "email"
