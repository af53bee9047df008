import secrets
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, UploadFile
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel

from docvault.config import Settings
from docvault.documents import DocumentService, EmailMessage
from docvault.errors import (
    DocumentError,
    DocVaultError,
    FolderMoveError,
    InvalidLocatorError,
    UnsupportedMoveError,
)
from docvault.folder_move import FolderMover
from docvault.mailer import EmailService, Sender
from docvault.router import StorageRouter, StoreOptions
from docvault.storage.backend import UploadRequest


@dataclass
class Services:
    router: StorageRouter
    mover: FolderMover
    documents: DocumentService
    api_key: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "Services":
        router = StorageRouter.from_settings(settings)
        documents = DocumentService(
            renderer=None,
            router=router,
            mailer=EmailService(settings.brevo_api_key),
            dev_dir=settings.dev_dir,
        )
        return cls(
            router=router,
            mover=FolderMover(router),
            documents=documents,
            api_key=settings.api_key,
        )


class MoveFolderBody(BaseModel):
    old_url: str
    new_url: str


class SendEmailBody(BaseModel):
    email: str
    from_email: str
    from_name: str
    subject: str
    message: str
    attachment: Optional[str] = None


def _error_response(stage: str, error: Exception) -> JSONResponse:
    if isinstance(error, DocumentError):
        stage = error.stage
        cause = error.cause or error
    else:
        cause = error

    status = 502
    if isinstance(cause, (InvalidLocatorError, UnsupportedMoveError)):
        status = 400

    body = {"error": str(error), "stage": stage}
    if isinstance(cause, FolderMoveError):
        body["unprocessed"] = cause.unprocessed
    return JSONResponse(body, status_code=status)


def register_routes(app: FastAPI, services: Services) -> None:
    def require_api_key(x_api_key: Optional[str] = Header(default=None)) -> None:
        if services.api_key is None:
            return
        if x_api_key is None or not secrets.compare_digest(x_api_key, services.api_key):
            raise HTTPException(status_code=401, detail="Unauthorized")

    guarded = [Depends(require_api_key)]

    @app.get("/api/health")
    async def health():
        return {
            "status": "ok",
            "backend": services.router.active_backend().value,
            "fallback": services.router.fallback_enabled,
        }

    @app.post("/api/files", dependencies=guarded)
    async def store_file(
        file: UploadFile = File(...),
        relative_path: str = Form(...),
        print_document: bool = Form(default=False, alias="print"),
        printer: Optional[str] = Form(default=None),
    ):
        payload = await file.read()
        request = UploadRequest(
            payload=payload,
            relative_path=relative_path,
            content_type=file.content_type or "application/pdf",
        )
        options = StoreOptions(print=print_document, printer_name=printer or None)
        try:
            result = await services.router.store(request, options)
        except DocVaultError as e:
            logger.error(f"Storing {relative_path} failed: {e}")
            return _error_response("store", e)
        return result.to_dict()

    @app.get("/api/files", dependencies=guarded)
    async def list_files(path: str):
        try:
            entries = await services.router.list(path)
        except DocVaultError as e:
            return _error_response("store", e)
        return {
            "path": path,
            "entries": [
                {
                    "name": entry.name,
                    "relative_path": entry.relative_path,
                    "is_dir": entry.is_dir,
                    "size": entry.size,
                }
                for entry in entries
            ],
        }

    @app.post("/api/move-folder", dependencies=guarded)
    async def move_folder(body: MoveFolderBody):
        try:
            result = await services.mover.move_folder(body.old_url, body.new_url)
        except DocVaultError as e:
            logger.error(f"Folder move {body.old_url} -> {body.new_url} failed: {e}")
            return _error_response("store", e)
        return {"message": "Folder moved successfully", **result.to_dict()}

    @app.post("/api/send-email", dependencies=guarded)
    async def send_email(body: SendEmailBody):
        message = EmailMessage(
            to=body.email,
            sender=Sender(email=body.from_email, name=body.from_name),
            subject=body.subject,
            body_text=body.message,
        )
        try:
            await services.documents.email_document(message, reference=body.attachment)
        except DocumentError as e:
            logger.error(f"Email to {body.email} failed: {e}")
            return _error_response(e.stage, e)
        return {"message": "Email sent successfully"}


def create_app(services: Services) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await services.router.close()

    app = FastAPI(title="docvault", lifespan=lifespan)
    register_routes(app, services)
    return app
