"""FastAPI application factory and HTTP schemas for the bulk mailer.

Endpoints:
- ``POST /send``: multipart form (``subject``, ``message``, ``recipients``,
  ``attachment``); one email per recipient, paced, with a per-recipient report
- ``GET /health``: liveness probe
- ``GET /metrics``: Prometheus exposition of the dispatcher counters
- Static files from the public directory, mounted at ``/`` when it exists

Example:
    Creating and running the application::

        from bulk_mailer.api import create_app
        from bulk_mailer.core import DispatchConfig, MailDispatcher
        from bulk_mailer.transport import SMTPTransport
        from bulk_mailer.uploads import UploadStore

        dispatcher = MailDispatcher(DispatchConfig(sender="me@gmail.com"), SMTPTransport(...))
        app = create_app(dispatcher, UploadStore("uploads"), public_dir="public")

        uvicorn.run(app, host="0.0.0.0", port=3000)
"""

from pathlib import Path
from typing import AsyncContextManager, Callable, List, Optional

from fastapi import FastAPI, File, Form, Request, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from .core import MailDispatcher, NoRecipientsError, parse_recipients
from .logger import get_logger
from .models import SendReport, SendRequest
from .uploads import AttachmentTooLargeError, UploadStore

logger = get_logger("BulkMailer.api")


class RecipientResult(BaseModel):
    """Outcome for one recipient; ``info`` on success, ``error`` on failure."""
    recipient: str
    success: bool
    info: Optional[str] = None
    error: Optional[str] = None


class SendResponse(BaseModel):
    """Body of a processed ``/send`` batch."""
    success: bool
    message: str
    results: List[RecipientResult]


class ErrorResponse(BaseModel):
    success: bool = False
    error: str


def report_to_response(report: SendReport) -> SendResponse:
    """Serialize a dispatcher report into the ``/send`` response schema."""
    results = [
        RecipientResult(recipient=o.recipient, success=True, info=o.detail)
        if o.success
        else RecipientResult(recipient=o.recipient, success=False, error=o.detail)
        for o in report.outcomes
    ]
    return SendResponse(
        success=report.success,
        message=f"Processed {report.total_processed} emails.",
        results=results,
    )


def create_app(
    dispatcher: MailDispatcher,
    uploads: UploadStore,
    *,
    public_dir: str | Path | None = None,
    cors_origins: list[str] | None = None,
    lifespan: Callable[[FastAPI], AsyncContextManager] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    dispatcher:
        :class:`bulk_mailer.core.MailDispatcher` used by ``/send``.
    uploads:
        Store that receives the optional attachment.
    public_dir:
        Directory served as static files at ``/``. Ignored when it does
        not exist.
    cors_origins:
        Allowed CORS origins. Defaults to every origin.
    lifespan:
        Optional lifespan context manager for startup/shutdown events.

    Returns
    -------
    FastAPI
        A configured application ready to be served by Uvicorn.
    """
    api = FastAPI(title="Bulk Mailer", lifespan=lifespan)
    api.state.dispatcher = dispatcher
    api.state.uploads = uploads

    api.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @api.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Log validation errors with full details."""
        logger.error("Validation error on %s %s: %s", request.method, request.url.path, exc.errors())
        return JSONResponse(status_code=422, content={"detail": exc.errors()})

    @api.exception_handler(NoRecipientsError)
    async def no_recipients_handler(request: Request, exc: NoRecipientsError):
        logger.warning("Rejected %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=ErrorResponse(error=str(exc)).model_dump(),
        )

    @api.exception_handler(AttachmentTooLargeError)
    async def attachment_too_large_handler(request: Request, exc: AttachmentTooLargeError):
        return JSONResponse(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            content=ErrorResponse(error=str(exc)).model_dump(),
        )

    @api.get("/health")
    async def health():
        """Health check endpoint for container monitoring."""
        return {"status": "ok"}

    @api.get("/metrics")
    async def metrics():
        """Expose Prometheus metrics collected by the dispatcher."""
        return Response(
            content=api.state.dispatcher.metrics.generate_latest(),
            media_type="text/plain; version=0.0.4",
        )

    @api.post(
        "/send",
        response_model=SendResponse,
        response_model_exclude_none=True,
        responses={400: {"model": ErrorResponse}, 413: {"model": ErrorResponse}},
    )
    async def send(
        subject: str = Form(""),
        message: str = Form(""),
        recipients: str = Form(""),
        attachment: Optional[UploadFile] = File(None),
    ):
        """Send the message to every recipient, one at a time."""
        recipient_list = parse_recipients(recipients)
        if not recipient_list:
            raise NoRecipientsError()

        stored = None
        if attachment is not None and attachment.filename:
            stored = await api.state.uploads.save(attachment)

        request = SendRequest(
            recipients=recipient_list,
            subject=subject,
            message=message,
            attachment=stored,
        )
        report = await api.state.dispatcher.dispatch(request)
        return report_to_response(report)

    if public_dir is not None and Path(public_dir).is_dir():
        api.mount("/", StaticFiles(directory=str(public_dir), html=True), name="public")

    return api
