"""
FastAPI layer exposing the media pipeline and payment QR rotation.

Endpoints:
 - GET /health
 - POST /uploads/{category}
 - POST /uploads/{category}/from-url
 - DELETE /uploads/{storage_key}
 - POST /events
 - GET /events/{event_id}/payment-qr
 - POST /events/{event_id}/payments
 - POST /events/{event_id}/qr-slots

Run with ``uvicorn --factory media_service.api:create_app``.
"""

from __future__ import annotations

import logging
from typing import List, Optional
import uuid

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from pydantic import BaseModel, HttpUrl
import requests

from . import config
from .errors import EventAlreadyExistsError, EventNotFoundError, PipelineError, UploadError
from .notifier import EmailNotifier, build_payment_confirmation_email
from .pipeline import MediaPipeline
from .presets import MediaOverrides
from .qr_rotation import ActivePaymentQR, EventStore, InMemoryEventStore, QRRotationService
from .storage import StorageSink, build_storage_sink
from .uploader import UploadOrchestrator, UploadResult

logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT_SECONDS = 30


class UploadResponse(BaseModel):
    locator: str
    storageKey: str
    byteSize: int
    width: int
    height: int
    format: str

    @classmethod
    def from_result(cls, result: UploadResult) -> "UploadResponse":
        return cls(
            locator=result.locator,
            storageKey=result.storage_key,
            byteSize=result.byte_size,
            width=result.width,
            height=result.height,
            format=result.format,
        )


class UploadFromUrlRequest(BaseModel):
    imageUrl: HttpUrl
    quality: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    fit: Optional[str] = None
    lossless: Optional[bool] = None
    folder: Optional[str] = None


class ActiveQRResponse(BaseModel):
    qrCodeUrl: Optional[str]
    upiId: Optional[str]
    accountName: Optional[str]
    usageCount: int
    maxUsage: int
    slotIndex: Optional[int]

    @classmethod
    def from_active(cls, active: ActivePaymentQR) -> "ActiveQRResponse":
        return cls(
            qrCodeUrl=active.qr_locator,
            upiId=active.payment_identifier,
            accountName=active.account_label,
            usageCount=active.usage_count,
            maxUsage=active.capacity,
            slotIndex=active.slot_index,
        )


class CreateEventRequest(BaseModel):
    eventId: Optional[str] = None
    name: str
    paymentQRCode: Optional[str] = None
    paymentUPI: Optional[str] = None
    paymentAccountName: Optional[str] = None


class EventResponse(BaseModel):
    eventId: str
    name: str
    slotCount: int
    activeQR: ActiveQRResponse


class RecordPaymentRequest(BaseModel):
    payerEmail: Optional[str] = None
    amount: Optional[float] = None
    reference: Optional[str] = None


class RecordPaymentResponse(BaseModel):
    activeQR: ActiveQRResponse
    rotated: bool
    exhausted: bool
    warnings: List[str] = []


class QRSlotResponse(BaseModel):
    slotCount: int
    upload: UploadResponse


def _pipeline_http_error(exc: PipelineError) -> HTTPException:
    if exc.stage in ("profile", "conversion"):
        status = 400
    elif isinstance(exc.cause, UploadError) and exc.reason != "UploadError.Fatal":
        status = 503
    else:
        status = 502
    return HTTPException(status_code=status, detail=exc.as_dict())


def _download_image(url: str) -> bytes:
    resp = requests.get(url, timeout=(5, DOWNLOAD_TIMEOUT_SECONDS))
    resp.raise_for_status()
    return resp.content


def create_app(
    settings: Optional[config.Settings] = None,
    sink: Optional[StorageSink] = None,
    event_store: Optional[EventStore] = None,
    notifier: Optional[EmailNotifier] = None,
) -> FastAPI:
    """
    Build the application. Storage configuration is validated here so a
    misconfigured deployment fails at startup rather than on first upload.
    """
    settings = settings or config.get_settings()
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

    sink = sink or build_storage_sink(settings)
    pipeline = MediaPipeline(
        UploadOrchestrator.from_settings(sink, settings),
        root_folder=settings.storage_root_folder,
    )
    rotation = QRRotationService(
        event_store or InMemoryEventStore(),
        default_capacity=settings.qr_default_capacity,
    )
    notifier = notifier or EmailNotifier(settings)

    app = FastAPI(title="Media Upload Service", version="0.1.0")
    app.state.pipeline = pipeline
    app.state.rotation = rotation

    def _run_pipeline(data: bytes, category: str, overrides: MediaOverrides, folder: Optional[str]) -> UploadResult:
        try:
            return pipeline.process_image_bytes(data, category=category, overrides=overrides, folder=folder)
        except PipelineError as exc:
            logger.exception("Upload pipeline failed: %s", exc)
            raise _pipeline_http_error(exc) from exc

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.post("/uploads/{category}", response_model=UploadResponse)
    def upload_file(
        category: str,
        file: UploadFile = File(...),
        quality: Optional[int] = Form(None),
        width: Optional[int] = Form(None),
        height: Optional[int] = Form(None),
        fit: Optional[str] = Form(None),
        lossless: Optional[bool] = Form(None),
        folder: Optional[str] = Form(None),
    ):
        image_bytes = file.file.read()
        if not image_bytes:
            raise HTTPException(status_code=400, detail="Empty upload")
        logger.info("Processing %s (%d bytes) as %s", file.filename, len(image_bytes), category)
        overrides = MediaOverrides(quality=quality, width=width, height=height, fit=fit, lossless=lossless)
        result = _run_pipeline(image_bytes, category, overrides, folder)
        return UploadResponse.from_result(result)

    @app.post("/uploads/{category}/from-url", response_model=UploadResponse)
    def upload_from_url(category: str, body: UploadFromUrlRequest):
        try:
            image_bytes = _download_image(str(body.imageUrl))
        except Exception as exc:  # noqa: BLE001
            logger.exception("Failed to download image: %s", exc)
            raise HTTPException(status_code=400, detail="Could not download image") from exc

        overrides = MediaOverrides(
            quality=body.quality,
            width=body.width,
            height=body.height,
            fit=body.fit,
            lossless=body.lossless,
        )
        result = _run_pipeline(image_bytes, category, overrides, body.folder)
        return UploadResponse.from_result(result)

    @app.delete("/uploads/{storage_key:path}")
    def delete_upload(storage_key: str):
        try:
            deleted = pipeline.remove(storage_key)
        except UploadError as exc:
            logger.exception("Failed to delete %s: %s", storage_key, exc)
            raise HTTPException(status_code=502, detail="Delete from storage failed") from exc
        return {"deleted": deleted}

    @app.post("/events", response_model=EventResponse, status_code=201)
    def create_event(body: CreateEventRequest):
        event_id = body.eventId or uuid.uuid4().hex
        try:
            state = rotation.create_event(
                event_id,
                name=body.name,
                payment_qr_code=body.paymentQRCode,
                payment_upi=body.paymentUPI,
                payment_account_name=body.paymentAccountName,
            )
        except EventAlreadyExistsError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return EventResponse(
            eventId=state.event_id,
            name=state.name,
            slotCount=len(state.qr_slots),
            activeQR=ActiveQRResponse.from_active(rotation.active_qr(event_id)),
        )

    @app.get("/events/{event_id}/payment-qr", response_model=ActiveQRResponse)
    def payment_qr(event_id: str):
        try:
            active = rotation.active_qr(event_id)
        except EventNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return ActiveQRResponse.from_active(active)

    @app.post("/events/{event_id}/payments", response_model=RecordPaymentResponse)
    def record_payment(event_id: str, body: Optional[RecordPaymentRequest] = None):
        body = body or RecordPaymentRequest()
        try:
            outcome = rotation.record_payment(event_id)
        except EventNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

        warnings: List[str] = []
        if body.payerEmail:
            subject, html = build_payment_confirmation_email(outcome.state.name, body.amount, body.reference)
            sent = notifier.send(body.payerEmail, subject, html)
            if not sent.delivered and sent.warning:
                warnings.append(sent.warning)

        return RecordPaymentResponse(
            activeQR=ActiveQRResponse.from_active(rotation.active_qr(event_id)),
            rotated=outcome.rotated,
            exhausted=outcome.exhausted,
            warnings=warnings,
        )

    @app.post("/events/{event_id}/qr-slots", response_model=QRSlotResponse)
    def add_qr_slot(
        event_id: str,
        file: UploadFile = File(...),
        upiId: Optional[str] = Form(None),
        accountName: Optional[str] = Form(None),
        maxUsage: Optional[int] = Form(None),
    ):
        if maxUsage is not None and maxUsage < 1:
            raise HTTPException(status_code=400, detail="maxUsage must be positive")
        try:
            rotation.get_event(event_id)
        except EventNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        image_bytes = file.file.read()
        if not image_bytes:
            raise HTTPException(status_code=400, detail="Empty upload")
        result = _run_pipeline(image_bytes, "qrcode", MediaOverrides(), None)
        try:
            state = rotation.register_slot(
                event_id,
                qr_locator=result.locator,
                payment_identifier=upiId,
                account_label=accountName,
                capacity=maxUsage,
            )
        except EventNotFoundError as exc:
            # Removed between the check and the slot write.
            try:
                pipeline.remove(result.storage_key)
            except UploadError:
                logger.exception("Could not roll back QR upload %s", result.storage_key)
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return QRSlotResponse(slotCount=len(state.qr_slots), upload=UploadResponse.from_result(result))

    return app
