"""FastAPI server for SentimentAI."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional, Dict, Any

from fastapi import Depends, FastAPI, File, Form, Header, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from sentimentai import (
    Internal,
    InvalidInput,
    SentimentError,
    SentimentService,
    SQLiteStorage,
    UpstreamUnavailable,
    build_blob_store,
    get_settings,
)
from sentimentai.metrics import MetricsCollector, configure_logging

logger = logging.getLogger("sentimentai.api")


@lru_cache(maxsize=1)
def get_service() -> SentimentService:
    settings = get_settings()
    return SentimentService(
        storage=SQLiteStorage(db_path=settings.db_path),
        blob_store=build_blob_store(settings),
        settings=settings,
        metrics=MetricsCollector(),
    )


configure_logging()
app = FastAPI(title="SentimentAI API", version="0.1.0")


@app.exception_handler(SentimentError)
async def _sentiment_error(request: Request, exc: SentimentError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    err = InvalidInput("Invalid request body")
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


@app.exception_handler(Exception)
async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    err = Internal()
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


class UploadUrlRequest(BaseModel):
    fileType: Optional[str] = None


class UploadUrlResponse(BaseModel):
    uploadMethod: str
    fileId: str
    fileType: str
    key: str


class UploadVideoResponse(BaseModel):
    success: bool
    key: str


class InferenceRequest(BaseModel):
    key: Optional[str] = None


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/health")
def model_health(service: SentimentService = Depends(get_service)) -> JSONResponse:
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        local_model = service.health()
    except UpstreamUnavailable as exc:
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "status": "unhealthy",
                "error": exc.message,
                "reason": exc.reason,
                "message": exc.message,
                "timestamp": timestamp,
            },
        )
    return JSONResponse(
        content={
            "status": "healthy",
            "message": "API and local model are running",
            "localModel": local_model,
            "timestamp": timestamp,
        }
    )


@app.post("/api/upload-url", response_model=UploadUrlResponse)
def upload_url(
    req: UploadUrlRequest,
    authorization: Optional[str] = Header(default=None),
    service: SentimentService = Depends(get_service),
) -> UploadUrlResponse:
    ticket = service.create_upload(authorization, req.fileType)
    return UploadUrlResponse(
        uploadMethod=ticket.upload_method,
        fileId=ticket.file_id,
        fileType=ticket.file_type,
        key=ticket.key,
    )


@app.post("/api/upload-video", response_model=UploadVideoResponse)
def upload_video(
    file: Optional[UploadFile] = File(default=None),
    fileId: Optional[str] = Form(default=None),
    authorization: Optional[str] = Header(default=None),
    service: SentimentService = Depends(get_service),
) -> UploadVideoResponse:
    data = file.file.read() if file is not None else None
    filename = file.filename if file is not None else None
    key = service.upload_video(authorization, fileId, filename, data)
    return UploadVideoResponse(success=True, key=key)


@app.post("/api/sentiment-inference")
def sentiment_inference(
    req: InferenceRequest,
    authorization: Optional[str] = Header(default=None),
    service: SentimentService = Depends(get_service),
) -> Dict[str, Any]:
    return service.analyze(authorization, req.key).to_dict()


@app.get("/api/quota")
def quota(
    authorization: Optional[str] = Header(default=None),
    service: SentimentService = Depends(get_service),
) -> Dict[str, Any]:
    return service.usage(authorization)

