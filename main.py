import logging
import os
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from imaging.errors import (
    DecodeError,
    EncodeError,
    NotFound,
    ProcessingFailure,
    StoreUnavailable,
    UnsupportedFormat,
)
from imaging.models import (
    ErrorResponse,
    HealthResponse,
    ImageEntry,
    ImageListResponse,
    ProcessImageResponse,
)
from imaging.pipeline import Pipeline
from imaging.storage import OutputStore, media_type

# --- Environment & Config ---
DEFAULT_OUTPUT_DIR = "./outputs"
DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("main")

FAILURE_STATUS = {
    UnsupportedFormat: 400,
    DecodeError: 422,
    EncodeError: 500,
    StoreUnavailable: 503,
    NotFound: 404,
}


def max_upload_bytes() -> int:
    return int(os.getenv("MAX_UPLOAD_BYTES", str(DEFAULT_MAX_UPLOAD_BYTES)))


def _format_limit(limit: int) -> str:
    mb = limit / (1024 * 1024)
    return f"{mb:g}MB" if mb >= 1 else f"{limit} bytes"


# --- Dependencies ---
def get_store() -> OutputStore:
    """Build the output store from ``OUTPUT_DIR``.

    The variable is read per request so tests can point the app at a
    temporary directory with ``monkeypatch.setenv``.
    """
    return OutputStore(os.getenv("OUTPUT_DIR", DEFAULT_OUTPUT_DIR), url_prefix="/outputs")


def get_pipeline(store: OutputStore = Depends(get_store)) -> Pipeline:
    return Pipeline(store)


# --- App Init ---
app = FastAPI(title="Grayscale Image API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

logger.info("[startup] Output directory: %s", os.path.abspath(os.getenv("OUTPUT_DIR", DEFAULT_OUTPUT_DIR)))


# --- Middleware ---
@app.middleware("http")
async def add_cache_control_header(request: Request, call_next):
    response = await call_next(request)
    # Stored outputs are never overwritten, so they can be cached forever.
    if request.url.path.startswith("/outputs/") and response.status_code == 200:
        response.headers["Cache-Control"] = "public, max-age=604800, immutable"
    return response


# --- Error Handlers ---
@app.exception_handler(ProcessingFailure)
async def processing_failure_handler(request: Request, exc: ProcessingFailure):
    status = next((code for cls, code in FAILURE_STATUS.items() if isinstance(exc, cls)), 500)
    return JSONResponse(status_code=status, content=ErrorResponse(error=str(exc)).model_dump())


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=str(exc.detail)).model_dump(),
        headers=getattr(exc, "headers", None),
    )


# --- Endpoints ---
@app.get("/api/health", response_model=HealthResponse)
async def health():
    return HealthResponse(
        status="OK",
        message="Image Processing API is running",
        timestamp=datetime.now(timezone.utc),
    )


@app.post("/api/process-image", response_model=ProcessImageResponse)
async def process_image_endpoint(
    image: Optional[UploadFile] = File(None),
    pipeline: Pipeline = Depends(get_pipeline),
):
    """Convert an uploaded image to grayscale and store it as PNG.

    The multipart field ``image`` carries the file. Its filename extension
    and content type are both required and must name the same format
    (JPEG, PNG or GIF). The result is stored under a new unique name and
    served from ``/outputs/<filename>``.
    """
    if image is None or not image.filename:
        raise HTTPException(status_code=400, detail="No image file provided")
    if not os.path.splitext(image.filename)[1] or not image.content_type:
        raise UnsupportedFormat("Uploads need both an image file extension and an image content type")
    limit = max_upload_bytes()
    try:
        raw = await image.read(limit + 1)
    finally:
        await image.close()
    if len(raw) > limit:
        raise HTTPException(
            status_code=400,
            detail=f"File too large. Maximum size is {_format_limit(limit)}",
        )
    stored = await run_in_threadpool(pipeline.process, raw, image.filename, image.content_type)
    return ProcessImageResponse(
        message="Image processed successfully",
        filename=stored.filename,
        downloadUrl=stored.url,
        created=stored.created_at,
    )


@app.get("/api/images", response_model=ImageListResponse)
async def list_images(store: OutputStore = Depends(get_store)):
    """List processed images, most recent first."""
    outputs = await run_in_threadpool(store.list)
    return ImageListResponse(
        images=[ImageEntry(filename=o.filename, url=o.url, created=o.created_at) for o in outputs]
    )


@app.get("/api/download/{filename}")
async def download_image(filename: str, store: OutputStore = Depends(get_store)):
    path = await run_in_threadpool(store.resolve, filename)
    return FileResponse(path, media_type=media_type(filename), filename=filename)


@app.get("/outputs/{filename}")
async def serve_output(filename: str, store: OutputStore = Depends(get_store)):
    path = await run_in_threadpool(store.resolve, filename)
    return FileResponse(path, media_type=media_type(filename))
