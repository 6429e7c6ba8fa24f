from fastapi import FastAPI, UploadFile, File, Form, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
import logging
import re
from pathlib import PurePath
from typing import Optional

from .config import get_settings
from .errors import InputError, PrintKitError
from .pipeline import KitOptions, PrintKitPipeline
from .sizes import catalogue

settings = get_settings()

# Configure logging early
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
logger = logging.getLogger("print-kit")

app = FastAPI(title="Print Kit API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

prefix = "/api"

_UNSAFE_NAME = re.compile(r"[^\w.\- ]+")


@app.get(f"{prefix}/health")
def health_check():
    return {"status": "healthy"}


def extract_basename(filename: Optional[str]) -> str:
    """Upload filename without directories or extension, safe for paths."""
    name = PurePath((filename or "").replace("\\", "/")).name
    stem = re.sub(r"\.[^.]+$", "", name)
    stem = _UNSAFE_NAME.sub("_", stem).strip(" ._")
    return stem or "image"


def validate_upload(
    file: Optional[UploadFile],
    size: Optional[int],
    max_bytes: int
) -> None:
    """Reject uploads before any pipeline work starts."""
    if file is None or not file.filename:
        raise InputError("No file provided")
    if size is not None and size > max_bytes:
        raise InputError(
            f"File size exceeds {max_bytes // (1024 * 1024)}MB limit"
        )
    if not (file.content_type or "").startswith("image/"):
        raise InputError("File must be an image")


async def read_upload(file: Optional[UploadFile], max_bytes: int) -> bytes:
    """Validate, read and re-check the upload against the size limit."""
    validate_upload(file, file.size if file is not None else None, max_bytes)
    raw = await file.read()
    validate_upload(file, len(raw), max_bytes)
    if not raw:
        raise InputError("Uploaded file is empty")
    return raw


def _http_error(exc: PrintKitError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.to_dict())


@app.get(f"{prefix}/sizes")
def sizes_endpoint(
    every_size: bool = Query(True),
    include_5x7: bool = Query(True),
):
    """Catalogue of aspect ratios, master sizes and sub-size ladders."""
    return {
        "dpi": settings.dpi,
        "ratios": catalogue(every_size, include_5x7, settings.dpi),
    }


@app.post(f"{prefix}/process")
async def process_endpoint(
    file: Optional[UploadFile] = File(None),
    every_sizes: bool = Form(False, alias="everySizes"),
    include_5x7: bool = Form(False, alias="include5x7"),
):
    """
    Turn one photograph into a streamed ZIP print kit.

    Workflow:
    1. Validate the upload (presence, size, image MIME type)
    2. Normalize orientation, color space and transparency
    3. Upscale once to the largest master canvas
    4. Crop every aspect ratio (and sub-size) in the worker pool
    5. Stream each finished JPEG into the ZIP, manifest last

    Steps 1-3 run before the response starts, so their failures come back
    as regular JSON errors. A failure while streaming aborts the download.
    """
    try:
        raw = await read_upload(file, settings.max_upload_bytes)
    except InputError as exc:
        logger.warning(f"Rejected upload: {exc}")
        raise _http_error(exc)

    basename = extract_basename(file.filename)
    options = KitOptions(
        include_every_size=every_sizes,
        include_5x7=include_5x7,
    )
    logger.info(
        f"Processing {file.filename} ({len(raw) / 1024 / 1024:.2f}MB) "
        f"every_sizes={every_sizes} include_5x7={include_5x7}"
    )

    pipeline = PrintKitPipeline(basename, options, settings)
    try:
        prepared = await pipeline.prepare(raw)
    except PrintKitError as exc:
        logger.error(f"{exc.code}: {exc}")
        raise _http_error(exc)
    except Exception as exc:
        logger.exception(f"Processing failed: {exc}")
        raise HTTPException(
            500,
            {"error": "internal_error", "message": f"Processing failed: {exc}"},
        )

    return StreamingResponse(
        pipeline.stream(prepared),
        media_type="application/zip",
        headers={
            "Content-Disposition":
                f'attachment; filename="{basename}_Etsy_Print_Kit.zip"',
            "Cache-Control": "no-cache, no-store, must-revalidate",
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
