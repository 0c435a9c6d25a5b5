import asyncio
import logging
import os
from typing import Any, Callable
from urllib.parse import quote

import structlog
from fastapi import FastAPI, File, Form, HTTPException, UploadFile, status
from fastapi.responses import JSONResponse, Response

from file_service import __version__
from file_service.conversion import (
    ConversionFailure,
    ConversionService,
    ConverterRegistry,
    FailureReason,
    InvalidFileError,
    UnsupportedConversionError,
)
from file_service.conversion.adapters import ImageConverter, build_default_converters, find_converter
from file_service.conversion.formats import converted_filename, extract_extension, media_type_for


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes", "on"}


# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv("LOG_FORMAT", "console").lower()

logging.basicConfig(format="%(message)s", level=getattr(logging, LOG_LEVEL, logging.INFO))
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer() if LOG_FORMAT == "json" else structlog.dev.ConsoleRenderer(),
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)

app = FastAPI(
    title="File Conversion Service",
    version=os.getenv("FILE_SERVICE_VERSION", __version__),
    description=(
        "RESTful API for converting images, PDFs and office documents "
        "between formats."
    ),
)

# Global configuration defaults
MAX_UPLOAD_MB = int(os.getenv("MAX_UPLOAD_MB", "50"))
CONVERSION_TIMEOUT_SEC = float(os.getenv("CONVERSION_TIMEOUT_SEC", "30"))
DEFAULT_IMAGE_QUALITY = float(os.getenv("DEFAULT_IMAGE_QUALITY", "0.85"))
MIN_IMAGE_QUALITY = float(os.getenv("MIN_IMAGE_QUALITY", "0.1"))
MAX_IMAGE_QUALITY = float(os.getenv("MAX_IMAGE_QUALITY", "1.0"))
MAX_IMAGE_DIMENSION = int(os.getenv("MAX_IMAGE_DIMENSION", "4096"))
ENABLE_MARKDOWN_EXPORT = _env_flag("ENABLE_MARKDOWN_EXPORT")

SERVICE: ConversionService | None = None
IMAGES: ImageConverter | None = None


@app.on_event("startup")
async def _startup() -> None:
    # Converters are built once; the registry is immutable afterwards.
    global SERVICE, IMAGES
    converters = build_default_converters(
        image_quality=DEFAULT_IMAGE_QUALITY,
        min_image_quality=MIN_IMAGE_QUALITY,
        max_image_quality=MAX_IMAGE_QUALITY,
        max_image_dimension=MAX_IMAGE_DIMENSION,
        enable_markdown=ENABLE_MARKDOWN_EXPORT,
    )
    SERVICE = ConversionService(ConverterRegistry(converters), timeout_sec=CONVERSION_TIMEOUT_SEC)
    IMAGES = find_converter(converters, ImageConverter)  # type: ignore[assignment]
    logger.info(
        "File conversion service configured",
        max_upload_mb=MAX_UPLOAD_MB,
        timeout_sec=CONVERSION_TIMEOUT_SEC,
        default_image_quality=DEFAULT_IMAGE_QUALITY,
        max_image_dimension=MAX_IMAGE_DIMENSION,
        markdown_export=ENABLE_MARKDOWN_EXPORT,
    )


async def _read_upload(file: UploadFile) -> bytes:
    """Read the upload in chunks, rejecting it as soon as it exceeds MAX_UPLOAD_MB."""
    max_bytes = MAX_UPLOAD_MB * 1024 * 1024
    chunks: list[bytes] = []
    size_bytes = 0
    CHUNK = 1024 * 1024
    while True:
        chunk = await file.read(CHUNK)
        if not chunk:
            break
        size_bytes += len(chunk)
        if size_bytes > max_bytes:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail={"code": "payload_too_large", "message": f"upload exceeds {MAX_UPLOAD_MB} MB"},
            )
        chunks.append(bytes(chunk))
    return b"".join(chunks)


def _attachment(filename: str) -> str:
    # Plain `filename` must stay ASCII; the exact name travels in `filename*`.
    fallback = filename.encode("ascii", "replace").decode("ascii")
    fallback = fallback.replace("\"", "_").replace("\\", "_").replace("?", "_")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"


@app.get("/health")
def health() -> dict[str, str]:
    """Basic health check endpoint."""
    return {"status": "ok"}


@app.get("/api/convert/health")
def convert_health() -> dict[str, str]:
    return {"status": "UP", "service": "File Conversion API"}


@app.post("/api/convert/{target_format}")
async def convert_file(target_format: str, file: UploadFile = File(...)) -> Response:
    """Convert the uploaded file to `target_format` and return the converted bytes.

    Accepts multipart/form-data with a single required part named "file". The
    source format is taken from the uploaded filename's extension.
    """
    if not target_format.strip():
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"code": "bad_request", "error": "Target format is required"},
        )

    assert SERVICE is not None
    logger.info("Received conversion request", filename=file.filename, target_format=target_format)
    data = await _read_upload(file)
    result = await SERVICE.convert_file_async(data, file.filename, target_format)

    if isinstance(result, ConversionFailure):
        code = (
            status.HTTP_504_GATEWAY_TIMEOUT
            if result.reason == FailureReason.TIMEOUT
            else status.HTTP_400_BAD_REQUEST
        )
        return JSONResponse(
            status_code=code,
            content={
                "code": result.reason,
                "error": result.message,
                "sourceFormat": result.source_format,
                "targetFormat": result.target_format,
                "originalFilename": result.original_filename or "",
            },
        )

    headers = {
        "Content-Disposition": _attachment(result.converted_filename),
        "X-Original-Format": result.source_format,
        "X-Target-Format": result.target_format,
        "X-Original-Filename": quote(result.original_filename or ""),
    }
    return Response(content=result.data, media_type=media_type_for(result.target_format), headers=headers)


@app.get("/api/convert/supports/{source_format}/{target_format}")
def check_conversion_support(source_format: str, target_format: str) -> dict[str, Any]:
    assert SERVICE is not None
    return {
        "supported": SERVICE.is_conversion_supported(source_format, target_format),
        "sourceFormat": source_format,
        "targetFormat": target_format,
    }


@app.get("/api/convert/formats/source")
def supported_source_formats() -> dict[str, list[str]]:
    assert SERVICE is not None
    return {"supportedSourceFormats": sorted(SERVICE.supported_source_formats())}


@app.get("/api/convert/formats/target/{source_format}")
def supported_target_formats(source_format: str) -> dict[str, Any]:
    assert SERVICE is not None
    return {
        "sourceFormat": source_format,
        "supportedTargetFormats": sorted(SERVICE.supported_target_formats(source_format)),
    }


@app.get("/api/convert/info")
def api_info() -> dict[str, Any]:
    assert SERVICE is not None
    conversions = {
        source: sorted(SERVICE.supported_target_formats(source))
        for source in sorted(SERVICE.supported_source_formats())
    }
    return {
        "name": "File Conversion API",
        "version": app.version,
        "description": "REST API for file format conversion",
        "conversions": conversions,
        "endpoints": {
            "convert": "POST /api/convert/{targetFormat}",
            "checkSupport": "GET /api/convert/supports/{sourceFormat}/{targetFormat}",
            "sourceFormats": "GET /api/convert/formats/source",
            "targetFormats": "GET /api/convert/formats/target/{sourceFormat}",
            "resizeImage": "POST /api/v1/convert/image/resize",
            "compressImage": "POST /api/v1/convert/image/compress",
        },
    }


async def _run_image_tool(fn: Callable[..., bytes], *args: Any, **kwargs: Any) -> bytes:
    try:
        # As in ConversionService.convert_file_async, a timed-out worker is abandoned, not stopped.
        return await asyncio.wait_for(asyncio.to_thread(fn, *args, **kwargs), timeout=CONVERSION_TIMEOUT_SEC)
    except (ValueError, UnsupportedConversionError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"code": "bad_request", "message": str(e)})
    except InvalidFileError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail={"code": "invalid_file", "message": str(e)}
        )
    except asyncio.TimeoutError:
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail={"code": "timeout", "message": f"image processing timed out after {CONVERSION_TIMEOUT_SEC:g} seconds"},
        )


async def _read_image_upload(file: UploadFile) -> bytes:
    data = await _read_upload(file)
    if not data:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"code": "invalid_file", "message": "File is empty"},
        )
    return data


@app.post("/api/v1/convert/image/resize")
async def resize_image(
    file: UploadFile = File(...),
    width: int = Form(...),
    height: int = Form(...),
    keep_aspect_ratio: bool = Form(True),
) -> Response:
    assert IMAGES is not None
    logger.info("Received resize request", filename=file.filename, width=width, height=height)
    data = await _read_image_upload(file)
    source_format = extract_extension(file.filename)
    output = await _run_image_tool(
        IMAGES.resize, data, source_format, width, height, keep_aspect_ratio=keep_aspect_ratio
    )
    output_format = ImageConverter.resize_format(source_format)
    filename = "resized_" + converted_filename(file.filename, output_format)
    return Response(
        content=output,
        media_type=media_type_for(output_format),
        headers={"Content-Disposition": _attachment(filename)},
    )


@app.post("/api/v1/convert/image/compress")
async def compress_image(file: UploadFile = File(...), quality: float = Form(0.8)) -> Response:
    assert IMAGES is not None
    logger.info("Received compress request", filename=file.filename, quality=quality)
    data = await _read_image_upload(file)
    source_format = extract_extension(file.filename)
    output = await _run_image_tool(IMAGES.compress, data, source_format, quality)
    logger.info(
        "Compressed image",
        filename=file.filename,
        original_bytes=len(data),
        compressed_bytes=len(output),
    )
    return Response(
        content=output,
        media_type=media_type_for(source_format),
        headers={"Content-Disposition": _attachment("compressed_" + (file.filename or f"image.{source_format}"))},
    )


def run() -> None:
    """Run a development ASGI server using uvicorn.

    Exposes the app at host:port (default 0.0.0.0:8080). Set PORT env var to override.
    """
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8080"))
    # Enable reload in dev unless explicitly disabled
    reload = _env_flag("RELOAD", "true")

    uvicorn.run("file_service.webapi:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    run()
