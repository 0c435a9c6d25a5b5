import asyncio

import structlog

from .errors import InvalidFileError, UnsupportedConversionError
from .formats import converted_filename, extract_extension, normalize_format
from .interfaces import (
    ConversionFailure,
    ConversionRequest,
    ConversionResult,
    ConversionSuccess,
    FailureReason,
    FileConverter,
)
from .registry import ConverterRegistry

logger = structlog.get_logger(__name__)


class ConversionService:
    """Core domain service dispatching conversions to registered converters.

    This service is framework-agnostic. It owns the converter registry built at
    startup and turns every outcome, including converter exceptions and
    deadline breaches, into a `ConversionResult` value. Conversions are
    attempted exactly once.
    """

    def __init__(self, registry: ConverterRegistry, *, timeout_sec: float = 30.0) -> None:
        self._registry = registry
        self._timeout_sec = timeout_sec

    @property
    def registry(self) -> ConverterRegistry:
        return self._registry

    @property
    def timeout_sec(self) -> float:
        return self._timeout_sec

    @staticmethod
    def build_request(data: bytes, original_filename: str | None, target_format: str) -> ConversionRequest:
        return ConversionRequest(
            data=data,
            original_filename=original_filename,
            source_format=extract_extension(original_filename),
            target_format=normalize_format(target_format),
        )

    def select_converter(self, source_format: str, target_format: str) -> FileConverter | None:
        return self._registry.select(source_format, target_format)

    def is_conversion_supported(self, source_format: str, target_format: str) -> bool:
        return self.select_converter(source_format, target_format) is not None

    def supported_source_formats(self) -> set[str]:
        return self._registry.source_formats()

    def supported_target_formats(self, source_format: str) -> set[str]:
        return self._registry.target_formats(source_format)

    def convert_file(
        self, data: bytes, original_filename: str | None, target_format: str
    ) -> ConversionResult:
        return self.convert(self.build_request(data, original_filename, target_format))

    async def convert_file_async(
        self, data: bytes, original_filename: str | None, target_format: str
    ) -> ConversionResult:
        """Run `convert_file` in a worker thread under the configured deadline."""
        request = self.build_request(data, original_filename, target_format)
        try:
            # wait_for cannot stop the worker thread. After a timeout the converter
            # keeps running to completion and its result is discarded.
            return await asyncio.wait_for(
                asyncio.to_thread(self.convert, request), timeout=self._timeout_sec
            )
        except asyncio.TimeoutError:
            logger.error(
                "Conversion timed out",
                filename=request.original_filename,
                source_format=request.source_format,
                target_format=request.target_format,
                timeout_sec=self._timeout_sec,
            )
            return self._failure(
                request,
                FailureReason.TIMEOUT,
                f"File conversion failed: conversion timed out after {self._timeout_sec:g} seconds",
            )

    def convert(self, request: ConversionRequest) -> ConversionResult:
        if not request.data:
            return ConversionFailure(
                reason=FailureReason.EMPTY_INPUT,
                message="File is empty",
                original_filename=request.original_filename,
                source_format="",
                target_format=request.target_format,
            )

        if not request.source_format:
            return ConversionFailure(
                reason=FailureReason.UNDETERMINED_FORMAT,
                message="Unable to determine source file format",
                original_filename=request.original_filename,
                source_format="",
                target_format=request.target_format,
            )

        log = logger.bind(
            filename=request.original_filename,
            source_format=request.source_format,
            target_format=request.target_format,
        )
        log.info("Converting file")

        converter = self.select_converter(request.source_format, request.target_format)
        if converter is None:
            message = str(UnsupportedConversionError(request.source_format, request.target_format))
            log.warning("Unsupported conversion", error=message)
            return self._failure(request, FailureReason.UNSUPPORTED_CONVERSION, message)

        try:
            output = converter.convert(request.data, request.source_format, request.target_format)
        except UnsupportedConversionError as e:
            log.warning("Unsupported conversion", converter=type(converter).__name__, error=str(e))
            return self._failure(request, FailureReason.UNSUPPORTED_CONVERSION, str(e))
        except InvalidFileError as e:
            log.error("Invalid input file", converter=type(converter).__name__, error=str(e))
            return self._failure(request, FailureReason.INVALID_FILE, f"File conversion failed: {e}")
        except Exception as e:
            log.error(
                "Error converting file",
                converter=type(converter).__name__,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return self._failure(request, FailureReason.CONVERSION_FAILED, f"File conversion failed: {e}")

        log.info(
            "Successfully converted file",
            converter=type(converter).__name__,
            size_bytes=len(output),
        )
        return ConversionSuccess(
            data=output,
            original_filename=request.original_filename,
            converted_filename=converted_filename(request.original_filename, request.target_format),
            source_format=request.source_format,
            target_format=request.target_format,
        )

    @staticmethod
    def _failure(request: ConversionRequest, reason: str, message: str) -> ConversionFailure:
        return ConversionFailure(
            reason=reason,
            message=message,
            original_filename=request.original_filename,
            source_format=request.source_format,
            target_format=request.target_format,
        )
