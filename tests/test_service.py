"""Tests for the conversion dispatcher."""

import io
import threading
import time

import pytest
from PIL import Image

from file_service.conversion import (
    ConversionFailure,
    ConversionService,
    ConversionSuccess,
    ConverterRegistry,
    FailureReason,
    InvalidFileError,
    UnsupportedConversionError,
)
from file_service.conversion.adapters import build_default_converters


@pytest.fixture
def default_service():
    return ConversionService(ConverterRegistry(build_default_converters()))


class TestRequestValidation:
    @pytest.mark.parametrize("target", ["jpg", "pdf", "anything"])
    def test_empty_input(self, default_service, target):
        result = default_service.convert_file(b"", "photo.png", target)

        assert isinstance(result, ConversionFailure)
        assert result.reason == FailureReason.EMPTY_INPUT
        assert result.message == "File is empty"
        assert result.source_format == ""
        assert result.original_filename == "photo.png"

    def test_no_extension(self, default_service):
        result = default_service.convert_file(b"data", "archive", "pdf")

        assert isinstance(result, ConversionFailure)
        assert result.reason == FailureReason.UNDETERMINED_FORMAT
        assert result.message == "Unable to determine source file format"

    def test_missing_filename(self, default_service):
        result = default_service.convert_file(b"data", None, "pdf")
        assert result.message == "Unable to determine source file format"

    def test_request_normalizes_formats(self):
        request = ConversionService.build_request(b"x", "Photo.PNG", "  JPG ")
        assert request.source_format == "png"
        assert request.target_format == "jpg"


class TestDispatch:
    def test_unsupported_pair(self, fake_converter):
        service = ConversionService(ConverterRegistry([fake_converter("a", [("png", "jpg")])]))
        result = service.convert_file(b"data", "notes.txt", "xlsx")

        assert isinstance(result, ConversionFailure)
        assert result.reason == FailureReason.UNSUPPORTED_CONVERSION
        assert result.message == "Conversion from 'txt' to 'xlsx' is not supported"
        assert result.source_format == "txt"
        assert result.target_format == "xlsx"

    def test_success_wraps_converter_output(self, fake_converter):
        converter = fake_converter("a", [("png", "jpg")], output=b"converted")
        service = ConversionService(ConverterRegistry([converter]))
        result = service.convert_file(b"data", "photo.PNG", "JPG")

        assert isinstance(result, ConversionSuccess)
        assert result.data == b"converted"
        assert result.size_bytes == len(b"converted")
        assert result.converted_filename == "photo.jpg"
        assert result.source_format == "png"
        assert result.target_format == "jpg"
        assert converter.calls == [(b"data", "png", "jpg")]

    def test_highest_priority_converter_is_invoked(self, fake_converter):
        low = fake_converter("low", [("png", "jpg")], priority=1)
        high = fake_converter("high", [("png", "jpg")], priority=2)
        service = ConversionService(ConverterRegistry([low, high]))

        result = service.convert_file(b"data", "a.png", "jpg")

        assert result.data == b"high"
        assert low.calls == []

    def test_converter_raised_unsupported(self, fake_converter):
        error = UnsupportedConversionError("png", "jpg", "Nope, not today")
        service = ConversionService(ConverterRegistry([fake_converter("a", [("png", "jpg")], error=error)]))

        result = service.convert_file(b"data", "a.png", "jpg")

        assert result.reason == FailureReason.UNSUPPORTED_CONVERSION
        assert result.message == "Nope, not today"

    def test_converter_raised_invalid_file(self, fake_converter):
        error = InvalidFileError("Cannot read image")
        service = ConversionService(ConverterRegistry([fake_converter("a", [("png", "jpg")], error=error)]))

        result = service.convert_file(b"data", "a.png", "jpg")

        assert result.reason == FailureReason.INVALID_FILE
        assert result.message == "File conversion failed: Cannot read image"

    def test_converter_raised_anything_else(self, fake_converter):
        converter = fake_converter("a", [("png", "jpg")], error=RuntimeError("disk on fire"))
        service = ConversionService(ConverterRegistry([converter]))

        result = service.convert_file(b"data", "a.png", "jpg")

        assert isinstance(result, ConversionFailure)
        assert result.reason == FailureReason.CONVERSION_FAILED
        assert result.message == "File conversion failed: disk on fire"
        assert len(converter.calls) == 1

    def test_queries_delegate_to_registry(self, fake_converter):
        service = ConversionService(ConverterRegistry([fake_converter("a", [("png", "jpg"), ("png", "png")])]))

        assert service.is_conversion_supported("png", "jpg")
        assert not service.is_conversion_supported("jpg", "png")
        assert service.supported_source_formats() == {"png"}
        assert service.supported_target_formats("png") == {"jpg"}

    def test_queries_agree_for_source_outside_vocabulary(self, fake_converter):
        service = ConversionService(ConverterRegistry([fake_converter("a", [("heic", "png")])]))

        assert service.is_conversion_supported("heic", "png")
        assert service.supported_target_formats("heic") == {"png"}


class TestDefaultConverters:
    def test_png_to_jpg(self, default_service, png_bytes):
        result = default_service.convert_file(png_bytes, "photo.png", "jpg")

        assert isinstance(result, ConversionSuccess)
        assert result.converted_filename == "photo.jpg"
        assert result.size_bytes > 0
        assert Image.open(io.BytesIO(result.data)).format == "JPEG"

    def test_same_format_image_is_unsupported(self, default_service, png_bytes):
        result = default_service.convert_file(png_bytes, "photo.png", "png")

        assert isinstance(result, ConversionFailure)
        assert result.reason == FailureReason.UNSUPPORTED_CONVERSION

    def test_png_targets_exclude_png(self, default_service):
        targets = default_service.supported_target_formats("png")
        assert "png" not in targets
        assert {"jpg", "jpeg", "bmp", "gif", "webp"} <= targets

    def test_source_formats(self, default_service):
        assert default_service.supported_source_formats() == {
            "jpg", "jpeg", "png", "bmp", "gif", "webp", "pdf", "docx", "xlsx", "txt",
        }

    def test_corrupt_image(self, default_service):
        result = default_service.convert_file(b"not an image", "photo.png", "jpg")

        assert result.reason == FailureReason.INVALID_FILE
        assert result.message.startswith("File conversion failed: Cannot read image")

    @pytest.mark.parametrize("fixture, filename", [
        ("pdf_bytes", "doc.pdf"),
        ("docx_bytes", "doc.docx"),
        ("xlsx_bytes", "doc.xlsx"),
    ])
    def test_copy_paths_return_input(self, default_service, request, fixture, filename):
        data = request.getfixturevalue(fixture)
        target = filename.rsplit(".", 1)[1]

        result = default_service.convert_file(data, filename, target)

        assert isinstance(result, ConversionSuccess)
        assert result.data == data


class TestDeadline:
    @pytest.mark.asyncio
    async def test_async_success(self, fake_converter):
        service = ConversionService(ConverterRegistry([fake_converter("a", [("png", "jpg")])]))
        result = await service.convert_file_async(b"data", "a.png", "jpg")
        assert isinstance(result, ConversionSuccess)

    @pytest.mark.asyncio
    async def test_timeout_becomes_failure(self):
        class SlowConverter:
            priority = 0

            def supports(self, source_format, target_format):
                return True

            def convert(self, data, source_format, target_format):
                time.sleep(0.5)
                return b"late"

        service = ConversionService(ConverterRegistry([SlowConverter()]), timeout_sec=0.05)
        result = await service.convert_file_async(b"data", "a.png", "jpg")

        assert isinstance(result, ConversionFailure)
        assert result.reason == FailureReason.TIMEOUT
        assert result.message.startswith("File conversion failed: conversion timed out")

    @pytest.mark.asyncio
    async def test_timed_out_worker_runs_to_completion(self):
        finished = threading.Event()

        class SlowConverter:
            priority = 0

            def supports(self, source_format, target_format):
                return True

            def convert(self, data, source_format, target_format):
                time.sleep(0.2)
                finished.set()
                return b"late"

        service = ConversionService(ConverterRegistry([SlowConverter()]), timeout_sec=0.01)
        result = await service.convert_file_async(b"data", "a.png", "jpg")

        assert result.reason == FailureReason.TIMEOUT
        assert not finished.is_set()
        assert finished.wait(timeout=5)
