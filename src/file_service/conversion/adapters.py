import io
from typing import Callable, Iterable

from docx import Document
from openpyxl import Workbook, load_workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from PIL import Image, ImageOps, UnidentifiedImageError
from pypdf import PdfReader
from pypdf.errors import PdfReadError
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import simpleSplit
from reportlab.pdfgen import canvas

from .errors import InvalidFileError, UnsupportedConversionError
from .formats import normalize_format
from .interfaces import FileConverter

Handler = Callable[[bytes], bytes]


class ImageConverter(FileConverter):
    """Re-encodes raster images between common formats with Pillow."""

    SUPPORTED_FORMATS = frozenset({"jpg", "jpeg", "png", "bmp", "gif", "webp"})

    _PIL_FORMATS = {
        "jpg": "JPEG",
        "jpeg": "JPEG",
        "png": "PNG",
        "bmp": "BMP",
        "gif": "GIF",
        "webp": "WEBP",
    }

    def __init__(
        self,
        *,
        default_quality: float = 0.85,
        min_quality: float = 0.1,
        max_quality: float = 1.0,
        max_dimension: int = 4096,
        priority: int = 10,
    ) -> None:
        self.default_quality = default_quality
        self.min_quality = min_quality
        self.max_quality = max_quality
        self.max_dimension = max_dimension
        self.priority = priority

    def supports(self, source_format: str, target_format: str) -> bool:
        source = normalize_format(source_format)
        target = normalize_format(target_format)
        return (
            source in self.SUPPORTED_FORMATS
            and target in self.SUPPORTED_FORMATS
            and source != target
        )

    def convert(self, data: bytes, source_format: str, target_format: str) -> bytes:
        self._check_pair(source_format, target_format)
        image = self._open(data)
        return self._encode(image, normalize_format(target_format), self.default_quality)

    def convert_with_quality(
        self, data: bytes, source_format: str, target_format: str, quality: float
    ) -> bytes:
        """Convert to `target_format`, encoding lossy formats at `quality` (0..1)."""
        self._check_pair(source_format, target_format)
        self._check_quality(quality)
        image = self._open(data)
        return self._encode(image, normalize_format(target_format), quality)

    def convert_with_resize(
        self,
        data: bytes,
        source_format: str,
        target_format: str,
        width: int,
        height: int,
        *,
        keep_aspect_ratio: bool = True,
    ) -> bytes:
        """Convert to `target_format` scaled to fit `width` x `height`, or to
        exactly that size when `keep_aspect_ratio` is False."""
        self._check_pair(source_format, target_format)
        self._check_dimensions(width, height)
        image = self._scale(self._open(data), width, height, keep_aspect_ratio)
        return self._encode(image, normalize_format(target_format), self.default_quality)

    def resize(
        self,
        data: bytes,
        source_format: str,
        width: int,
        height: int,
        *,
        keep_aspect_ratio: bool = True,
    ) -> bytes:
        """Scale an image without changing its format where possible.
        Output format follows `resize_format`."""
        self._check_source(source_format)
        self._check_dimensions(width, height)
        image = self._scale(self._open(data), width, height, keep_aspect_ratio)
        return self._encode(image, self.resize_format(source_format), self.default_quality)

    def compress(self, data: bytes, source_format: str, quality: float) -> bytes:
        """Re-encode an image in its own format at the given quality (0..1)."""
        self._check_source(source_format)
        self._check_quality(quality)
        image = self._open(data)
        return self._encode(image, normalize_format(source_format), quality)

    @staticmethod
    def resize_format(source_format: str) -> str:
        source = normalize_format(source_format)
        return source if source in {"jpg", "jpeg", "png"} else "png"

    def _check_pair(self, source_format: str, target_format: str) -> None:
        if not self.supports(source_format, target_format):
            raise UnsupportedConversionError(
                source_format,
                target_format,
                f"Conversion from {source_format} to {target_format} is not supported by ImageConverter",
            )

    def _check_source(self, source_format: str) -> None:
        if normalize_format(source_format) not in self.SUPPORTED_FORMATS:
            raise UnsupportedConversionError(
                source_format,
                source_format,
                f"File format .{source_format} is not supported. Supported formats: "
                + ", ".join(sorted(self.SUPPORTED_FORMATS)),
            )

    def _check_dimensions(self, width: int, height: int) -> None:
        if width <= 0 or height <= 0:
            raise ValueError("Width and height must be positive numbers")
        if width > self.max_dimension or height > self.max_dimension:
            raise ValueError(f"Width and height must not exceed {self.max_dimension} pixels")

    def _check_quality(self, quality: float) -> None:
        if not self.min_quality <= quality <= self.max_quality:
            raise ValueError(
                f"Quality must be between {self.min_quality:g} and {self.max_quality:g}"
            )

    @staticmethod
    def _scale(image: Image.Image, width: int, height: int, keep_aspect_ratio: bool) -> Image.Image:
        if keep_aspect_ratio:
            return ImageOps.contain(image, (width, height))
        return image.resize((width, height))

    @staticmethod
    def _open(data: bytes) -> Image.Image:
        try:
            image = Image.open(io.BytesIO(data))
            image.load()
        except (UnidentifiedImageError, OSError) as e:
            raise InvalidFileError(f"Cannot read image: {e}") from e
        return image

    def _encode(self, image: Image.Image, target_format: str, quality: float) -> bytes:
        pil_format = self._PIL_FORMATS[target_format]
        options: dict[str, object] = {}
        if pil_format in ("JPEG", "BMP") and image.mode not in ("RGB", "L"):
            # No alpha channel in these formats
            if "A" in image.mode or image.mode == "P":
                image = image.convert("RGBA").convert("RGB")
            else:
                image = image.convert("RGB")
        elif image.mode == "CMYK" and pil_format != "JPEG":
            image = image.convert("RGB")
        if pil_format in ("JPEG", "WEBP"):
            options["quality"] = int(round(quality * 100))
        elif pil_format == "PNG":
            options["optimize"] = True

        out = io.BytesIO()
        image.save(out, format=pil_format, **options)
        return out.getvalue()


class _PairTableConverter(FileConverter):
    """Converter backed by an explicit (source, target) -> handler table."""

    priority = 5

    def __init__(self) -> None:
        self._handlers: dict[tuple[str, str], Handler] = self._build_handlers()

    def _build_handlers(self) -> dict[tuple[str, str], Handler]:
        raise NotImplementedError

    @property
    def pairs(self) -> frozenset[tuple[str, str]]:
        return frozenset(self._handlers)

    def supports(self, source_format: str, target_format: str) -> bool:
        return (normalize_format(source_format), normalize_format(target_format)) in self._handlers

    def convert(self, data: bytes, source_format: str, target_format: str) -> bytes:
        key = (normalize_format(source_format), normalize_format(target_format))
        handler = self._handlers.get(key)
        if handler is None:
            raise UnsupportedConversionError(
                source_format,
                target_format,
                f"Conversion from {source_format} to {target_format} is not supported by {type(self).__name__}",
            )
        return handler(data)


class PdfConverter(_PairTableConverter):
    """Renders text, DOCX paragraphs and XLSX cells into simple PDF documents."""

    MAX_SHEET_ROWS = 100
    MAX_SHEET_COLUMNS = 10

    def _build_handlers(self) -> dict[tuple[str, str], Handler]:
        return {
            ("txt", "pdf"): self._txt_to_pdf,
            ("docx", "pdf"): self._docx_to_pdf,
            ("xlsx", "pdf"): self._xlsx_to_pdf,
            ("pdf", "pdf"): self._pdf_to_pdf,
        }

    def _txt_to_pdf(self, data: bytes) -> bytes:
        text = data.decode("utf-8", errors="replace")
        return _render_pdf(text.splitlines(), font_size=12)

    def _docx_to_pdf(self, data: bytes) -> bytes:
        document = _open_docx(data)
        return _render_pdf([p.text for p in document.paragraphs], font_size=12)

    def _xlsx_to_pdf(self, data: bytes) -> bytes:
        workbook = _open_xlsx(data)
        try:
            sheet = workbook.worksheets[0]
            lines = []
            for row in sheet.iter_rows(
                max_row=self.MAX_SHEET_ROWS,
                max_col=self.MAX_SHEET_COLUMNS,
                values_only=True,
            ):
                lines.append("    ".join(_cell_text(v) for v in row))
        finally:
            workbook.close()
        return _render_pdf(lines, font_size=10)

    def _pdf_to_pdf(self, data: bytes) -> bytes:
        _open_pdf(data)
        return data


class OfficeConverter(_PairTableConverter):
    """Moves text between PDF, DOCX and XLSX documents."""

    def _build_handlers(self) -> dict[tuple[str, str], Handler]:
        return {
            ("pdf", "docx"): self._pdf_to_docx,
            ("docx", "xlsx"): self._docx_to_xlsx,
            ("xlsx", "docx"): self._xlsx_to_docx,
            ("docx", "docx"): self._docx_to_docx,
            ("xlsx", "xlsx"): self._xlsx_to_xlsx,
        }

    def _pdf_to_docx(self, data: bytes) -> bytes:
        reader = _open_pdf(data)
        document = Document()
        for page in reader.pages:
            text = page.extract_text() or ""
            for line in text.split("\n"):
                document.add_paragraph(_xml_safe(line.rstrip()))
        out = io.BytesIO()
        document.save(out)
        return out.getvalue()

    def _docx_to_xlsx(self, data: bytes) -> bytes:
        document = _open_docx(data)
        workbook = Workbook()
        sheet = workbook.active
        sheet.title = "From DOCX"
        for index, paragraph in enumerate(document.paragraphs, start=1):
            sheet.cell(row=index, column=1, value=_xml_safe(paragraph.text))
        out = io.BytesIO()
        workbook.save(out)
        return out.getvalue()

    def _xlsx_to_docx(self, data: bytes) -> bytes:
        workbook = _open_xlsx(data)
        document = Document()
        try:
            for row in workbook.worksheets[0].iter_rows(values_only=True):
                line = "\t".join(_cell_text(v) for v in row if v is not None)
                document.add_paragraph(line.strip())
        finally:
            workbook.close()
        out = io.BytesIO()
        document.save(out)
        return out.getvalue()

    def _docx_to_docx(self, data: bytes) -> bytes:
        _open_docx(data)
        return data

    def _xlsx_to_xlsx(self, data: bytes) -> bytes:
        _open_xlsx(data).close()
        return data


class MarkdownExportConverter(FileConverter):
    """Exports rich documents to Markdown through docling."""

    SOURCE_FORMATS = frozenset({"pdf", "docx", "pptx", "xlsx"})
    priority = 0

    def supports(self, source_format: str, target_format: str) -> bool:
        return (
            normalize_format(source_format) in self.SOURCE_FORMATS
            and normalize_format(target_format) == "md"
        )

    def convert(self, data: bytes, source_format: str, target_format: str) -> bytes:
        if not self.supports(source_format, target_format):
            raise UnsupportedConversionError(source_format, target_format)

        from docling.datamodel.base_models import DocumentStream
        from docling.document_converter import DocumentConverter

        stream = DocumentStream(
            name=f"upload.{normalize_format(source_format)}",
            stream=io.BytesIO(data),
        )
        result = DocumentConverter().convert(stream)
        return result.document.export_to_markdown().encode("utf-8")


def build_default_converters(
    *,
    image_quality: float = 0.85,
    min_image_quality: float = 0.1,
    max_image_quality: float = 1.0,
    max_image_dimension: int = 4096,
    enable_markdown: bool = False,
) -> list[FileConverter]:
    converters: list[FileConverter] = [
        ImageConverter(
            default_quality=image_quality,
            min_quality=min_image_quality,
            max_quality=max_image_quality,
            max_dimension=max_image_dimension,
        ),
        PdfConverter(),
        OfficeConverter(),
    ]
    if enable_markdown:
        converters.append(MarkdownExportConverter())
    return converters


def find_converter(converters: Iterable[FileConverter], kind: type) -> FileConverter | None:
    for converter in converters:
        if isinstance(converter, kind):
            return converter
    return None


def _render_pdf(lines: list[str], *, font_size: int) -> bytes:
    out = io.BytesIO()
    pdf = canvas.Canvas(out, pagesize=A4)
    width, height = A4
    margin = 50
    leading = font_size + 3
    pdf.setFont("Helvetica", font_size)
    y = height - margin
    for line in lines:
        # Blank lines still advance the cursor.
        wrapped = simpleSplit(line, "Helvetica", font_size, width - 2 * margin) or [""]
        for part in wrapped:
            if y < margin:
                pdf.showPage()
                pdf.setFont("Helvetica", font_size)
                y = height - margin
            pdf.drawString(margin, y, part)
            y -= leading
    pdf.save()
    return out.getvalue()


def _cell_text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _xml_safe(text: str) -> str:
    return ILLEGAL_CHARACTERS_RE.sub("", text)


def _open_pdf(data: bytes) -> PdfReader:
    try:
        reader = PdfReader(io.BytesIO(data))
        len(reader.pages)
    except (PdfReadError, ValueError, OSError) as e:
        raise InvalidFileError(f"Cannot read PDF document: {e}") from e
    return reader


def _open_docx(data: bytes):
    try:
        return Document(io.BytesIO(data))
    except Exception as e:
        raise InvalidFileError(f"Cannot read DOCX document: {e}") from e


def _open_xlsx(data: bytes) -> Workbook:
    try:
        return load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except Exception as e:
        raise InvalidFileError(f"Cannot read XLSX workbook: {e}") from e
