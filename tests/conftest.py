import io

import pytest
from docx import Document
from openpyxl import Workbook
from PIL import Image
from reportlab.pdfgen import canvas


class FakeConverter:
    """Converter double with a fixed pair set and a recognisable output."""

    def __init__(self, name, pairs, priority=0, output=None, error=None):
        self.name = name
        self.pairs = {(s, t) for s, t in pairs}
        self.priority = priority
        self.output = output if output is not None else name.encode()
        self.error = error
        self.calls = []

    def supports(self, source_format, target_format):
        return (source_format.lower(), target_format.lower()) in self.pairs

    def convert(self, data, source_format, target_format):
        self.calls.append((data, source_format, target_format))
        if self.error is not None:
            raise self.error
        return self.output


@pytest.fixture
def fake_converter():
    return FakeConverter


@pytest.fixture
def png_bytes():
    image = Image.new("RGBA", (32, 24), (255, 0, 0, 128))
    out = io.BytesIO()
    image.save(out, format="PNG")
    return out.getvalue()


@pytest.fixture
def jpg_bytes():
    image = Image.new("RGB", (40, 20), (0, 128, 255))
    out = io.BytesIO()
    image.save(out, format="JPEG")
    return out.getvalue()


@pytest.fixture
def pdf_bytes():
    out = io.BytesIO()
    pdf = canvas.Canvas(out)
    pdf.drawString(72, 720, "Hello from page one")
    pdf.showPage()
    pdf.drawString(72, 720, "Second page")
    pdf.save()
    return out.getvalue()


@pytest.fixture
def docx_bytes():
    document = Document()
    document.add_paragraph("First paragraph")
    document.add_paragraph("Second paragraph")
    out = io.BytesIO()
    document.save(out)
    return out.getvalue()


@pytest.fixture
def xlsx_bytes():
    workbook = Workbook()
    sheet = workbook.active
    sheet.append(["name", "count", "ok"])
    sheet.append(["apples", 3, True])
    sheet.append(["pears", 2.5, False])
    out = io.BytesIO()
    workbook.save(out)
    return out.getvalue()
