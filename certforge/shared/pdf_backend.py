"""PDF document backend.

Pages are read with PyPDF2; everything drawn on a page goes onto a
reportlab overlay canvas of the same size, and overlays are merged onto
their pages when the document is saved.
"""

from __future__ import annotations

import logging
from io import BytesIO
from typing import NamedTuple

from PIL import Image, UnidentifiedImageError
from PyPDF2 import PdfReader, PdfWriter
from PyPDF2.generic import ContentStream, DictionaryObject, NameObject
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas

from ..constants import BOLD_VARIANTS, DEFAULT_FONT_FAMILY, FONT_MAPPING, PDF_STANDARD_FONTS
from .errors import TemplateDocumentError

logger = logging.getLogger("certforge.pdf")

_IMAGE_FORMATS = {"png": "PNG", "jpeg": "JPEG", "jpg": "JPEG"}

# Overlay resource categories and the prefix their entries are renamed to.
_OVERLAY_RESOURCES = {
    "/Font": "/CertforgeF",
    "/XObject": "/CertforgeX",
    "/ExtGState": "/CertforgeGS",
}


class PdfMetadata(NamedTuple):
    page_count: int
    width: float
    height: float


def _open_reader(data: bytes) -> PdfReader:
    if not data:
        raise TemplateDocumentError("Template document is empty")
    try:
        reader = PdfReader(BytesIO(data))
        page_count = len(reader.pages)
    except Exception as exc:
        raise TemplateDocumentError(f"Template is not a readable PDF: {exc}") from exc
    if page_count == 0:
        raise TemplateDocumentError("PDF has no pages")
    return reader


def read_pdf_metadata(data: bytes) -> PdfMetadata:
    reader = _open_reader(data)
    first = reader.pages[0].mediabox
    return PdfMetadata(
        page_count=len(reader.pages),
        width=float(first.width),
        height=float(first.height),
    )


def resolve_font(family: str | None, weight: str | None = "normal") -> str:
    """Map an editor font family and weight onto a standard PDF font name."""
    requested = (family or DEFAULT_FONT_FAMILY).strip()
    if requested in FONT_MAPPING:
        base = FONT_MAPPING[requested]
    elif requested in PDF_STANDARD_FONTS:
        base = requested
    else:
        base = FONT_MAPPING[DEFAULT_FONT_FAMILY]
        logger.warning(
            "[CERT-FONT] family=%s weight=%s -> %s (not mapped)",
            requested,
            weight or "normal",
            base,
        )
    if weight == "bold":
        bold = BOLD_VARIANTS.get(base)
        if bold:
            return bold
        if base not in BOLD_VARIANTS.values():
            logger.info("[CERT-FONT] family=%s has no bold face; using %s", requested, base)
    return base


def measure_text(font: str, text: str, size: float) -> float:
    return stringWidth(text, font, size)


def _resource_names(page, category: str) -> set[str]:
    resources = page.get("/Resources")
    if resources is None:
        return set()
    entries = resources.get_object().get(category)
    if entries is None:
        return set()
    return {str(key) for key in entries.get_object().keys()}


def isolate_overlay_resources(overlay, page) -> dict[str, str]:
    """Rename the overlay's resources to fixed names ``page`` does not use.

    PyPDF2 renames clashing resources with a random suffix while merging,
    which would make output differ between runs. Renaming up front keeps
    the merge clash-free. Returns the old -> new name map.
    """
    resources = overlay.get("/Resources")
    if resources is None:
        return {}
    resources = resources.get_object()
    renames: dict[str, str] = {}
    for category, prefix in _OVERLAY_RESOURCES.items():
        entries = resources.get(category)
        if entries is None:
            continue
        entries = entries.get_object()
        taken = _resource_names(page, category)
        renamed = DictionaryObject()
        counter = 0
        for key in sorted(entries.keys()):
            counter += 1
            while f"{prefix}{counter}" in taken:
                counter += 1
            new_name = NameObject(f"{prefix}{counter}")
            renamed[new_name] = entries.raw_get(key)
            renames[str(key)] = new_name
        resources[NameObject(category)] = renamed

    contents = overlay.get_contents()
    if contents is not None and renames:
        stream = ContentStream(contents, overlay.pdf)
        for operands, _operator in stream.operations:
            if not isinstance(operands, list):
                continue
            for position, operand in enumerate(operands):
                if isinstance(operand, NameObject) and str(operand) in renames:
                    operands[position] = renames[str(operand)]
        overlay[NameObject("/Contents")] = stream
    return renames


def embed_raster_image(data: bytes, fmt: str) -> ImageReader:
    """Decode PNG/JPEG bytes into an image handle the canvas can draw.

    Raises ``ValueError`` when the bytes are not an image of ``fmt``.
    """
    expected = _IMAGE_FORMATS.get((fmt or "").lower())
    if expected is None:
        raise ValueError(f"Unsupported image format: {fmt!r}")
    try:
        with Image.open(BytesIO(data), formats=[expected]) as img:
            img.load()
            if img.mode not in ("RGB", "RGBA", "L"):
                img = img.convert("RGBA")
            return ImageReader(img.copy())
    except (UnidentifiedImageError, OSError) as exc:
        raise ValueError(f"Could not decode {expected} image: {exc}") from exc


class PdfDocument:
    """A loaded template with lazily created per-page overlays."""

    def __init__(self, reader: PdfReader):
        self._reader = reader
        self._overlays: dict[int, tuple[BytesIO, canvas.Canvas]] = {}

    @classmethod
    def load(cls, data: bytes) -> "PdfDocument":
        return cls(_open_reader(data))

    @property
    def page_count(self) -> int:
        return len(self._reader.pages)

    def has_page(self, index: int) -> bool:
        return 0 <= index < self.page_count

    def page_size(self, index: int) -> tuple[float, float]:
        box = self._reader.pages[index].mediabox
        return float(box.width), float(box.height)

    def _page_origin(self, index: int) -> tuple[float, float]:
        box = self._reader.pages[index].mediabox
        return float(box.left), float(box.bottom)

    def _overlay(self, index: int) -> canvas.Canvas:
        if index in self._overlays:
            return self._overlays[index][1]
        if not self.has_page(index):
            raise IndexError(f"page index {index} out of range")
        left, bottom = self._page_origin(index)
        width, height = self.page_size(index)
        buffer = BytesIO()
        c = canvas.Canvas(buffer, pagesize=(left + width, bottom + height), invariant=1)
        self._overlays[index] = (buffer, c)
        return c

    def draw_text(
        self,
        index: int,
        text: str,
        x: float,
        y: float,
        *,
        size: float,
        font: str,
        color: tuple[float, float, float] = (0.0, 0.0, 0.0),
    ) -> None:
        left, bottom = self._page_origin(index)
        c = self._overlay(index)
        c.setFont(font, size)
        c.setFillColorRGB(*color)
        c.drawString(left + x, bottom + y, text)

    def draw_image(
        self,
        index: int,
        image: ImageReader,
        x: float,
        y: float,
        width: float,
        height: float,
    ) -> None:
        left, bottom = self._page_origin(index)
        c = self._overlay(index)
        c.drawImage(image, left + x, bottom + y, width=width, height=height, mask="auto")

    def save(self) -> bytes:
        writer = PdfWriter()
        for index, page in enumerate(self._reader.pages):
            overlay = self._overlays.get(index)
            if overlay is not None:
                buffer, c = overlay
                c.showPage()
                c.save()
                buffer.seek(0)
                overlay_page = PdfReader(buffer).pages[0]
                isolate_overlay_resources(overlay_page, page)
                page.merge_page(overlay_page)
            writer.add_page(page)
        self._overlays.clear()
        out = BytesIO()
        writer.write(out)
        return out.getvalue()
