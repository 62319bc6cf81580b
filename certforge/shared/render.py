from __future__ import annotations

import logging
import os
from io import BytesIO
from typing import Callable, Mapping

import qrcode
from qrcode.constants import ERROR_CORRECT_M
from qrcode.exceptions import DataOverflowError

from ..constants import (
    BUCKET_SIGNATURES,
    BUCKET_TEMPLATES,
    DEFAULT_QR_SIZE,
    DEFAULT_SIGNATURE_SIZE,
    KIND_QRCODE,
    KIND_SIGNATURE,
    LINE_HEIGHT_FACTOR,
    TEXT_KINDS,
)
from ..models import Attribute, Template
from .attributes import parse_color
from .errors import StorageError
from .pdf_backend import PdfDocument, embed_raster_image, measure_text, resolve_font
from .storage import StorageGateway

logger = logging.getLogger("certforge.render")


def wrap_text(text: str, max_width: float, measure: Callable[[str], float]) -> list[str]:
    """Greedy word wrap.

    A word that is wider than ``max_width`` on its own is kept whole on its
    own line.
    """
    lines: list[str] = []
    current = ""
    for word in text.split():
        candidate = f"{current} {word}" if current else word
        if current and measure(candidate) > max_width:
            lines.append(current)
            current = word
        else:
            current = candidate
    if current:
        lines.append(current)
    return lines


def aligned_x(x: float, line_width: float, align: str) -> float:
    if align == "center":
        return x - line_width / 2.0
    if align == "right":
        return x - line_width
    return x


def layout_text(attr: Attribute, text: str, font: str) -> list[tuple[str, float, float]]:
    """Return ``(line, x, y)`` triples for ``text`` positioned per ``attr``."""
    size = attr.font_size

    def measure(value: str) -> float:
        return measure_text(font, value, size)

    if attr.max_width:
        lines = wrap_text(text, attr.max_width, measure)
    else:
        lines = [text]
    line_height = size * LINE_HEIGHT_FACTOR
    placed = []
    for index, line in enumerate(lines):
        placed.append((line, aligned_x(attr.x, measure(line), attr.align), attr.y - index * line_height))
    return placed


def _draw_text(doc: PdfDocument, page_index: int, attr: Attribute, value: str) -> None:
    font = resolve_font(attr.font_family, attr.font_weight)
    color = parse_color(attr.color)
    for line, x, y in layout_text(attr, value, font):
        doc.draw_text(page_index, line, x, y, size=attr.font_size, font=font, color=color)


def _image_format(filename: str) -> str:
    ext = os.path.splitext(filename)[1].lower()
    return "png" if ext == ".png" else "jpeg"


def _draw_signature(
    doc: PdfDocument,
    page_index: int,
    attr: Attribute,
    filename: str,
    storage: StorageGateway,
) -> None:
    try:
        data = storage.get(BUCKET_SIGNATURES, filename)
        image = embed_raster_image(data, _image_format(filename))
    except (StorageError, ValueError) as exc:
        logger.warning("[CERT-ASSET] attr=%s signature=%s skipped: %s", attr.id, filename, exc)
        return
    width = attr.width or DEFAULT_SIGNATURE_SIZE[0]
    height = attr.height or DEFAULT_SIGNATURE_SIZE[1]
    doc.draw_image(page_index, image, attr.x, attr.y, width, height)


def qr_png(payload: str) -> bytes:
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_M, border=1, box_size=10)
    qr.add_data(payload)
    qr.make(fit=True)
    buffer = BytesIO()
    qr.make_image(fill_color="black", back_color="white").save(buffer)
    return buffer.getvalue()


def _draw_qrcode(doc: PdfDocument, page_index: int, attr: Attribute, payload: str) -> None:
    try:
        image = embed_raster_image(qr_png(payload), "png")
    except (DataOverflowError, ValueError) as exc:
        logger.warning("[CERT-QR] attr=%s skipped: %s", attr.id, exc)
        return
    width = attr.width or DEFAULT_QR_SIZE[0]
    height = attr.height or DEFAULT_QR_SIZE[1]
    doc.draw_image(page_index, image, attr.x, attr.y, width, height)


def render_certificate(
    template: Template,
    record: Mapping[str, str | None],
    *,
    storage: StorageGateway,
    base_pdf: bytes | None = None,
) -> bytes:
    """Overlay ``record`` onto the template PDF and return the new PDF bytes.

    Attributes are drawn in list order. Empty values are skipped; callers
    check required values before rendering. Missing signature assets and
    attributes on pages the document does not have are logged and skipped.
    Raises ``TemplateDocumentError`` when the base PDF is unreadable.
    """
    if base_pdf is None:
        base_pdf = storage.get(BUCKET_TEMPLATES, template.filename)
    doc = PdfDocument.load(base_pdf)

    for attr in template.attributes:
        value = (record.get(attr.id) or "").strip()
        if not value:
            continue
        page_index = attr.page - 1
        if not doc.has_page(page_index):
            logger.warning(
                "[CERT-RENDER] template=%s attr=%s page=%s does not exist; skipped",
                template.id,
                attr.id,
                attr.page,
            )
            continue
        if attr.kind in TEXT_KINDS:
            _draw_text(doc, page_index, attr, value)
        elif attr.kind == KIND_SIGNATURE:
            _draw_signature(doc, page_index, attr, value, storage)
        elif attr.kind == KIND_QRCODE:
            _draw_qrcode(doc, page_index, attr, value)
        else:
            logger.warning("[CERT-RENDER] attr=%s unknown type %s; skipped", attr.id, attr.kind)

    return doc.save()
