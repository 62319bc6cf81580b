from __future__ import annotations

import datetime as dt
import logging
import re
import secrets
import string
import uuid
from typing import Mapping, NamedTuple

from ..constants import (
    BUCKET_GENERATED,
    CERTIFICATE_CODE_SUFFIX_LENGTH,
    CERTIFICATE_ID_ATTRIBUTE,
    DEFAULT_CERTIFICATE_CODE,
    GENERATED_DATE_ATTRIBUTE,
    KIND_QRCODE,
)
from ..models import Template
from .errors import RowValidationError
from .render import render_certificate
from .storage import StorageGateway

logger = logging.getLogger("certforge.certificates")

_PLACEHOLDER = re.compile(r"\{([^{}]+)\}")
_CODE_ALPHABET = string.ascii_uppercase + string.digits
_SAFE_FILENAME = re.compile(r"[^A-Za-z0-9._-]")


class GeneratedCertificate(NamedTuple):
    certificate_id: str
    filename: str
    location: str

    def to_dict(self) -> dict:
        return {
            "certificateId": self.certificate_id,
            "filename": self.filename,
            "location": self.location,
        }


def format_certificate_date(day: dt.date) -> str:
    """``October 9, 2026``: full month name, unpadded day."""
    return f"{day:%B} {day.day}, {day.year}"


def validate_record(template: Template, record: Mapping[str, str | None], row: int | None = None) -> None:
    """Raise ``RowValidationError`` for the first required attribute without a value."""
    for attr in template.required_attributes():
        if not (record.get(attr.id) or "").strip():
            raise RowValidationError(f"Missing required field: {attr.label}", row=row)


def _fill_placeholders(pattern: str, values: Mapping[str, str]) -> str:
    def substitute(match: re.Match) -> str:
        return values.get(match.group(1)) or match.group(0)

    return _PLACEHOLDER.sub(substitute, pattern)


def prepare_record(
    template: Template,
    data: Mapping[str, object],
    *,
    certificate_id: str,
    today: dt.date | None = None,
) -> dict[str, str]:
    """Build the record that is handed to the renderer.

    Values are trimmed and empty ones dropped. ``certificateId`` and
    ``generatedDate`` are filled in when the template places them and the
    caller gave no value. QR attributes without a value get their
    ``qr_url`` with ``{attrId}`` placeholders substituted.
    """
    record: dict[str, str] = {}
    for key, value in data.items():
        if value is None:
            continue
        text = str(value).strip()
        if text:
            record[str(key)] = text

    if template.has_attribute(CERTIFICATE_ID_ATTRIBUTE) and CERTIFICATE_ID_ATTRIBUTE not in record:
        record[CERTIFICATE_ID_ATTRIBUTE] = certificate_id
    if template.has_attribute(GENERATED_DATE_ATTRIBUTE) and GENERATED_DATE_ATTRIBUTE not in record:
        record[GENERATED_DATE_ATTRIBUTE] = format_certificate_date(today or dt.date.today())

    for attr in template.attributes:
        if attr.kind == KIND_QRCODE and attr.id not in record and attr.qr_url:
            record[attr.id] = _fill_placeholders(attr.qr_url, record)
    return record


def generate_certificate_code(template_code: str | None, email: str | None = None) -> str:
    """Template code followed by the last four characters before the ``@``.

    A shorter local part is used whole; without a usable e-mail the suffix
    is random.
    """
    code = (template_code or DEFAULT_CERTIFICATE_CODE).upper()
    at = (email or "").find("@")
    if at > 0:
        local = email[:at]
        return code + local[-CERTIFICATE_CODE_SUFFIX_LENGTH:].upper()
    suffix = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(CERTIFICATE_CODE_SUFFIX_LENGTH))
    return code + suffix


def generate_document_id() -> str:
    return f"CERT-{uuid.uuid4().hex[:12].upper()}"


def generate_certificate(
    template: Template,
    data: Mapping[str, object],
    *,
    storage: StorageGateway,
    recipient_email: str | None = None,
    today: dt.date | None = None,
) -> GeneratedCertificate:
    supplied = data.get(CERTIFICATE_ID_ATTRIBUTE)
    certificate_id = str(supplied).strip() if supplied else ""
    if not certificate_id:
        certificate_id = generate_certificate_code(template.code, recipient_email)
    record = prepare_record(template, data, certificate_id=certificate_id, today=today)
    validate_record(template, record)

    pdf_bytes = render_certificate(template, record, storage=storage)
    filename = f"{_SAFE_FILENAME.sub('_', certificate_id)}.pdf"
    location = storage.save(BUCKET_GENERATED, filename, pdf_bytes)
    logger.info(
        "[CERT] template=%s certificate=%s bytes=%d", template.id, certificate_id, len(pdf_bytes)
    )
    return GeneratedCertificate(certificate_id=certificate_id, filename=filename, location=location)
