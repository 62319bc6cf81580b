from __future__ import annotations

from types import MappingProxyType

# Attribute kinds
KIND_TEXT = "text"
KIND_DATE = "date"
KIND_QRCODE = "qrcode"
KIND_SIGNATURE = "signatureImage"

ATTRIBUTE_KINDS: tuple[str, ...] = (KIND_TEXT, KIND_DATE, KIND_QRCODE, KIND_SIGNATURE)
TEXT_KINDS: frozenset[str] = frozenset({KIND_TEXT, KIND_DATE})

# Older editor payloads used these spellings.
KIND_ALIASES = {
    "qr": KIND_QRCODE,
    "image": KIND_SIGNATURE,
    "signature": KIND_SIGNATURE,
}

ALIGNMENTS: tuple[str, ...] = ("left", "center", "right")
FONT_WEIGHTS: tuple[str, ...] = ("normal", "bold")

# Storage buckets
BUCKET_TEMPLATES = "templates"
BUCKET_SIGNATURES = "signatures"
BUCKET_GENERATED = "generated"
BUCKET_ARCHIVES = "bulk-zips"

BUCKETS: tuple[str, ...] = (
    BUCKET_TEMPLATES,
    BUCKET_SIGNATURES,
    BUCKET_GENERATED,
    BUCKET_ARCHIVES,
)

DEFAULT_FONT_FAMILY = "Helvetica"
DEFAULT_FONT_SIZE = 12.0
DEFAULT_COLOR = "#000000"
LINE_HEIGHT_FACTOR = 1.2

DEFAULT_SIGNATURE_SIZE = (120.0, 60.0)
DEFAULT_QR_SIZE = (80.0, 80.0)

DEFAULT_BATCH_SIZE = 50
ARCHIVE_COMPRESSLEVEL = 6
# ZIP entries carry this timestamp so identical inputs give identical archives.
ARCHIVE_ENTRY_DATE = (1980, 1, 1, 0, 0, 0)

DEFAULT_CERTIFICATE_CODE = "CERT"
CERTIFICATE_CODE_SUFFIX_LENGTH = 4

# Editor font family -> base PDF standard font.
FONT_MAPPING: dict[str, str] = {
    "Helvetica": "Helvetica",
    "Inter": "Helvetica",
    "Roboto": "Helvetica",
    "Montserrat": "Helvetica",
    "Open Sans": "Helvetica",
    "Lato": "Helvetica",
    "Times New Roman": "Times-Roman",
    "Times-Roman": "Times-Roman",
    "Playfair Display": "Times-Roman",
    "DM Serif Display": "Times-Roman",
    "Courier": "Courier",
    "Great Vibes": "Times-Italic",
    "Dancing Script": "Times-Italic",
}

# Base standard font -> bold face. Faces missing here have no bold variant.
BOLD_VARIANTS: dict[str, str] = {
    "Helvetica": "Helvetica-Bold",
    "Times-Roman": "Times-Bold",
    "Courier": "Courier-Bold",
}

PDF_STANDARD_FONTS: frozenset[str] = frozenset(
    {
        "Helvetica",
        "Helvetica-Bold",
        "Times-Roman",
        "Times-Bold",
        "Times-Italic",
        "Courier",
        "Courier-Bold",
    }
)


SYSTEM_ATTRIBUTES = MappingProxyType(
    {
        "certificateId": MappingProxyType(
            {
                "name": "Certificate ID",
                "kind": KIND_TEXT,
                "description": "Auto-generated unique certificate identifier",
                "required": False,
                "style": {
                    "font_size": 12.0,
                    "font_family": "Helvetica",
                    "font_weight": "normal",
                    "color": "#000000",
                    "align": "left",
                },
            }
        ),
        "recipientName": MappingProxyType(
            {
                "name": "Recipient Name",
                "kind": KIND_TEXT,
                "description": "Name of the certificate recipient",
                "required": True,
                "style": {
                    "font_size": 24.0,
                    "font_family": "Helvetica",
                    "font_weight": "bold",
                    "color": "#000000",
                    "align": "center",
                },
            }
        ),
        "generatedDate": MappingProxyType(
            {
                "name": "Generated Date",
                "kind": KIND_DATE,
                "description": "Date when the certificate was generated",
                "required": False,
                "style": {
                    "font_size": 12.0,
                    "font_family": "Helvetica",
                    "font_weight": "normal",
                    "color": "#000000",
                    "align": "left",
                },
            }
        ),
        "qrCode": MappingProxyType(
            {
                "name": "QR Code",
                "kind": KIND_QRCODE,
                "description": "Dynamic QR code generated from URL template",
                "required": False,
                "style": {"width": 80.0, "height": 80.0},
            }
        ),
    }
)

SYSTEM_ATTRIBUTE_IDS: frozenset[str] = frozenset(SYSTEM_ATTRIBUTES)

CERTIFICATE_ID_ATTRIBUTE = "certificateId"
GENERATED_DATE_ATTRIBUTE = "generatedDate"
