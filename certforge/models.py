from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Mapping

from .constants import (
    DEFAULT_COLOR,
    DEFAULT_FONT_FAMILY,
    DEFAULT_FONT_SIZE,
    KIND_ALIASES,
    KIND_TEXT,
)

# camelCase payload key -> dataclass field
_PAYLOAD_FIELDS = {
    "id": "id",
    "name": "name",
    "type": "kind",
    "kind": "kind",
    "page": "page",
    "x": "x",
    "y": "y",
    "fontFamily": "font_family",
    "fontWeight": "font_weight",
    "fontSize": "font_size",
    "color": "color",
    "align": "align",
    "textAlign": "align",
    "maxWidth": "max_width",
    "width": "width",
    "height": "height",
    "qrUrl": "qr_url",
    "required": "required",
    "locked": "locked",
    "isSystem": "locked",
}

_FLOAT_FIELDS = {"x", "y", "font_size", "max_width", "width", "height"}


@dataclass(frozen=True)
class Attribute:
    """A positioned, typed field drawn onto one page of a template."""

    id: str
    name: str = ""
    kind: str = KIND_TEXT
    page: int = 1
    x: float = 0.0
    y: float = 0.0
    font_family: str = DEFAULT_FONT_FAMILY
    font_weight: str = "normal"
    font_size: float = DEFAULT_FONT_SIZE
    color: str = DEFAULT_COLOR
    align: str = "left"
    max_width: float | None = None
    width: float | None = None
    height: float | None = None
    qr_url: str | None = None
    required: bool = False
    locked: bool = False

    @property
    def label(self) -> str:
        return self.name or self.id

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Attribute":
        values: dict[str, Any] = {}
        for key, raw in payload.items():
            target = _PAYLOAD_FIELDS.get(key)
            if target is None or raw is None:
                continue
            values[target] = raw
        if "id" not in values:
            raise ValueError("attribute payload requires an id")
        values["id"] = str(values["id"]).strip()
        kind = str(values.get("kind", KIND_TEXT)).strip()
        values["kind"] = KIND_ALIASES.get(kind, kind)
        for name in _FLOAT_FIELDS:
            if name in values:
                try:
                    values[name] = float(values[name])
                except (TypeError, ValueError):
                    raise ValueError(f"attribute {values['id']!r}: {name} must be a number") from None
        if "page" in values:
            try:
                values["page"] = int(values["page"])
            except (TypeError, ValueError):
                raise ValueError(f"attribute {values['id']!r}: page must be an integer") from None
        for name in ("required", "locked"):
            if name in values:
                values[name] = bool(values[name])
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "type": self.kind,
            "page": self.page,
            "x": self.x,
            "y": self.y,
            "fontFamily": self.font_family,
            "fontWeight": self.font_weight,
            "fontSize": self.font_size,
            "color": self.color,
            "align": self.align,
            "required": self.required,
            "locked": self.locked,
        }
        for key, value in (
            ("maxWidth", self.max_width),
            ("width", self.width),
            ("height", self.height),
            ("qrUrl", self.qr_url),
        ):
            if value is not None:
                data[key] = value
        return data

    def with_changes(self, **changes: Any) -> "Attribute":
        return replace(self, **changes)


@dataclass
class Template:
    id: str
    code: str
    name: str
    filename: str
    page_count: int
    width: float
    height: float
    attributes: list[Attribute] = field(default_factory=list)

    def attribute(self, attr_id: str) -> Attribute | None:
        return next((attr for attr in self.attributes if attr.id == attr_id), None)

    def has_attribute(self, attr_id: str) -> bool:
        return self.attribute(attr_id) is not None

    def required_attributes(self) -> list[Attribute]:
        return [attr for attr in self.attributes if attr.required]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "filename": self.filename,
            "pageCount": self.page_count,
            "width": self.width,
            "height": self.height,
            "attributes": [attr.to_dict() for attr in self.attributes],
        }


@dataclass(frozen=True)
class RowFailure:
    row: int
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"row": self.row, "message": self.message}


@dataclass(frozen=True)
class RowOutcome:
    """Settled result of one row: a stored document id or a failure."""

    row: int
    document_id: str | None = None
    failure: RowFailure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, row: int, document_id: str) -> "RowOutcome":
        return cls(row=row, document_id=document_id)

    @classmethod
    def failed(cls, row: int, message: str) -> "RowOutcome":
        return cls(row=row, failure=RowFailure(row=row, message=message))


@dataclass
class BatchResult:
    total_requested: int
    success_count: int = 0
    failure_count: int = 0
    failures: list[RowFailure] = field(default_factory=list)
    document_ids: list[str] = field(default_factory=list)
    archive_ref: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalRequested": self.total_requested,
            "successCount": self.success_count,
            "failureCount": self.failure_count,
            "failures": [failure.to_dict() for failure in self.failures],
            "documentIds": list(self.document_ids),
            "archive": self.archive_ref,
        }


@dataclass(frozen=True)
class ArchiveEntry:
    name: str
    source_ref: str
