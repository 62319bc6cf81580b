from __future__ import annotations

import re
from typing import Iterable

from ..constants import (
    ALIGNMENTS,
    ATTRIBUTE_KINDS,
    DEFAULT_COLOR,
    FONT_WEIGHTS,
    SYSTEM_ATTRIBUTE_IDS,
    SYSTEM_ATTRIBUTES,
)
from ..models import Attribute, Template
from .errors import (
    AttributeValidationError,
    PageOutOfRangeError,
    ReservedAttributeError,
)

_HEX_COLOR = re.compile(r"^#?([0-9a-fA-F]{6})$")
_STYLE_COLOR = re.compile(r"^#[0-9a-fA-F]{6}$")


def is_reserved_id(attr_id: str | None) -> bool:
    return (attr_id or "") in SYSTEM_ATTRIBUTE_IDS


def validate_page(attr: Attribute, template: Template) -> None:
    if attr.page < 1 or attr.page > template.page_count:
        raise PageOutOfRangeError(
            f"Attribute {attr.label!r} is on page {attr.page}; "
            f"template has {template.page_count} page(s)"
        )


def create_system_attribute(attr_id: str, *, x: float, y: float, page: int = 1) -> Attribute:
    definition = SYSTEM_ATTRIBUTES.get(attr_id)
    if definition is None:
        raise AttributeValidationError(f"Unknown system attribute: {attr_id!r}")
    return Attribute(
        id=attr_id,
        name=definition["name"],
        kind=definition["kind"],
        page=page,
        x=float(x),
        y=float(y),
        required=definition["required"],
        locked=True,
        **dict(definition["style"]),
    )


def _check_shape(attr: Attribute) -> None:
    if not attr.id:
        raise AttributeValidationError("Attribute id is required")
    if attr.kind not in ATTRIBUTE_KINDS:
        raise AttributeValidationError(
            f"Attribute {attr.id!r} has unsupported type {attr.kind!r}"
        )
    if attr.align not in ALIGNMENTS:
        raise AttributeValidationError(
            f"Attribute {attr.id!r} has unsupported alignment {attr.align!r}"
        )
    if attr.font_weight not in FONT_WEIGHTS:
        raise AttributeValidationError(
            f"Attribute {attr.id!r} has unsupported font weight {attr.font_weight!r}"
        )
    if attr.font_size <= 0:
        raise AttributeValidationError(f"Attribute {attr.id!r} needs a positive font size")
    if attr.max_width is not None and attr.max_width <= 0:
        raise AttributeValidationError(f"Attribute {attr.id!r} needs a positive max width")
    if not isinstance(attr.color, str) or not _STYLE_COLOR.match(attr.color):
        raise AttributeValidationError(
            f"Attribute {attr.id!r} needs a #RRGGBB color, got {attr.color!r}"
        )


def _check_reserved(attr: Attribute) -> None:
    if not is_reserved_id(attr.id):
        if attr.locked:
            raise AttributeValidationError(
                f"Attribute {attr.id!r} is not a system attribute and cannot be locked"
            )
        return
    definition = SYSTEM_ATTRIBUTES[attr.id]
    if not attr.locked:
        raise ReservedAttributeError(f"Attribute id {attr.id!r} is reserved")
    if attr.kind != definition["kind"]:
        raise ReservedAttributeError(
            f"System attribute {attr.id!r} must keep type {definition['kind']!r}"
        )
    if attr.name and attr.name != definition["name"]:
        raise ReservedAttributeError(
            f"System attribute {attr.id!r} must keep its name {definition['name']!r}"
        )
    if attr.required != definition["required"]:
        raise ReservedAttributeError(
            f"System attribute {attr.id!r} must keep required={definition['required']}"
        )


def validate_new_attribute(attr: Attribute, template: Template) -> None:
    """Validate an attribute before it is added to ``template``.

    User attributes may not take a reserved id; locked attributes must
    match their system definition.
    """
    _check_shape(attr)
    _check_reserved(attr)
    if template.has_attribute(attr.id):
        raise AttributeValidationError(f"Attribute id {attr.id!r} already exists")
    validate_page(attr, template)


def validate_attribute_update(current: Attribute, updated: Attribute, template: Template) -> None:
    if current.locked:
        if updated.id != current.id:
            raise ReservedAttributeError(f"System attribute {current.id!r} cannot be renamed")
        if updated.kind != current.kind:
            raise ReservedAttributeError(
                f"System attribute {current.id!r} cannot change type"
            )
        if not updated.locked:
            raise ReservedAttributeError(f"System attribute {current.id!r} cannot be unlocked")
        if updated.name != current.name:
            raise ReservedAttributeError(f"System attribute {current.id!r} cannot be renamed")
        if updated.required != SYSTEM_ATTRIBUTES[current.id]["required"]:
            raise ReservedAttributeError(
                f"System attribute {current.id!r} cannot change whether it is required"
            )
    else:
        if is_reserved_id(updated.id):
            raise ReservedAttributeError(f"Attribute id {updated.id!r} is reserved")
        if updated.locked:
            raise AttributeValidationError(f"Attribute {current.id!r} cannot be locked")
        if updated.id != current.id and template.has_attribute(updated.id):
            raise AttributeValidationError(f"Attribute id {updated.id!r} already exists")
    _check_shape(updated)
    validate_page(updated, template)


def validate_attribute_set(attributes: Iterable[Attribute], template: Template) -> list[Attribute]:
    """Validate a full replacement list in order; returns it as a list."""
    seen: set[str] = set()
    validated: list[Attribute] = []
    for attr in attributes:
        _check_shape(attr)
        _check_reserved(attr)
        if attr.id in seen:
            raise AttributeValidationError(f"Attribute id {attr.id!r} appears twice")
        validate_page(attr, template)
        seen.add(attr.id)
        validated.append(attr)
    return validated


def parse_color(value: str | None) -> tuple[float, float, float]:
    if not isinstance(value, str) or not value:
        value = DEFAULT_COLOR
    match = _HEX_COLOR.match(value.strip())
    if not match:
        return (0.0, 0.0, 0.0)
    raw = match.group(1)
    return tuple(int(raw[i : i + 2], 16) / 255.0 for i in (0, 2, 4))  # type: ignore[return-value]
