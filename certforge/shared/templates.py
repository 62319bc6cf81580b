from __future__ import annotations

import logging
import re
import threading
import uuid
from abc import ABC, abstractmethod
from typing import Iterable, Sequence

from ..constants import BUCKET_TEMPLATES
from ..models import Attribute, Template
from .attributes import (
    validate_attribute_set,
    validate_attribute_update,
    validate_new_attribute,
)
from .errors import AttributeValidationError, TemplateNotFoundError
from .pdf_backend import read_pdf_metadata
from .storage import StorageGateway

logger = logging.getLogger("certforge.templates")

_CODE_MAX_LENGTH = 5


class TemplateRepository(ABC):
    @abstractmethod
    def get(self, template_id: str) -> Template | None:
        ...

    def add(self, template: Template) -> None:
        if self.get(template.id) is not None:
            raise ValueError(f"Template already exists: {template.id}")
        self.save(template)

    @abstractmethod
    def save(self, template: Template) -> None:
        """Insert or replace ``template``."""

    @abstractmethod
    def delete(self, template_id: str) -> bool:
        ...

    @abstractmethod
    def list(self) -> list[Template]:
        ...

    def require(self, template_id: str) -> Template:
        template = self.get(template_id)
        if template is None:
            raise TemplateNotFoundError(f"Template not found: {template_id}")
        return template

    def code_in_use(self, code: str) -> bool:
        return any(t.code == code for t in self.list())


class InMemoryTemplateRepository(TemplateRepository):
    """Process-local repository used by the app factory and the tests."""

    def __init__(self, templates: Iterable[Template] = ()):
        self._lock = threading.Lock()
        self._templates: dict[str, Template] = {t.id: t for t in templates}

    def get(self, template_id: str) -> Template | None:
        with self._lock:
            return self._templates.get(template_id)

    def save(self, template: Template) -> None:
        with self._lock:
            self._templates[template.id] = template

    def delete(self, template_id: str) -> bool:
        with self._lock:
            return self._templates.pop(template_id, None) is not None

    def list(self) -> list[Template]:
        with self._lock:
            return list(self._templates.values())


def normalize_template_code(code: str | None) -> str:
    normalized = re.sub(r"[^A-Z0-9]", "", (code or "").upper())
    if not 1 <= len(normalized) <= _CODE_MAX_LENGTH:
        raise ValueError(f"Template code must be 1-{_CODE_MAX_LENGTH} alphanumeric characters")
    return normalized


def create_template(
    repo: TemplateRepository,
    storage: StorageGateway,
    pdf_bytes: bytes,
    *,
    code: str,
    name: str,
    filename: str | None = None,
) -> Template:
    """Store a base PDF and register a template for it.

    Page count and first-page size are read from the PDF here and never
    change afterwards.
    """
    normalized = normalize_template_code(code)
    if repo.code_in_use(normalized):
        raise ValueError("Template code already exists")
    metadata = read_pdf_metadata(pdf_bytes)
    template_id = str(uuid.uuid4())
    stored_name = filename or f"{template_id}.pdf"
    storage.save(BUCKET_TEMPLATES, stored_name, pdf_bytes)
    template = Template(
        id=template_id,
        code=normalized,
        name=(name or "").strip() or stored_name,
        filename=stored_name,
        page_count=metadata.page_count,
        width=metadata.width,
        height=metadata.height,
    )
    repo.add(template)
    logger.info(
        "[TEMPLATE] created id=%s code=%s pages=%d size=%.1fx%.1f",
        template.id,
        template.code,
        template.page_count,
        template.width,
        template.height,
    )
    return template


def add_attribute(repo: TemplateRepository, template_id: str, attr: Attribute) -> Template:
    template = repo.require(template_id)
    validate_new_attribute(attr, template)
    template.attributes = [*template.attributes, attr]
    repo.save(template)
    return template


def update_attribute(
    repo: TemplateRepository, template_id: str, attr_id: str, updated: Attribute
) -> Template:
    template = repo.require(template_id)
    current = template.attribute(attr_id)
    if current is None:
        raise AttributeValidationError(f"Attribute not found: {attr_id!r}")
    validate_attribute_update(current, updated, template)
    template.attributes = [updated if a.id == attr_id else a for a in template.attributes]
    repo.save(template)
    return template


def remove_attribute(repo: TemplateRepository, template_id: str, attr_id: str) -> Template:
    template = repo.require(template_id)
    if not template.has_attribute(attr_id):
        raise AttributeValidationError(f"Attribute not found: {attr_id!r}")
    template.attributes = [a for a in template.attributes if a.id != attr_id]
    repo.save(template)
    return template


def reorder_attributes(
    repo: TemplateRepository, template_id: str, order: Sequence[str]
) -> Template:
    template = repo.require(template_id)
    current = {a.id: a for a in template.attributes}
    if len(order) != len(current) or set(order) != set(current):
        raise AttributeValidationError("Reorder must list every attribute id exactly once")
    template.attributes = [current[attr_id] for attr_id in order]
    repo.save(template)
    return template


def replace_attributes(
    repo: TemplateRepository, template_id: str, attributes: Iterable[Attribute]
) -> Template:
    template = repo.require(template_id)
    template.attributes = validate_attribute_set(attributes, template)
    repo.save(template)
    return template


def delete_template(repo: TemplateRepository, storage: StorageGateway, template_id: str) -> bool:
    template = repo.get(template_id)
    if template is None:
        return False
    storage.delete(BUCKET_TEMPLATES, template.filename)
    repo.delete(template_id)
    logger.info("[TEMPLATE] deleted id=%s file=%s", template.id, template.filename)
    return True
