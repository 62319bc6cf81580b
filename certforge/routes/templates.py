from __future__ import annotations

import os
import uuid

from flask import Blueprint, current_app, jsonify, request
from werkzeug.utils import secure_filename

from ..constants import BUCKET_SIGNATURES
from ..models import Attribute
from ..shared.errors import AttributeValidationError, FatalInputError, TemplateNotFoundError
from ..shared.templates import (
    add_attribute,
    create_template,
    delete_template,
    remove_attribute,
    reorder_attributes,
    replace_attributes,
    update_attribute,
)

bp = Blueprint("templates", __name__, url_prefix="/templates")

_SIGNATURE_EXTENSIONS = {".png", ".jpg", ".jpeg"}


def _core():
    ext = current_app.extensions["certforge"]
    return ext["storage"], ext["templates"]


def _error(message: str, status: int):
    return jsonify({"ok": False, "error": message}), status


def _template_response(template, status: int = 200):
    return jsonify({"ok": True, "template": template.to_dict()}), status


@bp.errorhandler(TemplateNotFoundError)
def _not_found(exc):
    return _error(str(exc), 404)


@bp.errorhandler(ValueError)
def _invalid(exc):
    return _error(str(exc), 400)


@bp.errorhandler(FatalInputError)
def _bad_document(exc):
    return _error(str(exc), 400)


@bp.get("")
def list_templates():
    _, templates = _core()
    items = sorted(templates.list(), key=lambda t: t.code)
    return jsonify({"ok": True, "templates": [t.to_dict() for t in items]})


@bp.post("")
def upload_template():
    f = request.files.get("template")
    filename = secure_filename((f.filename if f else "") or "")
    if f is None or not filename.lower().endswith(".pdf"):
        return _error("A .pdf template file is required", 400)
    storage, templates = _core()
    template = create_template(
        templates,
        storage,
        f.read(),
        code=request.form.get("code") or "",
        name=request.form.get("name") or filename,
        filename=f"{uuid.uuid4().hex}-{filename}",
    )
    current_app.logger.info("[TEMPLATE] uploaded %s as %s", filename, template.id)
    return _template_response(template, 201)


@bp.get("/<template_id>")
def get_template(template_id: str):
    _, templates = _core()
    return _template_response(templates.require(template_id))


@bp.delete("/<template_id>")
def remove_template(template_id: str):
    storage, templates = _core()
    if not delete_template(templates, storage, template_id):
        return _error(f"Template not found: {template_id}", 404)
    return jsonify({"ok": True})


def _attribute_payload() -> dict:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise AttributeValidationError("Attribute payload must be a JSON object")
    return payload


@bp.post("/<template_id>/attributes")
def create_attribute(template_id: str):
    _, templates = _core()
    attr = Attribute.from_dict(_attribute_payload())
    return _template_response(add_attribute(templates, template_id, attr), 201)


@bp.put("/<template_id>/attributes")
def put_attributes(template_id: str):
    payload = request.get_json(silent=True)
    if not isinstance(payload, list):
        return _error("Expected a JSON list of attributes", 400)
    _, templates = _core()
    attributes = [Attribute.from_dict(item) for item in payload]
    return _template_response(replace_attributes(templates, template_id, attributes))


@bp.put("/<template_id>/attributes/<attr_id>")
def put_attribute(template_id: str, attr_id: str):
    _, templates = _core()
    current = templates.require(template_id).attribute(attr_id)
    base = current.to_dict() if current else {"id": attr_id}
    attr = Attribute.from_dict({**base, **_attribute_payload()})
    return _template_response(update_attribute(templates, template_id, attr_id, attr))


@bp.delete("/<template_id>/attributes/<attr_id>")
def delete_attribute(template_id: str, attr_id: str):
    _, templates = _core()
    return _template_response(remove_attribute(templates, template_id, attr_id))


@bp.post("/<template_id>/attributes/order")
def order_attributes(template_id: str):
    payload = request.get_json(silent=True) or {}
    order = payload.get("order")
    if not isinstance(order, list):
        return _error("order must be a list of attribute ids", 400)
    _, templates = _core()
    return _template_response(reorder_attributes(templates, template_id, [str(i) for i in order]))


@bp.post("/signatures")
def upload_signature():
    f = request.files.get("file")
    filename = secure_filename((f.filename if f else "") or "")
    ext = os.path.splitext(filename)[1].lower()
    if f is None or ext not in _SIGNATURE_EXTENSIONS:
        return _error("A .png or .jpg signature image is required", 400)
    storage, _ = _core()
    stored = f"{uuid.uuid4().hex}{ext}"
    location = storage.save(BUCKET_SIGNATURES, stored, f.read())
    return jsonify({"ok": True, "filename": stored, "location": location}), 201
