from __future__ import annotations

import json
import mimetypes
from io import BytesIO

from flask import Blueprint, current_app, jsonify, request, send_file

from ..shared.certificates import generate_certificate
from ..shared.errors import (
    AssetNotFoundError,
    FatalInputError,
    RowValidationError,
    StorageError,
    TemplateNotFoundError,
)
from ..shared.tabular import read_csv_headers
from ..services.bulk import run_bulk_generation

bp = Blueprint("generate", __name__, url_prefix="/generate")


def _core():
    ext = current_app.extensions["certforge"]
    return ext["storage"], ext["templates"]


def _error(message: str, status: int):
    return jsonify({"ok": False, "error": message}), status


def _uploaded_csv() -> bytes | None:
    f = request.files.get("file")
    if f is None or not (f.filename or "").lower().endswith(".csv"):
        return None
    return f.read()


@bp.post("/single")
def single():
    payload = request.get_json(silent=True) or {}
    data = payload.get("data")
    if not payload.get("templateId") or not isinstance(data, dict):
        return _error("templateId and data are required", 400)
    storage, templates = _core()
    try:
        template = templates.require(payload["templateId"])
        generated = generate_certificate(
            template,
            data,
            storage=storage,
            recipient_email=payload.get("recipientEmail"),
        )
    except TemplateNotFoundError as exc:
        return _error(str(exc), 404)
    except RowValidationError as exc:
        return _error(exc.message, 400)
    except FatalInputError as exc:
        current_app.logger.warning("[CERT-FAIL] template=%s %s", payload["templateId"], exc)
        return _error(str(exc), 400)
    except StorageError as exc:
        current_app.logger.error("[CERT-FAIL] template=%s storage: %s", payload["templateId"], exc)
        return _error(str(exc), 500)
    return jsonify({"ok": True, **generated.to_dict()})


@bp.post("/bulk/headers")
def bulk_headers():
    raw = _uploaded_csv()
    if raw is None:
        return _error("A .csv file is required", 400)
    try:
        headers = read_csv_headers(raw)
    except FatalInputError as exc:
        return _error(str(exc), 400)
    return jsonify({"ok": True, "headers": headers})


@bp.post("/bulk")
def bulk():
    raw = _uploaded_csv()
    if raw is None:
        return _error("A .csv file is required", 400)
    template_id = (request.form.get("templateId") or "").strip()
    try:
        mapping = json.loads(request.form.get("columnMapping") or "{}")
    except ValueError:
        return _error("columnMapping must be a JSON object", 400)
    if not template_id or not isinstance(mapping, dict):
        return _error("templateId and columnMapping are required", 400)

    storage, templates = _core()
    try:
        template = templates.require(template_id)
        result = run_bulk_generation(
            template,
            raw,
            mapping,
            storage=storage,
            batch_size=int(current_app.config["CERT_BATCH_SIZE"]),
        )
    except TemplateNotFoundError as exc:
        return _error(str(exc), 404)
    except FatalInputError as exc:
        current_app.logger.warning("[BULK-FAIL] template=%s %s", template_id, exc)
        return _error(str(exc), 400)
    except StorageError as exc:
        current_app.logger.error("[BULK-FAIL] template=%s storage: %s", template_id, exc)
        return _error(str(exc), 500)
    return jsonify({"ok": True, **result.to_dict()})


@bp.get("/files/<bucket>/<name>")
def download(bucket: str, name: str):
    storage, _ = _core()
    try:
        data = storage.get(bucket, name)
    except AssetNotFoundError:
        return _error("File not found", 404)
    except StorageError as exc:
        current_app.logger.info("[FILES] rejected %s/%s: %s", bucket, name, exc)
        return _error("File not found", 404)
    mimetype = mimetypes.guess_type(name)[0] or "application/octet-stream"
    return send_file(BytesIO(data), mimetype=mimetype, as_attachment=True, download_name=name)
