import logging
import os
import sys

from flask import Flask, jsonify

from .constants import DEFAULT_BATCH_SIZE
from .shared.storage import LocalStorage
from .shared.templates import InMemoryTemplateRepository

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def _configure_logging(level_name: str) -> None:
    logger = logging.getLogger("certforge")
    if not any(getattr(h, "_certforge", False) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        handler._certforge = True
        logger.addHandler(handler)
    level = logging.getLevelName((level_name or "INFO").upper())
    logger.setLevel(level if isinstance(level, int) else logging.INFO)


def create_app(config=None):
    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = 25 * 1024 * 1024

    site_root = os.getenv("SITE_ROOT", "/srv")
    app.config["SITE_ROOT"] = site_root
    app.config["STORAGE_ROOT"] = os.getenv("STORAGE_ROOT") or os.path.join(site_root, "certforge")
    app.config["CERT_BATCH_SIZE"] = int(os.getenv("MAX_BULK_BATCH_SIZE", DEFAULT_BATCH_SIZE))
    app.config["LOG_LEVEL"] = os.getenv("LOG_LEVEL", "INFO")
    if config:
        app.config.update(config)

    if int(app.config["CERT_BATCH_SIZE"]) < 1:
        raise ValueError("CERT_BATCH_SIZE must be at least 1")

    _configure_logging(app.config["LOG_LEVEL"])

    app.extensions["certforge"] = {
        "storage": LocalStorage(app.config["STORAGE_ROOT"]),
        "templates": app.config.get("TEMPLATE_REPOSITORY") or InMemoryTemplateRepository(),
    }

    from .routes.generate import bp as generate_bp
    from .routes.templates import bp as templates_bp

    app.register_blueprint(generate_bp)
    app.register_blueprint(templates_bp)

    @app.get("/healthz")
    def healthz():
        return jsonify({"ok": True})

    @app.errorhandler(413)
    def too_large(_exc):
        return jsonify({"ok": False, "error": "Upload too large"}), 413

    logging.getLogger("certforge").info(
        "[APP] storage=%s batch_size=%s", app.config["STORAGE_ROOT"], app.config["CERT_BATCH_SIZE"]
    )
    return app
