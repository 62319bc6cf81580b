import pathlib
import sys
from io import BytesIO

import pytest
from PIL import Image
from reportlab.pdfgen import canvas

PROJECT_ROOT = pathlib.Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from certforge.app import create_app
from certforge.constants import BUCKET_SIGNATURES, BUCKET_TEMPLATES
from certforge.models import Attribute, Template
from certforge.shared.attributes import create_system_attribute
from certforge.shared.storage import LocalStorage

LANDSCAPE = (792.0, 612.0)


def pytest_collection_modifyitems(config, items):
    for item in items:
        if "slow" in item.keywords or "quarantine" in item.keywords:
            continue
        item.add_marker("full")
        if "no_smoke" in item.keywords:
            continue
        item.add_marker("smoke")


def build_pdf(page_count=1, pagesize=LANDSCAPE):
    buffer = BytesIO()
    c = canvas.Canvas(buffer, pagesize=pagesize, invariant=1)
    for number in range(1, page_count + 1):
        c.setFont("Helvetica", 10)
        c.drawString(36, 36, f"Template page {number}")
        c.showPage()
    c.save()
    return buffer.getvalue()


def build_png(size=(40, 20), color=(20, 40, 200, 255)):
    buffer = BytesIO()
    Image.new("RGBA", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def make_pdf():
    return build_pdf


@pytest.fixture
def make_png():
    return build_png


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / "storage"))


@pytest.fixture
def make_template(storage):
    """Store a base PDF and return a template over it."""

    def factory(attributes=(), page_count=1, code="TST", template_id="tpl-1"):
        filename = f"{template_id}.pdf"
        storage.save(BUCKET_TEMPLATES, filename, build_pdf(page_count))
        return Template(
            id=template_id,
            code=code,
            name="Test template",
            filename=filename,
            page_count=page_count,
            width=LANDSCAPE[0],
            height=LANDSCAPE[1],
            attributes=list(attributes),
        )

    return factory


@pytest.fixture
def certificate_template(make_template):
    """Recipient name, certificate id and a free-text course line."""
    return make_template(
        [
            create_system_attribute("recipientName", x=396, y=320),
            create_system_attribute("certificateId", x=60, y=60),
            Attribute(id="course", name="Course", x=396, y=260, align="center"),
        ]
    )


@pytest.fixture
def signature(storage):
    storage.save(BUCKET_SIGNATURES, "director.png", build_png())
    return "director.png"


@pytest.fixture
def app(tmp_path):
    application = create_app(
        {
            "TESTING": True,
            "STORAGE_ROOT": str(tmp_path / "app-storage"),
            "CERT_BATCH_SIZE": 4,
        }
    )
    yield application


@pytest.fixture
def client(app):
    return app.test_client()
