import io
import json
import zipfile

import pytest

from certforge.constants import BUCKET_TEMPLATES
from certforge.services import bulk
from certforge.shared.errors import ArchiveError
from certforge.shared.attributes import create_system_attribute
from certforge.shared.templates import create_template, replace_attributes
from certforge.models import Attribute


@pytest.fixture
def template(app, make_pdf):
    ext = app.extensions["certforge"]
    created = create_template(ext["templates"], ext["storage"], make_pdf(), code="WEB", name="Web")
    return replace_attributes(
        ext["templates"],
        created.id,
        [
            create_system_attribute("recipientName", x=396, y=320),
            create_system_attribute("certificateId", x=40, y=40),
            Attribute(id="course", name="Course", x=396, y=250, align="center"),
        ],
    )


def _csv_upload(text, **form):
    data = {"file": (io.BytesIO(text.encode()), "rows.csv")}
    data.update(form)
    return data


def test_single_generation(client, template):
    resp = client.post(
        "/generate/single",
        json={
            "templateId": template.id,
            "data": {"recipientName": "Ada Lovelace", "course": "Engines"},
            "recipientEmail": "lovelace@example.org",
        },
    )
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["ok"] is True
    assert body["certificateId"] == "WEBLACE"
    download = client.get(f"/generate/files/generated/{body['filename']}")
    assert download.status_code == 200
    assert download.data.startswith(b"%PDF")
    assert download.mimetype == "application/pdf"


def test_single_missing_required_field(client, template):
    resp = client.post("/generate/single", json={"templateId": template.id, "data": {"course": "X"}})
    assert resp.status_code == 400
    assert "Recipient Name" in resp.get_json()["error"]


def test_single_unknown_template(client):
    resp = client.post("/generate/single", json={"templateId": "nope", "data": {}})
    assert resp.status_code == 404


def test_single_requires_payload(client):
    assert client.post("/generate/single", json={"templateId": "x"}).status_code == 400
    assert client.post("/generate/single", data="not json").status_code == 400


def test_bulk_headers(client):
    resp = client.post(
        "/generate/bulk/headers",
        data=_csv_upload("Name , Course\nAda,Maths\n"),
        content_type="multipart/form-data",
    )
    assert resp.status_code == 200
    assert resp.get_json()["headers"] == ["Name", "Course"]


def test_bulk_requires_csv(client):
    resp = client.post(
        "/generate/bulk/headers",
        data={"file": (io.BytesIO(b"x"), "rows.txt")},
        content_type="multipart/form-data",
    )
    assert resp.status_code == 400


def test_bulk_generation(client, template):
    rows = "Name,Course\nAda,Maths\n,Physics\nGrace,CS\nAlan,Logic\nKatherine,Orbits\n"
    resp = client.post(
        "/generate/bulk",
        data=_csv_upload(
            rows,
            templateId=template.id,
            columnMapping=json.dumps({"Name": "Recipient Name", "Course": "course"}),
        ),
        content_type="multipart/form-data",
    )
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["totalRequested"] == 5
    assert body["successCount"] == 4
    assert body["failureCount"] == 1
    assert body["failures"][0]["row"] == 3
    bucket, name = body["archive"].split("/", 1)
    archive = client.get(f"/generate/files/{bucket}/{name}")
    assert archive.status_code == 200
    with zipfile.ZipFile(io.BytesIO(archive.data)) as zf:
        assert len(zf.namelist()) == 4


def test_bulk_malformed_csv(client, template):
    resp = client.post(
        "/generate/bulk",
        data=_csv_upload("Name,Name\nA,B\n", templateId=template.id, columnMapping="{}"),
        content_type="multipart/form-data",
    )
    assert resp.status_code == 400


def test_bulk_bad_mapping(client, template):
    resp = client.post(
        "/generate/bulk",
        data=_csv_upload("Name\nA\n", templateId=template.id, columnMapping="{oops"),
        content_type="multipart/form-data",
    )
    assert resp.status_code == 400


def test_bulk_unknown_template(client):
    resp = client.post(
        "/generate/bulk",
        data=_csv_upload("Name\nA\n", templateId="nope", columnMapping="{}"),
        content_type="multipart/form-data",
    )
    assert resp.status_code == 404


@pytest.mark.parametrize("path", ["/generate/files/generated/missing.pdf", "/generate/files/secrets/x.pdf"])
def test_download_missing(client, path):
    assert client.get(path).status_code == 404


def test_bulk_archive_failure_is_json(client, template, monkeypatch):
    def broken_archive(*args, **kwargs):
        raise ArchiveError("disk full")

    monkeypatch.setattr(bulk, "build_archive", broken_archive)
    resp = client.post(
        "/generate/bulk",
        data=_csv_upload(
            "Name\nAda\n", templateId=template.id, columnMapping=json.dumps({"Name": "recipientName"})
        ),
        content_type="multipart/form-data",
    )
    assert resp.status_code == 500
    assert resp.get_json() == {"ok": False, "error": "disk full"}


def test_single_missing_template_file_is_json(client, app, template):
    app.extensions["certforge"]["storage"].delete(BUCKET_TEMPLATES, template.filename)
    resp = client.post(
        "/generate/single",
        json={"templateId": template.id, "data": {"recipientName": "Ada"}},
    )
    assert resp.status_code == 500
    body = resp.get_json()
    assert body["ok"] is False
    assert template.filename in body["error"]
