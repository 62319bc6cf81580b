import zipfile
from io import BytesIO

import pytest
from PyPDF2 import PdfReader

from certforge.models import Attribute
from certforge.services import bulk
from certforge.services.bulk import (
    map_row,
    process_batch,
    process_bulk_csv,
    resolve_column_mapping,
    run_bulk_generation,
)
from certforge.shared.errors import StorageError, TabularSourceError, TemplateDocumentError
from certforge.shared.storage import LocalStorage

MAPPING = {"Name": "recipientName", "Course": "course"}


def _rows(count, blank=()):
    return [
        {"Name": "" if i in blank else f"Learner {i}", "Course": f"Course {i}"}
        for i in range(count)
    ]


def _csv(rows):
    lines = ["Name,Course"] + [f"{r['Name']},{r['Course']}" for r in rows]
    return ("\n".join(lines) + "\n").encode()


@pytest.fixture
def fast_render(monkeypatch, make_pdf):
    """Replace rendering with a canned PDF and record the rendered records."""
    pdf = make_pdf()
    calls = []

    def fake_render(template, record, *, storage, base_pdf=None):
        calls.append(dict(record))
        return pdf

    monkeypatch.setattr(bulk, "render_certificate", fake_render)
    return calls


@pytest.mark.asyncio
async def test_row_missing_required_value_is_reported(certificate_template, storage):
    rows = _rows(5, blank={2})

    result = await process_batch(certificate_template, rows, MAPPING, storage=storage, batch_size=2)

    assert result.total_requested == 5
    assert result.success_count == 4
    assert result.failure_count == 1
    assert [f.row for f in result.failures] == [4]
    assert "Recipient Name" in result.failures[0].message
    assert len(result.document_ids) == 4
    assert sorted(storage.list("generated")) == sorted(f"{d}.pdf" for d in result.document_ids)


@pytest.mark.asyncio
async def test_archive_holds_documents_in_row_order(certificate_template, storage):
    result = await process_batch(
        certificate_template, _rows(3), MAPPING, storage=storage, job_id="job1"
    )

    assert result.archive_ref == "bulk-zips/certificates-job1.zip"
    with zipfile.ZipFile(BytesIO(storage.get("bulk-zips", "certificates-job1.zip"))) as zf:
        names = zf.namelist()
        assert names == [f"{d}.pdf" for d in result.document_ids]
        texts = [PdfReader(BytesIO(zf.read(n))).pages[0].extract_text() for n in names]
    for index, text in enumerate(texts):
        assert f"Learner {index}" in text
        assert f"Course {index}" in text
        assert result.document_ids[index] in text


@pytest.mark.asyncio
async def test_missing_signature_does_not_fail_row(make_template, storage):
    template = make_template(
        [
            Attribute(id="recipientName", name="Recipient Name", required=True, locked=True, x=396, y=320),
            Attribute(id="sig", name="Signature", kind="signatureImage", x=100, y=100),
        ]
    )
    rows = [{"Name": "Ada", "Signature": "missing.png"}]

    result = await process_batch(
        template, rows, {"Name": "recipientName", "Signature": "sig"}, storage=storage
    )

    assert result.success_count == 1
    assert result.failures == []
    assert storage.exists("generated", f"{result.document_ids[0]}.pdf")


@pytest.mark.asyncio
async def test_batches_are_bounded_and_sequential(certificate_template, storage, fast_render, monkeypatch):
    active = 0
    peak = 0
    real_process_row = bulk._process_row

    async def counting(*args, **kwargs):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        try:
            return await real_process_row(*args, **kwargs)
        finally:
            active -= 1

    monkeypatch.setattr(bulk, "_process_row", counting)
    progress = []

    result = await process_batch(
        certificate_template,
        _rows(120),
        MAPPING,
        storage=storage,
        batch_size=50,
        on_progress=lambda ok, failed: progress.append((ok, failed)),
    )

    assert progress == [(50, 0), (100, 0), (120, 0)]
    assert peak <= 50
    assert result.success_count == 120
    names = [record["recipientName"] for record in fast_render]
    assert set(names[:50]) == {f"Learner {i}" for i in range(50)}
    assert set(names[50:100]) == {f"Learner {i}" for i in range(50, 100)}
    assert set(names[100:]) == {f"Learner {i}" for i in range(100, 120)}


@pytest.mark.asyncio
async def test_failures_sorted_and_counts_balance(certificate_template, storage, fast_render, monkeypatch):
    pdf_render = bulk.render_certificate

    def flaky_render(template, record, *, storage, base_pdf=None):
        if record["recipientName"].endswith("7"):
            raise RuntimeError("renderer exploded")
        return pdf_render(template, record, storage=storage, base_pdf=base_pdf)

    monkeypatch.setattr(bulk, "render_certificate", flaky_render)
    rows = _rows(30, blank={0, 13, 29})

    result = await process_batch(certificate_template, rows, MAPPING, storage=storage, batch_size=7)

    assert result.success_count + result.failure_count == result.total_requested == 30
    failed_rows = [f.row for f in result.failures]
    assert failed_rows == sorted(set(failed_rows))
    assert failed_rows == [2, 9, 15, 19, 29, 31]
    messages = {f.row: f.message for f in result.failures}
    assert "renderer exploded" in messages[9]
    assert "Recipient Name" in messages[2]


@pytest.mark.asyncio
async def test_each_row_gets_its_own_certificate_id(certificate_template, storage, fast_render):
    result = await process_batch(certificate_template, _rows(4), MAPPING, storage=storage)
    injected = [record["certificateId"] for record in fast_render]
    assert sorted(injected) == sorted(result.document_ids)
    assert len(set(injected)) == 4


@pytest.mark.asyncio
async def test_nothing_succeeded_means_no_archive(certificate_template, storage):
    result = await process_batch(certificate_template, _rows(3, blank={0, 1, 2}), MAPPING, storage=storage)
    assert result.success_count == 0
    assert result.archive_ref is None
    assert storage.list("bulk-zips") == []


@pytest.mark.asyncio
async def test_empty_input(certificate_template, storage):
    result = await process_batch(certificate_template, [], MAPPING, storage=storage)
    assert (result.total_requested, result.success_count, result.failure_count) == (0, 0, 0)
    assert result.archive_ref is None


@pytest.mark.asyncio
async def test_malformed_template_is_fatal(certificate_template, storage):
    with pytest.raises(TemplateDocumentError):
        await process_batch(
            certificate_template, _rows(2), MAPPING, storage=storage, base_pdf=b"garbage"
        )
    assert storage.list("generated") == []


@pytest.mark.asyncio
async def test_batch_size_must_be_positive(certificate_template, storage):
    with pytest.raises(ValueError):
        await process_batch(certificate_template, _rows(1), MAPPING, storage=storage, batch_size=0)


@pytest.mark.asyncio
async def test_malformed_csv_is_fatal(certificate_template, storage):
    with pytest.raises(TabularSourceError):
        await process_bulk_csv(certificate_template, b"Name,Name\nA,B\n", MAPPING, storage=storage)
    assert storage.list("generated") == []


@pytest.mark.asyncio
async def test_csv_rows_numbered_from_two(certificate_template, storage, fast_render):
    raw = _csv(_rows(3, blank={1}))
    result = await process_bulk_csv(certificate_template, raw, MAPPING, storage=storage, archive_name="run.zip")
    assert [f.row for f in result.failures] == [3]
    assert result.archive_ref == "bulk-zips/run.zip"


def test_run_bulk_generation_is_blocking(certificate_template, storage, fast_render):
    result = run_bulk_generation(certificate_template, _csv(_rows(5)), MAPPING, storage=storage, batch_size=2)
    assert result.success_count == 5
    assert result.to_dict()["successCount"] == 5


def test_mapping_falls_back_to_attribute_names(certificate_template, caplog):
    resolved = resolve_column_mapping(
        certificate_template,
        {"Name": "Recipient Name", "Course": "course", "Extra": "nothing", "Skip": ""},
    )
    assert resolved == {"Name": "recipientName", "Course": "course"}
    assert "nothing" in caplog.text


def test_map_row_drops_empty_cells():
    assert map_row({"Name": " Ada ", "Course": "  "}, MAPPING) == {"recipientName": "Ada"}
    assert map_row({}, MAPPING) == {}


class _FailingStorage(LocalStorage):
    def save(self, bucket, name, data):
        if bucket == "generated" and data == b"Learner 1":
            raise StorageError("disk full")
        return super().save(bucket, name, data)


@pytest.mark.asyncio
async def test_storage_failure_fails_only_that_row(certificate_template, storage, tmp_path, monkeypatch):
    failing = _FailingStorage(str(tmp_path / "storage"))
    monkeypatch.setattr(
        bulk,
        "render_certificate",
        lambda template, record, *, storage, base_pdf=None: record["recipientName"].encode(),
    )

    result = await process_batch(certificate_template, _rows(3), MAPPING, storage=failing)

    assert result.success_count == 2
    assert [(f.row, f.message) for f in result.failures] == [(3, "disk full")]
    assert result.archive_ref is not None
