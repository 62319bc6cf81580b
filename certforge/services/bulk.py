"""Bulk certificate generation from tabular rows.

Rows are rendered in fixed-size batches. Each batch runs its rows as
concurrent tasks and waits for all of them to settle before the next batch
starts, so at most ``batch_size`` documents are in flight at once. A row
that fails is recorded and never stops its siblings.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Callable, Mapping, Sequence

from ..constants import BUCKET_GENERATED, BUCKET_TEMPLATES, DEFAULT_BATCH_SIZE
from ..models import ArchiveEntry, BatchResult, RowOutcome, Template
from ..shared.archive import build_archive
from ..shared.certificates import generate_document_id, prepare_record, validate_record
from ..shared.errors import CertificateError, RowRenderError, RowValidationError
from ..shared.pdf_backend import read_pdf_metadata
from ..shared.render import render_certificate
from ..shared.storage import StorageGateway
from ..shared.tabular import FIRST_DATA_ROW, read_csv_rows

logger = logging.getLogger("certforge.bulk")

ProgressCallback = Callable[[int, int], None]


def resolve_column_mapping(template: Template, column_mapping: Mapping[str, str]) -> dict[str, str]:
    """Map CSV column -> attribute id.

    Mapping targets are attribute ids; a target that is not an id is
    looked up by attribute name. Unknown targets are dropped.
    """
    by_name = {attr.name: attr.id for attr in template.attributes if attr.name}
    resolved: dict[str, str] = {}
    for column, target in column_mapping.items():
        if not target:
            continue
        if template.has_attribute(target):
            resolved[column] = target
        elif target in by_name:
            resolved[column] = by_name[target]
        else:
            logger.warning("[BULK] column=%s maps to unknown attribute %s; ignored", column, target)
    return resolved


def map_row(row: Mapping[str, str | None], mapping: Mapping[str, str]) -> dict[str, str]:
    data: dict[str, str] = {}
    for column, attr_id in mapping.items():
        value = (row.get(column) or "").strip()
        if value:
            data[attr_id] = value
    return data


def _partition(rows: Sequence, size: int) -> list[Sequence]:
    return [rows[start:start + size] for start in range(0, len(rows), size)]


def _render_and_store(
    template: Template,
    record: Mapping[str, str],
    document_id: str,
    storage: StorageGateway,
    base_pdf: bytes,
) -> str:
    try:
        pdf_bytes = render_certificate(template, record, storage=storage, base_pdf=base_pdf)
    except CertificateError:
        raise
    except Exception as exc:
        raise RowRenderError(f"Could not render certificate: {exc}") from exc
    storage.save(BUCKET_GENERATED, f"{document_id}.pdf", pdf_bytes)
    return document_id


async def _process_row(
    job_id: str,
    template: Template,
    row_number: int,
    row: Mapping[str, str | None],
    mapping: Mapping[str, str],
    storage: StorageGateway,
    base_pdf: bytes,
) -> RowOutcome:
    document_id = generate_document_id()
    try:
        record = prepare_record(template, map_row(row, mapping), certificate_id=document_id)
        validate_record(template, record, row=row_number)
        await asyncio.to_thread(_render_and_store, template, record, document_id, storage, base_pdf)
    except RowValidationError as exc:
        logger.info("[BULK] job=%s row=%d rejected: %s", job_id, row_number, exc.message)
        return RowOutcome.failed(row_number, exc.message)
    except RowRenderError as exc:
        logger.exception("[BULK-FAIL] job=%s row=%d", job_id, row_number)
        return RowOutcome.failed(row_number, exc.message)
    except CertificateError as exc:
        logger.error("[BULK-FAIL] job=%s row=%d %s", job_id, row_number, exc)
        return RowOutcome.failed(row_number, str(exc))
    return RowOutcome.success(row_number, document_id)


async def process_batch(
    template: Template,
    rows: Sequence[Mapping[str, str | None]],
    column_mapping: Mapping[str, str],
    *,
    storage: StorageGateway,
    batch_size: int = DEFAULT_BATCH_SIZE,
    base_pdf: bytes | None = None,
    on_progress: ProgressCallback | None = None,
    job_id: str | None = None,
    archive_name: str | None = None,
) -> BatchResult:
    """Render every row, then archive the documents that were produced.

    Raises ``TemplateDocumentError`` before any row runs when the base PDF
    is unusable and ``ArchiveError`` when the archive cannot be written.
    Row problems end up in ``BatchResult.failures``, ordered by row.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    job_id = job_id or uuid.uuid4().hex
    if base_pdf is None:
        base_pdf = storage.get(BUCKET_TEMPLATES, template.filename)
    read_pdf_metadata(base_pdf)

    rows = list(rows)
    mapping = resolve_column_mapping(template, column_mapping)
    batches = _partition(rows, batch_size)
    logger.info(
        "[BULK] job=%s template=%s rows=%d batches=%d batch_size=%d",
        job_id,
        template.id,
        len(rows),
        len(batches),
        batch_size,
    )

    outcomes: list[RowOutcome] = []
    success_count = failure_count = 0
    offset = 0
    for number, batch in enumerate(batches, start=1):
        tasks = [
            _process_row(
                job_id,
                template,
                offset + index + FIRST_DATA_ROW,
                row,
                mapping,
                storage,
                base_pdf,
            )
            for index, row in enumerate(batch)
        ]
        settled = await asyncio.gather(*tasks)
        offset += len(batch)
        outcomes.extend(settled)
        batch_ok = sum(1 for outcome in settled if outcome.ok)
        success_count += batch_ok
        failure_count += len(settled) - batch_ok
        logger.info(
            "[BULK] job=%s batch=%d/%d rows=%d ok=%d failed=%d",
            job_id,
            number,
            len(batches),
            len(batch),
            batch_ok,
            len(settled) - batch_ok,
        )
        if on_progress is not None:
            on_progress(success_count, failure_count)
        await asyncio.sleep(0)

    document_ids = [o.document_id for o in sorted(outcomes, key=lambda o: o.row) if o.ok]
    failures = sorted((o.failure for o in outcomes if not o.ok), key=lambda f: f.row)

    archive_ref = None
    if document_ids:
        entries = [ArchiveEntry(name=f"{doc_id}.pdf", source_ref=f"{doc_id}.pdf") for doc_id in document_ids]
        archive_ref = await asyncio.to_thread(
            build_archive,
            entries,
            archive_name or f"certificates-{job_id}.zip",
            storage=storage,
        )
    else:
        logger.warning("[BULK] job=%s produced no documents; archive skipped", job_id)

    result = BatchResult(
        total_requested=len(rows),
        success_count=success_count,
        failure_count=failure_count,
        failures=failures,
        document_ids=document_ids,
        archive_ref=archive_ref,
    )
    logger.info(
        "[BULK] job=%s done ok=%d failed=%d archive=%s",
        job_id,
        result.success_count,
        result.failure_count,
        archive_ref,
    )
    return result


async def process_bulk_csv(
    template: Template,
    csv_bytes: bytes,
    column_mapping: Mapping[str, str],
    *,
    storage: StorageGateway,
    batch_size: int = DEFAULT_BATCH_SIZE,
    archive_name: str | None = None,
    on_progress: ProgressCallback | None = None,
) -> BatchResult:
    table = read_csv_rows(csv_bytes)
    return await process_batch(
        template,
        table.rows,
        column_mapping,
        storage=storage,
        batch_size=batch_size,
        archive_name=archive_name,
        on_progress=on_progress,
    )


def run_bulk_generation(
    template: Template,
    csv_bytes: bytes,
    column_mapping: Mapping[str, str],
    *,
    storage: StorageGateway,
    batch_size: int = DEFAULT_BATCH_SIZE,
    archive_name: str | None = None,
) -> BatchResult:
    """Blocking entry point for the CLI and request handlers."""
    return asyncio.run(
        process_bulk_csv(
            template,
            csv_bytes,
            column_mapping,
            storage=storage,
            batch_size=batch_size,
            archive_name=archive_name,
        )
    )
