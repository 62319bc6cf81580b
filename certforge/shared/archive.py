from __future__ import annotations

import logging
import zipfile
from io import BytesIO
from typing import Sequence

from ..constants import (
    ARCHIVE_COMPRESSLEVEL,
    ARCHIVE_ENTRY_DATE,
    BUCKET_ARCHIVES,
    BUCKET_GENERATED,
)
from ..models import ArchiveEntry
from .errors import ArchiveError, StorageError
from .storage import StorageGateway

logger = logging.getLogger("certforge.archive")


def build_archive(
    entries: Sequence[ArchiveEntry],
    destination: str,
    *,
    storage: StorageGateway,
    bucket: str = BUCKET_ARCHIVES,
    source_bucket: str = BUCKET_GENERATED,
) -> str:
    """Zip every entry's stored bytes under its name and save the archive.

    Entries are written in the given order with a fixed timestamp. The
    archive only becomes visible at ``destination`` once it is complete.
    Returns the storage location of the archive.
    """
    names = [entry.name for entry in entries]
    if len(set(names)) != len(names):
        raise ArchiveError("Archive entries must have unique names")

    buffer = BytesIO()
    try:
        with zipfile.ZipFile(
            buffer,
            "w",
            compression=zipfile.ZIP_DEFLATED,
            compresslevel=ARCHIVE_COMPRESSLEVEL,
        ) as archive:
            for entry in entries:
                data = storage.get(source_bucket, entry.source_ref)
                info = zipfile.ZipInfo(entry.name, date_time=ARCHIVE_ENTRY_DATE)
                info.compress_type = zipfile.ZIP_DEFLATED
                info.external_attr = 0o644 << 16
                archive.writestr(info, data, compresslevel=ARCHIVE_COMPRESSLEVEL)
    except StorageError as exc:
        raise ArchiveError(f"Could not read archive entry: {exc}") from exc
    payload = buffer.getvalue()

    try:
        location = storage.save(bucket, destination, payload)
    except StorageError as exc:
        raise ArchiveError(f"Could not write archive {destination}: {exc}") from exc
    logger.info(
        "[ARCHIVE] wrote %s entries=%d bytes=%d", location, len(entries), len(payload)
    )
    return location
