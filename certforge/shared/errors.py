from __future__ import annotations


class CertificateError(Exception):
    """Base class for certificate generation failures."""


class FatalInputError(CertificateError):
    """Input the whole operation depends on is unusable; nothing is produced."""


class TemplateDocumentError(FatalInputError):
    """The base template bytes are not a readable PDF."""


class TabularSourceError(FatalInputError):
    """The uploaded spreadsheet could not be parsed."""


class RowValidationError(CertificateError):
    """A record is missing a value for a required attribute."""

    def __init__(self, message: str, row: int | None = None):
        super().__init__(message)
        self.message = message
        self.row = row


class RowRenderError(CertificateError):
    def __init__(self, message: str, row: int | None = None):
        super().__init__(message)
        self.message = message
        self.row = row


class StorageError(CertificateError):
    """Reading from or writing to the storage gateway failed."""


class AssetNotFoundError(StorageError):
    pass


class ArchiveError(StorageError):
    """The bulk archive could not be assembled or written."""


class AttributeValidationError(ValueError):
    pass


class ReservedAttributeError(AttributeValidationError):
    pass


class PageOutOfRangeError(AttributeValidationError):
    pass


class TemplateNotFoundError(LookupError):
    pass
