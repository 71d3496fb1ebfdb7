from typing import Optional


class IngestError(Exception):
    """Base error for a failed import; `details` carries the backend message."""

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class InvalidImportRequest(IngestError):
    pass


class TableCreationError(IngestError):
    pass


class RowInsertionError(IngestError):
    pass


class RegistryWriteError(IngestError):
    pass


class UnknownSheetError(IngestError):
    pass


class RowCoercionError(ValueError):
    """A cell value does not fit its resolved column type."""

    def __init__(self, row_index: int, column: str, value, column_type: str):
        super().__init__(
            f"Row {row_index}: value {value!r} for column '{column}' is not a valid {column_type}"
        )
        self.row_index = row_index
        self.column = column
        self.value = value
        self.column_type = column_type
