from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError

from sheet_ingest.config import EnvVariables
from sheet_ingest.errors import (
    RegistryWriteError,
    RowCoercionError,
    RowInsertionError,
    TableCreationError,
    UnknownSheetError,
)
from sheet_ingest.generic_methods import DatabaseConnector, LoggerDB, SheetRegistry
from sheet_ingest.logger import get_logger
from sheet_ingest.schema_synthesizer import (
    ColumnSpec,
    RawRow,
    prepare_rows,
    synthesize_schema,
    validate_row_shapes,
)

logger = get_logger(__name__)


class ImportState(str, Enum):
    IDLE = "idle"
    TABLE_CREATED = "table_created"
    ROWS_INSERTED = "rows_inserted"
    REGISTRY_RECORDED = "registry_recorded"
    DONE = "done"
    ROLLED_BACK = "rolled_back"


@dataclass
class ImportResult:
    table_name: str
    display_name: str
    row_count: int
    columns: List[ColumnSpec] = field(default_factory=list)
    state: ImportState = ImportState.DONE


def error_details(exc: BaseException) -> str:
    """Backend message for an error, unwrapping the DBAPI exception when present."""
    orig = getattr(exc, "orig", None)
    return str(orig if orig is not None else exc)


class SheetIngestor:
    def __init__(
        self,
        db_connector: DatabaseConnector,
        registry_table: str = "uploaded_spare_parts_sheets",
        log_table: str = "logs",
        provision_retries: int = 3,
        provision_delay: int = 5,
    ):
        self.db_connector = db_connector
        self.registry = SheetRegistry(db_connector=db_connector, table_name=registry_table)
        self.logger_db = LoggerDB(db_connector=db_connector, table_name=log_table)
        self.provision_retries = provision_retries
        self.provision_delay = provision_delay

    @classmethod
    def from_env(cls) -> "SheetIngestor":
        conn = DatabaseConnector(
            connection_string=EnvVariables.DATABASE_URL,
            schema=EnvVariables.DB_SCHEMA,
        )
        return cls(
            db_connector=conn,
            registry_table=EnvVariables.REGISTRY_TABLE,
            log_table=EnvVariables.LOG_TABLE,
            provision_retries=EnvVariables.PROVISION_RETRIES,
            provision_delay=EnvVariables.PROVISION_DELAY,
        )

    def provision_tables(self):
        table_names = self.db_connector.get_table_names()
        if self.registry.table_name not in table_names:
            self.registry.provision_registry_table(
                retries=self.provision_retries, delay=self.provision_delay
            )
        if self.logger_db.table_name not in table_names:
            self.logger_db.provision_log_table(
                retries=self.provision_retries, delay=self.provision_delay
            )

    def ingest(self, display_name: str, rows: List[RawRow]) -> ImportResult:
        """
        Create a table for a spreadsheet extract, fill it and register it.

        Steps run as idle -> table_created -> rows_inserted -> registry_recorded
        -> done. A failure after the table exists drops it again (best effort)
        before the error is raised. Nothing is retried.

        Parameters
        ----------
        display_name : str
            Human readable sheet name; the table name is derived from it.
        rows : list of dict
            Raw rows; column types come from the first row.

        Returns
        -------
        ImportResult
            The generated table name, row count and resolved columns.

        Raises
        ------
        InvalidImportRequest
            Bad input; raised before any database work.
        TableCreationError
            CREATE TABLE failed, e.g. the derived name is already taken.
        RowInsertionError
            A value did not fit its column or the bulk insert failed.
        RegistryWriteError
            The registry entry could not be written.
        """
        schema = synthesize_schema(display_name, rows)
        validate_row_shapes(schema, rows)
        table = self.db_connector.build_table_from_schema(schema)
        state = ImportState.IDLE

        try:
            self.db_connector.create_table(table)
        except SQLAlchemyError as exc:
            logger.error(f"Error creating table {schema.table_name}: {exc}")
            self._audit("ERROR", f"Failed to create table {schema.table_name}: {error_details(exc)}")
            raise TableCreationError("Failed to create table in database.", details=error_details(exc)) from exc
        state = self._advance(schema.table_name, state, ImportState.TABLE_CREATED)

        try:
            row_count = self.db_connector.insert_data(prepare_rows(schema, rows), table)
        except Exception as exc:
            logger.error(f"Error inserting data into {schema.table_name}: {exc}")
            state = self._compensate(table, state)
            if not isinstance(exc, (RowCoercionError, SQLAlchemyError)):
                raise
            self._audit("ERROR", f"Failed to insert data into {schema.table_name}: {error_details(exc)}")
            raise RowInsertionError("Failed to insert data into new table.", details=error_details(exc)) from exc
        state = self._advance(schema.table_name, state, ImportState.ROWS_INSERTED)

        try:
            self.registry.record(schema.display_name, schema.table_name)
        except Exception as exc:
            logger.error(f"Error saving sheet metadata for {schema.table_name}: {exc}")
            state = self._compensate(table, state)
            if not isinstance(exc, SQLAlchemyError):
                raise
            self._audit("ERROR", f"Failed to register {schema.table_name}: {error_details(exc)}")
            raise RegistryWriteError("Failed to save sheet metadata.", details=error_details(exc)) from exc
        state = self._advance(schema.table_name, state, ImportState.REGISTRY_RECORDED)

        message = f"Imported {row_count} rows from '{schema.display_name}' into {schema.table_name}"
        logger.info(message)
        self._audit("INFO", message)
        state = self._advance(schema.table_name, state, ImportState.DONE)
        return ImportResult(
            table_name=schema.table_name,
            display_name=schema.display_name,
            row_count=row_count,
            columns=schema.columns,
            state=state,
        )

    def list_sheets(self) -> List[Dict[str, Any]]:
        return self.registry.list_entries()

    def fetch_rows(self, table_name: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Return rows of a registered sheet table.

        Raises
        ------
        UnknownSheetError
            If `table_name` is not in the registry.
        """
        if not self.registry.has_table(table_name):
            raise UnknownSheetError(f"Unknown sheet table: {table_name}")
        return self.db_connector.select_rows(table_name, limit or EnvVariables.ROW_FETCH_LIMIT)

    def _advance(self, table_name: str, current: ImportState, target: ImportState) -> ImportState:
        logger.debug(f"{table_name}: {current.value} -> {target.value}")
        return target

    def _compensate(self, table: sa.Table, state: ImportState) -> ImportState:
        # Best effort: a failed drop leaves an orphan table behind
        if state not in (ImportState.TABLE_CREATED, ImportState.ROWS_INSERTED):
            return state
        try:
            self.db_connector.drop_table(table)
        except SQLAlchemyError as exc:
            logger.error(f"Failed to drop table {table.name} after a failed import: {exc}")
            self._audit("ERROR", f"Orphan table left behind: {table.name}")
            return state
        return self._advance(table.name, state, ImportState.ROLLED_BACK)

    def _audit(self, level: str, message: str) -> None:
        try:
            self.logger_db.log(level, message)
        except SQLAlchemyError as exc:
            logger.warning(f"Could not persist import log: {exc}")
