import io
import time
import uuid
import datetime as dt
from pathlib import Path
from typing import Any, BinaryIO, Callable, Dict, List, Optional, Union

import pandas as pd
import sqlalchemy as sa
from sqlalchemy.schema import CreateTable

from sheet_ingest.logger import get_logger
from sheet_ingest.schema_synthesizer import ColumnSpec, ColumnType, RawRow, TableSchema

logger = get_logger(__name__)


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class DataReader:
    EXCEL_SUFFIXES = (".xlsx", ".xlsm", ".xls")

    def read_frame(
        self,
        source: Union[str, bytes, BinaryIO],
        filename: str,
        sheet_name: Union[int, str] = 0,
    ) -> pd.DataFrame:
        """
        Read a spreadsheet into a pandas DataFrame.

        Parameters
        ----------
        source : str, bytes or file-like
            Path to the file, or its raw contents.
        filename : str
            Name used to pick the reader (.csv or an Excel extension).
        sheet_name : int or str, optional
            Workbook sheet to read; ignored for CSV (default is the first sheet).

        Returns
        -------
        pd.DataFrame
            The sheet with stripped string headers and fully empty rows dropped.

        Raises
        ------
        ValueError
            If the file extension is not a supported spreadsheet type.
        FileNotFoundError
            If `source` is a path that does not exist.
        """
        suffix = Path(filename).suffix.lower()
        if isinstance(source, bytes):
            source = io.BytesIO(source)
        try:
            if suffix == ".csv":
                df = pd.read_csv(source)
            elif suffix in self.EXCEL_SUFFIXES:
                df = pd.read_excel(source, sheet_name=sheet_name)
            else:
                raise ValueError(f"Unsupported spreadsheet type: {filename!r}")
        except FileNotFoundError:
            logger.error(f"Spreadsheet not found: {filename}")
            raise
        except Exception as e:
            logger.error(f"Error reading spreadsheet: {e}")
            raise
        df.columns = [str(c).strip() for c in df.columns]
        return df.dropna(how="all")

    def read_rows(
        self,
        source: Union[str, bytes, BinaryIO],
        filename: str,
        sheet_name: Union[int, str] = 0,
    ) -> List[RawRow]:
        """
        Read a spreadsheet into raw rows keyed by header.

        Empty cells become None so every row carries every header.
        """
        df = self.read_frame(source, filename=filename, sheet_name=sheet_name)
        return [
            {key: self.to_scalar(value) for key, value in record.items()}
            for record in df.to_dict(orient="records")
        ]

    @staticmethod
    def to_scalar(value: Any) -> Any:
        if value is None or pd.isna(value):
            return None
        if isinstance(value, (pd.Timestamp, dt.datetime, dt.date)):
            return value.isoformat()
        if hasattr(value, "item"):
            return value.item()  # numpy scalar
        return value


class SqlAlchemyTypeMapper:
    """
    Maps synthesized column types to SQLAlchemy column types and defaults.
    """

    SQLALCHEMY_MAP = {
        ColumnType.UUID_PK: sa.Uuid,
        ColumnType.INTEGER: sa.Integer,
        ColumnType.NUMERIC: sa.Numeric,
        ColumnType.BOOLEAN: sa.Boolean,
        ColumnType.TIMESTAMP: sa.DateTime,
        ColumnType.TEXT: sa.Text,
    }

    @classmethod
    def to_sqlalchemy(cls, column: ColumnSpec) -> sa.types.TypeEngine:
        col_type = cls.SQLALCHEMY_MAP[column.column_type]
        if column.column_type is ColumnType.TIMESTAMP:
            return col_type(timezone=True)
        return col_type()

    @classmethod
    def server_default(cls, column: ColumnSpec, dialect_name: str):
        """
        Server-side default for a column, or None.

        `gen_random_uuid()` is only emitted for PostgreSQL; other backends rely
        on the client-side uuid4 default.
        """
        if column.default == "now":
            return sa.func.now()
        if column.default == "uuid" and dialect_name == "postgresql":
            return sa.text("gen_random_uuid()")
        return None


class DatabaseConnector:
    def __init__(self, connection_string: str, schema: Optional[str] = None):
        self.connection_string = connection_string
        self.schema = schema or None
        self._engine: Optional[sa.Engine] = None

    def get_engine(self) -> sa.Engine:
        """
        Create (once) and return the SQLAlchemy engine for the database connection.

        Returns
        -------
        sa.Engine
            Pooled SQLAlchemy engine shared by every call on this connector.
        """
        if self._engine is None:
            self._engine = sa.create_engine(self.connection_string, pool_pre_ping=True)
        return self._engine

    @property
    def dialect_name(self) -> str:
        return self.get_engine().dialect.name

    def get_table_names(self) -> List[str]:
        """
        Retrieve the list of table names in the configured schema namespace.

        Returns
        -------
        list of str
            List of table names present in the database.
        """
        inspector = sa.inspect(self.get_engine())
        return inspector.get_table_names(schema=self.schema)

    def build_table_from_schema(self, schema: TableSchema, metadata=None) -> sa.Table:
        """
        Build a SQLAlchemy Table object from a synthesized table schema.

        Parameters
        ----------
        schema : TableSchema
            The inferred schema: table name plus ordered column specs.
        metadata : sqlalchemy.MetaData, optional
            An optional SQLAlchemy MetaData object to register the table with.
            If None, a new MetaData object will be created.

        Returns
        -------
        sa.Table
            A SQLAlchemy Table object in the connector's schema namespace.

        Notes
        -----
        - The `uuid_pk` column becomes the primary key with a client-side
        uuid4 default.
        - Columns with a "now" default get `now()` as their server default.
        """
        metadata = metadata or sa.MetaData()
        columns = []
        for col in schema.columns:
            kwargs = {}
            if col.primary_key:
                kwargs["primary_key"] = True
                kwargs["default"] = uuid.uuid4
            server_default = SqlAlchemyTypeMapper.server_default(col, self.dialect_name)
            if server_default is not None:
                kwargs["server_default"] = server_default

            columns.append(
                sa.Column(
                    col.name,
                    SqlAlchemyTypeMapper.to_sqlalchemy(col),
                    **kwargs
                )
            )
        return sa.Table(schema.table_name, metadata, *columns, schema=self.schema)

    def provision_table(self, table: sa.Table) -> bool:
        """
        Create `table` if it does not already exist.

        Returns
        -------
        bool
            True if the table was successfully created or already exists.
        """
        table.metadata.create_all(self.get_engine(), tables=[table])
        return True

    def provision_table_retry(self, table: sa.Table, retries: int = 3, delay: int = 5) -> bool:
        """
        Retry provisioning a table in the database multiple times.

        Parameters
        ----------
        table : sa.Table
            The table to create when missing.
        retries : int, optional
            Number of attempts before giving up (default is 3).
        delay : int, optional
            Delay in seconds between attempts (default is 5).

        Returns
        -------
        bool
            True if provisioning succeeded within the given retries.
        """
        return Utils.retry(
            self.provision_table,
            table,
            retries=retries,
            delay=delay,
            error_msg=f"Failed to provision table {table.name}",
        )

    def create_table(self, table: sa.Table) -> bool:
        """
        Issue CREATE TABLE for `table`; fails if the table already exists.
        """
        engine = self.get_engine()
        logger.info("Creating table: %s", str(CreateTable(table).compile(engine)).strip())
        table.create(engine, checkfirst=False)
        return True

    def drop_table(self, table: sa.Table) -> bool:
        table.drop(self.get_engine(), checkfirst=True)
        return True

    def insert_data(self, rows: List[Dict], table: sa.Table) -> int:
        """
        Insert rows into `table` in a single transaction.

        Parameters
        ----------
        rows : list of dict
            Prepared rows, each carrying every column of the table.
        table : sa.Table
            Target table.

        Returns
        -------
        int
            Number of rows inserted.
        """
        engine = self.get_engine()
        with engine.begin() as conn:
            conn.execute(table.insert(), rows)
        return len(rows)

    def select_rows(self, table_name: str, limit: int) -> List[Dict[str, Any]]:
        """
        Reflect `table_name` and return up to `limit` rows as dictionaries.
        """
        engine = self.get_engine()
        table = sa.Table(table_name, sa.MetaData(), autoload_with=engine, schema=self.schema)
        with engine.connect() as conn:
            result = conn.execute(sa.select(table).limit(limit))
            return [dict(row._mapping) for row in result]


class SheetRegistry:
    """Table-of-tables recording every sheet imported so far."""

    def __init__(self, db_connector: DatabaseConnector, table_name: str = "uploaded_spare_parts_sheets"):
        self.db_connector = db_connector
        self.table_name = table_name
        id_default = None
        if db_connector.dialect_name == "postgresql":
            id_default = sa.text("gen_random_uuid()")
        self.table = sa.Table(
            table_name,
            sa.MetaData(),
            sa.Column("id", sa.Uuid, primary_key=True, default=uuid.uuid4, server_default=id_default),
            sa.Column("display_name", sa.Text, nullable=False),
            sa.Column("table_name", sa.Text, nullable=False, unique=True),
            sa.Column("created_at", sa.DateTime(timezone=True), default=utc_now, server_default=sa.func.now()),
            schema=db_connector.schema,
        )

    def provision_registry_table(self, retries: int = 3, delay: int = 5) -> bool:
        return self.db_connector.provision_table_retry(self.table, retries=retries, delay=delay)

    def record(self, display_name: str, table_name: str) -> bool:
        """
        Insert a registry entry for a newly created table.

        Raises
        ------
        sqlalchemy.exc.IntegrityError
            If `table_name` is already registered.
        """
        engine = self.db_connector.get_engine()
        with engine.begin() as conn:
            conn.execute(
                self.table.insert(),
                {"display_name": display_name, "table_name": table_name},
            )
        return True

    def list_entries(self) -> List[Dict[str, Any]]:
        query = sa.select(
            self.table.c.display_name,
            self.table.c.table_name,
            self.table.c.created_at,
        ).order_by(self.table.c.created_at, self.table.c.table_name)
        with self.db_connector.get_engine().connect() as conn:
            return [dict(row._mapping) for row in conn.execute(query)]

    def has_table(self, table_name: str) -> bool:
        query = sa.select(self.table.c.id).where(self.table.c.table_name == table_name)
        with self.db_connector.get_engine().connect() as conn:
            return conn.execute(query).first() is not None


class Utils:
    @staticmethod
    def retry(
        fn: Callable[..., bool],
        *args: Any,
        retries: int = 2,
        delay: int = 10,
        error_msg: str = "Operation failed",
        **kwargs: Any,
    ) -> bool:
        """
        Retry a function multiple times with a delay.

        Parameters
        ----------
        fn : Callable[..., bool]
            The function to retry. Should return True on success.
        *args : Any
            Positional arguments passed to the function.
        retries : int, optional
            Number of retry attempts (default is 2).
        delay : int, optional
            Delay in seconds between retries (default is 10).
        error_msg : str, optional
            Error message to log on final failure (default is "Operation failed").
        **kwargs : Any
            Keyword arguments passed to the function.

        Returns
        -------
        bool
            True if the function succeeded within the given retries.
        """
        for attempt in range(retries):
            try:
                return fn(*args, **kwargs)
            except Exception as e:
                if attempt == retries - 1:
                    logger.error(f"{error_msg}: {e}")
                    raise
                logger.warning(f"{error_msg} (attempt {attempt + 1}/{retries}): {e}")
                time.sleep(delay)


class LoggerDB:

    def __init__(self, db_connector: DatabaseConnector, table_name: str = "logs"):
        self.db_connector = db_connector
        self.table_name = table_name
        self.table = sa.Table(
            self.table_name,
            sa.MetaData(),
            sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
            sa.Column("log_time", sa.DateTime(timezone=True), default=utc_now),
            sa.Column("level", sa.String(20), nullable=False),
            sa.Column("message", sa.Text, nullable=False),
            schema=db_connector.schema,
        )

    def provision_log_table(self, retries: int = 3, delay: int = 5) -> bool:
        """
        Provision the logs table in the database if it does not exist.

        The table schema includes:
        - id (int, primary key, autoincrement)
        - log_time (datetime)
        - level (str)
        - message (str)

        Returns
        -------
        bool
            True if the table was successfully created or already exists.
        """
        return self.db_connector.provision_table_retry(self.table, retries=retries, delay=delay)

    def log(self, level: str, message: str) -> bool:
        """
        Insert a log record into the logs table.

        Parameters
        ----------
        level : str
            Log level, e.g., "INFO", "ERROR", "DEBUG".
        message : str
            The log message.

        Returns
        -------
        bool
            True if the log was successfully persisted.
        """
        engine = self.db_connector.get_engine()
        with engine.begin() as conn:
            conn.execute(
                self.table.insert(),
                {
                    "log_time": utc_now(),
                    "level": level,
                    "message": message,
                },
            )
        return True

    def read_logs(self, limit: int = 100) -> List[Dict[str, Any]]:
        query = sa.select(self.table).order_by(self.table.c.id.desc()).limit(limit)
        with self.db_connector.get_engine().connect() as conn:
            return [dict(row._mapping) for row in conn.execute(query)]
