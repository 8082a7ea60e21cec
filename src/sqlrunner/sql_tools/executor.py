"""SQL query executor - one connection per call, uniform result shape."""

import re
import logging
from datetime import datetime, UTC
from typing import Any, Callable, List, Optional, Union

try:
    import pyodbc
    PYODBC_AVAILABLE = True
except ImportError:
    PYODBC_AVAILABLE = False

from sqlrunner.config import Config, load_config
from .connection import (
    ConnectionDescriptor,
    bind_parameters,
    build_connection_descriptor,
    mask_connection_string,
)
from .errors import InvalidArgument, QueryExecutionFailed
from .loader import QueryLoader
from .models import (
    SCALAR_COLUMN,
    STATEMENT_SEPARATOR,
    ExecutionMode,
    ExecutionRequest,
    ExecutionResult,
    ResultTable,
)


logger = logging.getLogger(__name__)
message_logger = logging.getLogger("sqlrunner.messages")

SERVER_INSTANCE_COLUMN = "ServerInstance"

# "[Microsoft][ODBC Driver 18 for SQL Server][SQL Server]" prefix on server messages
_VENDOR_PREFIX = re.compile(r'^(?:\[[^\]]*\])+')

MessageCallback = Callable[[str], None]
ConnectFactory = Callable[[ConnectionDescriptor], Any]


def resolve_mode(mode: Union[ExecutionMode, str], query_text: str) -> ExecutionMode:
    """
    Resolve AUTO to a concrete mode.

    AUTO becomes MULTIPLE when the text contains a statement separator and
    SINGLE otherwise. Separators inside string literals or comments are
    counted too; this is a heuristic, not a parser.

    Raises:
        InvalidArgument: If mode is not a known execution mode
    """
    try:
        mode = ExecutionMode(mode)
    except ValueError:
        raise InvalidArgument(
            f"Invalid execution mode {mode!r}: "
            f"must be one of {', '.join(m.value for m in ExecutionMode)}"
        )

    if mode is not ExecutionMode.AUTO:
        return mode
    if STATEMENT_SEPARATOR in query_text:
        return ExecutionMode.MULTIPLE
    return ExecutionMode.SINGLE


def pyodbc_connect(descriptor: ConnectionDescriptor) -> Any:
    """Open an autocommit pyodbc connection for a descriptor."""
    if not PYODBC_AVAILABLE:
        raise RuntimeError("pyodbc not installed - cannot execute SQL queries")

    if descriptor.login_timeout is None:
        return pyodbc.connect(descriptor.connection_string, autocommit=True)
    return pyodbc.connect(
        descriptor.connection_string,
        autocommit=True,
        timeout=descriptor.login_timeout,
    )


def _driver_message(error: Exception) -> str:
    # pyodbc errors carry (sqlstate, message)
    if len(error.args) >= 2 and isinstance(error.args[1], str):
        return error.args[1]
    if error.args:
        return str(error.args[0])
    return str(error) or error.__class__.__name__


def _unique_name(name: str, existing) -> str:
    """Suffix name with a number until it differs from every existing name."""
    seen = {n.lower() for n in existing}
    candidate, suffix = name, 1
    while candidate.lower() in seen:
        candidate = f"{name}{suffix}"
        suffix += 1
    return candidate


def _column_names(description) -> List[str]:
    """Column names from a cursor description, made unique and non-empty."""
    names: List[str] = []
    for index, column in enumerate(description, start=1):
        names.append(_unique_name(column[0] or f"Column{index}", names))
    return names


class _MessageCollector:
    """Collects informational messages reported by the driver."""

    def __init__(self, on_message: Optional[MessageCallback] = None):
        self.on_message = on_message
        self.messages: List[str] = []

    def collect(self, cursor) -> None:
        # the driver resets cursor.messages on every execute and nextset
        for entry in getattr(cursor, "messages", None) or []:
            text = entry[1] if isinstance(entry, (tuple, list)) else entry
            text = _VENDOR_PREFIX.sub("", str(text))
            self.messages.append(text)
            message_logger.info(text)
            if self.on_message is not None:
                self.on_message(text)


class QueryExecutor:
    """
    Stateless query executor.

    Each call opens its own connection, runs one command, shapes the output
    according to the execution mode and closes the connection on every
    exit path.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        connect: Optional[ConnectFactory] = None,
        loader: Optional[QueryLoader] = None,
    ):
        """
        Args:
            config: Runner defaults; loaded from the environment when omitted
            connect: Factory that opens a DB-API connection for a descriptor
            loader: Resolves query sources to text
        """
        if connect is None and not PYODBC_AVAILABLE:
            logger.warning("pyodbc not available - SQL queries will fail")

        self.config = config or load_config()
        self.connect = connect or pyodbc_connect
        self.loader = loader or QueryLoader()

    def build_request(self, **options: Any) -> ExecutionRequest:
        """Build a request from keyword options, filling configured defaults."""
        if options.get("query_timeout") is None:
            options["query_timeout"] = self.config.query_timeout
        if options.get("connect_timeout") is None:
            options["connect_timeout"] = self.config.connect_timeout
        if options.get("driver") is None:
            options["driver"] = self.config.odbc_driver
        return ExecutionRequest.from_options(**options)

    def execute(
        self,
        request: ExecutionRequest,
        on_message: Optional[MessageCallback] = None,
    ) -> ExecutionResult:
        """
        Execute a request and return its normalized result.

        Args:
            request: Validated execution request
            on_message: Called with each informational message, in arrival
                        order, when the request captures messages

        Returns:
            ExecutionResult shaped by the resolved mode

        Raises:
            InvalidArgument: If the mode is unknown
            InputNotFound: If the query file does not exist
            InvalidInput: If the query file is empty or cannot be decoded
            QueryExecutionFailed: If the driver fails to connect or execute
        """
        query_text = self.loader.load(request.source)
        mode = resolve_mode(request.mode, query_text)
        sql, values = bind_parameters(query_text, request.parameters)
        descriptor = build_connection_descriptor(request)

        logger.info(
            f"Executing query on {request.server}/{request.database} "
            f"(mode={mode.value}, parameters={len(values)})"
        )
        logger.debug(f"Connection string: {mask_connection_string(descriptor.connection_string)}")

        collector = _MessageCollector(on_message) if request.capture_messages else None
        start_time = datetime.now(UTC)
        connection = None
        try:
            connection = self.connect(descriptor)
            connection.timeout = request.query_timeout
            cursor = connection.cursor()
            if values:
                cursor.execute(sql, values)
            else:
                cursor.execute(sql)
            result = self._shape(cursor, mode, collector)
        except Exception as e:
            message = _driver_message(e)
            logger.error(f"Query execution failed on {request.server}/{request.database}: {message}")
            raise QueryExecutionFailed(message) from e
        finally:
            if connection is not None:
                self._close(connection)

        if request.append_server_instance and mode in (ExecutionMode.SINGLE, ExecutionMode.MULTIPLE):
            for table in result.tables:
                column = _unique_name(SERVER_INSTANCE_COLUMN, table.columns)
                table.columns.append(column)
                for row in table.rows:
                    row[column] = request.server

        result.messages_requested = request.capture_messages
        if collector is not None:
            result.messages = collector.messages

        execution_time = (datetime.now(UTC) - start_time).total_seconds()
        logger.info(
            f"Query successful: {len(result.tables)} tables, "
            f"{len(result.messages)} messages in {execution_time:.2f}s"
        )
        return result

    def _shape(self, cursor, mode: ExecutionMode, collector: Optional[_MessageCollector] = None) -> ExecutionResult:
        """Walk every result set of the cursor and keep what the mode asks for."""
        result = ExecutionResult(mode=mode)
        first_set_seen = False
        rows_affected = None

        while True:
            if collector is not None:
                collector.collect(cursor)

            if cursor.description is not None:
                if mode is ExecutionMode.MULTIPLE:
                    result.tables.append(self._fetch_table(cursor))
                elif not first_set_seen and mode is ExecutionMode.SINGLE:
                    table = self._fetch_table(cursor)
                    if table.rows:
                        result.tables.append(table)
                elif not first_set_seen and mode is ExecutionMode.SCALAR:
                    row = cursor.fetchone()
                    value = row[0] if row is not None else None
                    result.tables.append(ResultTable(columns=[SCALAR_COLUMN], rows=[{SCALAR_COLUMN: value}]))
                first_set_seen = True
            elif cursor.rowcount is not None and cursor.rowcount >= 0:
                rows_affected = (rows_affected or 0) + cursor.rowcount

            if not cursor.nextset():
                break

        if mode is ExecutionMode.SCALAR and not result.tables:
            result.tables.append(ResultTable(columns=[SCALAR_COLUMN], rows=[{SCALAR_COLUMN: None}]))

        if mode is ExecutionMode.NONQUERY:
            result.rows_affected = rows_affected
            logger.info(f"Rows affected: {rows_affected if rows_affected is not None else 'unknown'}")

        return result

    def _fetch_table(self, cursor) -> ResultTable:
        """Fetch the current result set into a table."""
        columns = _column_names(cursor.description)
        rows = [dict(zip(columns, row)) for row in cursor.fetchall()]
        return ResultTable(columns=columns, rows=rows)

    def _close(self, connection) -> None:
        """Close a connection without masking the error being raised."""
        try:
            connection.close()
            logger.debug("Closed connection")
        except Exception as e:
            logger.warning(f"Error closing connection: {e}")


def execute_query(
    on_message: Optional[MessageCallback] = None,
    config: Optional[Config] = None,
    connect: Optional[ConnectFactory] = None,
    **options: Any,
) -> ExecutionResult:
    """
    Run one query and return its normalized result.

    Accepts the ExecutionRequest fields as keyword options, with ``query``
    or ``input_file`` as the source and ``username``/``password`` for a
    SQL login.

    Example:
        result = execute_query(
            server="localhost",
            database="Demo",
            query="SELECT TOP 10 * FROM dbo.Computer",
        )
    """
    executor = QueryExecutor(config=config, connect=connect)
    request = executor.build_request(**options)
    return executor.execute(request, on_message=on_message)
