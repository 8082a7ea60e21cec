"""SQL Server query execution with a uniform result shape."""
from .errors import (
    SqlRunnerError,
    InvalidArgument,
    InputNotFound,
    InvalidInput,
    QueryExecutionFailed,
)
from .models import (
    ExecutionMode,
    InlineQuery,
    FileQuery,
    AmbientAuth,
    ExplicitAuth,
    ExecutionRequest,
    ResultTable,
    ExecutionResult,
)
from .connection import ConnectionDescriptor, build_connection_descriptor, bind_parameters
from .loader import QueryLoader
from .executor import QueryExecutor, resolve_mode, execute_query

__all__ = [
    "SqlRunnerError",
    "InvalidArgument",
    "InputNotFound",
    "InvalidInput",
    "QueryExecutionFailed",
    "ExecutionMode",
    "InlineQuery",
    "FileQuery",
    "AmbientAuth",
    "ExplicitAuth",
    "ExecutionRequest",
    "ResultTable",
    "ExecutionResult",
    "ConnectionDescriptor",
    "build_connection_descriptor",
    "bind_parameters",
    "QueryLoader",
    "QueryExecutor",
    "resolve_mode",
    "execute_query",
]
