"""
Domain models for SQL query execution.
Provides type-safe request validation and a uniform result shape.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    ValidationError,
    field_validator,
)

from sqlrunner.config import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_ODBC_DRIVER,
    DEFAULT_QUERY_TIMEOUT,
)
from .errors import InvalidArgument

STATEMENT_SEPARATOR = ";"
SCALAR_COLUMN = "Value"


class ExecutionMode(str, Enum):
    """How the output of a query is shaped."""
    AUTO = "auto"
    SINGLE = "single"
    MULTIPLE = "multiple"
    SCALAR = "scalar"
    NONQUERY = "nonquery"


class InlineQuery(BaseModel):
    """Query text passed directly by the caller."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["inline"] = "inline"
    text: str

    @field_validator('text')
    @classmethod
    def validate_text(cls, v):
        if not v.strip():
            raise ValueError("Query text cannot be empty")
        return v


class FileQuery(BaseModel):
    """Query text read from a file when the request is executed."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["file"] = "file"
    path: Path


QuerySource = Union[InlineQuery, FileQuery]


class AmbientAuth(BaseModel):
    """Integrated authentication with the identity of the calling process."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["ambient"] = "ambient"


class ExplicitAuth(BaseModel):
    """SQL login with username and password."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["explicit"] = "explicit"
    username: str
    password: SecretStr = SecretStr("")

    @field_validator('username')
    @classmethod
    def validate_username(cls, v):
        if not v.strip():
            raise ValueError("Username cannot be empty")
        return v


Auth = Union[AmbientAuth, ExplicitAuth]


def _invalid_argument(error: ValidationError) -> InvalidArgument:
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'request'}: {err['msg']}"
        for err in error.errors()
    )
    return InvalidArgument(f"Invalid request: {problems}")


def normalize_parameter_name(name: str) -> str:
    """Strip the leading '@' so 'id' and '@id' name the same parameter."""
    return name[1:] if name.startswith("@") else name


class ExecutionRequest(BaseModel):
    """Immutable bundle of everything needed to run one query.

    Validation problems are raised as InvalidArgument, whether the request
    is built directly or through from_options.
    """
    model_config = ConfigDict(frozen=True, extra='forbid')

    server: str
    database: str
    source: QuerySource = Field(..., discriminator='kind')
    mode: ExecutionMode = ExecutionMode.AUTO
    query_timeout: int = Field(DEFAULT_QUERY_TIMEOUT, ge=0)
    connect_timeout: int = Field(DEFAULT_CONNECT_TIMEOUT, ge=0)
    application_name: Optional[str] = None
    connection_string: Optional[str] = None
    auth: Auth = Field(default_factory=AmbientAuth, discriminator='kind')
    parameters: Dict[str, Any] = Field(default_factory=dict)
    capture_messages: bool = False
    encrypt: bool = True
    trust_server_certificate: bool = False
    driver: str = DEFAULT_ODBC_DRIVER
    append_server_instance: bool = False

    def __init__(self, **data: Any):
        try:
            super().__init__(**data)
        except ValidationError as e:
            raise _invalid_argument(e) from e

    @field_validator('server', 'database')
    @classmethod
    def validate_required(cls, v, info):
        if not v or not v.strip():
            raise ValueError(f"{info.field_name} cannot be empty")
        return v.strip()

    @field_validator('connection_string', 'application_name')
    @classmethod
    def validate_optional(cls, v):
        # blank optional strings mean "not supplied"
        if v is not None and not v.strip():
            return None
        return v

    @field_validator('parameters')
    @classmethod
    def validate_parameters(cls, v):
        seen = set()
        for name in v:
            normalized = normalize_parameter_name(name)
            if not normalized:
                raise ValueError(f"Invalid parameter name: {name!r}")
            if normalized.lower() in seen:
                raise ValueError(f"Duplicate parameter name: {name!r}")
            seen.add(normalized.lower())
        return v

    @classmethod
    def from_options(
        cls,
        server: Optional[str] = None,
        database: Optional[str] = None,
        query: Optional[str] = None,
        input_file: Optional[Union[str, Path]] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        **options: Any,
    ) -> "ExecutionRequest":
        """
        Build a request from flat keyword options.

        Resolves the query source and the authentication variant once, and
        reports every validation problem as InvalidArgument.

        Args:
            server: Server address, optionally with instance or port
            database: Database name
            query: Inline query text (mutually exclusive with input_file)
            input_file: Path to a file holding the query text
            username: SQL login; integrated auth is used when omitted
            password: Password for the SQL login
            **options: Remaining ExecutionRequest fields

        Raises:
            InvalidArgument: If the options are missing or contradictory
        """
        has_query = bool(query)
        has_file = bool(input_file)
        if has_query == has_file:
            raise InvalidArgument("Exactly one of query or input_file must be supplied")

        options = {k: v for k, v in options.items() if v is not None}
        try:
            if has_query:
                source = InlineQuery(text=query)
            else:
                source = FileQuery(path=Path(input_file))

            if username:
                auth = ExplicitAuth(username=username, password=SecretStr(password or ""))
            else:
                auth = AmbientAuth()

            return cls(
                server=server or "",
                database=database or "",
                source=source,
                auth=auth,
                **options,
            )
        except ValidationError as e:
            raise _invalid_argument(e) from e


@dataclass
class ResultTable:
    """One result set: ordered column names and rows keyed by column name."""
    columns: List[str]
    rows: List[Dict[str, Any]] = field(default_factory=list)

    def __len__(self):
        return len(self.rows)


def _to_json_value(value: Any) -> Any:
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return value.hex()
    return value


@dataclass
class ExecutionResult:
    """
    Result of query execution.
    The table sequence is empty for NonQuery and for single result sets
    without rows.
    """
    mode: ExecutionMode
    tables: List[ResultTable] = field(default_factory=list)
    messages_requested: bool = False
    messages: List[str] = field(default_factory=list)
    rows_affected: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-friendly dict."""
        return {
            'mode': self.mode.value,
            'tables': [
                {
                    'columns': list(table.columns),
                    'rows': [
                        {k: _to_json_value(v) for k, v in row.items()}
                        for row in table.rows
                    ],
                }
                for table in self.tables
            ],
            'messages_requested': self.messages_requested,
            'messages': list(self.messages),
            'rows_affected': self.rows_affected,
        }
