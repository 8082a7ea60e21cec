"""
Connection string assembly and parameter binding for the ODBC driver.
"""
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlparse import lexer
from sqlparse import tokens as T

from .models import ExecutionRequest, ExplicitAuth, normalize_parameter_name


logger = logging.getLogger(__name__)

# values the ODBC parser would misread unless wrapped in braces
_NEEDS_BRACES = re.compile(r'[;{}=]|^\s|\s$')
_PASSWORD_PATTERN = re.compile(r'(?i)\b(PWD|Password)(\s*=\s*)(\{(?:[^}]|\}\})*\}|[^;]*)')

_WORD = re.compile(r'\w+')
_COMPOUND_OPERATORS = {"+", "-", "*", "/", "%", "&", "|", "^"}
# a variable followed by '=' right after one of these is being assigned
_ASSIGNMENT_PREFIXES = {"SET", "SELECT", "EXEC", "EXECUTE", ","}
# keywords that end a DECLARE statement written without ';'
_STATEMENT_KEYWORDS = {
    "SET", "SELECT", "INSERT", "UPDATE", "DELETE", "MERGE", "EXEC", "EXECUTE",
    "IF", "WHILE", "BEGIN", "PRINT", "RETURN", "WITH",
}


@dataclass
class _Piece:
    """One lexer token; variable holds the name without '@' for variables."""
    ttype: Any
    text: str
    variable: Optional[str] = None


@dataclass(frozen=True)
class ConnectionDescriptor:
    """What the driver needs to open a connection."""
    connection_string: str
    login_timeout: Optional[int] = None

    def __repr__(self):
        return (
            f"ConnectionDescriptor(connection_string={mask_connection_string(self.connection_string)!r}, "
            f"login_timeout={self.login_timeout!r})"
        )


def quote_value(value: str) -> str:
    """
    Quote a connection string value for the ODBC parser.

    Values containing separators or braces are wrapped in braces with
    closing braces doubled.
    """
    if _NEEDS_BRACES.search(value):
        return "{" + value.replace("}", "}}") + "}"
    return value


def _yes_no(flag: bool) -> str:
    return "yes" if flag else "no"


def build_connection_descriptor(request: ExecutionRequest) -> ConnectionDescriptor:
    """
    Build the connection descriptor for a request.

    An explicit connection string is used verbatim. Otherwise the string is
    composed from server, database, encryption settings, application name
    and the authentication variant, and the connect timeout becomes the
    driver's login timeout.
    """
    if request.connection_string:
        logger.debug("Using explicit connection string")
        return ConnectionDescriptor(connection_string=request.connection_string)

    parts: List[Tuple[str, str]] = [
        ("DRIVER", "{" + request.driver.replace("}", "}}") + "}"),
        ("SERVER", quote_value(request.server)),
        ("DATABASE", quote_value(request.database)),
        ("Encrypt", _yes_no(request.encrypt)),
        ("TrustServerCertificate", _yes_no(request.trust_server_certificate)),
    ]
    if request.application_name:
        parts.append(("APP", quote_value(request.application_name)))

    if isinstance(request.auth, ExplicitAuth):
        parts.append(("UID", quote_value(request.auth.username)))
        parts.append(("PWD", quote_value(request.auth.password.get_secret_value())))
    else:
        parts.append(("Trusted_Connection", "yes"))

    connection_string = ";".join(f"{key}={value}" for key, value in parts) + ";"
    return ConnectionDescriptor(
        connection_string=connection_string,
        login_timeout=request.connect_timeout,
    )


def mask_connection_string(connection_string: str) -> str:
    """Replace password values so the string is safe to log."""
    return _PASSWORD_PATTERN.sub(lambda m: f"{m.group(1)}{m.group(2)}***", connection_string)


def _lex(sql: str) -> List[_Piece]:
    """
    Split text into lexer tokens, joining '@' and the following word into
    one variable token.
    """
    raw = list(lexer.tokenize(sql))
    pieces: List[_Piece] = []
    i = 0
    while i < len(raw):
        ttype, value = raw[i]
        following = raw[i + 1] if i + 1 < len(raw) else None
        if ttype in T.Name and value.startswith("@") and not value.startswith("@@"):
            pieces.append(_Piece(ttype, value, value[1:]))
        elif (
            ttype in T.Operator
            and value.endswith("@")
            and not value.endswith("@@")
            and following is not None
            and (following[0] in T.Name or following[0] in T.Keyword)
            and _WORD.fullmatch(following[1])
        ):
            # short names like '@x' come out of the lexer as '@' followed by a word
            if value[:-1]:
                pieces.append(_Piece(ttype, value[:-1]))
            pieces.append(_Piece(T.Name, "@" + following[1], following[1]))
            i += 1
        else:
            pieces.append(_Piece(ttype, value))
        i += 1
    return pieces


def _word(piece: Optional[_Piece]) -> Optional[str]:
    if piece is None:
        return None
    if piece.ttype in T.Punctuation and piece.text == ",":
        return ","
    if piece.ttype in T.Keyword or piece.ttype in T.Name:
        return piece.text.upper()
    return None


def _is_name(pieces: List[_Piece], significant: List[int], pos: int) -> bool:
    """True when the significant token at pos is an object name, e.g. a procedure."""
    if pos < 0:
        return False
    piece = pieces[significant[pos]]
    if piece.variable is not None:
        return False
    if piece.ttype in T.Name:
        return True
    return pos > 0 and pieces[significant[pos - 1]].text == "."


def _is_assignment(pieces: List[_Piece], significant: List[int], pos: int) -> bool:
    """True when the significant token after pos is '=' or a compound assignment."""
    if pos + 1 >= len(significant):
        return False
    index = significant[pos + 1]
    text = pieces[index].text
    if text == "=":
        return True
    return (
        text in _COMPOUND_OPERATORS
        and index + 1 < len(pieces)
        and pieces[index + 1].text == "="
    )


def bind_parameters(sql: str, parameters: Mapping[str, Any]) -> Tuple[str, Tuple[Any, ...]]:
    """
    Rewrite named '@name' placeholders to positional '?' markers.

    Values are collected in order of appearance, so a name used twice is
    bound twice. A None value binds SQL NULL. '@@' system functions,
    variables not in the mapping, string literals, quoted identifiers and
    comments are left untouched.

    Only value positions are bound. A name is left as written when it is
    the target of a DECLARE, of a SET or SELECT assignment, or of a named
    procedure argument ('EXEC p @id = @id' binds the second '@id' only).
    Once a batch declares a local variable, later references to that name
    are the local variable and are not bound either. Context comes from the
    token stream, not a full parse, so unusual layouts may be misread.

    Returns:
        Tuple of (rewritten sql, positional values)
    """
    if not parameters:
        return sql, ()

    values_by_name: Dict[str, Any] = {
        normalize_parameter_name(name).lower(): value
        for name, value in parameters.items()
    }

    pieces = _lex(sql)
    significant = [
        index for index, piece in enumerate(pieces)
        if not (piece.ttype in T.Whitespace or piece.ttype in T.Comment)
    ]

    values: List[Any] = []
    used = set()
    bound = set()
    declared = set()
    pending = set()
    depth = 0
    declare_depth: Optional[int] = None

    for pos, index in enumerate(significant):
        piece = pieces[index]
        word = _word(piece)

        if piece.variable is not None:
            key = piece.variable.lower()
            previous = pieces[significant[pos - 1]] if pos > 0 else None
            previous_word = _word(previous)
            if previous_word == "DECLARE" or (previous_word == "," and declare_depth == depth):
                pending.add(key)
            elif _is_assignment(pieces, significant, pos) and (
                previous_word in _ASSIGNMENT_PREFIXES or _is_name(pieces, significant, pos - 1)
            ):
                pass
            elif key in values_by_name and key not in declared:
                used.add(key)
                values.append(values_by_name[key])
                bound.add(index)
            continue

        if piece.ttype in T.Punctuation:
            if piece.text == "(":
                depth += 1
            elif piece.text == ")":
                depth -= 1
            elif piece.text == ";":
                declare_depth = None
                declared |= pending
                pending.clear()
            elif piece.text == "," and declare_depth == depth:
                declared |= pending
                pending.clear()
        elif word == "DECLARE":
            declare_depth = depth
            declared |= pending
            pending.clear()
        elif declare_depth == depth and (piece.ttype in T.Keyword.DML or word in _STATEMENT_KEYWORDS):
            declare_depth = None
            declared |= pending
            pending.clear()

    rewritten = "".join("?" if index in bound else piece.text for index, piece in enumerate(pieces))

    unused = [name for name in parameters if normalize_parameter_name(name).lower() not in used]
    if unused:
        logger.warning(f"Parameters not bound to any value position: {', '.join(unused)}")

    return rewritten, tuple(values)
