"""Resolve a query source to the text that will be sent to the server."""

import codecs
import logging
from pathlib import Path
from typing import Optional

from .errors import InputNotFound, InvalidInput
from .models import FileQuery, InlineQuery, QuerySource


logger = logging.getLogger(__name__)

_BYTE_ORDER_MARKS = (
    (codecs.BOM_UTF32_LE, "utf-32"),
    (codecs.BOM_UTF32_BE, "utf-32"),
    (codecs.BOM_UTF16_LE, "utf-16"),
    (codecs.BOM_UTF16_BE, "utf-16"),
)


class QueryLoader:
    """Load query text from inline input or from a file."""

    def __init__(self, encoding: str = "utf-8-sig"):
        """
        Initialize query loader.

        Args:
            encoding: Encoding used for files without a UTF-16 or
                      UTF-32 byte order mark. The default strips a
                      UTF-8 byte order mark.
        """
        self.encoding = encoding

    def load(self, source: QuerySource) -> str:
        """
        Return the query text for a source.

        Raises:
            InputNotFound: If a file source does not exist
            InvalidInput: If a file source is empty, whitespace only,
                or not valid text in its encoding
        """
        if isinstance(source, InlineQuery):
            return source.text
        if isinstance(source, FileQuery):
            return self._load_file(source.path)
        raise TypeError(f"Unsupported query source: {source!r}")

    def _load_file(self, path: Path) -> str:
        """Read a whole query file as text."""
        if not path.is_file():
            logger.warning(f"Query file not found: {path}")
            raise InputNotFound(f"Query file not found: {path}")

        data = path.read_bytes()
        encoding = _detect_encoding(data) or self.encoding
        try:
            text = data.decode(encoding)
        except UnicodeDecodeError as e:
            logger.warning(f"Query file is not valid {encoding}: {path}")
            raise InvalidInput(f"Query file is not valid {encoding}: {path} ({e.reason} at byte {e.start})") from e

        if not text.strip():
            logger.warning(f"Empty query file: {path}")
            raise InvalidInput(f"Query file is empty: {path}")

        logger.debug(f"Loaded query from {path} ({len(text)} characters, {encoding})")
        return text


def _detect_encoding(data: bytes) -> Optional[str]:
    """Pick a UTF-16/32 codec from a byte order mark, as SSMS writes them."""
    # UTF-32 LE starts with the UTF-16 LE mark, so check it first
    for bom, encoding in _BYTE_ORDER_MARKS:
        if data.startswith(bom):
            return encoding
    return None
