"""Small helpers shared across the pipeline."""

import logging
import os
import re
import secrets
import tempfile
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any
from unicodedata import normalize

from dateutil import parser as dateutil_parser
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

logger = logging.getLogger(__name__)

# OS errors worth a second attempt; anything else (permissions, missing dirs) fails fast.
TRANSIENT_IO_ERRORS = (BlockingIOError, InterruptedError, TimeoutError)

WRITE_RETRY_KWARGS = {
    "stop": stop_after_attempt(3),
    "wait": wait_exponential(multiplier=0.05, max=0.5),
    "retry": retry_if_exception_type(TRANSIENT_IO_ERRORS),
    "reraise": True,
}

WORDS_PER_MINUTE = 200


def utc_now() -> datetime:
    return datetime.now(UTC)


def short_id(nbytes: int = 4) -> str:
    return secrets.token_hex(nbytes)


def slugify(text: str, max_len: int = 60) -> str:
    """Convert text to a safe filename fragment.

    Examples:
        >>> slugify("Hello World")
        'hello-world'
        >>> slugify("Café")
        'cafe'

    """
    normalized = normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", normalized.lower()).strip("-")
    slug = re.sub(r"-+", "-", slug)
    if not slug:
        return "untitled"
    if len(slug) > max_len:
        slug = slug[:max_len].rstrip("-")
    return slug


def count_words(text: str) -> int:
    return len(text.split())


def reading_time(word_count: int) -> int:
    """Minutes needed to read ``word_count`` words, never less than one."""
    return max(1, -(-word_count // WORDS_PER_MINUTE))


def parse_datetime_flexible(value: datetime | date | str | Any) -> datetime:
    """Parse a datetime-like value and normalize it to UTC.

    Header blocks may hold timestamps as strings or, when YAML resolved them,
    as native ``datetime``/``date`` objects.

    Raises:
        ValueError: If the value is empty or cannot be parsed.

    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime.combine(value, datetime.min.time())
    else:
        raw = str(value).strip() if value is not None else ""
        if not raw:
            msg = "Cannot parse an empty datetime value"
            raise ValueError(msg)
        try:
            dt = dateutil_parser.parse(raw)
        except (TypeError, ValueError, OverflowError) as e:
            msg = f"Invalid datetime value: {raw!r}"
            raise ValueError(msg) from e
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def is_iso8601(value: Any) -> bool:
    """Strict ISO-8601 check; YAML-native dates and datetimes count as valid."""
    if isinstance(value, date):
        return True
    if not isinstance(value, str):
        return False
    try:
        datetime.fromisoformat(value)
    except ValueError:
        return False
    return True


@retry(**WRITE_RETRY_KWARGS)
def atomic_write_text(path: Path, content: str, encoding: str = "utf-8") -> None:
    """Write text to a file atomically.

    Writes to a temporary file in the same directory, then renames it over the
    destination so readers never see partial content.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding=encoding, newline="") as f:
            f.write(content)
        os.replace(temp_path, path)
    except BaseException:
        try:
            os.unlink(temp_path)
        except OSError:
            logger.debug("Temporary file %s already gone", temp_path)
        raise
