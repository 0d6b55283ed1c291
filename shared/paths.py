"""Normalization and validation of CloudFront invalidation paths."""

import re
import unicodedata
from urllib.parse import unquote

from shared.config import Config
from shared.errors import PathValidationError

_DUPLICATE_SLASHES = re.compile(r"/{2,}")
WILDCARD = "*"


def _has_control_characters(value: str) -> bool:
    return any(unicodedata.category(char) == "Cc" for char in value)


def validate_path(raw: str, max_length: int = None, decode: bool = True) -> str:
    """
    Normalize and validate a path or wildcard pattern.

    Percent-decodes once, collapses duplicate slashes and guarantees a single
    leading slash. A trailing ``*`` is kept as a pattern invalidation.

    Args:
        raw: Path as submitted (e.g. "storage//v1/object/public/*")
        max_length: Maximum UTF-8 byte length (uses config default if not provided)
        decode: Percent-decode before normalizing. Pass False for paths that
            were already normalized, so a literal "%" is not decoded twice.

    Returns:
        Normalized path (e.g. "/storage/v1/object/public/*")

    Raises:
        PathValidationError: if the path is empty, too long, contains control
            characters or a wildcard anywhere but the end
    """
    limit = max_length or Config.MAX_PATH_LENGTH

    if not isinstance(raw, str):
        raise PathValidationError("Path must be a string")

    if not raw:
        raise PathValidationError("Path must not be empty")

    if len(raw.encode("utf-8")) > limit:
        raise PathValidationError(f"Path exceeds {limit} bytes")

    decoded = unquote(raw) if decode else raw

    if _has_control_characters(decoded):
        raise PathValidationError("Path contains control characters")

    path = "/" + _DUPLICATE_SLASHES.sub("/", decoded).lstrip("/")

    if WILDCARD in path[:-1]:
        raise PathValidationError("Wildcard '*' is only allowed as the last character")

    if len(path.encode("utf-8")) > limit:
        raise PathValidationError(f"Path exceeds {limit} bytes")

    return path
