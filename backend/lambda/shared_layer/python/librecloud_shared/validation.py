"""librecloud_shared.validation — Identifier and upload admission checks."""

from __future__ import annotations

import math
import re
from typing import Any, Dict

# 8-4-4-4-12 hex groups, version nibble 1-5, variant nibble 8/9/a/b. Use fullmatch.
UUID_PATTERN = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}",
    re.IGNORECASE,
)

# content type -> extension appended to uploads missing it
ALLOWED_CONTENT_TYPES: Dict[str, str] = {
    "application/vnd.oasis.opendocument.text": ".odt",
    "application/vnd.oasis.opendocument.spreadsheet": ".ods",
    "application/vnd.oasis.opendocument.presentation": ".odp",
    "application/vnd.oasis.opendocument.graphics": ".odg",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ".docx",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": ".xlsx",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": ".pptx",
    "application/msword": ".doc",
    "application/vnd.ms-excel": ".xls",
    "application/vnd.ms-powerpoint": ".ppt",
    "application/pdf": ".pdf",
    "text/plain": ".txt",
    "text/rtf": ".rtf",
    "audio/mpeg": ".mp3",
    "audio/wav": ".wav",
    "audio/flac": ".flac",
    "audio/ogg": ".ogg",
}

MAX_FILE_NAME_LENGTH = 255


def is_valid_identifier(value: Any) -> bool:
    return isinstance(value, str) and bool(UUID_PATTERN.fullmatch(value))


def is_allowed_file_type(content_type: Any) -> bool:
    return isinstance(content_type, str) and content_type in ALLOWED_CONTENT_TYPES


def get_file_extension(content_type: str) -> str:
    return ALLOWED_CONTENT_TYPES.get(content_type, "")


def with_extension(file_name: str, content_type: str) -> str:
    """Append the canonical extension for ``content_type`` when missing."""
    extension = get_file_extension(content_type)
    if extension and not file_name.lower().endswith(extension):
        return file_name + extension
    return file_name


def is_positive_number(value: Any) -> bool:
    # bool is an int subclass; reject it explicitly. json.loads accepts Infinity and NaN.
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return False
    return math.isfinite(value) and value > 0
