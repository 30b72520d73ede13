"""
Input validation for SentimentAI.

Rejects bad uploads before anything touches the blob store.
"""

import re
from typing import Optional

from sentimentai.errors import InvalidInput


class ValidationError(InvalidInput):
    """Raised when input validation fails."""
    pass


ALLOWED_EXTENSIONS = (".mp4", ".mov", ".avi")
_EXTENSION_RE = re.compile(r"\.(mp4|mov|avi)\Z", re.IGNORECASE)
_KEY_RE = re.compile(r"\A[A-Za-z0-9_\-]+/[A-Za-z0-9_\-]+\Z")
MAX_FILE_ID_LENGTH = 128


def validate_file_type(file_type: Optional[str]) -> str:
    """
    Validate a file name or extension against the video allow-list.

    Args:
        file_type: File name (``clip.mp4``) or extension (``.mp4``)

    Returns:
        The normalized lower-case extension

    Raises:
        ValidationError: If the type is not an allowed video container
    """
    if not isinstance(file_type, str) or not _EXTENSION_RE.search(file_type):
        raise ValidationError(
            "Invalid file type. Only " + ", ".join(ALLOWED_EXTENSIONS) + " are supported"
        )
    return "." + file_type.rsplit(".", 1)[-1].lower()


def validate_file_id(file_id: str) -> None:
    """
    Validate a caller-echoed file id.

    Raises:
        ValidationError: If the id could escape the key namespace
    """
    if len(file_id) > MAX_FILE_ID_LENGTH:
        raise ValidationError(f"fileId too long (max: {MAX_FILE_ID_LENGTH})")
    if not re.fullmatch(r"[A-Za-z0-9_\-]+", file_id):
        raise ValidationError("fileId may only contain letters, digits, '-' and '_'")


def validate_key(key: Optional[str]) -> str:
    """
    Validate a blob key passed to the inference endpoint.

    Raises:
        ValidationError: If the key is missing or malformed
    """
    if not key or not isinstance(key, str) or not key.strip():
        raise ValidationError("Key is required")
    key = key.strip()
    if not _KEY_RE.match(key):
        raise ValidationError(f"Malformed key: {key!r}")
    return key
