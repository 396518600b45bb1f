"""
Upload validation utilities.
"""

import os
import re

from xdocs.errors import PayloadTooLarge, ValidationFailed

DEFAULT_CONTENT_TYPE = "application/octet-stream"


def validate_file_size(file_size: int, max_bytes: int) -> None:
    """
    Validate that a file size is within limits.

    Args:
        file_size: Size of the file in bytes
        max_bytes: Largest accepted size

    Raises:
        ValidationFailed: If the file is empty
        PayloadTooLarge: If the file exceeds ``max_bytes``
    """
    if file_size <= 0:
        raise ValidationFailed("file is empty")
    if file_size > max_bytes:
        max_size_mb = max_bytes / (1024 * 1024)
        raise PayloadTooLarge(f"File too large. Maximum size: {max_size_mb:g}MB")


def sanitize_filename(filename: str) -> str:
    """
    Sanitize a filename to prevent path traversal attacks.

    Args:
        filename: Original filename

    Returns:
        Sanitized filename
    """
    # Get just the basename (remove any path components)
    filename = os.path.basename(filename.replace("\\", "/"))

    # Remove any characters that aren't alphanumeric, dash, underscore, or dot
    filename = re.sub(r'[^\w\-.]', '_', filename)

    # Ensure filename isn't empty or a relative path marker after sanitization
    if not filename or filename in ('.', '..'):
        filename = "unnamed_file"

    return filename


def parse_user_list(raw: str) -> list:
    """Split a comma-separated list of user IDs, dropping blanks and duplicates."""
    seen = []
    for part in raw.split(","):
        part = part.strip()
        if part and part not in seen:
            seen.append(part)
    return seen
