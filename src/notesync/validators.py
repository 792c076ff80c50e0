"""
Input validation functions for notesync.

Validates store-relative document paths before any adapter touches the
filesystem.
"""

from pathlib import PurePosixPath


def format_validation_error(field_name: str, reason: str) -> str:
    """
    Generate consistent error message for validation failures.

    Args:
        field_name: Human-readable field name (e.g., "Document path")
        reason: Description of validation failure (e.g., "cannot be empty")

    Returns:
        Formatted error message string
    """
    return f"{field_name} {reason}"


def validate_document_path(path: str) -> tuple[bool, str]:
    """
    Validate a store-relative document path.

    Args:
        path: The path to validate (forward slashes, relative to the store root)

    Returns:
        Tuple of (is_valid, error_message).
        Returns (True, "") if valid, (False, reason) if invalid.

    Validation rules:
        - Cannot be empty or whitespace-only
        - Cannot be absolute
        - Cannot contain '..' segments (path traversal protection)
        - Cannot have empty path segments (e.g., 'notes//a.md')
        - Cannot contain NUL characters
    """
    if not path or not path.strip():
        return (
            False,
            format_validation_error("Document path", "cannot be empty"),
        )

    if "\x00" in path:
        return (
            False,
            format_validation_error(
                "Document path", "cannot contain NUL characters"
            ),
        )

    if path.startswith("/") or PurePosixPath(path).is_absolute():
        return (
            False,
            format_validation_error("Document path", "must be relative"),
        )

    if "//" in path:
        return (
            False,
            format_validation_error(
                "Document path", "cannot have empty path segments"
            ),
        )

    if ".." in PurePosixPath(path).parts:
        return (
            False,
            format_validation_error("Document path", "cannot contain '..'"),
        )

    return (True, "")
