"""
Input validation utilities for the seeding orchestrator.

Batch ids become checkpoint file names and are echoed into shell commands,
so they are validated strictly before reaching the progress store or CLI.
"""

import re


class ValidationError(ValueError):
    """Raised when input validation fails."""
    pass


_BATCH_ID_PATTERN = re.compile(r'^[a-zA-Z0-9][a-zA-Z0-9_\-]*$')


def validate_batch_id(batch_id: str, field_name: str = "batch_id") -> str:
    """
    Validate a batch ID.

    Batch IDs must be non-empty strings containing only alphanumeric
    characters, hyphens, and underscores, and must not start with a
    separator. UUIDs pass unchanged.

    Args:
        batch_id: The batch ID to validate
        field_name: Name of the field (for error messages)

    Returns:
        The validated batch ID (stripped of whitespace)

    Raises:
        ValidationError: If validation fails

    Examples:
        >>> validate_batch_id("3f2c1b1e-7a4d-4c55-9a43-0d3c2f1e5b6a")
        '3f2c1b1e-7a4d-4c55-9a43-0d3c2f1e5b6a'
        >>> validate_batch_id("../etc/passwd")  # doctest: +SKIP
        ValidationError: batch_id contains invalid characters
    """
    if not batch_id or not isinstance(batch_id, str):
        raise ValidationError(f"{field_name} must be a non-empty string")

    batch_id = batch_id.strip()

    if not batch_id:
        raise ValidationError(f"{field_name} cannot be empty or whitespace-only")

    if not _BATCH_ID_PATTERN.match(batch_id):
        raise ValidationError(
            f"{field_name} contains invalid characters. "
            "Only alphanumeric characters, hyphens, and underscores are allowed."
        )

    if len(batch_id) > 128:
        raise ValidationError(f"{field_name} exceeds maximum length of 128 characters")

    return batch_id


def validate_positive_seconds(value: float, field_name: str = "timeout") -> float:
    """
    Validate a duration expressed in seconds.

    Args:
        value: Duration to validate
        field_name: Name of the field (for error messages)

    Returns:
        The validated duration as a float

    Raises:
        ValidationError: If the value is not a positive number
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{field_name} must be a number, got {type(value).__name__}")

    if value <= 0:
        raise ValidationError(f"{field_name} must be positive, got {value}")

    return float(value)


def validate_file_path(file_path: str, field_name: str = "file_path") -> str:
    """
    Validate a configuration file path.

    Args:
        file_path: The file path to validate
        field_name: Name of the field (for error messages)

    Returns:
        The validated file path (stripped of whitespace)

    Raises:
        ValidationError: If validation fails
    """
    if not file_path or not isinstance(file_path, str):
        raise ValidationError(f"{field_name} must be a non-empty string")

    file_path = file_path.strip()

    if not file_path:
        raise ValidationError(f"{field_name} cannot be empty or whitespace-only")

    # Check for null bytes (security)
    if "\x00" in file_path:
        raise ValidationError(f"{field_name} contains null bytes")

    if "*" in file_path or "?" in file_path:
        raise ValidationError(f"{field_name} contains wildcards (* or ?)")

    if len(file_path) > 4096:  # Linux PATH_MAX
        raise ValidationError(f"{field_name} exceeds maximum length of 4096 characters")

    return file_path
