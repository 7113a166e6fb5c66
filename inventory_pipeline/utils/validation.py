"""
Input validation utilities for the import pipeline's external interface.

Checks identifiers, paging parameters and file paths supplied by callers
(CLI, web handlers) before they reach the repositories.
"""

from collections.abc import Iterable
from typing import Any
from uuid import UUID


class InputValidationError(ValueError):
    """Raised when caller input is malformed."""


def validate_uuid(value: Any, field_name: str = "id") -> UUID:
    """
    Validate an identifier and return it as a UUID.

    Examples:
        >>> validate_uuid("5b0f3c1e-8f1e-4e57-9a55-0c1f0b7f2a11")
        UUID('5b0f3c1e-8f1e-4e57-9a55-0c1f0b7f2a11')
        >>> validate_uuid("not-a-uuid")  # doctest: +SKIP
        InputValidationError: id is not a valid UUID
    """
    if isinstance(value, UUID):
        return value

    if not value or not isinstance(value, str):
        raise InputValidationError(f"{field_name} must be a non-empty string")

    try:
        return UUID(value.strip())
    except ValueError:
        raise InputValidationError(f"{field_name} is not a valid UUID: {value!r}") from None


def validate_uuid_list(values: Iterable[Any], field_name: str = "ids", max_items: int = 10000) -> list[UUID]:
    """
    Validate a list of identifiers.

    Duplicates are dropped; order of first appearance is kept.
    """
    if isinstance(values, (str, bytes)) or values is None:
        raise InputValidationError(f"{field_name} must be a list")

    result: list[UUID] = []
    seen: set[UUID] = set()
    for index, value in enumerate(values):
        parsed = validate_uuid(value, f"{field_name}[{index}]")
        if parsed not in seen:
            seen.add(parsed)
            result.append(parsed)

    if len(result) > max_items:
        raise InputValidationError(f"{field_name} exceeds maximum of {max_items} items")

    return result


def validate_limit(limit: int, field_name: str = "limit", max_limit: int = 10000) -> int:
    """
    Validate a limit or page size.

    Examples:
        >>> validate_limit(100)
        100
        >>> validate_limit(0)  # doctest: +SKIP
        InputValidationError: limit must be a positive integer
    """
    if not isinstance(limit, int) or isinstance(limit, bool):
        raise InputValidationError(f"{field_name} must be an integer, got {type(limit).__name__}")

    if limit <= 0:
        raise InputValidationError(f"{field_name} must be a positive integer, got {limit}")

    if limit > max_limit:
        raise InputValidationError(f"{field_name} exceeds maximum of {max_limit}")

    return limit


def validate_page(page: int, field_name: str = "page") -> int:
    """Pages are 1-based."""
    if not isinstance(page, int) or isinstance(page, bool):
        raise InputValidationError(f"{field_name} must be an integer, got {type(page).__name__}")

    if page < 1:
        raise InputValidationError(f"{field_name} must be at least 1, got {page}")

    return page


def validate_search_term(term: str | None, field_name: str = "search_term", max_length: int = 200) -> str | None:
    """Blank search terms mean "no search"."""
    if term is None:
        return None

    term = term.strip()
    if not term:
        return None

    if "\x00" in term:
        raise InputValidationError(f"{field_name} contains null bytes")

    if len(term) > max_length:
        raise InputValidationError(f"{field_name} exceeds maximum length of {max_length} characters")

    return term


def validate_file_path(file_path: str, field_name: str = "file_path") -> str:
    """
    Validate a file path for security.

    Prevents path traversal and ensures the path is reasonable.

    Examples:
        >>> validate_file_path("/data/input.csv")
        '/data/input.csv'
        >>> validate_file_path("../../../etc/passwd")  # doctest: +SKIP
        InputValidationError: file_path contains path traversal characters
    """
    if not file_path or not isinstance(file_path, str):
        raise InputValidationError(f"{field_name} must be a non-empty string")

    file_path = file_path.strip()

    if not file_path:
        raise InputValidationError(f"{field_name} cannot be empty or whitespace-only")

    if ".." in file_path:
        raise InputValidationError(f"{field_name} contains path traversal characters (..)")

    if "\x00" in file_path:
        raise InputValidationError(f"{field_name} contains null bytes")

    if "*" in file_path or "?" in file_path:
        raise InputValidationError(f"{field_name} contains wildcards (* or ?)")

    # Linux PATH_MAX
    if len(file_path) > 4096:
        raise InputValidationError(f"{field_name} exceeds maximum length of 4096 characters")

    return file_path
