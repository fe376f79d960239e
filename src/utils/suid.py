"""Identifier utility functions."""

import uuid


def get_suid() -> str:
    """
    Generate a unique identifier using UUID4.

    Returns:
        str: A UUID4 string in its canonical hyphenated form.
    """
    return str(uuid.uuid4())


def prefixed_id(prefix: str) -> str:
    """Generate a unique identifier carrying the given type prefix."""
    return f"{prefix}_{get_suid()}"


def check_prefixed_id(value: str, prefix: str) -> bool:
    """
    Check if given string is an identifier generated by prefixed_id.

    Returns True if the value starts with the prefix followed by a valid
    UUID, False otherwise.
    """
    head, separator, tail = value.partition("_")
    if head != prefix or not separator:
        return False
    try:
        uuid.UUID(tail)
        return True
    except (ValueError, TypeError):
        return False
