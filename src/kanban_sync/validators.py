"""
Input validation functions for kanban_sync.

Local validation runs before a mutation reaches the board store or the
sync queue, so invalid edits (empty titles, blank tags) are never
delivered to the remote authority.
"""

from .board.mutations import (
    AddCard,
    AddColumn,
    BaseMutation,
    MoveCard,
    RenameColumn,
    UpdateCard,
)

MAX_TITLE_LENGTH = 500
MAX_DESCRIPTION_LENGTH = 100_000


# ---------------------------------------------------------------------------
# Error message formatting helpers
# ---------------------------------------------------------------------------


def format_validation_error(field_name: str, reason: str) -> str:
    """
    Generate consistent error message for validation failures.

    Args:
        field_name: Human-readable field name (e.g., "Card title")
        reason: Description of validation failure (e.g., "cannot be empty")

    Returns:
        Formatted error message string
    """
    return f"{field_name} {reason}"


def validate_title(title: str, field_name: str = "Title") -> tuple[bool, str]:
    """
    Validate a column or card title.

    Args:
        title: The title to validate
        field_name: Name used in the error message

    Returns:
        Tuple of (is_valid, error_message).
        Returns (True, "") if valid, (False, reason) if invalid.

    Validation rules:
        - Cannot be empty or whitespace-only
        - Cannot exceed MAX_TITLE_LENGTH characters
    """
    if not title or not title.strip():
        return (False, format_validation_error(field_name, "cannot be empty"))

    if len(title) > MAX_TITLE_LENGTH:
        return (
            False,
            format_validation_error(
                field_name,
                f"exceeds maximum length of {MAX_TITLE_LENGTH} characters",
            ),
        )

    return (True, "")


def validate_description(description: str) -> tuple[bool, str]:
    """Validate a card description (may be empty)."""
    if len(description) > MAX_DESCRIPTION_LENGTH:
        return (
            False,
            format_validation_error(
                "Description",
                f"exceeds maximum length of {MAX_DESCRIPTION_LENGTH} characters",
            ),
        )
    return (True, "")


def validate_tags(tags: list[str]) -> tuple[bool, str]:
    """
    Validate a card's tag list.

    Validation rules:
        - Each tag must be non-empty after stripping whitespace
        - Tags must be unique (tags are set-like)
    """
    seen: set[str] = set()
    for tag in tags:
        if not tag or not tag.strip():
            return (False, format_validation_error("Tag", "cannot be empty"))
        if tag in seen:
            return (
                False,
                format_validation_error("Tag", f"'{tag}' is duplicated"),
            )
        seen.add(tag)
    return (True, "")


def validate_mutation(mutation: BaseMutation) -> tuple[bool, str]:
    """
    Validate the user-supplied content of a mutation.

    Mutations without user content (deletes, UI-only variants) are
    always valid here; referential checks belong to the reducer.

    Returns:
        Tuple of (is_valid, error_message).
    """
    if isinstance(mutation, (AddColumn, RenameColumn)):
        return validate_title(mutation.title, "Column title")

    if isinstance(mutation, AddCard):
        card = mutation.card
        for ok, msg in (
            validate_title(card.title, "Card title"),
            validate_description(card.description),
            validate_tags(card.tags),
        ):
            if not ok:
                return (ok, msg)
        return (True, "")

    if isinstance(mutation, UpdateCard):
        updates = mutation.updates
        if updates.title is not None:
            ok, msg = validate_title(updates.title, "Card title")
            if not ok:
                return (ok, msg)
        if updates.description is not None:
            ok, msg = validate_description(updates.description)
            if not ok:
                return (ok, msg)
        if updates.tags is not None:
            ok, msg = validate_tags(updates.tags)
            if not ok:
                return (ok, msg)
        if not updates.changes():
            return (
                False,
                format_validation_error("Card update", "has no fields to change"),
            )
        return (True, "")

    if isinstance(mutation, MoveCard) and mutation.dest_index < 0:
        return (
            False,
            format_validation_error("Destination index", "cannot be negative"),
        )

    return (True, "")
