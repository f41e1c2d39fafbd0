"""Read-only helpers over a ``Board`` snapshot."""

from __future__ import annotations

from .models import Board, Card, Column


def ordered_columns(board: Board) -> list[Column]:
    """Columns in display order; ids missing from ``columns`` are skipped."""
    return [board.columns[cid] for cid in board.column_order if cid in board.columns]


def get_column(board: Board, column_id: str) -> Column | None:
    return board.columns.get(column_id)


def get_card(board: Board, card_id: str) -> Card | None:
    return board.cards.get(card_id)


def cards_in_column(board: Board, column_id: str) -> list[Card]:
    """Cards of a column in their stored order."""
    column = board.columns.get(column_id)
    if column is None:
        return []
    return [board.cards[cid] for cid in column.card_ids if cid in board.cards]


def column_for_card(board: Board, card_id: str) -> Column | None:
    """Return the column that owns *card_id*, if any."""
    for column in board.columns.values():
        if card_id in column.card_ids:
            return column
    return None


def search_cards(board: Board, query: str) -> list[Card]:
    """Case-insensitive search over card title, description and tags.

    Results follow board order (columns by ``column_order``, then cards by
    position). An empty query matches nothing.
    """
    needle = query.strip().lower()
    if not needle:
        return []

    matches = []
    for column in ordered_columns(board):
        for card in cards_in_column(board, column.id):
            haystack = [card.title, card.description, *card.tags]
            if any(needle in text.lower() for text in haystack):
                matches.append(card)
    return matches


def cards_by_tag(board: Board, tag: str) -> list[Card]:
    """Cards carrying exactly *tag*, in board order."""
    return [
        card
        for column in ordered_columns(board)
        for card in cards_in_column(board, column.id)
        if tag in card.tags
    ]


def all_tags(board: Board) -> list[str]:
    """Sorted, de-duplicated tags used anywhere on the board."""
    return sorted({tag for card in board.cards.values() for tag in card.tags})


def board_summary(board: Board) -> dict[str, int]:
    """Counts for display."""
    return {
        "columns": len(board.column_order),
        "cards": len(board.cards),
        "tags": len(all_tags(board)),
        "version": board.version,
    }
