"""
Index expansion for agent replies.

The context agent answers with a list of tokens such as ``["0", "3-7", "12"]``.
Each token is either a single index or an inclusive ``start-end`` range.
"""

from collections.abc import Iterable

from convoroute.config.logging import get_logger

logger = get_logger(__name__)


def _parse_int(value: str) -> int | None:
    value = value.strip()
    # str.isdigit() also accepts digits like "²" that int() rejects
    if not (value.isascii() and value.isdigit()):
        return None
    return int(value)


def expand_indices(tokens: Iterable[object], max_index: int) -> list[int]:
    """
    Expand index tokens into a deduplicated list within ``[0, max_index]``.

    Malformed tokens, reversed ranges and anything out of bounds are skipped.
    A range with either end out of bounds contributes nothing at all. The
    result keeps the order in which indices first appear.

    Example:
        >>> expand_indices(["0", "3-7", "12"], max_index=20)
        [0, 3, 4, 5, 6, 7, 12]
    """
    result: list[int] = []
    seen: set[int] = set()
    invalid = 0

    for token in tokens:
        text = str(token).strip()

        if "-" in text and not text.startswith("-"):
            parts = text.split("-")
            if len(parts) != 2:
                invalid += 1
                continue
            start, end = _parse_int(parts[0]), _parse_int(parts[1])
            if start is None or end is None or start > end or end > max_index:
                invalid += 1
                continue
            candidates = range(start, end + 1)
        else:
            index = _parse_int(text)
            if index is None or index > max_index:
                invalid += 1
                continue
            candidates = range(index, index + 1)

        for index in candidates:
            if index not in seen:
                seen.add(index)
                result.append(index)

    if invalid:
        logger.warning(
            f"Skipped {invalid} invalid index tokens ({len(result)} indices kept)"
        )
    return result
