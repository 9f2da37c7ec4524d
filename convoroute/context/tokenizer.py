"""
Token counting for context budgeting.

A thin wrapper over a tiktoken encoding. One instance is built at startup
and injected wherever tokens are counted.
"""

import tiktoken

from convoroute.config.logging import get_logger

logger = get_logger(__name__)


class Tokenizer:
    """
    Counts tokens with a fixed tiktoken encoding.

    Args:
        encoding_name: tiktoken encoding (default: "o200k_base", used by the
            GPT-4o family; close enough for budgeting on other vendors too)

    Raises:
        RuntimeError: If the encoding cannot be loaded
    """

    def __init__(self, encoding_name: str = "o200k_base"):
        self.encoding_name = encoding_name
        try:
            self._encoding = tiktoken.get_encoding(encoding_name)
        except Exception as e:
            logger.error(f"Failed to load tiktoken encoding '{encoding_name}': {e}")
            raise RuntimeError(f"Could not load tokenizer: {e}") from e

    def count(self, text: str) -> int:
        """Number of tokens in ``text``. Special-token markers are counted as plain text."""
        if not text:
            return 0
        return len(self._encoding.encode(text, disallowed_special=()))
