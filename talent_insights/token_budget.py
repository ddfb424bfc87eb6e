import json
import logging
from typing import List

import tiktoken

logger = logging.getLogger(__name__)


def count_tokens(text: str, encoding_name: str = 'cl100k_base') -> int:
    """
    Count tokens in a text string

    Falls back to a word-based estimate (1 word ≈ 1.3 tokens) when the
    encoding cannot be loaded, e.g. without network access on first use.
    """
    try:
        encoding = tiktoken.get_encoding(encoding_name)
        return len(encoding.encode(text))
    except Exception as e:
        logger.debug(f"Tokenizer unavailable, estimating tokens: {e}")
        return int(len(text.split()) * 1.3)


def calculate_context_percentage(text: str, context_window: int = 64000) -> dict:
    """
    Calculate what percentage of context a text uses

    Example:
        >>> result = calculate_context_percentage("Hello world")
        >>> result['fits']
        True
    """
    tokens = count_tokens(text)
    return {
        'tokens': tokens,
        'percentage': (tokens / context_window) * 100,
        'context_window': context_window,
        'remaining': context_window - tokens,
        'fits': tokens < context_window
    }


def fit_records_to_budget(records: List[dict], max_tokens: int) -> List[dict]:
    """Drop trailing records until the JSON dump fits within max_tokens"""
    kept = list(records)
    while kept and count_tokens(json.dumps(kept, default=str)) > max_tokens:
        # shrink by ~10% per pass to keep tokenization calls bounded
        kept = kept[:max(len(kept) - max(len(kept) // 10, 1), 0)]
    if len(kept) < len(records):
        logger.warning(f"Trimmed influencer roster from {len(records)} to {len(kept)} records")
    return kept
