"""
Shared utilities for similarity calculations, text cleaning and result handling.
"""
import asyncio
import functools
import re
from typing import Callable, Iterable, List, TypeVar

import numpy as np

from .data_models import SearchResult

T = TypeVar("T")

CONTROL_CHARS = re.compile(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]')
HORIZONTAL_SPACE = re.compile(r"[ \t\f\v\u00a0]+")
SPACE_AROUND_NEWLINE = re.compile(r' *\n *')
EXTRA_BLANK_LINES = re.compile(r'\n{3,}')
SPACE_AFTER_BACKSLASH = re.compile(r'\\ +(?=[a-zA-Z])')
INLINE_MATH = re.compile(r'(?<!\$)\$(?!\$)([^$\n]+?)\$(?!\$)')
MATH_SIGNAL = re.compile(r'\\[a-zA-Z]|[\^_=]')


def compute_cosine_similarities(query_emb: np.ndarray, candidate_embs: np.ndarray) -> np.ndarray:
    """Computes cosine similarities between a query and candidate embeddings."""
    if candidate_embs.size == 0:
        return np.array([])
    query_norm = query_emb / (np.linalg.norm(query_emb) + 1e-8)
    cand_norms = candidate_embs / (np.linalg.norm(candidate_embs, axis=1, keepdims=True) + 1e-8)
    return np.dot(cand_norms, query_norm)


def clean_page_text(text: str) -> str:
    """
    Normalize raw extracted page text before chunking.

    Drops control characters, collapses runs of horizontal whitespace, keeps
    paragraph breaks (at most one blank line) and tightens the spacing that
    text extraction tends to leave inside LaTeX ($ x $ and \\ frac).
    """
    if not text:
        return ""
    text = text.replace('\r\n', '\n').replace('\r', '\n')
    text = CONTROL_CHARS.sub('', text)
    text = HORIZONTAL_SPACE.sub(' ', text)
    text = SPACE_AROUND_NEWLINE.sub('\n', text)
    text = EXTRA_BLANK_LINES.sub('\n\n', text)
    text = SPACE_AFTER_BACKSLASH.sub(r'\\', text)
    text = tighten_math_spacing(text)
    return text.strip()


def tighten_math_spacing(text: str) -> str:
    """Remove the spaces extraction inserts just inside $...$ delimiters."""
    def _tighten(match: re.Match) -> str:
        inner = match.group(1)
        # Currency amounts ("$5 and $10") are not math.
        if not MATH_SIGNAL.search(inner):
            return match.group(0)
        return '$' + inner.strip() + '$'
    return INLINE_MATH.sub(_tighten, text)


def dedupe_results(results: Iterable[SearchResult]) -> List[SearchResult]:
    """Drop repeated chunk ids, keeping the first occurrence."""
    seen = set()
    unique = []
    for result in results:
        if result.id in seen:
            continue
        seen.add(result.id)
        unique.append(result)
    return unique


def similarity_order_key(result: SearchResult):
    """Similarity descending, unscored results last, ties broken by lower chunk index."""
    if result.similarity is None:
        return (1, 0.0, result.chunk_index)
    return (0, -result.similarity, result.chunk_index)


def sort_by_similarity(results: Iterable[SearchResult]) -> List[SearchResult]:
    return sorted(results, key=similarity_order_key)


def sort_by_page(results: Iterable[SearchResult]) -> List[SearchResult]:
    return sorted(results, key=lambda r: (r.page_number, r.chunk_index))


async def run_blocking(func: Callable[..., T], *args, **kwargs) -> T:
    """Run a blocking client call in the default executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))
