"""
Query Classifier Module

Maps a user question to a query type and a chunk budget using an ordered
rule table: the first rule whose predicate matches decides. Pure and
deterministic; no I/O.
"""
import re
from dataclasses import dataclass
from typing import Callable, List, Sequence

from .data_models import QueryClassification, QueryType

MAX_CHUNK_BUDGET = 50
MIN_CHUNK_BUDGET = 1
EMPTY_QUERY_BUDGET = 10
MAX_PAGE_SPAN = 100


def _phrase_pattern(phrases: Sequence[str]) -> re.Pattern:
    alternatives = "|".join(re.escape(p) for p in sorted(phrases, key=len, reverse=True))
    return re.compile(rf"\b(?:{alternatives})\b", re.IGNORECASE)


COMPREHENSIVE_INDICATORS = _phrase_pattern([
    'entire', 'complete', 'full', 'comprehensive', 'detailed analysis',
    'everything about', 'all about', 'tell me about', 'explain everything',
    'complete guide', 'full story', 'entire history', 'complete overview',
    'detailed summary', 'comprehensive summary', 'full analysis',
    'complete analysis', 'entire document', 'whole document',
])

TIMELINE_INDICATORS = _phrase_pattern([
    'timeline', 'chronological', 'year-wise', 'history of', 'evolution',
    'progression', 'development over time', 'how it started', 'journey',
    'from beginning to end', 'through the years', 'over time',
    'step by step', 'chronology', 'sequence of events',
])

SUMMARY_INDICATORS = _phrase_pattern([
    'summary', 'summarize', 'summarise', 'overview', 'main points', 'key points', 'gist',
])

YEAR_RANGE = re.compile(r'\b\d{4}\b.*\b\d{4}\b')
YEAR_ANCHOR = re.compile(r'\b(?:from|since)\s+\d{4}\b', re.IGNORECASE)
WHAT_ABOUT = re.compile(r'\bwhat\b.*\babout\b', re.IGNORECASE)
PAGE_REFERENCE = re.compile(r'\bpages?\s*\d+', re.IGNORECASE)
PAGE_PHRASES = _phrase_pattern(['explain page', 'from page'])
DETAIL_SIGNALS = _phrase_pattern(['detailed', 'comprehensive'])

# First match wins.
PAGE_PATTERNS = [
    re.compile(r'\bpage\s*(\d+)\s*to\s*(\d+)', re.IGNORECASE),
    re.compile(r'\bpages\s*(\d+)\s*to\s*(\d+)', re.IGNORECASE),
    re.compile(r'\bpage\s*(\d+)\s*[-–]\s*(\d+)', re.IGNORECASE),
    re.compile(r'\bpages\s*(\d+)\s*[-–]\s*(\d+)', re.IGNORECASE),
    re.compile(r'\bpage\s*(\d+)', re.IGNORECASE),
    re.compile(r'\bpages\s*(\d+)', re.IGNORECASE),
]

_PAGE_NUMBERS = r'pages?\s*\d+(?:\s*(?:to|-|–)\s*\d+)?'
PAGE_REWRITES = [
    (re.compile(rf'\bexplain\s+{_PAGE_NUMBERS}', re.IGNORECASE), 'explain the content discussed'),
    (re.compile(rf'\bwhat\b.*?\b(?:on|in)\s+{_PAGE_NUMBERS}', re.IGNORECASE), 'what is the content discussed'),
    (re.compile(rf'\b{_PAGE_NUMBERS}\s*says?\b', re.IGNORECASE), 'the content discussed says'),
    (re.compile(rf'\bfrom\s+{_PAGE_NUMBERS}', re.IGNORECASE), 'from the content discussed'),
    (re.compile(rf'\b{_PAGE_NUMBERS}', re.IGNORECASE), 'the content discussed'),
]
FULL_COVERAGE = _phrase_pattern(['entire', 'whole', 'complete'])


def word_count(query: str) -> int:
    return len(query.split())


def extract_page_numbers(query: str) -> List[int]:
    """
    Page numbers referenced by a query, e.g. "pages 5-8" -> [5, 6, 7, 8].

    Ranges are inclusive; a reversed range is read in ascending order and
    very long ranges are truncated to MAX_PAGE_SPAN pages.
    """
    for pattern in PAGE_PATTERNS:
        match = pattern.search(query)
        if match:
            start = int(match.group(1))
            end = int(match.group(2)) if match.lastindex and match.lastindex >= 2 else start
            if end < start:
                start, end = end, start
            end = min(end, start + MAX_PAGE_SPAN - 1)
            return list(range(start, end + 1))
    return []


def has_year_scope(query: str) -> bool:
    """Two 4-digit years, or "from YYYY" / "since YYYY"."""
    return bool(YEAR_RANGE.search(query) or YEAR_ANCHOR.search(query))


def is_comprehensive(query: str) -> bool:
    # An explicit year range narrows "the entire history" to a period.
    return bool(COMPREHENSIVE_INDICATORS.search(query)) and not has_year_scope(query)


def is_timeline(query: str) -> bool:
    return bool(TIMELINE_INDICATORS.search(query)) or has_year_scope(query)


def is_summary(query: str) -> bool:
    if SUMMARY_INDICATORS.search(query):
        return True
    return bool(WHAT_ABOUT.search(query)) and len(query) < 50


def is_page_specific(query: str) -> bool:
    return bool(PAGE_REFERENCE.search(query) or PAGE_PHRASES.search(query))


def is_keyword(query: str) -> bool:
    return len(query) < 30 and word_count(query) <= 5


def comprehensive_budget(query: str) -> int:
    return min(40, max(30, word_count(query) * 2))


def timeline_budget(query: str) -> int:
    return 35 if len(query) > 100 else 25


def summary_budget(query: str) -> int:
    if DETAIL_SIGNALS.search(query) or len(query) > 80:
        return 20
    return 15


def page_specific_budget(query: str) -> int:
    return min(15, max(8, len(extract_page_numbers(query)) * 3))


def general_budget(query: str) -> int:
    if len(query) > 100 or word_count(query) > 15:
        return 15
    return 10


@dataclass(frozen=True)
class ClassificationRule:
    name: str
    predicate: Callable[[str], bool]
    query_type: QueryType
    budget: Callable[[str], int]


DEFAULT_RULES = (
    ClassificationRule("comprehensive", is_comprehensive, QueryType.COMPREHENSIVE, comprehensive_budget),
    ClassificationRule("timeline", is_timeline, QueryType.TIMELINE, timeline_budget),
    ClassificationRule("summary", is_summary, QueryType.SUMMARY, summary_budget),
    ClassificationRule("page_specific", is_page_specific, QueryType.PAGE_SPECIFIC, page_specific_budget),
    ClassificationRule("keyword", is_keyword, QueryType.KEYWORD, lambda query: 8),
    ClassificationRule("general", lambda query: True, QueryType.GENERAL, general_budget),
)


class QueryClassifier:
    """Ordered rule table over (predicate, query type, budget function)."""

    def __init__(self, rules: Sequence[ClassificationRule] = DEFAULT_RULES, max_budget: int = MAX_CHUNK_BUDGET):
        if not rules:
            raise ValueError("At least one classification rule is required")
        self.rules = tuple(rules)
        self.max_budget = min(max_budget, MAX_CHUNK_BUDGET)

    def classify(self, query: str) -> QueryClassification:
        """
        Classify a query.

        Args:
            query: Raw user question

        Returns:
            QueryClassification with a budget clamped to [1, max_budget]
        """
        text = (query or "").strip()
        if not text:
            return QueryClassification(QueryType.GENERAL, self._clamp(EMPTY_QUERY_BUDGET), [])

        for rule in self.rules:
            if rule.predicate(text):
                return QueryClassification(
                    query_type=rule.query_type,
                    chunk_budget=self._clamp(rule.budget(text)),
                    explicit_pages=extract_page_numbers(text),
                )
        return QueryClassification(QueryType.GENERAL, self._clamp(general_budget(text)), extract_page_numbers(text))

    def _clamp(self, budget: int) -> int:
        return max(MIN_CHUNK_BUDGET, min(self.max_budget, int(budget)))


def preprocess_query(query: str, query_type: QueryType) -> str:
    """Rewrite a query before it is embedded for semantic search."""
    processed = (query or "").strip()

    if query_type == QueryType.PAGE_SPECIFIC:
        for pattern, replacement in PAGE_REWRITES:
            processed = pattern.sub(replacement, processed)
    elif query_type == QueryType.SUMMARY:
        if not FULL_COVERAGE.search(processed):
            processed = f"comprehensive overview and {processed}"
    elif query_type == QueryType.KEYWORD:
        processed = f"information and details about {processed}"

    return processed
