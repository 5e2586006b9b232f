"""
Unit tests for query classification and query rewriting.
"""

import pytest

from docchat.data_models import QueryType
from docchat.query_classifier import (
    ClassificationRule,
    QueryClassifier,
    extract_page_numbers,
    preprocess_query,
)


@pytest.fixture
def classifier():
    return QueryClassifier()


class TestExtractPageNumbers:
    """Test page reference parsing."""

    def test_range(self):
        assert extract_page_numbers("pages 5-8") == [5, 6, 7, 8]

    def test_single_page(self):
        assert extract_page_numbers("page 12") == [12]

    def test_no_pages(self):
        assert extract_page_numbers("tell me about dogs") == []

    def test_range_with_to(self):
        assert extract_page_numbers("what happens from page 3 to 5?") == [3, 4, 5]

    def test_en_dash_range(self):
        assert extract_page_numbers("Summarise pages 10–12") == [10, 11, 12]

    def test_reversed_range(self):
        """A reversed range is read in ascending order."""
        assert extract_page_numbers("pages 8 to 5") == [5, 6, 7, 8]

    def test_long_range_truncated(self):
        pages = extract_page_numbers("page 1 to 500")
        assert pages[0] == 1
        assert len(pages) == 100


class TestQueryClassifier:
    """Test the rule table."""

    def test_year_range_is_timeline(self, classifier):
        """An explicit year range turns 'entire history' into a timeline question."""
        result = classifier.classify("give me the entire history of this project from 1990 to 2010")
        assert result.query_type == QueryType.TIMELINE
        assert 25 <= result.chunk_budget <= 35

    def test_comprehensive(self, classifier):
        result = classifier.classify("tell me about dogs")
        assert result.query_type == QueryType.COMPREHENSIVE
        assert result.chunk_budget == 30
        assert result.explicit_pages == []

    def test_comprehensive_budget_grows_with_length(self, classifier):
        query = "give me a complete analysis of " + " ".join(["topic"] * 20)
        assert classifier.classify(query).chunk_budget == 40

    def test_indicator_needs_word_boundary(self, classifier):
        """'full' inside 'fully' is not a comprehensive cue."""
        result = classifier.classify("Why was the reactor fully shut down in the end?")
        assert result.query_type == QueryType.GENERAL

    def test_timeline(self, classifier):
        result = classifier.classify("how did the company evolve over time")
        assert result.query_type == QueryType.TIMELINE
        assert result.chunk_budget == 25

    def test_summary(self, classifier):
        result = classifier.classify("summarize the document")
        assert result.query_type == QueryType.SUMMARY
        assert result.chunk_budget == 15

    def test_detailed_summary(self, classifier):
        result = classifier.classify("give me the key points in a detailed way")
        assert result.query_type == QueryType.SUMMARY
        assert result.chunk_budget == 20

    def test_short_what_about(self, classifier):
        result = classifier.classify("what about the ending")
        assert result.query_type == QueryType.SUMMARY

    def test_page_specific(self, classifier):
        result = classifier.classify("explain page 5")
        assert result.query_type == QueryType.PAGE_SPECIFIC
        assert result.explicit_pages == [5]
        assert result.chunk_budget == 8

    def test_page_range_budget(self, classifier):
        result = classifier.classify("what is on pages 3-6")
        assert result.query_type == QueryType.PAGE_SPECIFIC
        assert result.explicit_pages == [3, 4, 5, 6]
        assert result.chunk_budget == 12

    def test_keyword(self, classifier):
        result = classifier.classify("photosynthesis")
        assert result.query_type == QueryType.KEYWORD
        assert result.chunk_budget == 8

    def test_general(self, classifier):
        result = classifier.classify("Why did the experiment fail in the end?")
        assert result.query_type == QueryType.GENERAL
        assert result.chunk_budget == 10

    def test_long_general(self, classifier):
        query = "How does the author justify the choice of the sampling method used in the third experiment"
        result = classifier.classify(query)
        assert result.query_type == QueryType.GENERAL
        assert result.chunk_budget == 15

    def test_empty_query(self, classifier):
        result = classifier.classify("   ")
        assert result.query_type == QueryType.GENERAL
        assert result.chunk_budget == 10

    @pytest.mark.parametrize("query", [
        "",
        "x",
        "tell me everything about " + "history " * 200,
        "pages 1-400",
        "summary",
        "from 1800 to 2020",
    ])
    def test_budget_bounds(self, classifier, query):
        budget = classifier.classify(query).chunk_budget
        assert 1 <= budget <= 50

    def test_max_budget_clamp(self):
        classifier = QueryClassifier(max_budget=20)
        assert classifier.classify("tell me about dogs").chunk_budget == 20

    def test_custom_rules(self):
        """Rules are evaluated in order; the first match decides."""
        rules = [
            ClassificationRule("always_keyword", lambda q: True, QueryType.KEYWORD, lambda q: 99),
        ]
        result = QueryClassifier(rules=rules).classify("summarize the document")
        assert result.query_type == QueryType.KEYWORD
        assert result.chunk_budget == 50

    def test_deterministic(self, classifier):
        query = "what is on pages 3-6"
        assert classifier.classify(query) == classifier.classify(query)


class TestPreprocessQuery:
    """Test query rewriting before embedding."""

    def test_page_reference_removed(self):
        assert preprocess_query("explain page 5", QueryType.PAGE_SPECIFIC) == "explain the content discussed"

    def test_page_says(self):
        rewritten = preprocess_query("what page 4 says about cells", QueryType.PAGE_SPECIFIC)
        assert "page 4" not in rewritten
        assert "the content discussed says" in rewritten

    def test_summary_prefixed(self):
        assert preprocess_query("summarize the document", QueryType.SUMMARY) == \
            "comprehensive overview and summarize the document"

    def test_summary_of_whole_document_unchanged(self):
        assert preprocess_query("summarize the whole document", QueryType.SUMMARY) == \
            "summarize the whole document"

    def test_keyword_expanded(self):
        assert preprocess_query("photosynthesis", QueryType.KEYWORD) == \
            "information and details about photosynthesis"

    def test_general_unchanged(self):
        assert preprocess_query("  why is the sky blue ", QueryType.GENERAL) == "why is the sky blue"
