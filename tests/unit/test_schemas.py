"""Unit tests for zapi/schemas.

Coverage targets:
* DatasetType, Verdict and Category parse names, numbers and legacy spellings.
* ECHO is excluded from the available dataset types.
* Enumerations serialise by name in JSON mode and accept numbers on input.
* merge_datasets is right-biased and treats None as an empty dataset.
* is_complete follows the error-or-complete rule.
"""

from __future__ import annotations

import json

import pytest

from zapi.core.errors import InputError
from zapi.schemas import (
    Categorization,
    Category,
    Dataset,
    DatasetType,
    Echo,
    Language,
    Malicious,
    QueryRequests,
    QueryResult,
    QueryStatus,
    Status,
    Verdict,
    is_complete,
    merge_datasets,
)


def _make_result(**status: object) -> QueryResult:
    return QueryResult(request_id="R1", url="http://example.com", query_status=QueryStatus(**status))


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class TestDatasetType:
    @pytest.mark.parametrize("value", ["categorization", "CATEGORIZATION", " Categorization ", 0])
    def test_parse_categorization(self, value: object) -> None:
        assert DatasetType.parse(value) is DatasetType.CATEGORIZATION

    def test_parse_language(self) -> None:
        assert DatasetType.parse("language") is DatasetType.LANGUAGE

    @pytest.mark.parametrize("value", ["bogus", 99, ""])
    def test_parse_invalid_raises(self, value: object) -> None:
        with pytest.raises(InputError):
            DatasetType.parse(value)

    def test_echo_not_available(self) -> None:
        available = DatasetType.available()
        assert DatasetType.ECHO not in available
        assert DatasetType.CATEGORIZATION in available
        assert DatasetType.MALICIOUS in available


class TestCategory:
    def test_parse_by_name(self) -> None:
        assert Category.parse("blog") is Category.BLOG

    def test_parse_by_id_string(self) -> None:
        assert Category.parse("29") is Category.NEWS

    def test_parse_by_int(self) -> None:
        assert Category.parse(103) is Category.MALWARE

    def test_parse_legacy_suffix(self) -> None:
        assert Category.parse("NEWS_4") is Category.NEWS

    def test_parse_invalid(self) -> None:
        with pytest.raises(InputError):
            Category.parse("NOT_A_CATEGORY")

    def test_str_is_name(self) -> None:
        assert str(Category.BLOG) == "BLOG"


class TestVerdict:
    def test_parse_short_name(self) -> None:
        assert Verdict.parse("malicious") is Verdict.VERDICT_MALICIOUS

    def test_parse_full_name(self) -> None:
        assert Verdict.parse("VERDICT_CLEAN") is Verdict.VERDICT_CLEAN

    def test_parse_invalid(self) -> None:
        with pytest.raises(ValueError):
            Verdict.parse("maybe")


# ---------------------------------------------------------------------------
# Model serialisation
# ---------------------------------------------------------------------------


class TestSerialisation:
    def test_enums_dump_by_name_in_json(self) -> None:
        dataset = Dataset(
            categorization=Categorization(value=[Category.BLOG, Category.NEWS]),
            malicious=Malicious(category=Category.PHISHING, verdict=Verdict.VERDICT_MALICIOUS),
        )
        data = json.loads(dataset.model_dump_json(exclude_none=True))
        assert data["categorization"]["value"] == ["BLOG", "NEWS"]
        assert data["malicious"] == {"category": "PHISHING", "verdict": "VERDICT_MALICIOUS"}

    def test_enums_accept_numbers(self) -> None:
        dataset = Dataset.model_validate(
            {"categorization": {"value": [7, "29"]}, "malicious": {"verdict": 2, "category": 104}}
        )
        assert dataset.categorization is not None
        assert dataset.categorization.value == [Category.BLOG, Category.NEWS]
        assert dataset.malicious is not None
        assert dataset.malicious.describe() == "PHISHING"

    def test_query_requests_datasets_by_name(self) -> None:
        requests = QueryRequests(url=["http://example.com"], dataset=["categorization", "malicious"])
        data = json.loads(requests.model_dump_json(exclude_none=True))
        assert data["dataset"] == ["CATEGORIZATION", "MALICIOUS"]

    def test_query_requests_are_frozen(self) -> None:
        requests = QueryRequests(url=["http://example.com"])
        with pytest.raises(Exception):
            requests.callback = "http://elsewhere"  # type: ignore[misc]

    def test_malicious_describe_clean(self) -> None:
        assert Malicious(verdict=Verdict.VERDICT_CLEAN).describe() == "VERDICT_CLEAN"

    def test_field_by_type(self) -> None:
        dataset = Dataset(language=Language(code="en"))
        assert dataset.field_by_type(DatasetType.LANGUAGE) == Language(code="en")
        assert dataset.field_by_type(DatasetType.ECHO) is None


# ---------------------------------------------------------------------------
# merge_datasets
# ---------------------------------------------------------------------------


class TestMergeDatasets:
    def test_merge_with_empty_is_identity(self) -> None:
        d = Dataset(categorization=Categorization(value=[Category.BLOG]), echo=Echo(url="http://a"))
        assert merge_datasets(d, Dataset()) == d
        assert merge_datasets(d, None) == d

    def test_merge_into_none(self) -> None:
        d = Dataset(language=Language(code="fr"))
        assert merge_datasets(None, d) == d

    def test_right_biased(self) -> None:
        left = Dataset(
            categorization=Categorization(value=[Category.BLOG]),
            language=Language(code="en"),
        )
        right = Dataset(categorization=Categorization(value=[Category.NEWS]))
        merged = merge_datasets(left, right)
        assert merged.categorization == Categorization(value=[Category.NEWS])
        assert merged.language == Language(code="en")

    def test_inputs_not_modified(self) -> None:
        left = Dataset(categorization=Categorization(value=[Category.BLOG]))
        right = Dataset(categorization=Categorization(value=[Category.NEWS]))
        merged = merge_datasets(left, right)
        merged.categorization.value.append(Category.ARTS)  # type: ignore[union-attr]
        assert right.categorization == Categorization(value=[Category.NEWS])
        assert left.categorization == Categorization(value=[Category.BLOG])


# ---------------------------------------------------------------------------
# is_complete
# ---------------------------------------------------------------------------


class TestIsComplete:
    def test_none_is_not_complete(self) -> None:
        assert is_complete(None) is False

    def test_missing_status_is_not_complete(self) -> None:
        assert is_complete(QueryResult(request_id="R1")) is False

    def test_complete_flag(self) -> None:
        assert is_complete(_make_result(complete=True)) is True

    def test_pending(self) -> None:
        assert is_complete(_make_result(complete=False)) is False

    def test_error_implies_complete(self) -> None:
        result = _make_result(complete=False, error=Status(code=5, message="not found"))
        assert is_complete(result) is True
