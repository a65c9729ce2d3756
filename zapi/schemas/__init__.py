"""Pydantic schemas for the zvelo API messages."""

from zapi.schemas.dataset import (
    Categorization,
    Category,
    Dataset,
    DatasetType,
    Echo,
    Language,
    Malicious,
    Status,
    Verdict,
    merge_datasets,
)
from zapi.schemas.query import (
    QueryReplies,
    QueryReply,
    QueryRequests,
    QueryResult,
    QueryStatus,
    Suggestion,
    URLContent,
    is_complete,
)

__all__ = [
    "Categorization",
    "Category",
    "Dataset",
    "DatasetType",
    "Echo",
    "Language",
    "Malicious",
    "QueryReplies",
    "QueryReply",
    "QueryRequests",
    "QueryResult",
    "QueryStatus",
    "Status",
    "Suggestion",
    "URLContent",
    "Verdict",
    "is_complete",
    "merge_datasets",
]
