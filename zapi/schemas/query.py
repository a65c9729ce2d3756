"""Pydantic schemas for query submission, replies and results."""
from __future__ import annotations

from pydantic import BaseModel, Field

from zapi.schemas.dataset import Dataset, DatasetTypeField, Status


class URLContent(BaseModel):
    """A raw content body submitted for analysis, with an optional source URL."""

    url: str = Field(default="", description="URL the content was retrieved from, if any")
    content: str = Field(default="", description="The raw content")


class QueryRequests(BaseModel):
    """A user issued submission of URLs and/or content bodies."""

    url: list[str] = Field(default_factory=list)
    content: list[URLContent] = Field(default_factory=list)
    dataset: list[DatasetTypeField] = Field(default_factory=list)
    callback: str = Field(default="", description="URL the service posts results to")
    dataset_hints: Dataset | None = Field(
        default=None,
        description="Known dataset values for the submitted URLs",
    )

    model_config = {"frozen": True}


class QueryReply(BaseModel):
    """Acknowledgement of one submitted URL or content body."""

    request_id: str = ""
    error: Status | None = None


class QueryReplies(BaseModel):
    """The service's acknowledgement of a :class:`QueryRequests`.

    Replies are ordered like the submission: URLs first, then content.
    """

    reply: list[QueryReply] = Field(default_factory=list)


class QueryStatus(BaseModel):
    complete: bool = False
    fetch_code: int = Field(default=0, description="HTTP status of the fetch, if any")
    location: str = Field(default="", description="Redirect location, if any")
    error: Status | None = None


class QueryResult(BaseModel):
    """The evolving state of one request."""

    request_id: str = ""
    url: str = Field(default="", description="URL, or a synopsis of the content")
    response_dataset: Dataset | None = None
    query_status: QueryStatus | None = None


class Suggestion(BaseModel):
    """A user suggestion of the correct datasets for a URL."""

    url: str
    dataset: Dataset = Field(default_factory=Dataset)


def is_complete(result: QueryResult | None) -> bool:
    """Return whether *result* has reached its final state.

    A result is complete when its query status carries an error (complete is
    then implied) or when the service flagged it complete.
    """
    if result is None or result.query_status is None:
        return False
    if result.query_status.error is not None:
        return True
    return result.query_status.complete
