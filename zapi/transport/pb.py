"""Protocol buffer schema for the zvelo API gRPC service.

The message classes are built at import time from a descriptor assembled in
code, so no generated ``_pb2`` module is needed.  The schema mirrors the
pydantic models in :mod:`zapi.schemas`; :func:`to_message` and
:func:`from_message` convert between the two.

Service ``zvelo.msg.API``::

    rpc Query(QueryRequests) returns (QueryReplies);
    rpc Result(RequestID) returns (QueryResult);
    rpc Suggest(Suggestion) returns (Empty);
    rpc Stream(Empty) returns (stream QueryResult);
"""

from __future__ import annotations

from typing import Any, TypeVar

from google.protobuf import descriptor_pb2, descriptor_pool, json_format, message_factory
from google.protobuf.message import Message
from pydantic import BaseModel

PACKAGE = "zvelo.msg"
SERVICE = f"{PACKAGE}.API"

_F = descriptor_pb2.FieldDescriptorProto

_OPTIONAL = _F.LABEL_OPTIONAL
_REPEATED = _F.LABEL_REPEATED

# (name, number, type, label, message type name)
_MESSAGES: dict[str, list[tuple[str, int, int, int, str]]] = {
    "Status": [
        ("code", 1, _F.TYPE_INT32, _OPTIONAL, ""),
        ("message", 2, _F.TYPE_STRING, _OPTIONAL, ""),
    ],
    "Categorization": [
        ("value", 2, _F.TYPE_INT32, _REPEATED, ""),
        ("error", 3, _F.TYPE_MESSAGE, _OPTIONAL, "Status"),
    ],
    "Malicious": [
        ("category", 4, _F.TYPE_INT32, _OPTIONAL, ""),
        ("verdict", 5, _F.TYPE_INT32, _OPTIONAL, ""),
        ("error", 6, _F.TYPE_MESSAGE, _OPTIONAL, "Status"),
    ],
    "Echo": [
        ("url", 1, _F.TYPE_STRING, _OPTIONAL, ""),
        ("error", 2, _F.TYPE_MESSAGE, _OPTIONAL, "Status"),
    ],
    "Language": [
        ("code", 1, _F.TYPE_STRING, _OPTIONAL, ""),
        ("error", 2, _F.TYPE_MESSAGE, _OPTIONAL, "Status"),
    ],
    # Field numbers follow the dataset type values plus one.
    "DataSet": [
        ("categorization", 1, _F.TYPE_MESSAGE, _OPTIONAL, "Categorization"),
        ("malicious", 5, _F.TYPE_MESSAGE, _OPTIONAL, "Malicious"),
        ("echo", 6, _F.TYPE_MESSAGE, _OPTIONAL, "Echo"),
        ("language", 7, _F.TYPE_MESSAGE, _OPTIONAL, "Language"),
    ],
    "URLContent": [
        ("url", 1, _F.TYPE_STRING, _OPTIONAL, ""),
        ("content", 2, _F.TYPE_STRING, _OPTIONAL, ""),
    ],
    "QueryRequests": [
        ("url", 1, _F.TYPE_STRING, _REPEATED, ""),
        ("content", 2, _F.TYPE_MESSAGE, _REPEATED, "URLContent"),
        ("dataset", 3, _F.TYPE_INT32, _REPEATED, ""),
        ("callback", 4, _F.TYPE_STRING, _OPTIONAL, ""),
        ("dataset_hints", 5, _F.TYPE_MESSAGE, _OPTIONAL, "DataSet"),
    ],
    "QueryReply": [
        ("request_id", 1, _F.TYPE_STRING, _OPTIONAL, ""),
        ("error", 2, _F.TYPE_MESSAGE, _OPTIONAL, "Status"),
    ],
    "QueryReplies": [
        ("reply", 1, _F.TYPE_MESSAGE, _REPEATED, "QueryReply"),
    ],
    "RequestID": [
        ("request_id", 1, _F.TYPE_STRING, _OPTIONAL, ""),
    ],
    "QueryStatus": [
        ("complete", 1, _F.TYPE_BOOL, _OPTIONAL, ""),
        ("fetch_code", 2, _F.TYPE_INT32, _OPTIONAL, ""),
        ("location", 3, _F.TYPE_STRING, _OPTIONAL, ""),
        ("error", 4, _F.TYPE_MESSAGE, _OPTIONAL, "Status"),
    ],
    "QueryResult": [
        ("request_id", 1, _F.TYPE_STRING, _OPTIONAL, ""),
        ("url", 2, _F.TYPE_STRING, _OPTIONAL, ""),
        ("response_dataset", 3, _F.TYPE_MESSAGE, _OPTIONAL, "DataSet"),
        ("query_status", 4, _F.TYPE_MESSAGE, _OPTIONAL, "QueryStatus"),
    ],
    "Suggestion": [
        ("url", 1, _F.TYPE_STRING, _OPTIONAL, ""),
        ("dataset", 2, _F.TYPE_MESSAGE, _OPTIONAL, "DataSet"),
    ],
    "Empty": [],
}

# (method, input, output, server streaming)
_METHODS: list[tuple[str, str, str, bool]] = [
    ("Query", "QueryRequests", "QueryReplies", False),
    ("Result", "RequestID", "QueryResult", False),
    ("Suggest", "Suggestion", "Empty", False),
    ("Stream", "Empty", "QueryResult", True),
]


def _build_file() -> descriptor_pb2.FileDescriptorProto:
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="zvelo/msg/api.proto",
        package=PACKAGE,
        syntax="proto3",
    )

    for message_name, fields in _MESSAGES.items():
        message = file_proto.message_type.add(name=message_name)
        for name, number, field_type, label, type_name in fields:
            field = message.field.add(
                name=name,
                number=number,
                type=field_type,
                label=label,
                json_name=name,
            )
            if type_name:
                field.type_name = f".{PACKAGE}.{type_name}"

    service = file_proto.service.add(name="API")
    for name, input_type, output_type, server_streaming in _METHODS:
        service.method.add(
            name=name,
            input_type=f".{PACKAGE}.{input_type}",
            output_type=f".{PACKAGE}.{output_type}",
            server_streaming=server_streaming,
        )

    return file_proto


_pool = descriptor_pool.DescriptorPool()
_pool.AddSerializedFile(_build_file().SerializeToString())


def _message_class(name: str) -> type[Message]:
    return message_factory.GetMessageClass(_pool.FindMessageTypeByName(f"{PACKAGE}.{name}"))


Status = _message_class("Status")
DataSet = _message_class("DataSet")
URLContent = _message_class("URLContent")
QueryRequests = _message_class("QueryRequests")
QueryReply = _message_class("QueryReply")
QueryReplies = _message_class("QueryReplies")
RequestID = _message_class("RequestID")
QueryStatus = _message_class("QueryStatus")
QueryResult = _message_class("QueryResult")
Suggestion = _message_class("Suggestion")
Empty = _message_class("Empty")


def method_path(name: str) -> str:
    """Return the gRPC method path, e.g. ``/zvelo.msg.API/Query``."""
    return f"/{SERVICE}/{name}"


M = TypeVar("M", bound=BaseModel)


def to_message(model: BaseModel, message_class: type[Message]) -> Any:
    """Convert a pydantic model into an instance of *message_class*."""
    return json_format.ParseDict(
        model.model_dump(exclude_none=True),
        message_class(),
        ignore_unknown_fields=True,
    )


def from_message(message: Message, model_class: type[M]) -> M:
    """Convert a protobuf *message* into an instance of *model_class*."""
    return model_class.model_validate(
        json_format.MessageToDict(message, preserving_proto_field_name=True)
    )
