"""
translations_data.models — Key layout and value types for the translations store.

All entity tables share one DynamoDB table, partitioned per tenant:

    Record item      PK: TENANT#{tenantId}  SK: {table}#{id}
                     document: the JSON record
    Uniqueness item  PK: TENANT#{tenantId}  SK: UNIQUE#{table}#{field}#{value}
                     id: owning record id

Uniqueness items are written and removed in the same transaction as the
record that owns them.  A reference rule is a condition check that the
target table's uniqueness item exists.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from boto3.dynamodb.conditions import ConditionBase

TENANT_PK_PREFIX = "TENANT#"
UNIQUE_SK_PREFIX = "UNIQUE#"
KEY_SEPARATOR = "#"
DOCUMENT_ATTRIBUTE = "document"


def tenant_pk(tenant_id: str) -> str:
    return f"{TENANT_PK_PREFIX}{tenant_id}"


def record_sk_prefix(table: str) -> str:
    return f"{table}{KEY_SEPARATOR}"


def record_sk(table: str, record_id: str) -> str:
    return f"{record_sk_prefix(table)}{record_id}"


def unique_sk_prefix(table: str) -> str:
    return f"{UNIQUE_SK_PREFIX}{table}{KEY_SEPARATOR}"


def unique_sk(table: str, field_name: str, value: Any) -> str:
    return f"{unique_sk_prefix(table)}{field_name}{KEY_SEPARATOR}{value}"


@dataclass(frozen=True)
class TenantContext:
    """Tenant identity resolved from the request headers."""

    tenant_id: str
    user_id: str | None = None

    def __post_init__(self) -> None:
        if not self.tenant_id:
            raise ValueError("tenant_id must not be empty")
        if KEY_SEPARATOR in self.tenant_id:
            raise ValueError(f"tenant_id must not contain {KEY_SEPARATOR!r}")


@dataclass(frozen=True)
class Reference:
    """A write-time rule: document[field] must exist as target_table's unique target_field."""

    field: str
    target_table: str
    target_field: str


@dataclass(frozen=True)
class SortKey:
    field: str
    descending: bool = False


@dataclass(frozen=True)
class Predicate:
    """Compiled, bounded filter for a list operation.

    condition=None matches every record in the table.  Records are returned
    in SK order unless sort_keys is set.
    """

    table: str
    limit: int
    offset: int
    condition: ConditionBase | None = None
    sort_keys: tuple[SortKey, ...] = ()

    def __post_init__(self) -> None:
        if self.limit < 0:
            raise ValueError(f"limit must be >= 0, got {self.limit!r}")
        if self.offset < 0:
            raise ValueError(f"offset must be >= 0, got {self.offset!r}")


@dataclass(frozen=True)
class Results:
    """One window of records plus the number of matches before windowing."""

    records: list[dict[str, Any]] = field(default_factory=list)
    total_records: int = 0
