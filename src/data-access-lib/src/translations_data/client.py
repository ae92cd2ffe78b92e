"""
translations_data.client — TenantScopedStore.

Document store over a single DynamoDB table, scoped to one tenant partition.
Every key the store builds carries PK=TENANT#{tenant_id}; callers cannot
supply a partition of their own.

Integrity guarantees:
  - Unique fields: a UNIQUE# item is put with attribute_not_exists(PK) in
    the same transaction as the record.
  - References: a ConditionCheck requires the target UNIQUE# item to exist.
  - Failed conditions are reported as StoreError with a structured kind,
    resolved positionally from the transaction's CancellationReasons.
"""

from __future__ import annotations

import os
import re
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from decimal import Decimal
from typing import Any

import boto3
from aws_lambda_powertools import Logger
from boto3.dynamodb.conditions import Attr, ConditionBase, Key
from botocore.exceptions import BotoCoreError, ClientError

from translations_data.exceptions import StoreError, StoreErrorKind
from translations_data.models import (
    DOCUMENT_ATTRIBUTE,
    Predicate,
    Reference,
    Results,
    SortKey,
    TenantContext,
    record_sk,
    record_sk_prefix,
    tenant_pk,
    unique_sk,
    unique_sk_prefix,
)

logger = Logger(service="translations-data")

_CONDITION_FAILED = "ConditionalCheckFailed"
_TRANSACTION_CANCELED = "TransactionCanceledException"
_UNAVAILABLE_CODES = frozenset(
    {
        "ProvisionedThroughputExceededException",
        "ThrottlingException",
        "RequestLimitExceeded",
        "InternalServerError",
        "ServiceUnavailable",
    }
)
# "Transaction cancelled, please refer cancellation reasons for specific
# reasons [None, ConditionalCheckFailed]"
_REASONS_IN_MESSAGE_RE = re.compile(r"\[([^\]]*)\]\s*$")


class _RecordMissing(Exception):
    """The record a transaction was conditioned on no longer exists."""


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


def _cancellation_codes(exc: ClientError) -> list[str]:
    reasons = exc.response.get("CancellationReasons")
    if reasons:
        return [str(reason.get("Code", "None")) for reason in reasons]
    message = str(exc.response.get("Error", {}).get("Message", ""))
    match = _REASONS_IN_MESSAGE_RE.search(message)
    if match is None:
        return []
    return [part.strip() for part in match.group(1).split(",")]


def _lookup(document: dict[str, Any], path: str) -> Any:
    value: Any = document
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _sort_value(value: Any) -> tuple[int, Any]:
    if value is None:
        return (2, "")
    if isinstance(value, bool):
        return (1, str(value))
    if isinstance(value, int | float | Decimal):
        return (0, Decimal(str(value)))
    return (1, str(value))


def _sorted_records(
    records: list[dict[str, Any]], sort_keys: Sequence[SortKey]
) -> list[dict[str, Any]]:
    ordered = list(records)
    for sort_key in reversed(sort_keys):
        ordered.sort(
            key=lambda record, path=sort_key.field: _sort_value(_lookup(record, path)),
            reverse=sort_key.descending,
        )
    return ordered


class TenantScopedStore:
    """
    Document store scoped to a single tenant partition.

    Records are grouped by logical table ("language", "translation", ...)
    through the SK prefix.  Store-default order is SK ascending, i.e. by id.
    """

    def __init__(
        self,
        context: TenantContext,
        *,
        table_name: str,
        dynamodb_resource: Any = None,
    ) -> None:
        self._tenant_id = context.tenant_id
        self._user_id = context.user_id
        self._table_name = table_name
        self._pk = tenant_pk(context.tenant_id)
        region = os.environ["AWS_REGION"]
        self._dynamodb: Any = dynamodb_resource or boto3.resource("dynamodb", region_name=region)
        self._table = self._dynamodb.Table(table_name)

    @property
    def tenant_id(self) -> str:
        return self._tenant_id

    # -----------------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------------

    @contextmanager
    def _translate_errors(self, operation: str, table: str) -> Iterator[None]:
        """Convert boto3 failures into StoreError."""
        try:
            yield
        except ClientError as exc:
            code = _error_code(exc)
            logger.error(
                "DynamoDB operation failed",
                operation=operation,
                table=table,
                tenant_id=self._tenant_id,
                error_code=code,
            )
            if code in _UNAVAILABLE_CODES:
                raise StoreError(StoreErrorKind.UNAVAILABLE, str(exc)) from exc
            raise StoreError.from_message(str(exc)) from exc
        except BotoCoreError as exc:
            logger.error(
                "DynamoDB unreachable",
                operation=operation,
                table=table,
                tenant_id=self._tenant_id,
            )
            raise StoreError(StoreErrorKind.UNAVAILABLE, str(exc)) from exc

    def _key(self, sk: str) -> dict[str, str]:
        return {"PK": self._pk, "SK": sk}

    def _paginate(self, **kwargs: Any) -> Iterator[dict[str, Any]]:
        while True:
            response = self._table.query(**kwargs)
            yield response
            last_key = response.get("LastEvaluatedKey")
            if last_key is None:
                return
            kwargs["ExclusiveStartKey"] = last_key

    def _partition_condition(self, sk_prefix: str) -> ConditionBase:
        return Key("PK").eq(self._pk) & Key("SK").begins_with(sk_prefix)

    def _query_items(
        self,
        sk_prefix: str,
        *,
        filter_expression: ConditionBase | None = None,
        keys_only: bool = False,
    ) -> list[dict[str, Any]]:
        kwargs: dict[str, Any] = {"KeyConditionExpression": self._partition_condition(sk_prefix)}
        if filter_expression is not None:
            kwargs["FilterExpression"] = filter_expression
        if keys_only:
            kwargs["ProjectionExpression"] = "PK, SK"
        items: list[dict[str, Any]] = []
        for response in self._paginate(**kwargs):
            items.extend(response.get("Items", []))
        return items

    def _write_transaction(
        self,
        operations: list[dict[str, Any]],
        failures: list[Exception | None],
    ) -> None:
        """Run a TransactWriteItems call.

        failures[i] is raised when operations[i]'s condition fails; None
        means the operation carries no condition of interest.
        """
        try:
            self._dynamodb.meta.client.transact_write_items(TransactItems=operations)
        except ClientError as exc:
            if _error_code(exc) != _TRANSACTION_CANCELED:
                raise
            codes = _cancellation_codes(exc)
            for code, failure in zip(codes, failures):
                if code == _CONDITION_FAILED and failure is not None:
                    raise failure from exc
            raise StoreError.from_message(str(exc)) from exc

    def _put_operation(self, item: dict[str, Any], condition: str) -> dict[str, Any]:
        return {
            "Put": {
                "TableName": self._table_name,
                "Item": item,
                "ConditionExpression": condition,
            }
        }

    def _delete_operation(self, sk: str, condition: str | None = None) -> dict[str, Any]:
        operation: dict[str, Any] = {"TableName": self._table_name, "Key": self._key(sk)}
        if condition is not None:
            operation["ConditionExpression"] = condition
        return {"Delete": operation}

    def _reference_checks(
        self,
        document: dict[str, Any],
        references: Sequence[Reference],
    ) -> tuple[list[dict[str, Any]], list[Exception | None]]:
        operations: list[dict[str, Any]] = []
        failures: list[Exception | None] = []
        for reference in references:
            value = document.get(reference.field)
            if value is None:
                continue
            operations.append(
                {
                    "ConditionCheck": {
                        "TableName": self._table_name,
                        "Key": self._key(
                            unique_sk(reference.target_table, reference.target_field, value)
                        ),
                        "ConditionExpression": "attribute_exists(PK)",
                    }
                }
            )
            failures.append(
                StoreError(
                    StoreErrorKind.MISSING_REFERENCE,
                    f"Key ({reference.field})=({value}) is not present in table "
                    f"{reference.target_table!r}",
                    field=reference.field,
                    value=str(value),
                )
            )
        return operations, failures

    def _unique_put(
        self, table: str, record_id: str, field_name: str, value: Any
    ) -> tuple[dict[str, Any], Exception]:
        item = {"PK": self._pk, "SK": unique_sk(table, field_name, value), "id": record_id}
        failure = StoreError(
            StoreErrorKind.DUPLICATE_KEY,
            f"duplicate key value violates unique constraint: "
            f"Key ({field_name})=({value}) already exists in table {table!r}",
            field=field_name,
            value=str(value),
        )
        return self._put_operation(item, "attribute_not_exists(PK)"), failure

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    def get(self, predicate: Predicate) -> Results:
        """Return the predicate's window of records and the total match count."""
        with self._translate_errors("get", predicate.table):
            items = self._query_items(
                record_sk_prefix(predicate.table),
                filter_expression=predicate.condition,
            )
        records = [item[DOCUMENT_ATTRIBUTE] for item in items]
        if predicate.sort_keys:
            records = _sorted_records(records, predicate.sort_keys)
        window = records[predicate.offset : predicate.offset + predicate.limit]
        return Results(records=window, total_records=len(records))

    def get_by_id(self, table: str, record_id: str) -> dict[str, Any] | None:
        """Return the record with this id, or None if it does not exist."""
        with self._translate_errors("get_by_id", table):
            response = self._table.get_item(Key=self._key(record_sk(table, record_id)))
        item = response.get("Item")
        if item is None:
            return None
        return item[DOCUMENT_ATTRIBUTE]

    def count(self, table: str, *, where: dict[str, Any] | None = None) -> int:
        """Count records in table whose document fields equal every value in where."""
        kwargs: dict[str, Any] = {
            "KeyConditionExpression": self._partition_condition(record_sk_prefix(table)),
            "Select": "COUNT",
        }
        condition: ConditionBase | None = None
        for field_name, value in (where or {}).items():
            clause = Attr(f"{DOCUMENT_ATTRIBUTE}.{field_name}").eq(value)
            condition = clause if condition is None else condition & clause
        if condition is not None:
            kwargs["FilterExpression"] = condition
        with self._translate_errors("count", table):
            return sum(int(response.get("Count", 0)) for response in self._paginate(**kwargs))

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------

    def save(
        self,
        table: str,
        record_id: str,
        document: dict[str, Any],
        *,
        unique_fields: Sequence[str] = (),
        references: Sequence[Reference] = (),
    ) -> str:
        """Insert a new record and return its id.

        Raises StoreError(DUPLICATE_KEY) if the id or a unique field value is
        taken, StoreError(MISSING_REFERENCE) if a reference target is absent.
        """
        document = {**document, "id": record_id}
        operations = [
            self._put_operation(
                {"PK": self._pk, "SK": record_sk(table, record_id), DOCUMENT_ATTRIBUTE: document},
                "attribute_not_exists(PK)",
            )
        ]
        failures: list[Exception | None] = [
            StoreError(
                StoreErrorKind.DUPLICATE_KEY,
                f"duplicate key value violates unique constraint: "
                f"Key (id)=({record_id}) already exists in table {table!r}",
                field="id",
                value=record_id,
            )
        ]
        for field_name in unique_fields:
            value = document.get(field_name)
            if value is None:
                continue
            operation, failure = self._unique_put(table, record_id, field_name, value)
            operations.append(operation)
            failures.append(failure)
        checks, check_failures = self._reference_checks(document, references)
        operations.extend(checks)
        failures.extend(check_failures)

        with self._translate_errors("save", table):
            self._write_transaction(operations, failures)
        logger.debug("Record saved", table=table, tenant_id=self._tenant_id, record_id=record_id)
        return record_id

    def update(
        self,
        table: str,
        record_id: str,
        document: dict[str, Any],
        *,
        unique_fields: Sequence[str] = (),
        references: Sequence[Reference] = (),
    ) -> int:
        """Replace the record with this id.  Returns the number of records updated (0 or 1)."""
        existing = self.get_by_id(table, record_id)
        if existing is None:
            return 0

        document = {**document, "id": record_id}
        operations = [
            self._put_operation(
                {"PK": self._pk, "SK": record_sk(table, record_id), DOCUMENT_ATTRIBUTE: document},
                "attribute_exists(PK)",
            )
        ]
        failures: list[Exception | None] = [_RecordMissing()]
        for field_name in unique_fields:
            old_value = existing.get(field_name)
            new_value = document.get(field_name)
            if old_value == new_value:
                continue
            if old_value is not None:
                operations.append(self._delete_operation(unique_sk(table, field_name, old_value)))
                failures.append(None)
            if new_value is not None:
                operation, failure = self._unique_put(table, record_id, field_name, new_value)
                operations.append(operation)
                failures.append(failure)
        checks, check_failures = self._reference_checks(document, references)
        operations.extend(checks)
        failures.extend(check_failures)

        try:
            with self._translate_errors("update", table):
                self._write_transaction(operations, failures)
        except _RecordMissing:
            return 0
        return 1

    def delete(
        self,
        table: str,
        record_id: str,
        *,
        unique_fields: Sequence[str] = (),
    ) -> int:
        """Delete the record with this id.  Returns the number of records deleted (0 or 1)."""
        existing = self.get_by_id(table, record_id)
        if existing is None:
            return 0

        operations = [self._delete_operation(record_sk(table, record_id), "attribute_exists(PK)")]
        failures: list[Exception | None] = [_RecordMissing()]
        for field_name in unique_fields:
            value = existing.get(field_name)
            if value is not None:
                operations.append(self._delete_operation(unique_sk(table, field_name, value)))
                failures.append(None)

        try:
            with self._translate_errors("delete", table):
                self._write_transaction(operations, failures)
        except _RecordMissing:
            return 0
        return 1

    def delete_all(self, table: str) -> int:
        """Delete every record of table in this tenant's partition.

        Returns the number of records removed.  Other tenants and other
        tables are untouched.
        """
        with self._translate_errors("delete_all", table):
            records = self._query_items(record_sk_prefix(table), keys_only=True)
            uniques = self._query_items(unique_sk_prefix(table), keys_only=True)
            with self._table.batch_writer() as batch:
                for item in records + uniques:
                    batch.delete_item(Key={"PK": item["PK"], "SK": item["SK"]})
        logger.info(
            "Deleted all records",
            table=table,
            tenant_id=self._tenant_id,
            deleted=len(records),
        )
        return len(records)
