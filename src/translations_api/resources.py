"""
translations_api.resources — Generic tenant-scoped CRUD resource handler.

A ResourceDefinition describes one entity table (name, uniqueness field,
reference rules, dependents).  ResourceHandler implements list / create /
read / update / delete / delete-all for any definition and converts every
store failure into an ApiError.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from aws_lambda_powertools import Logger
from translations_data import (
    QuerySyntaxError,
    Reference,
    StoreError,
    StoreErrorKind,
    TenantContext,
    TenantScopedStore,
    compile_filter,
)

from translations_api.errors import (
    ApiError,
    BadRequest,
    InternalError,
    NotFound,
    PreconditionFailed,
    QueryError,
    UnprocessableEntity,
    validation_parameter,
)

logger = Logger(service="translations-api")

StoreFactory = Callable[[TenantContext], TenantScopedStore]


@dataclass(frozen=True)
class Dependent:
    """Records in table whose field holds this resource's target_field value."""

    table: str
    field: str
    target_field: str


@dataclass(frozen=True)
class ResourceDefinition:
    name: str  # route segment and list envelope key
    table: str
    label: str
    unique_field: str = "localeCode"
    unique_label: str = "LocaleCode"
    required_fields: tuple[str, ...] = ("localeCode",)
    references: tuple[Reference, ...] = ()
    dependents: tuple[Dependent, ...] = ()

    def parameter_key(self, field: str) -> str:
        if field == self.unique_field:
            return self.unique_label
        return field


LANGUAGES = ResourceDefinition(
    name="languages",
    table="language",
    label="Language",
    dependents=(
        Dependent(table="languageTranslator", field="localeCode", target_field="localeCode"),
        Dependent(table="translation", field="localeCode", target_field="localeCode"),
    ),
)

LANGUAGE_TRANSLATORS = ResourceDefinition(
    name="languageTranslators",
    table="languageTranslator",
    label="LanguageTranslator",
    references=(Reference(field="localeCode", target_table="language", target_field="localeCode"),),
)

TRANSLATIONS = ResourceDefinition(
    name="translations",
    table="translation",
    label="Translation",
    references=(Reference(field="localeCode", target_table="language", target_field="localeCode"),),
)

RESOURCES: dict[str, ResourceDefinition] = {
    definition.name: definition for definition in (LANGUAGES, LANGUAGE_TRANSLATORS, TRANSLATIONS)
}


class ResourceHandler:
    """
    CRUD-with-filtered-query operations for one resource definition.

    Stateless: every call resolves the tenant's store through store_factory
    and issues its store operations sequentially.  Only ApiError subclasses
    leave these methods for store failures.
    """

    def __init__(self, definition: ResourceDefinition, store_factory: StoreFactory) -> None:
        self.definition = definition
        self._store_factory = store_factory

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    def _store(self, tenant: TenantContext) -> TenantScopedStore:
        return self._store_factory(tenant)

    def _validate(self, entity: dict[str, Any]) -> None:
        missing = [
            field
            for field in self.definition.required_fields
            if not isinstance(entity.get(field), str) or not entity[field].strip()
        ]
        if missing:
            raise UnprocessableEntity(
                f"Missing required field(s): {', '.join(missing)}",
                parameters=[validation_parameter(field, entity.get(field)) for field in missing],
            )
        record_id = entity.get("id")
        if record_id is not None and (not isinstance(record_id, str) or not record_id.strip()):
            raise UnprocessableEntity(
                "id must be a non-empty string",
                parameters=[validation_parameter("id", record_id)],
            )

    def _internal(self, exc: StoreError, *, operation: str, tenant: TenantContext) -> ApiError:
        logger.error(
            "Store operation failed",
            operation=operation,
            table=self.definition.table,
            tenant_id=tenant.tenant_id,
            error_kind=exc.kind.value,
            error=str(exc),
        )
        return InternalError(str(exc))

    def _classify_write(
        self,
        exc: StoreError,
        entity: dict[str, Any],
        *,
        operation: str,
        tenant: TenantContext,
    ) -> ApiError:
        definition = self.definition
        if exc.kind is StoreErrorKind.DUPLICATE_KEY:
            field = exc.field or definition.unique_field
            value = exc.value if exc.value is not None else entity.get(field)
            logger.info(
                "Rejected duplicate value",
                table=definition.table,
                tenant_id=tenant.tenant_id,
                field=field,
            )
            if field == "id":
                return UnprocessableEntity(
                    f"{definition.label} with this id already exists",
                    parameters=[validation_parameter("id", value)],
                )
            return UnprocessableEntity(
                f"{definition.label} already exists",
                parameters=[validation_parameter(definition.parameter_key(field), value)],
            )
        if exc.kind is StoreErrorKind.MISSING_REFERENCE and definition.references:
            field = exc.field or definition.references[0].field
            value = exc.value if exc.value is not None else entity.get(field)
            logger.info(
                "Rejected missing reference",
                table=definition.table,
                tenant_id=tenant.tenant_id,
                field=field,
            )
            return UnprocessableEntity(
                "Referenced Language does not exist",
                parameters=[validation_parameter(definition.parameter_key(field), value)],
            )
        return self._internal(exc, operation=operation, tenant=tenant)

    def _in_use(self, store: TenantScopedStore, record: dict[str, Any]) -> bool:
        for dependent in self.definition.dependents:
            value = record.get(dependent.target_field)
            if value is None:
                continue
            if store.count(dependent.table, where={dependent.field: value}) > 0:
                return True
        return False

    def _check_rename(
        self,
        store: TenantScopedStore,
        tenant: TenantContext,
        record_id: str,
        document: dict[str, Any],
    ) -> None:
        """Refuse to change a field that dependent records still point at."""
        definition = self.definition
        try:
            existing = store.get_by_id(definition.table, record_id)
            if existing is None:
                raise NotFound("Not found")
            renamed = any(
                existing.get(dependent.target_field) != document.get(dependent.target_field)
                for dependent in definition.dependents
            )
            in_use = renamed and self._in_use(store, existing)
        except StoreError as exc:
            raise self._internal(exc, operation="update", tenant=tenant) from exc
        if in_use:
            raise PreconditionFailed(
                f"Cannot change {definition.unique_label} of {definition.label}, as it is in use",
                parameters=[
                    validation_parameter(
                        definition.unique_label, existing.get(definition.unique_field)
                    )
                ],
            )

    # -----------------------------------------------------------------------
    # Operations
    # -----------------------------------------------------------------------

    def list(
        self,
        tenant: TenantContext,
        *,
        query: str | None = None,
        offset: int = 0,
        limit: int = 10,
    ) -> dict[str, Any]:
        """Return {<name>: [records], "totalRecords": n} for one window of matches."""
        if offset < 0 or limit < 0:
            raise BadRequest("offset and limit must be >= 0")
        try:
            predicate = compile_filter(query, self.definition.table, limit=limit, offset=offset)
        except QuerySyntaxError as exc:
            logger.warning(
                "Rejected filter expression",
                table=self.definition.table,
                tenant_id=tenant.tenant_id,
                query=query,
                error=str(exc),
            )
            raise QueryError(f"CQL Error: {exc}") from exc

        try:
            results = self._store(tenant).get(predicate)
        except StoreError as exc:
            raise self._internal(exc, operation="list", tenant=tenant) from exc
        return {self.definition.name: results.records, "totalRecords": results.total_records}

    def create(self, tenant: TenantContext, entity: dict[str, Any]) -> dict[str, Any]:
        """Persist a new record, assigning a UUID when the entity has no id."""
        self._validate(entity)
        record_id = entity.get("id") or str(uuid.uuid4())
        document = {**entity, "id": record_id}
        try:
            saved_id = self._store(tenant).save(
                self.definition.table,
                record_id,
                document,
                unique_fields=(self.definition.unique_field,),
                references=self.definition.references,
            )
        except StoreError as exc:
            raise self._classify_write(exc, document, operation="create", tenant=tenant) from exc
        return {**document, "id": saved_id}

    def read(self, tenant: TenantContext, record_id: str) -> dict[str, Any]:
        try:
            record = self._store(tenant).get_by_id(self.definition.table, record_id)
        except StoreError as exc:
            raise self._internal(exc, operation="read", tenant=tenant) from exc
        if record is None:
            raise NotFound(f"No {self.definition.label} exists with id '{record_id}'")
        return record

    def update(self, tenant: TenantContext, record_id: str, entity: dict[str, Any]) -> None:
        """Replace the record keyed by record_id with entity."""
        self._validate(entity)
        body_id = entity.get("id")
        if body_id is not None and body_id != record_id:
            raise BadRequest("id in body does not match id in path")
        document = {**entity, "id": record_id}
        store = self._store(tenant)
        if self.definition.dependents:
            self._check_rename(store, tenant, record_id, document)
        try:
            updated = store.update(
                self.definition.table,
                record_id,
                document,
                unique_fields=(self.definition.unique_field,),
                references=self.definition.references,
            )
        except StoreError as exc:
            raise self._classify_write(exc, document, operation="update", tenant=tenant) from exc
        if updated == 0:
            raise NotFound("Not found")

    def delete(self, tenant: TenantContext, record_id: str) -> None:
        """Delete one record.  Resources with dependents refuse while referenced."""
        store = self._store(tenant)
        try:
            if self.definition.dependents:
                record = store.get_by_id(self.definition.table, record_id)
                if record is None:
                    raise NotFound("Not found")
                if self._in_use(store, record):
                    raise PreconditionFailed(
                        f"Cannot delete {self.definition.label}, as it is in use"
                    )
            deleted = store.delete(
                self.definition.table,
                record_id,
                unique_fields=(self.definition.unique_field,),
            )
        except StoreError as exc:
            raise self._internal(exc, operation="delete", tenant=tenant) from exc
        if deleted == 0:
            raise NotFound("Not found")

    def delete_all(self, tenant: TenantContext) -> None:
        logger.info(
            "Deleting all records",
            table=self.definition.table,
            tenant_id=tenant.tenant_id,
        )
        store = self._store(tenant)
        try:
            # Every dependent row references some record of this table.
            in_use = any(
                store.count(dependent.table) > 0 for dependent in self.definition.dependents
            )
            if not in_use:
                store.delete_all(self.definition.table)
        except StoreError as exc:
            raise self._internal(exc, operation="delete_all", tenant=tenant) from exc
        if in_use:
            raise PreconditionFailed(f"Cannot delete {self.definition.label}, as it is in use")
