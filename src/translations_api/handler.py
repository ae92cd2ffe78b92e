"""
translations_api.handler — Translations REST API Lambda.

Routes API Gateway proxy events for /languages, /languageTranslators and
/translations (collection and /{id} item paths) to a ResourceHandler.
Uses translations_data exclusively for persistence.
"""

from __future__ import annotations

import json
import os
from decimal import Decimal
from typing import Any
from urllib.parse import unquote

import boto3
from aws_lambda_powertools import Logger
from aws_lambda_powertools.utilities.typing import LambdaContext
from translations_data import TenantContext, TenantScopedStore

from translations_api.errors import INTERNAL_ERROR_MESSAGE, ApiError, BadRequest, InternalError
from translations_api.resources import RESOURCES, ResourceDefinition, ResourceHandler, StoreFactory

logger = Logger(service="translations-api")

_TABLE_NAME_ENV = "TRANSLATIONS_TABLE_NAME"
_DEFAULT_TENANT_ENV = "DEFAULT_TENANT"
_DEFAULT_PAGE_LIMIT_ENV = "DEFAULT_PAGE_LIMIT"
_EXPOSE_INTERNAL_ERRORS_ENV = "EXPOSE_INTERNAL_ERRORS"
_BASE_PATH_ENV = "API_BASE_PATH"
_TENANT_HEADER = "x-okapi-tenant"
_USER_ID_HEADER = "x-okapi-user-id"

# Global client — connection reuse across warm starts
_dynamodb_resource = None


def get_dynamodb():
    """Lazy initialization of boto3 resource."""
    global _dynamodb_resource
    if _dynamodb_resource is None:
        region = os.environ.get("AWS_REGION", "eu-west-2")
        _dynamodb_resource = boto3.resource("dynamodb", region_name=region)
    return _dynamodb_resource


def _table_name() -> str:
    return os.environ.get(_TABLE_NAME_ENV, "mod-translations")


def _default_tenant() -> str:
    return os.environ.get(_DEFAULT_TENANT_ENV, "folio_shared")


def _default_page_limit() -> int:
    return int(os.environ.get(_DEFAULT_PAGE_LIMIT_ENV, "10"))


def _expose_internal_errors() -> bool:
    flag = os.environ.get(_EXPOSE_INTERNAL_ERRORS_ENV, "false")
    return flag.strip().lower() in {"1", "true", "yes"}


def _base_path() -> str:
    """Path prefix in front of the resource routes, e.g. an API Gateway stage ("/prod")."""
    return os.environ.get(_BASE_PATH_ENV, "").strip().rstrip("/")


def _store_factory() -> StoreFactory:
    table_name = _table_name()

    def factory(context: TenantContext) -> TenantScopedStore:
        return TenantScopedStore(
            context,
            table_name=table_name,
            dynamodb_resource=get_dynamodb(),
        )

    return factory


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return int(value)
        return float(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _response(
    status_code: int,
    body: dict[str, Any],
    *,
    headers: dict[str, str] | None = None,
) -> dict[str, Any]:
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "application/json", **(headers or {})},
        "body": json.dumps(body, default=_json_default),
    }


def _no_content() -> dict[str, Any]:
    return {"statusCode": 204, "headers": {}, "body": ""}


def _error(
    status_code: int,
    code: str,
    message: str,
    *,
    parameters: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    error: dict[str, Any] = {"code": code, "message": message}
    if parameters:
        error["parameters"] = parameters
    return _response(status_code, {"error": error})


def _api_error(exc: ApiError) -> dict[str, Any]:
    message = exc.message
    if isinstance(exc, InternalError) and _expose_internal_errors():
        message = exc.detail
    return _error(exc.status_code, exc.code, message, parameters=exc.parameters)


# ---------------------------------------------------------------------------
# Request parsing
# ---------------------------------------------------------------------------


def _headers(event: dict[str, Any]) -> dict[str, str]:
    headers = event.get("headers") or {}
    if not isinstance(headers, dict):
        return {}
    return {str(name).lower(): str(value) for name, value in headers.items() if value is not None}


def _str_or_none(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _tenant_context(event: dict[str, Any]) -> TenantContext:
    headers = _headers(event)
    tenant_id = _str_or_none(headers.get(_TENANT_HEADER)) or _default_tenant()
    try:
        return TenantContext(
            tenant_id=tenant_id, user_id=_str_or_none(headers.get(_USER_ID_HEADER))
        )
    except ValueError as exc:
        raise BadRequest(f"Invalid tenant: {exc}") from exc


def _http_method(event: dict[str, Any]) -> str:
    method = event.get("httpMethod")
    if not method:
        method = event.get("requestContext", {}).get("http", {}).get("method")
    return str(method or "").upper()


def _request_path(event: dict[str, Any]) -> str:
    path = event.get("path")
    if not path:
        path = event.get("requestContext", {}).get("http", {}).get("path")
    if not path:
        path = event.get("rawPath")
    return str(path or "").rstrip("/")


def _route(path: str) -> tuple[ResourceDefinition, str | None] | None:
    """Match exactly /{resource} or /{resource}/{id} below the configured base path."""
    base_path = _base_path()
    if base_path:
        if path != base_path and not path.startswith(f"{base_path}/"):
            return None
        path = path[len(base_path) :]
    segments = path.split("/")[1:] if path.startswith("/") else []
    if not segments or segments[0] not in RESOURCES:
        return None
    definition = RESOURCES[segments[0]]
    if len(segments) == 1:
        return definition, None
    if len(segments) == 2 and segments[1]:
        return definition, unquote(segments[1])
    return None


def _int_param(params: dict[str, Any], name: str, default: int) -> int:
    raw = _str_or_none(params.get(name))
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise BadRequest(f"{name} must be an integer") from exc
    if value < 0:
        raise BadRequest(f"{name} must be >= 0")
    return value


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not a valid JSON number")


def _require_json_body(event: dict[str, Any]) -> dict[str, Any]:
    raw_body = event.get("body")
    if raw_body is None:
        raise BadRequest("Request body is required")
    if not isinstance(raw_body, str):
        raise BadRequest("Request body must be a JSON string")
    try:
        body = json.loads(raw_body, parse_float=Decimal, parse_constant=_reject_constant)
    except ValueError as exc:
        # JSONDecodeError, or NaN/Infinity rejected by _reject_constant
        raise BadRequest(f"Malformed JSON body: {exc}") from exc
    if not isinstance(body, dict):
        raise BadRequest("JSON body must be an object")
    return body


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def _handle_collection(
    method: str,
    event: dict[str, Any],
    resource: ResourceHandler,
    tenant: TenantContext,
) -> dict[str, Any] | None:
    if method == "GET":
        params = event.get("queryStringParameters") or {}
        envelope = resource.list(
            tenant,
            query=_str_or_none(params.get("query")),
            offset=_int_param(params, "offset", 0),
            limit=_int_param(params, "limit", _default_page_limit()),
        )
        return _response(200, envelope)
    if method == "POST":
        entity = resource.create(tenant, _require_json_body(event))
        location = f"/{resource.definition.name}/{entity['id']}"
        return _response(201, entity, headers={"Location": location})
    if method == "DELETE":
        resource.delete_all(tenant)
        return _no_content()
    return None


def _handle_item(
    method: str,
    event: dict[str, Any],
    resource: ResourceHandler,
    tenant: TenantContext,
    record_id: str,
) -> dict[str, Any] | None:
    if method == "GET":
        return _response(200, resource.read(tenant, record_id))
    if method == "PUT":
        resource.update(tenant, record_id, _require_json_body(event))
        return _no_content()
    if method == "DELETE":
        resource.delete(tenant, record_id)
        return _no_content()
    return None


def dispatch(event: dict[str, Any], store_factory: StoreFactory) -> dict[str, Any]:
    """Handle one API Gateway proxy event with the given tenant store factory."""
    method = _http_method(event)
    route = _route(_request_path(event))

    try:
        if route is None:
            return _error(405, "METHOD_NOT_ALLOWED", "Unsupported translations API route")
        definition, record_id = route
        tenant = _tenant_context(event)
        logger.append_keys(tenantid=tenant.tenant_id, resource=definition.name)
        resource = ResourceHandler(definition, store_factory)

        if record_id is None:
            response = _handle_collection(method, event, resource, tenant)
        else:
            response = _handle_item(method, event, resource, tenant, record_id)
        if response is None:
            return _error(405, "METHOD_NOT_ALLOWED", "Unsupported translations API route")
        return response
    except ApiError as exc:
        return _api_error(exc)
    except Exception:
        logger.exception("Unhandled translations API handler error")
        return _error(500, "INTERNAL_ERROR", INTERNAL_ERROR_MESSAGE)


@logger.inject_lambda_context(clear_state=True, log_event=False)
def lambda_handler(event: dict[str, Any], _context: LambdaContext) -> dict[str, Any]:
    return dispatch(event, _store_factory())

