from __future__ import annotations

import json
from collections.abc import Iterator
from typing import Any
from unittest.mock import MagicMock

import boto3
import pytest
from moto import mock_aws
from translations_api import handler as translations_api_handler
from translations_data import StoreError, StoreErrorKind

REGION = "eu-west-2"
TABLE_NAME = "mod-translations-test"


class FakeLambdaContext:
    function_name = "translations-api"
    memory_limit_in_mb = 256
    invoked_function_arn = "arn:aws:lambda:eu-west-2:111111111111:function:translations-api"
    aws_request_id = "req-123"


@pytest.fixture(autouse=True)
def aws_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AWS_REGION", REGION)
    monkeypatch.setenv("AWS_DEFAULT_REGION", REGION)
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("TRANSLATIONS_TABLE_NAME", TABLE_NAME)
    monkeypatch.delenv("EXPOSE_INTERNAL_ERRORS", raising=False)
    monkeypatch.delenv("DEFAULT_TENANT", raising=False)
    monkeypatch.delenv("DEFAULT_PAGE_LIMIT", raising=False)
    monkeypatch.delenv("API_BASE_PATH", raising=False)


@pytest.fixture
def dynamodb(monkeypatch: pytest.MonkeyPatch) -> Iterator[Any]:
    with mock_aws():
        resource = boto3.resource("dynamodb", region_name=REGION)
        resource.create_table(
            TableName=TABLE_NAME,
            KeySchema=[
                {"AttributeName": "PK", "KeyType": "HASH"},
                {"AttributeName": "SK", "KeyType": "RANGE"},
            ],
            AttributeDefinitions=[
                {"AttributeName": "PK", "AttributeType": "S"},
                {"AttributeName": "SK", "AttributeType": "S"},
            ],
            BillingMode="PAY_PER_REQUEST",
        )
        monkeypatch.setattr(translations_api_handler, "get_dynamodb", lambda: resource)
        yield resource


def _event(
    *,
    method: str,
    path: str,
    tenant_id: str | None = "diku",
    body: dict[str, Any] | str | None = None,
    params: dict[str, str] | None = None,
) -> dict[str, Any]:
    headers: dict[str, str] = {"Content-Type": "application/json"}
    if tenant_id is not None:
        headers["X-Okapi-Tenant"] = tenant_id
    if isinstance(body, dict):
        body = json.dumps(body)
    return {
        "httpMethod": method,
        "path": path,
        "headers": headers,
        "queryStringParameters": params,
        "body": body,
        "requestContext": {},
    }


def _body(response: dict[str, Any]) -> dict[str, Any]:
    return json.loads(response["body"])


def _invoke(event: dict[str, Any]) -> dict[str, Any]:
    return translations_api_handler.lambda_handler(event, FakeLambdaContext())


def _create(path: str, entity: dict[str, Any], **kwargs: Any) -> dict[str, Any]:
    response = _invoke(_event(method="POST", path=path, body=entity, **kwargs))
    assert response["statusCode"] == 201, response["body"]
    return _body(response)


# ---------------------------------------------------------------------------
# Languages lifecycle
# ---------------------------------------------------------------------------


def test_language_lifecycle(dynamodb: Any) -> None:
    created = _create("/languages", {"localeCode": "en", "name": "English"})
    language_id = created["id"]
    assert created["localeCode"] == "en"

    duplicate = _invoke(
        _event(method="POST", path="/languages", body={"localeCode": "en", "name": "Again"})
    )
    assert duplicate["statusCode"] == 422
    assert _body(duplicate)["error"]["parameters"] == [{"key": "LocaleCode", "value": "en"}]

    read = _invoke(_event(method="GET", path=f"/languages/{language_id}"))
    assert read["statusCode"] == 200
    assert _body(read)["name"] == "English"

    updated = _invoke(
        _event(
            method="PUT",
            path=f"/languages/{language_id}",
            body={"id": language_id, "localeCode": "en", "name": "English (US)"},
        )
    )
    assert updated["statusCode"] == 204
    assert updated["body"] == ""

    reread = _invoke(_event(method="GET", path=f"/languages/{language_id}"))
    assert _body(reread)["name"] == "English (US)"

    deleted = _invoke(_event(method="DELETE", path=f"/languages/{language_id}"))
    assert deleted["statusCode"] == 204

    missing = _invoke(_event(method="GET", path=f"/languages/{language_id}"))
    assert missing["statusCode"] == 404
    assert _body(missing)["error"]["message"] == f"No Language exists with id '{language_id}'"


def test_create_returns_location_header(dynamodb: Any) -> None:
    response = _invoke(
        _event(method="POST", path="/languages", body={"id": "lang-1", "localeCode": "en"})
    )

    assert response["statusCode"] == 201
    assert response["headers"]["Location"] == "/languages/lang-1"


def test_update_unknown_id_is_not_found(dynamodb: Any) -> None:
    response = _invoke(
        _event(method="PUT", path="/languages/nope", body={"localeCode": "en", "name": "x"})
    )

    assert response["statusCode"] == 404
    assert _body(response)["error"]["code"] == "NOT_FOUND"


def test_update_to_taken_locale_is_unprocessable(dynamodb: Any) -> None:
    _create("/languages", {"id": "lang-en", "localeCode": "en"})
    _create("/languages", {"id": "lang-fr", "localeCode": "fr"})

    response = _invoke(
        _event(method="PUT", path="/languages/lang-fr", body={"localeCode": "en"})
    )

    assert response["statusCode"] == 422
    assert _body(response)["error"]["parameters"] == [{"key": "LocaleCode", "value": "en"}]


def test_delete_language_in_use_until_dependents_removed(dynamodb: Any) -> None:
    _create("/languages", {"id": "lang-de", "localeCode": "de"})
    _create("/translations", {"id": "tr-de", "localeCode": "de", "messages": {"ok": "OK"}})

    blocked = _invoke(_event(method="DELETE", path="/languages/lang-de"))
    assert blocked["statusCode"] == 400
    assert _body(blocked)["error"] == {
        "code": "IN_USE",
        "message": "Cannot delete Language, as it is in use",
    }

    assert _invoke(_event(method="DELETE", path="/translations/tr-de"))["statusCode"] == 204
    assert _invoke(_event(method="DELETE", path="/languages/lang-de"))["statusCode"] == 204


def test_language_rename_blocked_while_referenced(dynamodb: Any) -> None:
    _create("/languages", {"id": "lang-en", "localeCode": "en"})
    _create("/translations", {"id": "tr-en", "localeCode": "en"})

    renamed = _invoke(
        _event(method="PUT", path="/languages/lang-en", body={"localeCode": "fr"})
    )
    assert renamed["statusCode"] == 400
    assert _body(renamed)["error"]["code"] == "IN_USE"

    blocked = _invoke(_event(method="DELETE", path="/languages/lang-en"))
    assert blocked["statusCode"] == 400
    language = _body(_invoke(_event(method="GET", path="/languages/lang-en")))
    assert language["localeCode"] == "en"


def test_delete_all_languages_blocked_while_referenced(dynamodb: Any) -> None:
    _create("/languages", {"localeCode": "en"})
    _create("/languageTranslators", {"localeCode": "en"})

    blocked = _invoke(_event(method="DELETE", path="/languages"))
    assert blocked["statusCode"] == 400
    assert _body(blocked)["error"]["message"] == "Cannot delete Language, as it is in use"
    assert _body(_invoke(_event(method="GET", path="/languages")))["totalRecords"] == 1

    assert _invoke(_event(method="DELETE", path="/languageTranslators"))["statusCode"] == 204
    assert _invoke(_event(method="DELETE", path="/languages"))["statusCode"] == 204
    assert _body(_invoke(_event(method="GET", path="/languages")))["totalRecords"] == 0


# ---------------------------------------------------------------------------
# Referencing resources
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("path", ["/languageTranslators", "/translations"])
def test_reference_to_unknown_language_is_unprocessable(dynamodb: Any, path: str) -> None:
    response = _invoke(_event(method="POST", path=path, body={"localeCode": "xx"}))

    assert response["statusCode"] == 422
    error = _body(response)["error"]
    assert error["message"] == "Referenced Language does not exist"
    assert error["parameters"] == [{"key": "LocaleCode", "value": "xx"}]


def test_language_translator_after_language_exists(dynamodb: Any) -> None:
    _create("/languages", {"localeCode": "es"})

    translator = _create(
        "/languageTranslators",
        {"localeCode": "es", "translatorName": "deepl"},
    )

    listed = _body(_invoke(_event(method="GET", path="/languageTranslators")))
    assert listed["totalRecords"] == 1
    assert listed["languageTranslators"][0]["id"] == translator["id"]


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


def test_list_window_and_total(dynamodb: Any) -> None:
    for index in range(10):
        _create("/languages", {"id": f"lang-{index:02d}", "localeCode": f"l{index:02d}"})

    response = _invoke(
        _event(method="GET", path="/languages", params={"limit": "3", "offset": "6"})
    )

    assert response["statusCode"] == 200
    body = _body(response)
    assert [record["id"] for record in body["languages"]] == ["lang-06", "lang-07", "lang-08"]
    assert body["totalRecords"] == 10


def test_list_default_limit_is_ten(dynamodb: Any) -> None:
    for index in range(12):
        _create("/languages", {"id": f"lang-{index:02d}", "localeCode": f"l{index:02d}"})

    body = _body(_invoke(_event(method="GET", path="/languages")))

    assert len(body["languages"]) == 10
    assert body["totalRecords"] == 12


def test_list_filter_with_no_matches(dynamodb: Any) -> None:
    _create("/languages", {"localeCode": "en"})

    body = _body(
        _invoke(_event(method="GET", path="/languages", params={"query": "localeCode=zz"}))
    )

    assert body == {"languages": [], "totalRecords": 0}


def test_list_filter_with_sort(dynamodb: Any) -> None:
    for code, name in [("en", "English"), ("en-GB", "British"), ("fr", "French")]:
        _create("/languages", {"localeCode": code, "name": name})

    body = _body(
        _invoke(
            _event(
                method="GET",
                path="/languages",
                params={"query": "localeCode=en* sortBy name"},
            )
        )
    )

    assert [record["name"] for record in body["languages"]] == ["British", "English"]
    assert body["totalRecords"] == 2


def test_malformed_query_is_bad_request(dynamodb: Any) -> None:
    response = _invoke(
        _event(method="GET", path="/languages", params={"query": "localeCode="})
    )

    assert response["statusCode"] == 400
    error = _body(response)["error"]
    assert error["code"] == "QUERY_ERROR"
    assert error["message"].startswith("CQL Error: ")


@pytest.mark.parametrize("params", [{"limit": "ten"}, {"offset": "-1"}])
def test_invalid_paging_is_bad_request(dynamodb: Any, params: dict[str, str]) -> None:
    response = _invoke(_event(method="GET", path="/languages", params=params))

    assert response["statusCode"] == 400
    assert _body(response)["error"]["code"] == "BAD_REQUEST"


# ---------------------------------------------------------------------------
# Tenancy
# ---------------------------------------------------------------------------


def test_delete_all_is_tenant_scoped(dynamodb: Any) -> None:
    _create("/languages", {"localeCode": "en"}, tenant_id="diku")
    _create("/languages", {"localeCode": "en"}, tenant_id="other")

    response = _invoke(_event(method="DELETE", path="/languages", tenant_id="diku"))
    assert response["statusCode"] == 204

    diku = _body(_invoke(_event(method="GET", path="/languages", tenant_id="diku")))
    other = _body(_invoke(_event(method="GET", path="/languages", tenant_id="other")))
    assert diku["totalRecords"] == 0
    assert other["totalRecords"] == 1


def test_missing_tenant_header_uses_default_tenant(dynamodb: Any) -> None:
    created = _create("/languages", {"localeCode": "en"}, tenant_id=None)

    response = _invoke(
        _event(method="GET", path=f"/languages/{created['id']}", tenant_id="folio_shared")
    )

    assert response["statusCode"] == 200


def test_tenant_with_separator_is_rejected(dynamodb: Any) -> None:
    response = _invoke(_event(method="GET", path="/languages", tenant_id="diku#evil"))

    assert response["statusCode"] == 400


# ---------------------------------------------------------------------------
# Routing and request validation
# ---------------------------------------------------------------------------


def test_http_api_v2_event_shape(dynamodb: Any) -> None:
    event = {
        "rawPath": "/translations",
        "headers": {"x-okapi-tenant": "diku"},
        "requestContext": {"http": {"method": "GET", "path": "/translations"}},
    }

    response = _invoke(event)

    assert response["statusCode"] == 200
    assert _body(response) == {"translations": [], "totalRecords": 0}


def test_id_equal_to_collection_name_routes_to_item(dynamodb: Any) -> None:
    _create("/languages", {"localeCode": "en"})
    _create("/translations", {"id": "languages", "localeCode": "en"})

    read = _invoke(_event(method="GET", path="/translations/languages"))
    assert read["statusCode"] == 200
    assert _body(read) == {"id": "languages", "localeCode": "en"}

    deleted = _invoke(_event(method="DELETE", path="/translations/languages"))
    assert deleted["statusCode"] == 204
    assert _body(_invoke(_event(method="GET", path="/languages")))["totalRecords"] == 1
    missing = _invoke(_event(method="GET", path="/translations/languages"))
    assert missing["statusCode"] == 404


@pytest.mark.parametrize(
    "path",
    ["/foo/bar/languages", "/foo/languages/lang-1", "/languages/lang-1/extra"],
)
def test_paths_outside_resource_routes_are_rejected(dynamodb: Any, path: str) -> None:
    _create("/languages", {"id": "lang-1", "localeCode": "en"})

    response = _invoke(_event(method="DELETE", path=path))

    assert response["statusCode"] == 405
    assert _body(_invoke(_event(method="GET", path="/languages")))["totalRecords"] == 1


def test_base_path_is_stripped(dynamodb: Any, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("API_BASE_PATH", "/prod/")
    _create("/prod/languages", {"id": "lang-1", "localeCode": "en"})

    assert _invoke(_event(method="GET", path="/prod/languages/lang-1"))["statusCode"] == 200
    assert _invoke(_event(method="GET", path="/languages/lang-1"))["statusCode"] == 405
    assert _invoke(_event(method="GET", path="/production/languages"))["statusCode"] == 405


@pytest.mark.parametrize("constant", ["NaN", "Infinity", "-Infinity"])
def test_non_finite_numbers_are_bad_request(dynamodb: Any, constant: str) -> None:
    body = f'{{"localeCode": "en", "rank": {constant}}}'

    response = _invoke(_event(method="POST", path="/languages", body=body))

    assert response["statusCode"] == 400
    assert _body(_invoke(_event(method="GET", path="/languages")))["totalRecords"] == 0


@pytest.mark.parametrize(
    ("method", "path"),
    [("PATCH", "/languages/lang-1"), ("PUT", "/languages"), ("GET", "/widgets")],
)
def test_unsupported_route_is_method_not_allowed(
    dynamodb: Any, method: str, path: str
) -> None:
    response = _invoke(_event(method=method, path=path))

    assert response["statusCode"] == 405
    assert _body(response)["error"]["code"] == "METHOD_NOT_ALLOWED"


@pytest.mark.parametrize("body", [None, "{not json", "[1, 2]"])
def test_invalid_body_is_bad_request(dynamodb: Any, body: str | None) -> None:
    response = _invoke(_event(method="POST", path="/languages", body=body))

    assert response["statusCode"] == 400


def test_missing_locale_code_is_unprocessable(dynamodb: Any) -> None:
    response = _invoke(_event(method="POST", path="/languages", body={"name": "English"}))

    assert response["statusCode"] == 422
    error = _body(response)["error"]
    assert "localeCode" in error["message"]
    assert error["parameters"] == [{"key": "localeCode", "value": ""}]


def test_update_with_mismatched_body_id_is_bad_request(dynamodb: Any) -> None:
    _create("/languages", {"id": "lang-1", "localeCode": "en"})

    response = _invoke(
        _event(method="PUT", path="/languages/lang-1", body={"id": "lang-2", "localeCode": "en"})
    )

    assert response["statusCode"] == 400


# ---------------------------------------------------------------------------
# Internal failures
# ---------------------------------------------------------------------------


def _failing_factory(exc: Exception) -> Any:
    store = MagicMock()
    store.get.side_effect = exc
    return lambda _tenant: store


def test_store_failure_is_redacted_by_default() -> None:
    response = translations_api_handler.dispatch(
        _event(method="GET", path="/languages"),
        _failing_factory(StoreError(StoreErrorKind.UNKNOWN, "relation does not exist")),
    )

    assert response["statusCode"] == 500
    assert _body(response)["error"] == {
        "code": "INTERNAL_ERROR",
        "message": "Internal server error",
    }


def test_store_failure_exposed_when_enabled(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EXPOSE_INTERNAL_ERRORS", "true")

    response = translations_api_handler.dispatch(
        _event(method="GET", path="/languages"),
        _failing_factory(StoreError(StoreErrorKind.UNKNOWN, "relation does not exist")),
    )

    assert response["statusCode"] == 500
    assert _body(response)["error"]["message"] == "relation does not exist"


def test_unexpected_exception_is_internal_error() -> None:
    response = translations_api_handler.dispatch(
        _event(method="GET", path="/languages"),
        _failing_factory(RuntimeError("boom")),
    )

    assert response["statusCode"] == 500
    assert _body(response)["error"]["message"] == "Internal server error"


def test_value_error_from_store_is_internal_error() -> None:
    response = translations_api_handler.dispatch(
        _event(method="GET", path="/languages"),
        _failing_factory(ValueError("invalid attribute value")),
    )

    assert response["statusCode"] == 500
    assert _body(response)["error"]["code"] == "INTERNAL_ERROR"
