"""
translations_data.query — CQL filter expressions compiled to DynamoDB conditions.

Supported subset:

    query    := clause (("and" | "or" | "not") clause)* ["sortBy" sortkey+]
    clause   := "(" query ")" | index relation term
    relation := "=" | "==" | "<>" | "<" | ">" | "<=" | ">="
    sortkey  := index ("/" ("sort.ascending" | "sort.descending"))*

Boolean operators share one precedence level and associate left, as in CQL.
Indexes are paths into the stored document ("localeCode", "messages.title").
`cql.allRecords=1` matches every record.

For "=", a term ending in "*" is a prefix match, a term starting with "*" is
a substring match, and an empty term matches any record carrying the index.
"==" is exact equality.  Unquoted numeric terms compare as numbers.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from boto3.dynamodb.conditions import Attr, ConditionBase

from translations_data.exceptions import QuerySyntaxError
from translations_data.models import DOCUMENT_ATTRIBUTE, Predicate, SortKey

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
    |(?P<lparen>\()
    |(?P<rparen>\))
    |(?P<slash>/)
    |(?P<relation>==|<>|<=|>=|=|<|>)
    |(?P<string>"(?:[^"\\]|\\.)*")
    |(?P<word>[^\s()"=<>/]+)
    """,
    re.VERBOSE,
)
_INDEX_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")
_NUMBER_RE = re.compile(r"^-?\d+(\.\d+)?$")
_BOOLEAN_OPERATORS = frozenset({"and", "or", "not"})
_SORT_BY = "sortby"
_ALL_RECORDS_INDEX = "cql.allrecords"
_DESCENDING_MODIFIERS = frozenset({"sort.descending", "descending"})
_ASCENDING_MODIFIERS = frozenset({"sort.ascending", "ascending"})


@dataclass(frozen=True)
class _Token:
    kind: str
    text: str
    position: int
    value: Any = None


# Sentinel for a clause that matches every record (cql.allRecords).
_MATCH_ALL = None


def _tokenize(expression: str) -> list[_Token]:
    tokens: list[_Token] = []
    position = 0
    while position < len(expression):
        match = _TOKEN_RE.match(expression, position)
        if match is None:
            if expression[position] == '"':
                raise QuerySyntaxError(
                    "Unterminated string", expression=expression, position=position
                )
            raise QuerySyntaxError(
                f"Unexpected character {expression[position]!r}",
                expression=expression,
                position=position,
            )
        kind = match.lastgroup or ""
        text = match.group()
        if kind == "string":
            tokens.append(
                _Token(kind, text, position, value=re.sub(r"\\(.)", r"\1", text[1:-1]))
            )
        elif kind != "ws":
            tokens.append(_Token(kind, text, position, value=text))
        position = match.end()
    return tokens


def _and(left: ConditionBase | None, right: ConditionBase | None) -> ConditionBase | None:
    if left is _MATCH_ALL:
        return right
    if right is _MATCH_ALL:
        return left
    return left & right


def _or(left: ConditionBase | None, right: ConditionBase | None) -> ConditionBase | None:
    if left is _MATCH_ALL or right is _MATCH_ALL:
        return _MATCH_ALL
    return left | right


def _and_not(left: ConditionBase | None, right: ConditionBase | None) -> ConditionBase | None:
    if right is _MATCH_ALL:
        # Every record carries an id, so this matches nothing.
        return Attr(f"{DOCUMENT_ATTRIBUTE}.id").not_exists()
    if left is _MATCH_ALL:
        return ~right
    return left & ~right


class _Parser:
    def __init__(self, expression: str) -> None:
        self._expression = expression
        self._tokens = _tokenize(expression)
        self._index = 0

    def _error(self, message: str, token: _Token | None = None) -> QuerySyntaxError:
        position = token.position if token is not None else len(self._expression)
        return QuerySyntaxError(message, expression=self._expression, position=position)

    def _peek(self) -> _Token | None:
        if self._index < len(self._tokens):
            return self._tokens[self._index]
        return None

    def _next(self, expected: str) -> _Token:
        token = self._peek()
        if token is None:
            raise self._error(f"Expected {expected}, got end of query")
        self._index += 1
        return token

    def _at_word(self, *words: str) -> bool:
        token = self._peek()
        return token is not None and token.kind == "word" and token.text.lower() in words

    def parse(self) -> tuple[ConditionBase | None, tuple[SortKey, ...]]:
        condition: ConditionBase | None = _MATCH_ALL
        if self._peek() is not None and not self._at_word(_SORT_BY):
            condition = self._query()
        sort_keys: tuple[SortKey, ...] = ()
        if self._at_word(_SORT_BY):
            self._index += 1
            sort_keys = self._sort_keys()
        token = self._peek()
        if token is not None:
            raise self._error(f"Unexpected {token.text!r}", token)
        return condition, sort_keys

    def _query(self) -> ConditionBase | None:
        condition = self._clause()
        while self._at_word(*_BOOLEAN_OPERATORS):
            operator = self._next("boolean operator").text.lower()
            right = self._clause()
            if operator == "and":
                condition = _and(condition, right)
            elif operator == "or":
                condition = _or(condition, right)
            else:
                condition = _and_not(condition, right)
        return condition

    def _clause(self) -> ConditionBase | None:
        token = self._next("search clause")
        if token.kind == "lparen":
            condition = self._query()
            closing = self._next("')'")
            if closing.kind != "rparen":
                raise self._error(f"Expected ')', got {closing.text!r}", closing)
            return condition
        if token.kind != "word":
            raise self._error(f"Expected index name, got {token.text!r}", token)
        if token.text.lower() in _BOOLEAN_OPERATORS or token.text.lower() == _SORT_BY:
            raise self._error(f"Expected index name, got {token.text!r}", token)

        relation = self._next("relation")
        if relation.kind != "relation":
            raise self._error(
                f"Unsupported relation {relation.text!r} after index {token.text!r}", relation
            )
        term = self._next("search term")
        if term.kind not in ("word", "string"):
            raise self._error(f"Expected search term, got {term.text!r}", term)

        if token.text.lower() == _ALL_RECORDS_INDEX:
            return _MATCH_ALL
        if not _INDEX_RE.match(token.text):
            raise self._error(f"Invalid index name {token.text!r}", token)
        return self._condition(token, relation.text, term)

    def _condition(self, index: _Token, relation: str, term: _Token) -> ConditionBase:
        attr = Attr(f"{DOCUMENT_ATTRIBUTE}.{index.text}")
        value: Any = term.value
        if term.kind == "word" and _NUMBER_RE.match(term.text):
            value = Decimal(term.text)

        if relation == "=" and isinstance(value, str):
            if "*" not in value:
                return attr.exists() if value == "" else attr.eq(value)
            stripped = value.strip("*")
            if "*" in stripped:
                raise self._error("Wildcards are only supported at the ends of a term", term)
            if not stripped:
                return attr.exists()
            if value.startswith("*"):
                return attr.contains(stripped)
            return attr.begins_with(stripped)
        if relation in ("=", "=="):
            return attr.eq(value)
        if relation == "<>":
            return attr.ne(value)
        if relation == "<":
            return attr.lt(value)
        if relation == ">":
            return attr.gt(value)
        if relation == "<=":
            return attr.lte(value)
        return attr.gte(value)

    def _sort_keys(self) -> tuple[SortKey, ...]:
        keys: list[SortKey] = []
        while self._peek() is not None:
            token = self._next("sort index")
            if token.kind != "word" or not _INDEX_RE.match(token.text):
                raise self._error(f"Invalid sort index {token.text!r}", token)
            descending = False
            while self._peek() is not None and self._peek().kind == "slash":
                self._index += 1
                modifier = self._next("sort modifier")
                name = modifier.text.lower()
                if name in _DESCENDING_MODIFIERS:
                    descending = True
                elif name in _ASCENDING_MODIFIERS:
                    descending = False
                else:
                    raise self._error(f"Unsupported sort modifier {modifier.text!r}", modifier)
            keys.append(SortKey(field=token.text, descending=descending))
        if not keys:
            raise self._error("Expected at least one index after sortBy")
        return tuple(keys)


def compile_filter(
    expression: str | None,
    table_name: str,
    *,
    limit: int,
    offset: int,
) -> Predicate:
    """Compile a CQL expression into a bounded Predicate for table_name.

    An empty or missing expression matches every record.
    Raises QuerySyntaxError on a malformed expression.
    """
    condition: ConditionBase | None = _MATCH_ALL
    sort_keys: tuple[SortKey, ...] = ()
    if expression and expression.strip():
        condition, sort_keys = _Parser(expression).parse()
    return Predicate(
        table=table_name,
        limit=limit,
        offset=offset,
        condition=condition,
        sort_keys=sort_keys,
    )
