"""
translations_data — Tenant-scoped document store for the translations service.

The ONLY permitted way to read or write Language, LanguageTranslator and
Translation records.  Filter expressions are compiled with compile_filter.
"""

from translations_data.client import TenantScopedStore
from translations_data.exceptions import QuerySyntaxError, StoreError, StoreErrorKind
from translations_data.models import Predicate, Reference, Results, TenantContext
from translations_data.query import compile_filter

__all__ = [
    "Predicate",
    "QuerySyntaxError",
    "Reference",
    "Results",
    "StoreError",
    "StoreErrorKind",
    "TenantContext",
    "TenantScopedStore",
    "compile_filter",
]
