"""Structured Drive search filters.

A list of :class:`QueryMatch` is OR-combined; the clauses inside one match are
AND-combined; the result is always restricted to non-trashed objects.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Literal, Optional, Union


@dataclass(frozen=True)
class Contains:
    value: str


@dataclass(frozen=True)
class Not:
    value: str


@dataclass(frozen=True)
class TimeComparison:
    op: Literal["=", ">", "<"]
    value: str


StringSearch = Union[str, Contains, Not]


@dataclass
class QueryMatch:
    name: Union[StringSearch, list[StringSearch], None] = None
    mime_type: Union[StringSearch, list[StringSearch], None] = None
    parent: Optional[str] = None
    starred: Optional[bool] = None
    query: Optional[str] = None
    properties: Optional[dict[str, str]] = None
    modified_time: Optional[TimeComparison] = None


def _quote(value: str) -> str:
    return str(value).replace("\\", "\\\\").replace("'", "\\'")


def _string_clause(field_name: str, search: StringSearch) -> str:
    if isinstance(search, Contains):
        return f"{field_name} contains '{_quote(search.value)}'"
    if isinstance(search, Not):
        return f"{field_name} != '{_quote(search.value)}'"
    return f"{field_name}='{_quote(search)}'"


def _clauses(match: QueryMatch) -> list[str]:
    out: list[str] = []
    for f in fields(match):
        value = getattr(match, f.name)
        if value is None:
            continue
        if f.name in ("name", "mime_type"):
            api_field = "mimeType" if f.name == "mime_type" else "name"
            values = value if isinstance(value, list) else [value]
            out.extend(_string_clause(api_field, v) for v in values)
        elif f.name == "parent":
            out.append(f"'{_quote(value)}' in parents")
        elif f.name == "starred":
            out.append(f"starred={'true' if value else 'false'}")
        elif f.name == "query":
            out.append(f"fullText contains '{_quote(value)}'")
        elif f.name == "properties":
            out.extend(
                f"properties has {{ key='{_quote(k)}' and value='{_quote(v)}' }}"
                for k, v in value.items()
            )
        elif f.name == "modified_time":
            if value.op not in ("=", ">", "<"):
                raise ValueError(f"invalid_time_comparison: {value.op}")
            out.append(f"modifiedTime {value.op} '{_quote(value.value)}'")
    return out


def build_query(matches: Optional[list[QueryMatch]]) -> str:
    if not matches:
        return "trashed=false"
    groups = []
    for match in matches:
        clauses = _clauses(match)
        if not clauses:
            raise ValueError("empty_query_match")
        groups.append(f"({' and '.join(clauses)})")
    return f"({' or '.join(groups)}) and trashed=false"


def has_full_text(matches: Optional[list[QueryMatch]]) -> bool:
    return any(m.query for m in matches or [])
