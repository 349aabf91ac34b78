"""Facet formatting for the search API."""
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import urlencode

import structlog

logger = structlog.get_logger()


def facet_filter_value(field: str, value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'{field}:"{escaped}"'


def build_href(query: Sequence[Tuple[str, str]], field: str, value: str, operator: str = "AND") -> str:
    """Query string of the current search with a facet filter added."""
    prefix = "~" if operator == "OR" else ""
    items = [(k, v) for k, v in query if k not in ("page",)]
    items.append(("filter[]", prefix + facet_filter_value(field, value)))
    return "?" + urlencode(items)


def _facet_filters(params: Mapping[str, Any]) -> Dict[str, List[re.Pattern]]:
    """Parse ``facetFilter[]`` entries of the form ``field:regex``."""
    filters: Dict[str, List[re.Pattern]] = {}
    for entry in params.get("facetFilter") or []:
        field, sep, pattern = str(entry).partition(":")
        if not sep:
            continue
        try:
            filters.setdefault(field, []).append(re.compile(pattern))
        except re.error:
            logger.warning("Ignoring invalid facet filter", facet_filter=entry)
    return filters


def _matches(value: str, patterns: List[re.Pattern]) -> bool:
    return any(p.search(value) for p in patterns)


def hierarchical_display(value: str) -> str:
    """Last segment of a ``level/part/.../`` facet value."""
    parts = [p for p in value.split("/") if p != ""]
    return parts[-1] if len(parts) > 1 else value


def _parent_value(value: str) -> Optional[str]:
    parts = value.split("/")
    if len(parts) < 3 or not parts[0].isdigit():
        return None
    level = int(parts[0])
    if level == 0:
        return None
    return "/".join([str(level - 1)] + parts[1:-2]) + "/"


def build_facet_tree(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Nest hierarchical facet values (``0/A/``, ``1/A/B/``) under their parents."""
    nodes = {}
    for item in items:
        node = dict(item)
        node.setdefault("children", [])
        nodes[item["value"]] = node
    roots = []
    for value, node in nodes.items():
        parent = _parent_value(value)
        if parent is not None and parent in nodes:
            nodes[parent]["children"].append(node)
        else:
            roots.append(node)

    def prune(entries):
        for entry in entries:
            if entry["children"]:
                prune(entry["children"])
            else:
                del entry["children"]
    prune(roots)
    return roots


class FacetFormatter:
    """Formats facet counts as ``{field: [{value, translated, count, href}]}``."""

    def format(
        self,
        params: Mapping[str, Any],
        query: Sequence[Tuple[str, str]],
        facets: Mapping[str, List[Dict[str, Any]]],
        hierarchical_data: Optional[Mapping[str, List[Dict[str, Any]]]] = None,
        requested: Optional[Iterable[str]] = None,
    ) -> Dict[str, List[Dict[str, Any]]]:
        filters = _facet_filters(params)
        requested = list(requested if requested is not None else params.get("facet") or [])
        hierarchical_data = hierarchical_data or {}
        result: Dict[str, List[Dict[str, Any]]] = {}
        for field in requested:
            if field in hierarchical_data:
                values = self._build_values(field, hierarchical_data[field], query, filters.get(field), hierarchical=True)
                if values:
                    result[field] = build_facet_tree(values)
            elif field in facets:
                values = self._build_values(field, facets[field], query, filters.get(field))
                if values:
                    result[field] = values
        return result

    def _build_values(
        self,
        field: str,
        items: List[Dict[str, Any]],
        query: Sequence[Tuple[str, str]],
        patterns: Optional[List[re.Pattern]],
        hierarchical: bool = False,
    ) -> List[Dict[str, Any]]:
        values = []
        for item in items:
            value = str(item["value"])
            if patterns and not _matches(value, patterns):
                continue
            entry = {
                "value": value,
                "translated": hierarchical_display(value) if hierarchical else item.get("displayText", value),
                "count": item["count"],
                "href": build_href(query, field, value, item.get("operator", "AND")),
            }
            if item.get("isApplied"):
                entry["isApplied"] = True
            values.append(entry)
        return values
