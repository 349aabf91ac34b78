"""Translates search requests into Solr queries and collects results."""
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import structlog

from portal.config import settings
from portal.services.search.connector import InvalidQueryError, SolrConnector
from portal.services.search.records import SolrRecord

logger = structlog.get_logger()

# Search type -> Solr query fields
SEARCH_TYPES: Dict[str, str] = {
    "AllFields": "title_short^750 title_full_unstemmed^600 title_full^400 title^500 "
                 "title_alt^200 author^300 author2^100 series^50 topic^20 contents^10 allfields",
    "Title": "title_short^500 title_full_unstemmed^450 title_full^400 title^300 title_alt^100 series^50",
    "Author": "author^100 author2 author_corporate",
    "Subject": "topic^100 geographic^50 genre^50 era",
    "CallNumber": "callnumber-search",
    "ISN": "isbn issn",
}

SORT_FIELDS: Dict[str, str] = {
    "relevance": "score desc",
    "year": "publishDateSort desc",
    "year asc": "publishDateSort asc",
    "callnumber-sort": "callnumber-sort asc",
    "author": "author_sort asc, title_sort asc",
    "title": "title_sort asc, author_sort asc",
}

_FILTER_RE = re.compile(r'^([~-]?)([^:]+):(.*)$', re.S)


def parse_filter(raw: str) -> Optional[Tuple[str, str, str]]:
    """Split ``[~|-]field:value`` into (operator, field, value)."""
    match = _FILTER_RE.match(str(raw).strip())
    if not match:
        return None
    prefix, field_name, value = match.groups()
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        value = value[1:-1].replace('\\"', '"').replace("\\\\", "\\")
    operator = {"~": "OR", "-": "NOT"}.get(prefix, "AND")
    return operator, field_name, value


def _quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


@dataclass
class SearchParams:
    """Normalized search request."""
    lookfor: str = ""
    search_type: str = "AllFields"
    filters: List[Tuple[str, str, str]] = field(default_factory=list)
    facets: List[str] = field(default_factory=list)
    sort: str = "relevance"
    page: int = 1
    limit: int = 20
    facet_limit: int = 30

    def add_facet(self, name: str) -> None:
        if name not in self.facets:
            self.facets.append(name)

    def set_limit(self, limit: int) -> None:
        self.limit = max(0, int(limit))

    def is_applied(self, field_name: str, value: str) -> bool:
        return any(f == field_name and v == value for _, f, v in self.filters)

    def operator_for(self, field_name: str) -> str:
        for op, f, _ in self.filters:
            if f == field_name and op == "OR":
                return "OR"
        return "AND"

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form, used for search history."""
        filters = []
        for op, f, v in self.filters:
            prefix = {"OR": "~", "NOT": "-"}.get(op, "")
            filters.append(f"{prefix}{f}:{_quote(v)}")
        return {
            "lookfor": self.lookfor,
            "type": self.search_type,
            "filter": filters,
            "sort": self.sort,
            "page": self.page,
            "limit": self.limit,
        }

    def to_solr(self) -> List[Tuple[str, Any]]:
        params: List[Tuple[str, Any]] = []
        query = self.lookfor.strip()
        if query:
            params += [("q", query), ("defType", "edismax"), ("q.op", "AND")]
            params.append(("qf", SEARCH_TYPES.get(self.search_type, SEARCH_TYPES["AllFields"])))
        else:
            params.append(("q", "*:*"))

        or_groups: Dict[str, List[str]] = {}
        for operator, field_name, value in self.filters:
            if operator == "OR":
                or_groups.setdefault(field_name, []).append(_quote(value))
            elif operator == "NOT":
                params.append(("fq", f"-{field_name}:{_quote(value)}"))
            else:
                params.append(("fq", f"{field_name}:{_quote(value)}"))
        for field_name, values in or_groups.items():
            params.append(("fq", f"{{!tag={field_name}_filter}}{field_name}:({' OR '.join(values)})"))

        if self.facets:
            params += [
                ("facet", "true"),
                ("facet.limit", self.facet_limit),
                ("facet.mincount", 1),
                ("facet.sort", "count"),
            ]
            for name in self.facets:
                if name in or_groups:
                    params.append(("facet.field", f"{{!ex={name}_filter}}{name}"))
                else:
                    params.append(("facet.field", name))

        sort = SORT_FIELDS.get(self.sort)
        if sort and self.sort != "relevance":
            params.append(("sort", sort))
        params += [("rows", self.limit), ("start", (self.page - 1) * self.limit)]
        return params


@dataclass
class SearchResults:
    """Outcome of one search."""
    params: SearchParams
    total: int = 0
    records: List[SolrRecord] = field(default_factory=list)
    facets: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    invalid: bool = False


def _first_value(value):
    if isinstance(value, (list, tuple)):
        return value[-1] if value else None
    return value


def params_from_request(request: Mapping[str, Any]) -> SearchParams:
    """Build :class:`SearchParams` from request parameters."""
    params = SearchParams(facet_limit=settings.SEARCH_FACET_LIMIT)
    params.lookfor = str(_first_value(request.get("lookfor")) or "")
    search_type = str(_first_value(request.get("type")) or "AllFields")
    params.search_type = search_type if search_type in SEARCH_TYPES else "AllFields"

    filters = request.get("filter") or []
    if isinstance(filters, str):
        filters = [filters]
    for raw in filters:
        parsed = parse_filter(raw)
        if parsed:
            params.filters.append(parsed)

    sort = str(_first_value(request.get("sort")) or settings.SEARCH_DEFAULT_SORT)
    params.sort = sort if sort in settings.SEARCH_SORT_OPTIONS or sort in SORT_FIELDS else settings.SEARCH_DEFAULT_SORT

    try:
        params.page = max(1, int(_first_value(request.get("page")) or 1))
    except (TypeError, ValueError):
        params.page = 1
    try:
        params.limit = max(0, int(_first_value(request.get("limit")) or settings.SEARCH_DEFAULT_LIMIT))
    except (TypeError, ValueError):
        params.limit = settings.SEARCH_DEFAULT_LIMIT
    return params


class SearchRunner:
    """Runs searches against the Solr connector."""

    def __init__(self, connector: SolrConnector):
        self.connector = connector

    async def run(
        self,
        request: Mapping[str, Any],
        configure: Optional[Callable[[SearchParams], None]] = None,
    ) -> SearchResults:
        """Run a search; ``configure`` may adjust the params before execution.

        A query the backend cannot parse yields results flagged ``invalid``.
        Other backend failures propagate as ``SearchBackendError``.
        """
        params = params_from_request(request)
        if configure is not None:
            configure(params)
        try:
            data = await self.connector.select(params.to_solr())
        except InvalidQueryError:
            logger.info("Search rejected by backend", lookfor=params.lookfor)
            return SearchResults(params=params, invalid=True)

        response = data.get("response", {})
        results = SearchResults(
            params=params,
            total=int(response.get("numFound", 0)),
            records=[SolrRecord(doc) for doc in response.get("docs", [])],
        )
        facet_fields = (data.get("facet_counts") or {}).get("facet_fields") or {}
        for name, pairs in facet_fields.items():
            operator = params.operator_for(name)
            results.facets[name] = [
                {
                    "value": value,
                    "displayText": value,
                    "count": count,
                    "operator": operator,
                    "isApplied": params.is_applied(name, value),
                }
                for value, count in pairs
            ]
        return results

    async def get_full_facet_list(self, request: Mapping[str, Any], fields: List[str]) -> Dict[str, List[Dict[str, Any]]]:
        """Complete facet listing for ``fields`` (no limit), used for hierarchical facets."""
        if not fields:
            return {}

        def configure(params: SearchParams):
            params.facets = list(fields)
            params.facet_limit = -1
            params.set_limit(0)
            params.page = 1

        results = await self.run(request, configure)
        return {name: values for name, values in results.facets.items() if name in fields}
