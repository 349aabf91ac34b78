"""Public JSON/JSONP search and record API."""
import json
import re
from typing import Any, Dict, List, Optional, Tuple

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from portal.api.deps import client_ip, get_optional_user, get_permissions, get_search_runner
from portal.config import settings
from portal.database import get_db
from portal.middleware.rate_limit import api_limiter
from portal.models.user import User
from portal.services.permissions import PermissionManager
from portal.services.search import (
    DEFAULT_RECORD_FIELDS,
    FacetFormatter,
    RecordFormatter,
    SearchBackendError,
    SearchParams,
    SearchRunner,
    SolrRecord,
)
from portal.services.user_account import save_search_history

logger = structlog.get_logger()
router = APIRouter()

API_VERSION = "1.0"
CALLBACK_RE = re.compile(r"^[A-Za-z_$][\w$]*(\.[A-Za-z_$][\w$]*)*$")
CORS_HEADERS = {"Access-Control-Allow-Origin": "*"}

record_formatter = RecordFormatter()
facet_formatter = FacetFormatter()


class ApiError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def merge_params(*sources: List[Tuple[str, str]]) -> Dict[str, Any]:
    """Combine parameter lists; ``name[]`` keys become lists, later sources win."""
    merged: Dict[str, Any] = {}
    for pairs in sources:
        current: Dict[str, Any] = {}
        for key, value in pairs:
            if key.endswith("[]"):
                current.setdefault(key[:-2], []).append(value)
            else:
                current[key] = value
        merged.update(current)
    return merged


def query_pairs(params: Dict[str, Any]) -> List[Tuple[str, str]]:
    pairs = []
    for key, value in params.items():
        if key in ("callback", "prettyPrint"):
            continue
        if isinstance(value, list):
            pairs += [(f"{key}[]", v) for v in value]
        else:
            pairs.append((key, value))
    return pairs


async def get_request_params(request: Request) -> Dict[str, Any]:
    form_pairs: List[Tuple[str, str]] = []
    if request.method == "POST":
        form = await request.form()
        form_pairs = [(k, v) for k, v in form.multi_items() if isinstance(v, str)]
    return merge_params(form_pairs, list(request.query_params.multi_items()))


def _last(value):
    if isinstance(value, list):
        return value[-1] if value else None
    return value


def output(params: Dict[str, Any], data: Dict[str, Any], status_code: int = 200) -> Response:
    """Render ``data`` as JSON, or JSONP when a callback is given."""
    body = {"status": "OK" if status_code < 400 else "ERROR", **data}
    indent = 2 if _last(params.get("prettyPrint")) not in (None, "", "0", "false") else None
    content = json.dumps(body, indent=indent, ensure_ascii=False)

    callback = _last(params.get("callback"))
    if callback:
        if not CALLBACK_RE.match(str(callback)):
            return Response(
                json.dumps({"status": "ERROR", "statusMessage": "Invalid callback"}),
                status_code=400,
                media_type="application/json",
                headers=CORS_HEADERS,
            )
        return Response(
            f"{callback}({content});",
            status_code=status_code,
            media_type="application/javascript",
            headers=CORS_HEADERS,
        )
    return Response(content, status_code=status_code, media_type="application/json", headers=CORS_HEADERS)


def error(params: Dict[str, Any], status_code: int, message: str) -> Response:
    return output(params, {"statusMessage": message}, status_code)


def options_response() -> Response:
    return Response(
        status_code=204,
        headers={
            **CORS_HEADERS,
            "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
            "Access-Control-Max-Age": "86400",
        },
    )


def requested_fields(params: Dict[str, Any]) -> List[str]:
    """Default fields when ``field`` is absent, none when it is not a list."""
    if "field" not in params:
        return list(DEFAULT_RECORD_FIELDS)
    fields = params["field"]
    if not isinstance(fields, list):
        return []
    return [f for f in fields if f]


def parse_limit(params: Dict[str, Any]) -> int:
    """
    Raises:
        ApiError: when ``limit`` is not a number within range
    """
    if "limit" not in params:
        return settings.SEARCH_DEFAULT_LIMIT
    value = str(_last(params["limit"]) or "")
    if not value.isdigit() or int(value) > settings.SEARCH_API_MAX_LIMIT:
        raise ApiError(400, "Invalid limit")
    return int(value)


def check_permission(permissions: PermissionManager, permission: str, user: Optional[User], request: Request) -> None:
    if not permissions.is_granted(permission, user, client_ip(request)):
        raise ApiError(403, "Permission denied")


@router.get("/api")
async def api_description():
    """Describe the API: record fields, facets and sort options."""
    return Response(
        json.dumps({
            "title": settings.SITE_TITLE,
            "version": API_VERSION,
            "endpoints": ["/api/v1/search", "/api/v1/record"],
            "recordFields": record_formatter.get_record_field_spec(),
            "defaultFields": DEFAULT_RECORD_FIELDS,
            "facetFields": settings.SEARCH_FACET_FIELDS,
            "hierarchicalFacets": settings.SEARCH_HIERARCHICAL_FACETS,
            "sortOptions": settings.SEARCH_SORT_OPTIONS,
            "defaultSort": settings.SEARCH_DEFAULT_SORT,
            "maxLimit": settings.SEARCH_API_MAX_LIMIT,
        }),
        media_type="application/json",
        headers=CORS_HEADERS,
    )


@router.options("/api/v1/record")
@router.options("/api/v1/search")
async def api_options():
    return options_response()


@router.api_route("/api/v1/record", methods=["GET", "POST"])
@api_limiter
async def record(
    request: Request,
    user: Optional[User] = Depends(get_optional_user),
    runner: SearchRunner = Depends(get_search_runner),
    permissions: PermissionManager = Depends(get_permissions),
):
    """Fetch records by id."""
    params = await get_request_params(request)
    try:
        check_permission(permissions, settings.SEARCH_RECORD_ACCESS_PERMISSION, user, request)
        ids = params.get("id")
        if isinstance(ids, str):
            ids = [ids]
        ids = [i for i in (ids or []) if i]
        if not ids:
            raise ApiError(400, "Missing id")
        try:
            docs = await runner.connector.retrieve_batch(ids)
        except SearchBackendError as e:
            logger.warning("Record retrieval failed", ids=ids, error=str(e))
            raise ApiError(400, "Error loading record")
    except ApiError as e:
        return error(params, e.status_code, e.message)

    data: Dict[str, Any] = {"resultCount": len(docs)}
    records = record_formatter.format([SolrRecord(doc) for doc in docs], requested_fields(params))
    if records:
        data["records"] = records
    return output(params, data)


@router.api_route("/api/v1/search", methods=["GET", "POST"])
@api_limiter
async def search(
    request: Request,
    user: Optional[User] = Depends(get_optional_user),
    runner: SearchRunner = Depends(get_search_runner),
    permissions: PermissionManager = Depends(get_permissions),
    db: AsyncSession = Depends(get_db),
):
    """Run a search and return records and facets."""
    params = await get_request_params(request)
    try:
        check_permission(permissions, settings.SEARCH_SEARCH_ACCESS_PERMISSION, user, request)
        limit = parse_limit(params)
        fields = requested_fields(params)

        facets = params.get("facet") or []
        if isinstance(facets, str):
            facets = [facets]
        hierarchical = [f for f in facets if f in settings.SEARCH_HIERARCHICAL_FACETS]

        def configure(search_params: SearchParams):
            for name in facets:
                if name not in hierarchical:
                    search_params.add_facet(name)
            search_params.set_limit(limit if fields else 0)

        try:
            results = await runner.run(params, configure)
            if results.invalid:
                raise ApiError(400, "Invalid search")
            hierarchical_data = await runner.get_full_facet_list(params, hierarchical) if hierarchical else {}
        except SearchBackendError as e:
            logger.warning("Search failed", error=str(e))
            raise ApiError(400, str(e))
    except ApiError as e:
        return error(params, e.status_code, e.message)

    if user is not None:
        await save_search_history(db, user, results.params.to_dict(), results.total)

    data: Dict[str, Any] = {"resultCount": results.total}
    records = record_formatter.format(results.records, fields)
    if records:
        data["records"] = records
    facet_filters = params.get("facetFilter") or []
    if isinstance(facet_filters, str):
        facet_filters = [facet_filters]
    facet_data = facet_formatter.format(
        {"facetFilter": facet_filters},
        query_pairs(params),
        results.facets,
        hierarchical_data,
        requested=facets,
    )
    if facet_data:
        data["facets"] = facet_data
    return output(params, data)
