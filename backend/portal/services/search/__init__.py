"""Search backend access and API formatting."""
from portal.services.search.connector import (
    InvalidQueryError,
    RecordMissingError,
    SearchBackendError,
    SolrConnector,
    get_solr_connector,
)
from portal.services.search.facets import FacetFormatter
from portal.services.search.records import DEFAULT_RECORD_FIELDS, RECORD_FIELDS, RecordFormatter, SolrRecord
from portal.services.search.runner import SearchParams, SearchResults, SearchRunner

__all__ = [
    "InvalidQueryError",
    "RecordMissingError",
    "SearchBackendError",
    "SolrConnector",
    "get_solr_connector",
    "FacetFormatter",
    "DEFAULT_RECORD_FIELDS",
    "RECORD_FIELDS",
    "RecordFormatter",
    "SolrRecord",
    "SearchParams",
    "SearchResults",
    "SearchRunner",
]
