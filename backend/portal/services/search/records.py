"""Record driver over Solr documents and the API record formatter."""
import re
from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import quote


def _list(value) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _first(value) -> Optional[Any]:
    values = _list(value)
    return values[0] if values else None


def _isbn10_valid(isbn: str) -> bool:
    if not re.fullmatch(r"\d{9}[\dX]", isbn):
        return False
    total = sum((10 - i) * (10 if c == "X" else int(c)) for i, c in enumerate(isbn))
    return total % 11 == 0


def _isbn13_valid(isbn: str) -> bool:
    if not re.fullmatch(r"\d{13}", isbn):
        return False
    total = sum(int(c) * (1 if i % 2 == 0 else 3) for i, c in enumerate(isbn))
    return total % 10 == 0


def normalize_isbn(value: str) -> str:
    """Strip qualifiers and punctuation from an ISBN string."""
    value = value.strip().split(" ")[0]
    return re.sub(r"[^0-9X]", "", value.upper())


class SolrRecord:
    """Accessors over one Solr document of the bibliographic core."""

    source = "Solr"

    def __init__(self, fields: Dict[str, Any]):
        self.fields = fields

    def get_unique_id(self) -> str:
        return str(self.fields.get("id", ""))

    def get_source(self) -> str:
        return self.source

    # Titles

    def get_short_title(self) -> str:
        return str(_first(self.fields.get("title_short")) or "")

    def get_subtitle(self) -> str:
        return str(_first(self.fields.get("title_sub")) or "")

    def get_title(self) -> str:
        return str(_first(self.fields.get("title")) or "")

    def get_title_section(self) -> str:
        return str(_first(self.fields.get("title_section")) or "")

    def get_title_statement(self) -> str:
        return str(_first(self.fields.get("title_statement")) or "")

    # Authors

    def get_primary_authors(self) -> List[str]:
        return _list(self.fields.get("author"))

    def get_secondary_authors(self) -> List[str]:
        return _list(self.fields.get("author2"))

    def get_corporate_authors(self) -> List[str]:
        return _list(self.fields.get("author_corporate"))

    def _authors_with_roles(self, names_field: str, roles_field: str) -> "OrderedDict[str, Dict[str, List[str]]]":
        names = _list(self.fields.get(names_field))
        roles = _list(self.fields.get(roles_field))
        authors: "OrderedDict[str, Dict[str, List[str]]]" = OrderedDict()
        for i, name in enumerate(names):
            entry = authors.setdefault(name, {"role": []})
            role = roles[i] if i < len(roles) else None
            if role and role != "-" and role not in entry["role"]:
                entry["role"].append(role)
        return authors

    def get_deduplicated_authors(self) -> Dict[str, Dict[str, Dict[str, List[str]]]]:
        """Primary, secondary and corporate authors keyed by name.

        A name listed as primary or corporate is dropped from the secondary
        authors and its roles are merged into the earlier entry.
        """
        primary = self._authors_with_roles("author", "author_role")
        corporate = self._authors_with_roles("author_corporate", "author_corporate_role")
        secondary = self._authors_with_roles("author2", "author2_role")
        for name in list(secondary):
            for group in (primary, corporate):
                if name in group:
                    for role in secondary[name]["role"]:
                        if role not in group[name]["role"]:
                            group[name]["role"].append(role)
                    del secondary[name]
                    break
        return {
            "primary": dict(primary),
            "secondary": dict(secondary),
            "corporate": dict(corporate),
        }

    # Identifiers

    def get_isbns(self) -> List[str]:
        return _list(self.fields.get("isbn"))

    def get_issns(self) -> List[str]:
        return _list(self.fields.get("issn"))

    def get_oclc(self) -> List[str]:
        return _list(self.fields.get("oclc_num"))

    def get_lccn(self) -> List[str]:
        return _list(self.fields.get("lccn"))

    def get_clean_isbn(self) -> str:
        """First valid ISBN, preferring an ISBN-10 when one is present."""
        first_13 = ""
        for raw in self.get_isbns():
            isbn = normalize_isbn(str(raw))
            if len(isbn) == 10 and _isbn10_valid(isbn):
                return isbn
            if not first_13 and len(isbn) == 13 and _isbn13_valid(isbn):
                first_13 = isbn
        return first_13

    def get_clean_issn(self) -> str:
        issn = _first(self.get_issns())
        if not issn:
            return ""
        return str(issn).strip().split(" ")[0]

    def get_clean_oclc_num(self) -> str:
        return str(_first(self.get_oclc()) or "")

    # Description

    def get_formats(self) -> List[str]:
        return _list(self.fields.get("format"))

    def get_languages(self) -> List[str]:
        return _list(self.fields.get("language"))

    def get_publishers(self) -> List[str]:
        return _list(self.fields.get("publisher"))

    def get_publication_dates(self) -> List[str]:
        return _list(self.fields.get("publishDate"))

    def get_places_of_publication(self) -> List[str]:
        return _list(self.fields.get("publication_place"))

    def get_physical_descriptions(self) -> List[str]:
        return _list(self.fields.get("physical"))

    def get_edition(self) -> str:
        return str(_first(self.fields.get("edition")) or "")

    def get_series(self) -> List[Dict[str, str]]:
        return [{"name": s} for s in _list(self.fields.get("series")) if s]

    def get_all_subject_headings(self) -> List[List[str]]:
        headings = []
        for field in ("topic", "geographic", "genre", "era"):
            for value in _list(self.fields.get(field)):
                heading = [value]
                if heading not in headings:
                    headings.append(heading)
        return headings

    def get_summary(self) -> List[str]:
        return _list(self.fields.get("description"))

    def get_toc(self) -> List[str]:
        return _list(self.fields.get("contents"))

    def get_general_notes(self) -> List[str]:
        return _list(self.fields.get("notes"))

    def get_urls(self) -> List[Dict[str, str]]:
        urls = []
        for url in _list(self.fields.get("url")):
            urls.append({"url": url, "desc": url})
        return urls

    def get_institutions(self) -> List[str]:
        return _list(self.fields.get("institution"))

    def get_call_numbers(self) -> List[str]:
        return _list(self.fields.get("callnumber-raw"))

    # Hierarchy

    def get_hierarchy_top_id(self) -> List[str]:
        return _list(self.fields.get("hierarchy_top_id"))

    def get_hierarchy_top_title(self) -> List[str]:
        return _list(self.fields.get("hierarchy_top_title"))

    def get_hierarchy_parent_id(self) -> List[str]:
        return _list(self.fields.get("hierarchy_parent_id"))

    def get_hierarchy_parent_title(self) -> List[str]:
        return _list(self.fields.get("hierarchy_parent_title"))

    def is_collection(self) -> bool:
        """A record is a collection when it tops its own hierarchy."""
        hierarchy_id = self.fields.get("is_hierarchy_id")
        return bool(hierarchy_id) and hierarchy_id in self.get_hierarchy_top_id()

    # Raw

    def get_record_page(self) -> str:
        return f"/Record/{quote(self.get_unique_id(), safe='')}"

    def get_raw_data(self) -> Dict[str, Any]:
        return dict(self.fields)

    def get_full_record(self) -> Optional[str]:
        return self.fields.get("fullrecord")


def _string(description: str) -> Dict[str, Any]:
    return {"description": description, "type": "string"}


def _strings(description: str) -> Dict[str, Any]:
    return {"description": description, "type": "array", "items": {"type": "string"}}


# API field name -> record accessor plus its API description
RECORD_FIELDS: Dict[str, Dict[str, Any]] = {
    "authors": {
        "method": "get_deduplicated_authors",
        "description": "Deduplicated author information including main, corporate and secondary authors",
        "type": "array",
        "items": {"$ref": "#/components/schemas/Authors"},
    },
    "callNumbers": {"method": "get_call_numbers", **_strings("Call numbers")},
    "cleanIsbn": {"method": "get_clean_isbn", **_string("First valid ISBN favoring ISBN-10 over ISBN-13 when possible")},
    "cleanIssn": {"method": "get_clean_issn", **_string("Base portion of the first listed ISSN")},
    "cleanOclcNumber": {"method": "get_clean_oclc_num", **_string("First OCLC number")},
    "corporateAuthors": {"method": "get_corporate_authors", **_strings("Main corporate authors")},
    "edition": {"method": "get_edition", **_string("Edition")},
    "formats": {"method": "get_formats", **_strings("Formats")},
    "fullRecord": {"method": "get_full_record", **_string("Full metadata record (typically XML)")},
    "generalNotes": {"method": "get_general_notes", **_strings("General notes")},
    "hierarchyParentId": {"method": "get_hierarchy_parent_id", **_strings("Parent record IDs for hierarchical records")},
    "hierarchyParentTitle": {"method": "get_hierarchy_parent_title", **_strings("Parent record titles for hierarchical records")},
    "hierarchyTopId": {"method": "get_hierarchy_top_id", **_strings("Hierarchy top record IDs for hierarchical records")},
    "hierarchyTopTitle": {"method": "get_hierarchy_top_title", **_strings("Hierarchy top record titles for hierarchical records")},
    "id": {"method": "get_unique_id", **_string("Record unique ID (can be used in the record endpoint)")},
    "institutions": {"method": "get_institutions", **_strings("Institutions the record belongs to")},
    "isbns": {"method": "get_isbns", **_strings("ISBNs")},
    "isCollection": {
        "method": "is_collection",
        "description": "Whether the record is a collection node in a hierarchy",
        "type": "boolean",
    },
    "issns": {"method": "get_issns", **_strings("ISSNs")},
    "languages": {"method": "get_languages", **_strings("Languages")},
    "lccn": {"method": "get_lccn", **_strings("LCCNs")},
    "oclc": {"method": "get_oclc", **_strings("OCLC numbers")},
    "physicalDescriptions": {"method": "get_physical_descriptions", **_strings("Physical dimensions etc.")},
    "placesOfPublication": {"method": "get_places_of_publication", **_strings("Places of publication")},
    "primaryAuthors": {"method": "get_primary_authors", **_strings("Primary authors")},
    "publicationDates": {"method": "get_publication_dates", **_strings("Publication dates")},
    "publishers": {"method": "get_publishers", **_strings("Publishers")},
    "rawData": {"method": "get_raw_data", **_string("All data in the index fields")},
    "recordPage": {"method": "get_record_page", **_string("Link to the record page in the UI")},
    "secondaryAuthors": {"method": "get_secondary_authors", **_strings("Secondary authors")},
    "series": {
        "method": "get_series",
        "description": "Series",
        "type": "array",
        "items": {"$ref": "#/components/schemas/Series"},
    },
    "shortTitle": {"method": "get_short_title", **_string("Short title (title excluding any subtitle)")},
    "source": {"method": "get_source", **_string("Record source identifier")},
    "subjects": {
        "method": "get_all_subject_headings",
        "description": "Subject headings",
        "type": "array",
        "items": {"type": "array", "items": {"type": "string"}},
    },
    "subTitle": {"method": "get_subtitle", **_string("Subtitle")},
    "summary": {"method": "get_summary", **_strings("Summary")},
    "title": {"method": "get_title", **_string("Title including any subtitle")},
    "titleSection": {"method": "get_title_section", **_string("Part/section portion of the title")},
    "titleStatement": {"method": "get_title_statement", **_string("Statement of responsibility that goes with the title")},
    "toc": {"method": "get_toc", **_strings("Table of contents")},
    "urls": {
        "method": "get_urls",
        "description": "URLs contained in the record",
        "type": "array",
        "items": {"$ref": "#/components/schemas/Url"},
    },
}

DEFAULT_RECORD_FIELDS = ["authors", "formats", "id", "languages", "series", "subjects", "title", "urls"]


class RecordFormatter:
    """Turns records into API dicts using :data:`RECORD_FIELDS`."""

    def __init__(self, record_fields: Optional[Dict[str, Dict[str, Any]]] = None):
        self.record_fields = record_fields or RECORD_FIELDS

    def get_record_field_spec(self) -> Dict[str, Dict[str, Any]]:
        """Field descriptions without the accessor names."""
        spec = {}
        for name, field in self.record_fields.items():
            spec[name] = {k: v for k, v in field.items() if k in ("description", "type", "items")}
        return spec

    def format(self, records: Iterable[SolrRecord], fields: Iterable[str]) -> List[Dict[str, Any]]:
        fields = list(fields)
        result = []
        for record in records:
            data = {}
            for field in fields:
                spec = self.record_fields.get(field)
                if spec is None:
                    continue
                value = getattr(record, spec["method"])()
                if value is None or value == "" or value == [] or value == {}:
                    continue
                data[field] = value
            result.append(data)
        return result
