"""
Versioned upgrade of requirements documents.

Documents without a ``schema_version`` are version 1, the shape written by
earlier releases. ``upgrade_document`` applies each upgrade step in turn
until the document reaches ``CURRENT_DOCUMENT_VERSION``. It runs once per
load; the YAML backend writes the upgraded shape straight back.
"""

import logging
from typing import Any, Callable, Dict, Tuple

from reqgraph.errors import SchemaMismatch
from reqgraph.models.project import CURRENT_DOCUMENT_VERSION, ProjectData

logger = logging.getLogger("reqgraph.document")

LEGACY_DOCUMENT_VERSION = 1

# Enum spellings used by version 1 documents
_LEGACY_ENUMS = {
    "SingleLevel": "single_level",
    "TwoLevel": "two_level",
    "Global": "global",
    "PerPrefix": "per_prefix",
    "PerFeatureType": "per_feature_type",
    "OneToOne": "one_to_one",
    "OneToMany": "one_to_many",
    "ManyToOne": "many_to_one",
    "ManyToMany": "many_to_many",
}

_LEGACY_REL_TYPES = {
    "Parent": "parent",
    "Child": "child",
    "Verifies": "verifies",
    "VerifiedBy": "verified-by",
    "Duplicate": "duplicate",
    "References": "references",
}

# Definition lists that load as the built-in set when empty
_DEFAULTED_LISTS = ("relationship_definitions", "reaction_definitions", "type_definitions")


def normalize_rel_type(value: Any) -> str:
    """
    Convert a legacy relationship type to a definition name.

    Version 1 wrote ``Parent``, ``VerifiedBy`` or ``{"Custom": "name"}``.
    """
    if isinstance(value, dict):
        value = value.get("Custom") or next(iter(value.values()), "")
    value = str(value)
    if value in _LEGACY_REL_TYPES:
        return _LEGACY_REL_TYPES[value]
    return value.strip().lower().replace("_", "-")


def _legacy_enum(value: Any) -> Any:
    if isinstance(value, str):
        return _LEGACY_ENUMS.get(value, value)
    return value


def _upgrade_v1(data: Dict[str, Any]) -> Dict[str, Any]:
    """Version 1 -> 2: legacy enum spellings, relationship types and field values."""
    id_config = data.get("id_config")
    if isinstance(id_config, dict):
        for key in ("format", "numbering"):
            if key in id_config:
                id_config[key] = _legacy_enum(id_config[key])

    for definition in data.get("relationship_definitions") or []:
        if isinstance(definition, dict) and "cardinality" in definition:
            definition["cardinality"] = _legacy_enum(definition["cardinality"])

    for req in data.get("requirements") or []:
        if not isinstance(req, dict):
            continue
        for edge in req.get("relationships") or []:
            if isinstance(edge, dict) and "rel_type" in edge:
                edge["rel_type"] = normalize_rel_type(edge["rel_type"])
        fields = req.get("custom_fields")
        if isinstance(fields, dict):
            req["custom_fields"] = {
                str(k): ("" if v is None else str(v).lower() if isinstance(v, bool) else str(v))
                for k, v in fields.items()
            }
        if req.get("tags") is None:
            req["tags"] = []
    return data


# version -> step upgrading a document of that version by one
MIGRATIONS: Dict[int, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    1: _upgrade_v1,
}


def document_version(data: Dict[str, Any]) -> int:
    return int(data.get("schema_version") or LEGACY_DOCUMENT_VERSION)


def upgrade_document(data: Dict[str, Any], source: Any = "<document>") -> Tuple[Dict[str, Any], bool]:
    """
    Bring a parsed document up to the current version.

    Missing fields are filled with their defaults and empty definition lists
    are replaced by the built-in sets.

    Args:
        data: The parsed document
        source: Where the document came from, used in errors and logs

    Returns:
        ``(document, changed)``, ``changed`` True if any upgrade step ran

    Raises:
        SchemaMismatch: If the document is newer than this release understands
    """
    version = document_version(data)
    if version > CURRENT_DOCUMENT_VERSION:
        raise SchemaMismatch(source, version, CURRENT_DOCUMENT_VERSION)

    changed = version < CURRENT_DOCUMENT_VERSION
    while version < CURRENT_DOCUMENT_VERSION:
        logger.warning("Upgrading %s from document version %d to %d", source, version, version + 1)
        data = MIGRATIONS[version](data)
        version += 1

    for key in _DEFAULTED_LISTS:
        if key in data and not data[key]:
            del data[key]
    if changed:
        defaults = ProjectData().model_dump(mode="json")
        for key, value in defaults.items():
            if data.get(key) is None:
                data[key] = value
    data["schema_version"] = CURRENT_DOCUMENT_VERSION
    return data, changed
