"""Storage backends, migration and the external mapping file."""

from reqgraph.store.base import StorageBackend, open_backend, backend_kind
from reqgraph.store.yaml_backend import YamlBackend
from reqgraph.store.sqlite_backend import SqliteBackend
from reqgraph.store.document import upgrade_document
from reqgraph.store.migration import (
    migrate_backend,
    export_interchange,
    import_interchange,
    import_to_backend,
)
from reqgraph.store.mapping import MappingFile, generate_mapping_file
from reqgraph.store.registry import ProjectEntry, Registry, resolve_requirements_path

__all__ = [
    "StorageBackend",
    "open_backend",
    "backend_kind",
    "YamlBackend",
    "SqliteBackend",
    "upgrade_document",
    "migrate_backend",
    "export_interchange",
    "import_interchange",
    "import_to_backend",
    "MappingFile",
    "generate_mapping_file",
    "ProjectEntry",
    "Registry",
    "resolve_requirements_path",
]
