"""
Storage backend contract and backend selection.

Backends are pure (de)serializers of ``ProjectData``: all business rules
live in the record store, which ``load`` builds and ``save`` reads.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Union

from reqgraph.engine.record_store import RecordStore
from reqgraph.errors import BackendUnavailable

YAML_SUFFIXES = (".yaml", ".yml")
SQLITE_SUFFIXES = (".db", ".sqlite", ".sqlite3")


class StorageBackend(ABC):
    """A persistence strategy for one requirements project."""

    name = "backend"

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    @abstractmethod
    def load(self) -> RecordStore:
        """
        Load the project.

        Raises:
            BackendUnavailable: If the storage is missing, locked or corrupt
            SchemaMismatch: If it was written by a newer schema
        """

    @abstractmethod
    def save(self, store: RecordStore) -> None:
        """
        Persist the project. A failed save leaves the previous state intact.

        Raises:
            BackendUnavailable: If the storage cannot be written
        """

    def update(self, update_fn: Callable[[RecordStore], Any]) -> RecordStore:
        """Load, apply ``update_fn`` and save. Nothing is saved if it raises."""
        store = self.load()
        update_fn(store)
        self.save(store)
        return store

    def exists(self) -> bool:
        return self.path.exists()

    def create_if_not_exists(self) -> bool:
        """Create an empty project. Returns True if one was created."""
        if self.exists():
            return False
        self.save(RecordStore())
        return True

    def close(self) -> None:
        """Release any held resources."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self.path)!r})"


def backend_kind(path: Union[str, Path]) -> str:
    """
    Name of the backend serving ``path``: ``yaml`` or ``sqlite``.

    Raises:
        BackendUnavailable: For an unknown suffix
    """
    suffix = Path(path).suffix.lower()
    if suffix in YAML_SUFFIXES:
        return "yaml"
    if suffix in SQLITE_SUFFIXES:
        return "sqlite"
    known = ", ".join(YAML_SUFFIXES + SQLITE_SUFFIXES)
    raise BackendUnavailable(path, f"unknown storage suffix '{suffix}' (expected one of {known})")


def open_backend(path: Union[str, Path]) -> StorageBackend:
    """
    Open the backend for ``path``, selected by its suffix.

    Raises:
        BackendUnavailable: For an unknown suffix
    """
    kind = backend_kind(path)
    if kind == "yaml":
        from reqgraph.store.yaml_backend import YamlBackend
        return YamlBackend(path)
    from reqgraph.store.sqlite_backend import SqliteBackend
    return SqliteBackend(path)
