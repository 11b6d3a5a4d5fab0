"""
YAML document backend.

The whole project is one YAML document holding the ``ProjectData`` fields.
Reads hold a shared lock and writes an exclusive lock on the sidecar lock
file. Saves write a temporary file next to the document and replace the
document with it, so a failed save leaves the previous file intact.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple, Union

import yaml
from pydantic import ValidationError

from reqgraph.engine.record_store import RecordStore
from reqgraph.errors import BackendUnavailable
from reqgraph.models.project import ProjectData
from reqgraph.store.base import StorageBackend
from reqgraph.store.document import upgrade_document
from reqgraph.store.locking import file_lock

logger = logging.getLogger("reqgraph.yaml_backend")


def dump_document(data: ProjectData) -> str:
    """Serialize project data as a YAML document."""
    return yaml.safe_dump(
        data.model_dump(mode="json"),
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    )


class YamlBackend(StorageBackend):
    """
    Backend storing the project in a ``.yaml``/``.yml`` file.

    Usage:
        backend = YamlBackend("requirements.yaml")
        store = backend.load()
        backend.save(store)
    """

    name = "yaml"

    def __init__(self, path: Union[str, Path], lock_timeout: Optional[float] = None):
        super().__init__(path)
        self.lock_timeout = lock_timeout

    def _read_unlocked(self) -> Dict[str, Any]:
        if not self.path.exists():
            raise BackendUnavailable(self.path, "file does not exist")
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise BackendUnavailable(self.path, f"invalid YAML: {e}") from e
        except OSError as e:
            raise BackendUnavailable(self.path, str(e)) from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise BackendUnavailable(self.path, "document is not a mapping")
        return data

    def _write_unlocked(self, content: str) -> None:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except OSError as e:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise BackendUnavailable(self.path, f"write failed: {e}") from e

    def _build_store(self, raw: Dict[str, Any]) -> Tuple[RecordStore, bool]:
        data, changed = upgrade_document(raw, source=self.path)
        try:
            project = ProjectData.model_validate(data)
        except ValidationError as e:
            raise BackendUnavailable(self.path, f"invalid document: {e}") from e
        store = RecordStore(project)
        if store.assign_missing_keys():
            changed = True
        return store, changed

    def load(self) -> RecordStore:
        """
        Load the project, upgrading a legacy document in place.

        Returns:
            The loaded RecordStore

        Raises:
            BackendUnavailable: If the file is missing, locked or corrupt
            SchemaMismatch: If the document is newer than supported
        """
        with file_lock(self.path, exclusive=False, timeout=self.lock_timeout):
            raw = self._read_unlocked()
        store, changed = self._build_store(raw)
        if changed:
            logger.warning("Writing upgraded document back to %s", self.path)
            self.save(store)
        logger.debug("Loaded %d requirement(s) from %s", len(store), self.path)
        return store

    def save(self, store: RecordStore) -> None:
        """
        Write the project atomically.

        Raises:
            BackendUnavailable: If the lock or the write fails
        """
        content = dump_document(store.data)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with file_lock(self.path, exclusive=True, timeout=self.lock_timeout):
            self._write_unlocked(content)
        logger.info("Saved %d requirement(s) to %s", len(store), self.path)

    def update(self, update_fn: Callable[[RecordStore], Any]) -> RecordStore:
        """
        Load, mutate and save while holding the exclusive lock throughout.

        If ``update_fn`` raises, the document is not written.
        """
        with file_lock(self.path, exclusive=True, timeout=self.lock_timeout):
            store, _ = self._build_store(self._read_unlocked())
            update_fn(store)
            self._write_unlocked(dump_document(store.data))
        logger.info("Updated %s (%d requirement(s))", self.path, len(store))
        return store
