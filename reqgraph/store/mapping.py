"""
Alternate-key mapping file for external tools.

A small YAML side table ``internal id -> alternate key`` read by tooling
that correlates its own reports with requirements. It is never the source
of truth for record content. Entries, once written, are never reassigned.
"""

import logging
from pathlib import Path
from typing import Dict, Optional, Union

import yaml
from pydantic import BaseModel, Field, model_validator

from reqgraph.engine.record_store import RecordStore
from reqgraph.errors import BackendUnavailable

logger = logging.getLogger("reqgraph.mapping")

FALLBACK_PREFIX = "SPEC"


class MappingFile(BaseModel):
    """The persisted mapping: ``mappings`` plus the next fallback number."""
    mappings: Dict[str, str] = Field(default_factory=dict, description="Internal id -> alternate key")
    next_number: int = Field(1, ge=1, description="Next number for records without an alternate key")

    @model_validator(mode="before")
    @classmethod
    def read_legacy_counter(cls, data):
        # Older files call the counter next_spec_number
        if isinstance(data, dict) and "next_number" not in data and "next_spec_number" in data:
            data = {**data, "next_number": data["next_spec_number"]}
            data.pop("next_spec_number")
        return data

    @classmethod
    def load_or_create(cls, path: Union[str, Path]) -> "MappingFile":
        """
        Load the mapping file, or return an empty mapping if there is none.

        Raises:
            BackendUnavailable: If the file exists but cannot be parsed
        """
        path = Path(path)
        if not path.exists():
            return cls()
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            return cls.model_validate(data)
        except (yaml.YAMLError, ValueError) as e:
            raise BackendUnavailable(path, f"invalid mapping file: {e}") from e

    def save(self, path: Union[str, Path]) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(self.model_dump(mode="json"), f, sort_keys=False, allow_unicode=True)

    def _fallback_key(self, store: RecordStore) -> str:
        taken = set(self.mappings.values()) | {r.spec_id for r in store.requirements if r.spec_id}
        while True:
            key = f"{FALLBACK_PREFIX}-{self.next_number:03d}"
            self.next_number += 1
            if key not in taken:
                return key

    def sync(self, store: RecordStore) -> int:
        """
        Add entries for records that are not mapped yet.

        Each new entry is the record's alternate key, or a ``SPEC-NNN``
        fallback for records without one. Existing entries are kept as is.

        Returns:
            The number of entries added
        """
        added = 0
        for req in store.requirements:
            record_id = str(req.id)
            if record_id in self.mappings:
                continue
            self.mappings[record_id] = req.spec_id or self._fallback_key(store)
            added += 1
        if added:
            logger.info("Added %d mapping(s), %d total", added, len(self.mappings))
        return added

    def get(self, record_id) -> Optional[str]:
        return self.mappings.get(str(record_id))

    def lookup(self, alt_key: str) -> Optional[str]:
        """Internal id mapped to ``alt_key``, or None."""
        for record_id, key in self.mappings.items():
            if key == alt_key:
                return record_id
        return None


def generate_mapping_file(store: RecordStore, path: Union[str, Path]) -> MappingFile:
    """Load (or create) the mapping at ``path``, sync it with ``store`` and save it."""
    mapping = MappingFile.load_or_create(path)
    mapping.sync(store)
    mapping.save(path)
    return mapping
