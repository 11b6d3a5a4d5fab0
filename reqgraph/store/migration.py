"""
Migration between backends and to/from the JSON interchange document.

Every migration writes to a temporary destination next to the real one,
reloads it and compares it with the source record by record. Only a
destination that round-trips exactly replaces the real one; any difference
raises ``MigrationMismatch`` and leaves the real destination untouched.
"""

import json
import logging
import os
from pathlib import Path
from typing import List, Tuple, Union

from pydantic import ValidationError

from reqgraph.engine.record_store import RecordStore
from reqgraph.engine.relationships import ValidationResult
from reqgraph.errors import BackendUnavailable, MigrationMismatch
from reqgraph.models.project import ProjectData
from reqgraph.store.base import open_backend
from reqgraph.store.document import upgrade_document
from reqgraph.store.locking import lock_path_for

logger = logging.getLogger("reqgraph.migration")

PathLike = Union[str, Path]

_SIDECAR_SUFFIXES = ("-wal", "-shm", "-journal")


def _sidecars(path: Path) -> List[Path]:
    return [path.with_name(path.name + s) for s in _SIDECAR_SUFFIXES] + [lock_path_for(path)]


def _remove_with_sidecars(path: Path) -> None:
    for candidate in [path] + _sidecars(path):
        if candidate.exists():
            candidate.unlink()


def verify_round_trip(expected: ProjectData, actual: ProjectData) -> int:
    """
    Compare two projects record by record.

    Returns:
        The number of requirements compared

    Raises:
        MigrationMismatch: On any difference in counts, records or metadata
    """
    if len(expected.requirements) != len(actual.requirements):
        raise MigrationMismatch("requirement count differs",
                                expected=len(expected.requirements), found=len(actual.requirements))
    if len(expected.users) != len(actual.users):
        raise MigrationMismatch("user count differs", expected=len(expected.users), found=len(actual.users))

    written = {req.id: req for req in actual.requirements}
    for req in expected.requirements:
        other = written.get(req.id)
        if other is None:
            raise MigrationMismatch(f"requirement {req.display_id} is missing", record_id=req.id)
        if other != req:
            fields = [name for name in type(req).model_fields if getattr(req, name) != getattr(other, name)]
            raise MigrationMismatch(
                f"requirement {req.display_id} differs in {', '.join(fields) or 'content'}", record_id=req.id,
            )

    written_users = {user.id: user for user in actual.users}
    for user in expected.users:
        if written_users.get(user.id) != user:
            raise MigrationMismatch(f"user {user.handle} differs", record_id=user.id)

    meta_fields = [name for name in ProjectData.model_fields if name not in ("requirements", "users")]
    for name in meta_fields:
        if getattr(expected, name) != getattr(actual, name):
            raise MigrationMismatch(f"project field '{name}' differs")
    return len(expected.requirements)


def write_verified(store: RecordStore, destination: PathLike, overwrite: bool = False) -> int:
    """
    Save a store to ``destination`` through its backend, verified.

    Args:
        store: The store to write
        destination: Target path; its suffix selects the backend
        overwrite: Replace an existing destination

    Returns:
        The number of requirements written

    Raises:
        BackendUnavailable: If the destination exists and ``overwrite`` is False
        MigrationMismatch: If the written data does not round-trip
    """
    destination = Path(destination)
    if destination.exists() and not overwrite:
        raise BackendUnavailable(destination, "destination already exists (use overwrite to replace it)")
    destination.parent.mkdir(parents=True, exist_ok=True)

    # Keep the suffix so the temporary file gets the same backend
    temporary = destination.with_name(f".tmp-{destination.name}")
    _remove_with_sidecars(temporary)
    try:
        with open_backend(temporary) as backend:
            backend.save(store)
            reloaded = backend.load()
        count = verify_round_trip(store.data, reloaded.data)
    except BaseException:
        _remove_with_sidecars(temporary)
        raise

    _remove_with_sidecars(destination)
    os.replace(temporary, destination)
    for sidecar in _sidecars(temporary):
        if sidecar.exists():
            sidecar.unlink()
    logger.info("Wrote %d requirement(s) to %s (verified)", count, destination)
    return count


def migrate_backend(source: PathLike, destination: PathLike, overwrite: bool = False) -> int:
    """
    Copy a project from one backend to another, e.g. YAML to SQLite.

    Returns:
        The number of requirements migrated

    Raises:
        BackendUnavailable: If source and destination are the same file
        MigrationMismatch: If the destination does not round-trip
    """
    source, destination = Path(source), Path(destination)
    if source.resolve() == destination.resolve():
        raise BackendUnavailable(destination, "source and destination are the same file")
    with open_backend(source) as backend:
        store = backend.load()
    count = write_verified(store, destination, overwrite=overwrite)
    logger.info("Migrated %d requirement(s) from %s to %s", count, source, destination)
    return count


def export_interchange(store: RecordStore, json_path: PathLike) -> int:
    """
    Write a store as a pretty-printed JSON interchange document.

    Returns:
        The number of requirements exported
    """
    json_path = Path(json_path)
    json_path.parent.mkdir(parents=True, exist_ok=True)
    with open(json_path, "w", encoding="utf-8") as f:
        json.dump(store.data.model_dump(mode="json"), f, indent=2, ensure_ascii=False, default=str)
    logger.info("Exported %d requirement(s) to %s", len(store), json_path)
    return len(store)


def import_interchange(json_path: PathLike) -> Tuple[RecordStore, List[ValidationResult]]:
    """
    Read a JSON interchange document.

    Legacy documents are upgraded and relationships are audited in advisory
    mode: violating edges are kept, flagged and returned.

    Returns:
        ``(store, violations)``

    Raises:
        BackendUnavailable: If the file is missing or not valid JSON
        SchemaMismatch: If the document is newer than supported
    """
    json_path = Path(json_path)
    try:
        with open(json_path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except FileNotFoundError as e:
        raise BackendUnavailable(json_path, "file does not exist") from e
    except json.JSONDecodeError as e:
        raise BackendUnavailable(json_path, f"invalid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise BackendUnavailable(json_path, "document is not an object")

    data, _ = upgrade_document(raw, source=json_path)
    try:
        project = ProjectData.model_validate(data)
    except ValidationError as e:
        raise BackendUnavailable(json_path, f"invalid document: {e}") from e
    store = RecordStore(project)
    store.assign_missing_keys()
    violations = store.relationships.audit()
    if violations:
        logger.warning("Imported %s with %d flagged relationship(s)", json_path, len(violations))
    return store, violations


def import_to_backend(
    json_path: PathLike, destination: PathLike, overwrite: bool = False
) -> Tuple[int, List[ValidationResult]]:
    """
    Import a JSON interchange document into a backend, verified.

    Returns:
        ``(count, violations)``
    """
    store, violations = import_interchange(json_path)
    count = write_verified(store, destination, overwrite=overwrite)
    return count, violations
