"""
Project registry.

A small YAML file naming requirements files so commands can open a project by
name instead of by path. The registry only stores locations; it never holds
record content.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field

from reqgraph.config import config
from reqgraph.errors import BackendUnavailable, NotFound

logger = logging.getLogger("reqgraph.registry")

PathLike = Union[str, Path]


class ProjectEntry(BaseModel):
    """A registered requirements file."""
    path: str = Field(..., description="Path to the requirements file")
    description: str = Field("", description="Description of the project")


class Registry(BaseModel):
    """
    Named projects plus an optional default.

    Usage:
        registry = Registry.load()
        registry.register_project("billing", "/srv/billing/requirements.yaml")
        registry.save()
    """
    projects: Dict[str, ProjectEntry] = Field(default_factory=dict, description="Project name -> entry")
    default_project: Optional[str] = Field(None, description="Project used when none is named")

    @classmethod
    def load(cls, path: Optional[PathLike] = None) -> "Registry":
        """
        Load the registry, or return an empty one if the file does not exist.

        Raises:
            BackendUnavailable: If the file exists but cannot be parsed
        """
        path = Path(path or config.registry_path)
        if not path.exists():
            return cls()
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            return cls.model_validate(data)
        except (yaml.YAMLError, ValueError) as e:
            raise BackendUnavailable(path, f"invalid registry file: {e}") from e
        except OSError as e:
            raise BackendUnavailable(path, str(e)) from e

    def save(self, path: Optional[PathLike] = None) -> None:
        """
        Write the registry, replacing the previous file atomically.

        Raises:
            BackendUnavailable: If the write fails
        """
        path = Path(path or config.registry_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        content = yaml.safe_dump(self.model_dump(mode="json"), sort_keys=False, allow_unicode=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp_name, path)
        except OSError as e:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise BackendUnavailable(path, f"write failed: {e}") from e
        logger.debug("Saved registry with %d project(s) to %s", len(self.projects), path)

    def register_project(self, name: str, path: PathLike, description: str = "") -> ProjectEntry:
        """Register a project, replacing an entry of the same name."""
        if name in self.projects:
            logger.info("Updating registered project %s", name)
        entry = ProjectEntry(path=str(path), description=description)
        self.projects[name] = entry
        return entry

    def unregister_project(self, name: str) -> ProjectEntry:
        entry = self.get_project(name)
        del self.projects[name]
        if self.default_project == name:
            self.default_project = None
        return entry

    def get_project(self, name: str) -> ProjectEntry:
        """
        Raises:
            NotFound: If no project has the name
        """
        entry = self.projects.get(name)
        if entry is None:
            raise NotFound("Project", name)
        return entry

    def list_projects(self) -> List[str]:
        return sorted(self.projects)

    def set_default_project(self, name: str) -> None:
        self.get_project(name)
        self.default_project = name

    def clear_default_project(self) -> None:
        self.default_project = None

    def default_path(self) -> Optional[Path]:
        """
        Path of the project to open when none is named.

        The only registered project wins, then the configured default.
        """
        if len(self.projects) == 1:
            entry = next(iter(self.projects.values()))
            return Path(entry.path).expanduser()
        if self.default_project and self.default_project in self.projects:
            return Path(self.projects[self.default_project].path).expanduser()
        return None


def resolve_requirements_path(
    db_path: Optional[PathLike] = None,
    project: Optional[str] = None,
    registry_path: Optional[PathLike] = None,
) -> Path:
    """
    Decide which requirements file a command works on.

    Order: an explicit path; a named project (argument, then
    ``config.project``); the local ``config.requirements_path`` when it
    exists; the registry's implied default; ``config.requirements_path``.

    Raises:
        NotFound: If a named project is not registered
        BackendUnavailable: If the registry file is corrupt
    """
    if db_path is not None:
        return Path(db_path)
    project = project or config.project
    if project:
        return Path(Registry.load(registry_path).get_project(project).path).expanduser()
    if config.requirements_path.exists():
        return config.requirements_path
    registry_file = Path(registry_path or config.registry_path)
    if registry_file.exists():
        default = Registry.load(registry_file).default_path()
        if default is not None:
            logger.info("Using registered project at %s", default)
            return default
    return config.requirements_path
