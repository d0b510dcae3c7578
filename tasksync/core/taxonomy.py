"""
Category taxonomy and the project <-> category mapping.

The taxonomy file lists the closed set of categories, each bound to exactly
one provider project by name:

    {
        "version": "1.0",
        "projects": [
            {"id": "work", "name": "Work", "description": "..."},
            ...
        ]
    }

Mappings are built by an explicit load() at startup. reload() re-reads the
file and swaps both mappings in one assignment, so readers never see a
half-built map.
"""

import json
import logging
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, ValidationError

from tasksync.config import get_settings
from tasksync.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class TaxonomyProject(BaseModel):
    """One category and the provider project it maps to."""

    id: str
    name: str
    description: str = ""
    color: Optional[str] = None
    examples: list[str] = []


class Taxonomy(BaseModel):
    """Parsed taxonomy file."""

    version: str = "1"
    projects: list[TaxonomyProject]


class TaxonomyService:
    """Loads the taxonomy and answers category <-> project name lookups."""

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path or get_settings().taxonomy_path)
        self._taxonomy: Optional[Taxonomy] = None
        self._project_to_category: dict[str, str] = {}
        self._category_to_project: dict[str, str] = {}

    @classmethod
    def from_projects(cls, projects: list[dict], version: str = "1") -> "TaxonomyService":
        """Build a service from in-memory data instead of a file."""
        service = cls(path="<memory>")
        service._install(Taxonomy(version=version, projects=projects))
        return service

    @property
    def is_loaded(self) -> bool:
        return self._taxonomy is not None

    @property
    def taxonomy(self) -> Taxonomy:
        if self._taxonomy is None:
            raise ConfigurationError("Taxonomy not loaded. Call load() first.")
        return self._taxonomy

    @property
    def categories(self) -> list[str]:
        return [project.id for project in self.taxonomy.projects]

    def load(self) -> Taxonomy:
        """Read the taxonomy file and build the mappings."""
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            taxonomy = Taxonomy.model_validate(raw)
        except FileNotFoundError as e:
            raise ConfigurationError(f"Taxonomy file not found: {self.path}") from e
        except (json.JSONDecodeError, ValidationError) as e:
            raise ConfigurationError(f"Malformed taxonomy file {self.path}: {e}") from e

        self._install(taxonomy)
        logger.info(
            f"Loaded taxonomy v{taxonomy.version} with {len(taxonomy.projects)} "
            f"categories from {self.path}"
        )
        return taxonomy

    def reload(self) -> Taxonomy:
        """Invalidate the current mappings and load them again."""
        logger.info("Reloading taxonomy")
        return self.load()

    def _install(self, taxonomy: Taxonomy) -> None:
        project_to_category: dict[str, str] = {}
        category_to_project: dict[str, str] = {}

        for project in taxonomy.projects:
            if project.name in project_to_category:
                raise ConfigurationError(
                    f"Project '{project.name}' is mapped to more than one category"
                )
            if project.id in category_to_project:
                raise ConfigurationError(f"Duplicate category id '{project.id}'")
            project_to_category[project.name] = project.id
            category_to_project[project.id] = project.name

        self._taxonomy = taxonomy
        self._project_to_category, self._category_to_project = (
            project_to_category,
            category_to_project,
        )

    def category_for_project_name(self, project_name: str) -> Optional[str]:
        """Category bound to a provider project name, if any."""
        return self._project_to_category.get(project_name)

    def project_name_for_category(self, category: str) -> Optional[str]:
        """Provider project name bound to a category, if any."""
        return self._category_to_project.get(category)


_taxonomy_service: Optional[TaxonomyService] = None


def get_taxonomy_service() -> TaxonomyService:
    """Get the global taxonomy service, loading it on first access."""
    global _taxonomy_service
    if _taxonomy_service is None:
        service = TaxonomyService()
        service.load()
        _taxonomy_service = service
    return _taxonomy_service
