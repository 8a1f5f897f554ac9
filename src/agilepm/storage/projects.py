"""Project directory operations.

The project CRUD layer owns projects; this store only mirrors the
project to company mapping needed to resolve a dispatch's tenant.
"""

from __future__ import annotations

from typing import Any

from qdrant_client import models

from agilepm.models import ProjectRef
from agilepm.storage.retry import store_retry


class ProjectMixin:
    """Mixin providing the project directory for WebhookStorage."""

    _collection_name: Any
    _build_key: Any
    _key_to_point_id: Any
    _upsert: Any
    _retrieve: Any
    client: Any

    @store_retry
    async def store_project(self, project: ProjectRef) -> str:
        """Register or move a project under its company."""
        await self._upsert("projects", self._build_key(project.project_id), project)
        return project.project_id

    @store_retry
    async def get_project(self, project_id: str) -> ProjectRef | None:
        project: ProjectRef | None = await self._retrieve(
            "projects", self._build_key(project_id), ProjectRef
        )
        return project

    async def get_project_company_id(self, project_id: str) -> str | None:
        """Look up the company owning ``project_id``, or None if unknown."""
        project = await self.get_project(project_id)
        return project.company_id if project is not None else None

    @store_retry
    async def delete_project(self, project_id: str) -> None:
        await self.client.delete(
            collection_name=self._collection_name("projects"),
            points_selector=models.PointIdsList(
                points=[self._key_to_point_id(self._build_key(project_id))]
            ),
        )
