from __future__ import annotations

from typing import List, Optional, Protocol, Sequence

from .models import Category, Project, ProjectRef, SearchHit, Version

LOADERLESS_TYPES = {"shader", "resourcepack"}
FOREIGN_LOADERLESS_TYPES = {"shader", "resourcepack", "datapack"}


def skips_loader_filter(resource_type: str, foreign: bool = False) -> bool:
    kinds = FOREIGN_LOADERLESS_TYPES if foreign else LOADERLESS_TYPES
    return resource_type.lower() in kinds


def version_matches(
    version: Version,
    game_versions: Sequence[str],
    loaders: Sequence[str],
    skip_loaders: bool = False,
) -> bool:
    if game_versions and not set(version.game_versions) & set(game_versions):
        return False
    if skip_loaders or not loaders:
        return True
    return bool(set(version.loaders) & set(loaders))


class ProjectRegistry(Protocol):
    async def list_versions(
        self,
        ref: ProjectRef,
        game_versions: Sequence[str],
        loaders: Sequence[str],
        resource_type: str,
    ) -> List[Version]:  # pragma: no cover - protocol
        ...

    async def get_project(self, ref: ProjectRef) -> Project:  # pragma: no cover - protocol
        ...

    async def get_version(self, version_id: str, project: Optional[ProjectRef] = None) -> Version:  # pragma: no cover - protocol
        ...

    async def get_dependencies(
        self,
        ref: ProjectRef,
        game_versions: Sequence[str] = (),
        loaders: Sequence[str] = (),
        resource_type: str = "mod",
    ) -> List[Project]:  # pragma: no cover - protocol
        ...

    async def search(
        self,
        query: str,
        resource_type: str = "mod",
        game_versions: Sequence[str] = (),
        loaders: Sequence[str] = (),
        limit: int = 20,
        categories: Sequence[str] = (),
    ) -> List[SearchHit]:  # pragma: no cover - protocol
        ...

    async def categories(self, resource_type: Optional[str] = None) -> List[Category]:  # pragma: no cover - protocol
        ...

    async def game_versions(self, include_snapshots: bool = False) -> List[str]:  # pragma: no cover - protocol
        ...
