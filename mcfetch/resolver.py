from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

import httpx

from .config import FetchConfig
from .curseforge import CurseForgeRegistry
from .errors import ValidationError
from .models import Category, ForeignRef, NativeRef, Project, ProjectRef, SearchHit, Version, parse_ref
from .modrinth import ModrinthRegistry
from .registry import ProjectRegistry

logger = logging.getLogger(__name__)

SOURCES = ("modrinth", "curseforge")


class VersionResolver:
    """Routes every project and version operation to the registry its identifier names."""

    def __init__(self, modrinth: ModrinthRegistry, curseforge: ProjectRegistry) -> None:
        self.modrinth = modrinth
        self.curseforge = curseforge

    def registry_for(self, ref: ProjectRef) -> ProjectRegistry:
        if isinstance(ref, ForeignRef):
            return self.curseforge
        return self.modrinth

    async def resolve(
        self,
        project_id: str,
        game_versions: Sequence[str],
        loaders: Sequence[str],
        resource_type: str = "mod",
    ) -> List[Version]:
        ref = parse_ref(project_id)
        versions = await self.registry_for(ref).list_versions(ref, game_versions, loaders, resource_type)
        logger.debug("%s: %d compatible version(s)", ref, len(versions))
        return versions

    async def get_project(self, project_id: str) -> Project:
        ref = parse_ref(project_id)
        return await self.registry_for(ref).get_project(ref)

    async def get_version(self, version_id: str, project_id: Optional[str] = None) -> Version:
        ref = parse_ref(version_id)
        project = parse_ref(project_id) if project_id else None
        if isinstance(ref, NativeRef):
            return await self.modrinth.get_version(ref.id, project)
        return await self.curseforge.get_version(str(ref), project)

    async def get_dependencies(
        self,
        project_id: str,
        game_versions: Sequence[str] = (),
        loaders: Sequence[str] = (),
        resource_type: str = "mod",
    ) -> List[Project]:
        ref = parse_ref(project_id)
        return await self.registry_for(ref).get_dependencies(ref, game_versions, loaders, resource_type)

    async def search(
        self,
        query: str,
        source: str = "modrinth",
        resource_type: str = "mod",
        game_versions: Sequence[str] = (),
        loaders: Sequence[str] = (),
        limit: int = 20,
        categories: Sequence[str] = (),
    ) -> List[SearchHit]:
        registry = self.source(source)
        return await registry.search(query, resource_type, game_versions, loaders, limit, categories=categories)

    def source(self, name: str) -> ProjectRegistry:
        if name not in SOURCES:
            raise ValidationError(f"Unknown source '{name}'; expected one of: {', '.join(SOURCES)}.")
        return self.curseforge if name == "curseforge" else self.modrinth

    async def categories(self, source: str = "modrinth", resource_type: Optional[str] = None) -> List[Category]:
        return await self.source(source).categories(resource_type)

    async def game_versions(self, source: str = "modrinth", include_snapshots: bool = False) -> List[str]:
        return await self.source(source).game_versions(include_snapshots)

    async def identify(self, sha1: str) -> Optional[Tuple[Project, Version]]:
        """Find the Modrinth project and version a downloaded file was published as."""

        return await self.modrinth.project_from_hash(sha1)


def build_resolver(cfg: FetchConfig, client: httpx.AsyncClient) -> VersionResolver:
    modrinth = ModrinthRegistry(client, api_base=cfg.modrinth_api_base)
    curseforge = CurseForgeRegistry(
        client,
        api_key=cfg.curseforge_api_key,
        api_base=cfg.curseforge_api_base,
        file_detail_concurrency=cfg.concurrency.file_detail,
        dependency_concurrency=cfg.concurrency.dependency,
    )
    return VersionResolver(modrinth, curseforge)
