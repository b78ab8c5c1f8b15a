from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx
from pydantic import ValidationError as ModelValidationError

from .api import get_json, json_array_param
from .config import DEFAULT_MODRINTH_API
from .errors import NetworkError, ValidationError
from .models import Category, LoaderTag, NativeRef, Project, ProjectRef, SearchHit, Version
from .registry import skips_loader_filter, version_matches

logger = logging.getLogger(__name__)

SEARCH_LIMIT_CAP = 100
RELEASE_VERSION = re.compile(r"^\d+(\.\d+)*$")


def _version_key(value: str) -> tuple:
    return tuple(int(part) for part in value.split("."))


def release_game_versions(values: Sequence[str]) -> List[str]:
    """Keep plain numeric releases such as ``1.20.4``, newest first."""

    releases = {value for value in values if RELEASE_VERSION.match(value)}
    return sorted(releases, key=_version_key, reverse=True)


def effective_loaders(resource_type: str, loaders: Sequence[str]) -> List[str]:
    kind = resource_type.lower()
    if kind == "datapack":
        return ["datapack"]
    if kind == "resourcepack":
        return ["minecraft"]
    return list(loaders)


def _native_id(ref: ProjectRef) -> str:
    if not isinstance(ref, NativeRef):
        raise ValidationError(f"'{ref}' is not a Modrinth identifier.")
    return ref.id


def _parse_version(data: Dict[str, Any]) -> Optional[Version]:
    try:
        return Version.model_validate(data)
    except ModelValidationError as exc:
        logger.debug("Dropping malformed Modrinth version %s: %s", data.get("id"), exc)
        return None


class ModrinthRegistry:
    """Native registry adapter over the Modrinth v2 API."""

    def __init__(self, client: httpx.AsyncClient, api_base: str = DEFAULT_MODRINTH_API) -> None:
        self.client = client
        self.api_base = api_base.rstrip("/")

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await get_json(self.client, f"{self.api_base}{path}", params=params)

    async def get_project(self, ref: ProjectRef) -> Project:
        data = await self._get(f"/project/{_native_id(ref)}")
        project = Project.model_validate(data)
        project.game_versions = release_game_versions(project.game_versions)
        return project

    async def fetch_versions(self, ref: ProjectRef) -> List[Version]:
        payload = await self._get(f"/project/{_native_id(ref)}/version")
        versions = [_parse_version(item) for item in payload or []]
        return [version for version in versions if version is not None]

    async def list_versions(
        self,
        ref: ProjectRef,
        game_versions: Sequence[str],
        loaders: Sequence[str],
        resource_type: str,
    ) -> List[Version]:
        versions = await self.fetch_versions(ref)
        wanted_loaders = effective_loaders(resource_type, loaders)
        skip = skips_loader_filter(resource_type)
        return [v for v in versions if version_matches(v, game_versions, wanted_loaders, skip)]

    async def get_version(self, version_id: str, project: Optional[ProjectRef] = None) -> Version:
        data = await self._get(f"/version/{version_id}")
        try:
            return Version.model_validate(data)
        except ModelValidationError as exc:
            raise ValidationError(f"Malformed Modrinth version '{version_id}': {exc}") from exc

    async def get_dependencies(
        self,
        ref: ProjectRef,
        game_versions: Sequence[str] = (),
        loaders: Sequence[str] = (),
        resource_type: str = "mod",
    ) -> List[Project]:
        payload = await self._get(f"/project/{_native_id(ref)}/dependencies")
        projects: List[Project] = []
        for item in (payload or {}).get("projects") or []:
            try:
                projects.append(Project.model_validate(item))
            except ModelValidationError as exc:
                logger.debug("Dropping malformed dependency project: %s", exc)
        return projects

    async def search(
        self,
        query: str,
        resource_type: str = "mod",
        game_versions: Sequence[str] = (),
        loaders: Sequence[str] = (),
        limit: int = 20,
        categories: Sequence[str] = (),
        offset: int = 0,
        index: str = "relevance",
    ) -> List[SearchHit]:
        facets: List[List[str]] = [[f"project_type:{resource_type}"]]
        if game_versions:
            facets.append([f"versions:{value}" for value in game_versions])
        if loaders and not skips_loader_filter(resource_type):
            facets.append([f"categories:{value}" for value in loaders])
        # Each category is its own group so every one must match.
        for value in categories:
            facets.append([f"categories:{value}"])

        params = {
            "query": query or None,
            "facets": json_array_param(facets),
            "limit": min(limit, SEARCH_LIMIT_CAP),
            "offset": offset,
            "index": index,
        }
        payload = await self._get("/search", params=params)
        hits: List[SearchHit] = []
        for item in (payload or {}).get("hits") or []:
            try:
                hits.append(SearchHit.model_validate(item))
            except ModelValidationError as exc:
                logger.debug("Dropping malformed search hit: %s", exc)
        return hits

    async def game_versions(self, include_snapshots: bool = False) -> List[str]:
        payload = await self._get("/tag/game_version")
        return [
            item["version"]
            for item in payload or []
            if include_snapshots or item.get("version_type") == "release"
        ]

    async def categories(self, resource_type: Optional[str] = None) -> List[Category]:
        payload = await self._get("/tag/category")
        return [
            Category(
                name=item["name"],
                slug=item["name"],
                project_type=item.get("project_type"),
                header=item.get("header") or "",
            )
            for item in payload or []
            if resource_type is None or item.get("project_type") == resource_type
        ]

    async def loaders(self, resource_type: Optional[str] = None) -> List[LoaderTag]:
        payload = await self._get("/tag/loader")
        tags = [LoaderTag.model_validate(item) for item in payload or []]
        if resource_type is None:
            return tags
        return [tag for tag in tags if resource_type in tag.supported_project_types]

    async def version_from_hash(self, sha1: str) -> Optional[Version]:
        """Look up the published version a file belongs to; None when unknown."""

        try:
            data = await self._get(f"/version_file/{sha1.lower()}", params={"algorithm": "sha1"})
        except NetworkError as exc:
            if exc.status_code == 404:
                return None
            raise
        return _parse_version(data)

    async def project_from_hash(self, sha1: str) -> Optional[Tuple[Project, Version]]:
        version = await self.version_from_hash(sha1)
        if version is None:
            return None
        project = await self.get_project(NativeRef(version.project_id))
        return project, version
