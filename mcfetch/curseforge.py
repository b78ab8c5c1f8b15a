from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import httpx
from pydantic import BaseModel, Field
from pydantic import ValidationError as ModelValidationError

from .api import get_json, json_array_param
from .batch import run_bounded, successes
from .config import DEFAULT_CURSEFORGE_API
from .errors import FetchError, ResourceError, ValidationError
from .models import (
    Category,
    Dependency,
    DependencyType,
    ForeignRef,
    Project,
    ProjectRef,
    ProjectType,
    SearchHit,
    Version,
    VersionFile,
    foreign_id,
    parse_ref,
)
from .modrinth import release_game_versions
from .registry import skips_loader_filter, version_matches

logger = logging.getLogger(__name__)

MINECRAFT_GAME_ID = 432
FALLBACK_DOWNLOAD_BASE = "https://edge.forgecdn.net/files"
PER_VERSION_FETCH_MAX = 3
SEARCH_PAGE_SIZE_CAP = 50
CATEGORY_IDS_CAP = 10
GAME_VERSIONS_CAP = 4
LOADER_TYPES_CAP = 5
SORT_BY_TOTAL_DOWNLOADS = 6

LOADER_CODES = {
    "forge": 1,
    "cauldron": 2,
    "liteloader": 3,
    "fabric": 4,
    "quilt": 5,
    "neoforge": 6,
}
LOADER_NAMES = {1: "forge", 4: "fabric", 5: "quilt", 6: "neoforge"}

CLASS_PROJECT_TYPES = {
    6: ProjectType.MOD,
    12: ProjectType.RESOURCEPACK,
    6552: ProjectType.SHADER,
    6945: ProjectType.DATAPACK,
    4471: ProjectType.MODPACK,
}
PROJECT_TYPE_CLASSES = {kind.value: class_id for class_id, kind in CLASS_PROJECT_TYPES.items()}

HASH_ALGORITHMS = {1: "sha1", 2: "md5"}
RELATION_TYPES = {
    3: DependencyType.REQUIRED,
    2: DependencyType.OPTIONAL,
    5: DependencyType.INCOMPATIBLE,
    1: DependencyType.EMBEDDED,
}


class CurseForgeHash(BaseModel):
    value: str
    algo: int


class CurseForgeDependency(BaseModel):
    modId: int
    relationType: int


class CurseForgeAuthor(BaseModel):
    name: str


class CurseForgeLogo(BaseModel):
    url: Optional[str] = None
    thumbnailUrl: Optional[str] = None


class FileIndexEntry(BaseModel):
    gameVersion: str
    fileId: int
    filename: str
    releaseType: int = 1
    modLoader: Optional[int] = None


class FileDetail(BaseModel):
    id: int
    displayName: str
    fileName: str
    downloadUrl: Optional[str] = None
    fileDate: Optional[str] = None
    releaseType: int = 1
    gameVersions: List[str] = Field(default_factory=list)
    dependencies: List[CurseForgeDependency] = Field(default_factory=list)
    changelog: Optional[str] = None
    fileLength: Optional[int] = None
    hashes: List[CurseForgeHash] = Field(default_factory=list)


class ModDetail(BaseModel):
    id: int
    name: str
    summary: str = ""
    slug: Optional[str] = None
    classId: Optional[int] = None
    authors: List[CurseForgeAuthor] = Field(default_factory=list)
    downloadCount: int = 0
    logo: Optional[CurseForgeLogo] = None
    body: Optional[str] = None
    latestFilesIndexes: List[FileIndexEntry] = Field(default_factory=list)

    @property
    def project_type(self) -> ProjectType:
        return CLASS_PROJECT_TYPES.get(self.classId or 0, ProjectType.MOD)


class LightweightVersion(BaseModel):
    """A file synthesized from the project's latest-files index.

    Carries no hashes or dependencies; those only arrive with the per-file
    detail fetch.
    """

    model_config = {"frozen": True}

    file_id: int
    mod_id: int
    filename: str
    display_name: str
    release_type: int = 1
    game_versions: List[str] = Field(default_factory=list)
    loaders: List[str] = Field(default_factory=list)
    download_url: str


class EnrichedVersion(LightweightVersion):
    hashes: Dict[str, str] = Field(default_factory=dict)
    dependencies: List[CurseForgeDependency] = Field(default_factory=list)
    changelog: Optional[str] = None
    file_length: Optional[int] = None
    file_date: Optional[str] = None


VersionRecord = Union[LightweightVersion, EnrichedVersion]


def fallback_download_url(file_id: int, filename: str) -> str:
    return f"{FALLBACK_DOWNLOAD_BASE}/{file_id // 1000}/{file_id % 1000}/{filename}"


def loader_codes(loaders: Iterable[str]) -> List[int]:
    codes: List[int] = []
    for loader in loaders:
        code = LOADER_CODES.get(loader.lower())
        if code and code not in codes:
            codes.append(code)
    return codes


def extract_hashes(hashes: Iterable[CurseForgeHash]) -> Dict[str, str]:
    result: Dict[str, str] = {}
    for entry in hashes:
        name = HASH_ALGORITHMS.get(entry.algo)
        if name and name not in result:
            result[name] = entry.value.lower()
    return result


def lightweight_versions(mod: ModDetail) -> List[LightweightVersion]:
    """Group index entries by file id into one record per file.

    Order follows the first appearance of each file id in the index.
    """

    groups: Dict[int, List[FileIndexEntry]] = {}
    for entry in mod.latestFilesIndexes:
        groups.setdefault(entry.fileId, []).append(entry)

    records: List[LightweightVersion] = []
    for file_id, entries in groups.items():
        first = entries[0]
        game_versions: List[str] = []
        loaders: List[str] = []
        for entry in entries:
            if entry.gameVersion not in game_versions:
                game_versions.append(entry.gameVersion)
            name = LOADER_NAMES.get(entry.modLoader or 0)
            if name and name not in loaders:
                loaders.append(name)
        records.append(
            LightweightVersion(
                file_id=file_id,
                mod_id=mod.id,
                filename=first.filename,
                display_name=first.filename,
                release_type=first.releaseType,
                game_versions=game_versions,
                loaders=loaders,
                download_url=fallback_download_url(file_id, first.filename),
            )
        )
    return records


def enrich(record: LightweightVersion, detail: FileDetail) -> EnrichedVersion:
    return EnrichedVersion(
        file_id=record.file_id,
        mod_id=record.mod_id,
        filename=record.filename,
        display_name=detail.displayName or record.display_name,
        release_type=record.release_type,
        game_versions=list(record.game_versions),
        loaders=list(record.loaders),
        download_url=detail.downloadUrl or record.download_url,
        hashes=extract_hashes(detail.hashes),
        dependencies=list(detail.dependencies),
        changelog=detail.changelog,
        file_length=detail.fileLength,
        file_date=detail.fileDate or None,
    )


def detail_record(mod_id: int, detail: FileDetail) -> EnrichedVersion:
    """Build a record from a file detail alone, without index data."""

    return EnrichedVersion(
        file_id=detail.id,
        mod_id=mod_id,
        filename=detail.fileName,
        display_name=detail.displayName,
        release_type=detail.releaseType,
        game_versions=[value for value in detail.gameVersions if value.lower() not in LOADER_CODES],
        loaders=[value.lower() for value in detail.gameVersions if value.lower() in LOADER_CODES],
        download_url=detail.downloadUrl or fallback_download_url(detail.id, detail.fileName),
        hashes=extract_hashes(detail.hashes),
        dependencies=list(detail.dependencies),
        changelog=detail.changelog,
        file_length=detail.fileLength,
        file_date=detail.fileDate or None,
    )


def to_version(record: VersionRecord, project_id: str) -> Optional[Version]:
    """Map a CurseForge file record onto the registry-agnostic Version shape.

    Returns None when the record cannot be represented.
    """

    hashes: Dict[str, str] = {}
    dependencies: List[Dependency] = []
    changelog = None
    size = None
    published = None
    if isinstance(record, EnrichedVersion):
        hashes = dict(record.hashes)
        dependencies = [
            Dependency(
                project_id=foreign_id(dep.modId),
                dependency_type=RELATION_TYPES.get(dep.relationType, DependencyType.OPTIONAL),
            )
            for dep in record.dependencies
        ]
        changelog = record.changelog
        size = record.file_length
        published = record.file_date

    try:
        return Version(
            id=foreign_id(record.file_id),
            project_id=foreign_id(project_id),
            name=record.display_name,
            version_number=record.display_name,
            game_versions=list(record.game_versions),
            loaders=list(record.loaders),
            files=[
                VersionFile(
                    filename=record.filename,
                    url=record.download_url,
                    size=size,
                    hashes=hashes,
                    primary=True,
                )
            ],
            dependencies=dependencies,
            changelog=changelog,
            date_published=published,
        )
    except ModelValidationError as exc:
        logger.debug("Dropping unconvertible CurseForge file %s: %s", record.file_id, exc)
        return None


def plain_text(html: str, limit: int = 200) -> str:
    text = re.sub(r"<[^>]+>", " ", html)
    text = re.sub(r"\s+", " ", text).strip()
    if len(text) > limit:
        return text[:limit] + "..."
    return text


def normalize_search_filter(value: str) -> Optional[str]:
    parts = value.split()
    return "+".join(parts) if parts else None


def _category_id(value: str) -> str:
    text = str(value).strip()
    if not text.isdigit():
        raise ValidationError(f"CurseForge categories are numeric ids, got '{value}'.")
    return text


def is_snapshot(version_string: str) -> bool:
    lowered = version_string.lower()
    return any(marker in lowered for marker in ("snapshot", "pre", "rc"))


def _foreign(ref: ProjectRef) -> ForeignRef:
    if not isinstance(ref, ForeignRef):
        raise ValidationError(f"'{ref}' is not a CurseForge identifier.")
    return ref


class CurseForgeRegistry:
    """Foreign registry adapter mapping CurseForge mods and files onto the native shape."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: Optional[str] = None,
        api_base: str = DEFAULT_CURSEFORGE_API,
        file_detail_concurrency: int = 20,
        dependency_concurrency: int = 10,
    ) -> None:
        self.client = client
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.file_detail_concurrency = file_detail_concurrency
        self.dependency_concurrency = dependency_concurrency

    def _headers(self) -> Dict[str, Optional[str]]:
        return {"x-api-key": self.api_key}

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await get_json(self.client, f"{self.api_base}{path}", params=params, headers=self._headers())

    async def fetch_mod(self, mod_id: int) -> ModDetail:
        payload = await self._get(f"/mods/{mod_id}")
        try:
            return ModDetail.model_validate((payload or {}).get("data") or {})
        except ModelValidationError as exc:
            raise ValidationError(f"Malformed CurseForge mod {mod_id}: {exc}") from exc

    async def fetch_file(self, mod_id: int, file_id: int) -> FileDetail:
        payload = await self._get(f"/mods/{mod_id}/files/{file_id}")
        try:
            return FileDetail.model_validate((payload or {}).get("data") or {})
        except ModelValidationError as exc:
            raise ValidationError(f"Malformed CurseForge file {file_id}: {exc}") from exc

    async def fetch_description(self, mod_id: int) -> str:
        payload = await self._get(f"/mods/{mod_id}/description")
        return (payload or {}).get("data") or ""

    async def enrich_all(self, records: Sequence[LightweightVersion]) -> List[VersionRecord]:
        """Backfill hashes and dependencies; a failed detail keeps the lightweight record."""

        async def _detail(record: LightweightVersion) -> EnrichedVersion:
            detail = await self.fetch_file(record.mod_id, record.file_id)
            return enrich(record, detail)

        results = await run_bounded(records, self.file_detail_concurrency, _detail, label="CurseForge file detail")
        merged: List[VersionRecord] = []
        for result in results:
            merged.append(result.value if result.ok else result.item)
        return merged

    def _select(
        self,
        mod: ModDetail,
        records: Sequence[LightweightVersion],
        game_version: Optional[str],
        codes: Sequence[int],
    ) -> List[LightweightVersion]:
        selected = list(records)
        if game_version is not None:
            selected = [record for record in selected if game_version in record.game_versions]
        if codes:
            # Files whose index entries carry no loader never match a loader query.
            matching = {entry.fileId for entry in mod.latestFilesIndexes if entry.modLoader in codes}
            selected = [record for record in selected if record.file_id in matching]
        return selected

    async def fetch_records(
        self,
        mod: ModDetail,
        game_versions: Sequence[str],
        codes: Sequence[int],
    ) -> List[VersionRecord]:
        base = lightweight_versions(mod)
        collected: List[VersionRecord] = []
        seen: set = set()
        if game_versions and len(game_versions) <= PER_VERSION_FETCH_MAX:
            for game_version in game_versions:
                subset = [r for r in self._select(mod, base, game_version, codes) if r.file_id not in seen]
                seen.update(record.file_id for record in subset)
                collected.extend(await self.enrich_all(subset))
        else:
            collected.extend(await self.enrich_all(self._select(mod, base, None, codes)))

        unique: List[VersionRecord] = []
        emitted: set = set()
        for record in collected:
            if record.file_id in emitted:
                continue
            emitted.add(record.file_id)
            unique.append(record)
        return unique

    async def list_versions(
        self,
        ref: ProjectRef,
        game_versions: Sequence[str],
        loaders: Sequence[str],
        resource_type: str,
    ) -> List[Version]:
        foreign = _foreign(ref)
        skip = skips_loader_filter(resource_type, foreign=True)
        codes = [] if skip else loader_codes(loaders)
        mod = await self.fetch_mod(foreign.numeric_id)
        records = await self.fetch_records(mod, game_versions, codes)

        versions: List[Version] = []
        for record in records:
            version = to_version(record, str(foreign))
            if version is None:
                continue
            if version_matches(version, game_versions, loaders, skip_loaders=True):
                versions.append(version)
        return versions

    async def get_project(self, ref: ProjectRef) -> Project:
        foreign = _foreign(ref)
        mod = await self.fetch_mod(foreign.numeric_id)
        try:
            body = await self.fetch_description(mod.id)
        except FetchError as exc:
            logger.warning("Could not fetch description for %s: %s", foreign, exc)
            body = ""

        records = lightweight_versions(mod)
        loaders: List[str] = []
        for record in records:
            loaders.extend(name for name in record.loaders if name not in loaders)
        if not loaders and mod.project_type == ProjectType.RESOURCEPACK:
            loaders = ["minecraft"]
        elif not loaders and mod.project_type == ProjectType.DATAPACK:
            loaders = ["datapack"]

        return Project(
            id=str(foreign),
            slug=mod.slug or f"curseforge-{mod.id}",
            title=mod.name,
            description=plain_text(body) if body else mod.summary,
            project_type=mod.project_type,
            game_versions=release_game_versions([e.gameVersion for e in mod.latestFilesIndexes]),
            loaders=loaders,
            authors=[author.name for author in mod.authors],
            versions=[foreign_id(record.file_id) for record in records],
            downloads=mod.downloadCount,
            icon_url=(mod.logo.url or mod.logo.thumbnailUrl) if mod.logo else None,
            body=body or mod.body or mod.summary,
        )

    async def get_version(self, version_id: str, project: Optional[ProjectRef] = None) -> Version:
        if project is None:
            raise ValidationError(f"CurseForge version '{version_id}' needs its project id to be fetched.")
        foreign = _foreign(project)
        file_ref = _foreign(parse_ref(foreign_id(version_id)))
        detail = await self.fetch_file(foreign.numeric_id, file_ref.numeric_id)
        version = to_version(detail_record(foreign.numeric_id, detail), str(foreign))
        if version is None:
            raise ResourceError(f"CurseForge file {version_id} could not be converted.")
        return version

    async def get_dependencies(
        self,
        ref: ProjectRef,
        game_versions: Sequence[str] = (),
        loaders: Sequence[str] = (),
        resource_type: str = "mod",
    ) -> List[Project]:
        versions = await self.list_versions(ref, game_versions, loaders, resource_type)
        if not versions:
            return []
        required = [dep.project_id for dep in versions[0].required_dependencies()]
        foreign_refs = [parse_ref(project_id) for project_id in dict.fromkeys(required)]
        results = await run_bounded(
            foreign_refs, self.dependency_concurrency, self.get_project, label="CurseForge dependency project"
        )
        return successes(results)

    async def search(
        self,
        query: str,
        resource_type: str = "mod",
        game_versions: Sequence[str] = (),
        loaders: Sequence[str] = (),
        limit: int = 20,
        categories: Sequence[str] = (),
        offset: int = 0,
    ) -> List[SearchHit]:
        category_ids = [_category_id(value) for value in categories]
        codes = [] if skips_loader_filter(resource_type, foreign=True) else loader_codes(loaders)
        params = {
            "gameId": MINECRAFT_GAME_ID,
            "classId": PROJECT_TYPE_CLASSES.get(resource_type.lower()),
            "index": offset,
            "pageSize": min(limit, SEARCH_PAGE_SIZE_CAP),
            "categoryIds": json_array_param(category_ids, CATEGORY_IDS_CAP),
            "gameVersions": json_array_param(game_versions, GAME_VERSIONS_CAP),
            "modLoaderTypes": json_array_param([str(c) for c in codes], LOADER_TYPES_CAP),
            "searchFilter": normalize_search_filter(query),
            "sortField": SORT_BY_TOTAL_DOWNLOADS,
            "sortOrder": "desc",
        }
        payload = await self._get("/mods/search", params=params)
        hits: List[SearchHit] = []
        for item in (payload or {}).get("data") or []:
            try:
                mod = ModDetail.model_validate(item)
            except ModelValidationError as exc:
                logger.debug("Dropping malformed CurseForge search hit: %s", exc)
                continue
            hits.append(
                SearchHit(
                    project_id=foreign_id(mod.id),
                    slug=mod.slug or f"curseforge-{mod.id}",
                    title=mod.name,
                    description=mod.summary,
                    project_type=mod.project_type,
                    author=mod.authors[0].name if mod.authors else None,
                    downloads=mod.downloadCount,
                )
            )
        return hits

    async def categories(self, resource_type: Optional[str] = None) -> List[Category]:
        class_id = PROJECT_TYPE_CLASSES.get(resource_type.lower()) if resource_type else None
        payload = await self._get("/categories", params={"gameId": MINECRAFT_GAME_ID, "classId": class_id})
        categories: List[Category] = []
        for item in (payload or {}).get("data") or []:
            kind = CLASS_PROJECT_TYPES.get(item.get("classId") or 0)
            categories.append(
                Category(
                    id=str(item["id"]),
                    name=item["name"],
                    slug=item.get("slug") or str(item["id"]),
                    project_type=kind.value if kind else None,
                )
            )
        return categories

    async def game_versions(self, include_snapshots: bool = False) -> List[str]:
        """Approved Minecraft versions, releases only unless snapshots are asked for."""

        payload = await self._get("/minecraft/version")
        values: List[str] = []
        for item in (payload or {}).get("data") or []:
            value = item.get("versionString")
            if not value or not item.get("approved", False):
                continue
            if is_snapshot(value) and not include_snapshots:
                continue
            values.append(value)
        return values
