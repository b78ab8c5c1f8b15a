import asyncio

import httpx
import pytest

from mcfetch.config import FetchConfig
from mcfetch.curseforge import CurseForgeRegistry
from mcfetch.errors import ValidationError
from mcfetch.models import Category, ForeignRef, NativeRef, Project, SearchHit, Version
from mcfetch.modrinth import ModrinthRegistry
from mcfetch.resolver import VersionResolver, build_resolver


class RecordingRegistry:
    def __init__(self, name):
        self.name = name
        self.calls = []

    async def list_versions(self, ref, game_versions, loaders, resource_type):
        self.calls.append(("list_versions", ref, resource_type))
        return [Version(id=f"{self.name}-v", project_id=str(ref), name="v")]

    async def get_project(self, ref):
        self.calls.append(("get_project", ref))
        return Project(id=str(ref), title=self.name)

    async def get_version(self, version_id, project=None):
        self.calls.append(("get_version", version_id, project))
        return Version(id=version_id, project_id=str(project), name="v")

    async def get_dependencies(self, ref, game_versions=(), loaders=(), resource_type="mod"):
        self.calls.append(("get_dependencies", ref))
        return []

    async def search(self, query, resource_type, game_versions, loaders, limit, categories=()):
        self.calls.append(("search", query, resource_type, limit))
        return [SearchHit(project_id="x", title=self.name)]

    async def categories(self, resource_type=None):
        self.calls.append(("categories", resource_type))
        return [Category(name="magic", slug="magic", project_type=resource_type)]

    async def game_versions(self, include_snapshots=False):
        self.calls.append(("game_versions", include_snapshots))
        return ["1.20.1"]

    async def project_from_hash(self, sha1):
        self.calls.append(("project_from_hash", sha1))
        return None


def _resolver():
    modrinth = RecordingRegistry("modrinth")
    curseforge = RecordingRegistry("curseforge")
    return VersionResolver(modrinth, curseforge), modrinth, curseforge


def test_prefixed_ids_route_to_curseforge():
    resolver, modrinth, curseforge = _resolver()
    versions = asyncio.run(resolver.resolve("cf-123", ["1.20.1"], ["fabric"], "mod"))
    assert versions[0].id == "curseforge-v"
    assert curseforge.calls == [("list_versions", ForeignRef("123"), "mod")]
    assert modrinth.calls == []


def test_plain_ids_route_to_modrinth():
    resolver, modrinth, curseforge = _resolver()
    project = asyncio.run(resolver.get_project("sodium"))
    assert project.title == "modrinth"
    assert modrinth.calls == [("get_project", NativeRef("sodium"))]
    assert curseforge.calls == []


def test_get_version_dispatches_on_version_prefix():
    resolver, modrinth, curseforge = _resolver()
    asyncio.run(resolver.get_version("cf-77", "cf-5"))
    asyncio.run(resolver.get_version("abcd1234"))
    assert curseforge.calls == [("get_version", "cf-77", ForeignRef("5"))]
    assert modrinth.calls == [("get_version", "abcd1234", None)]


def test_malformed_foreign_id_is_rejected():
    resolver, modrinth, curseforge = _resolver()
    with pytest.raises(ValidationError):
        asyncio.run(resolver.get_project("cf-abc"))
    assert modrinth.calls == curseforge.calls == []


def test_search_picks_source():
    resolver, modrinth, curseforge = _resolver()
    hits = asyncio.run(resolver.search("sodium", source="curseforge", limit=5))
    assert hits[0].title == "curseforge"
    assert curseforge.calls == [("search", "sodium", "mod", 5)]
    asyncio.run(resolver.search("sodium"))
    assert modrinth.calls == [("search", "sodium", "mod", 20)]



def test_search_rejects_unknown_source():
    resolver, modrinth, curseforge = _resolver()
    with pytest.raises(ValidationError):
        asyncio.run(resolver.search("sodium", source="hangar"))
    assert modrinth.calls == curseforge.calls == []


def test_catalog_lookups_follow_the_source():
    resolver, modrinth, curseforge = _resolver()
    categories = asyncio.run(resolver.categories("curseforge", "shader"))
    asyncio.run(resolver.game_versions(include_snapshots=True))
    assert categories[0].project_type == "shader"
    assert curseforge.calls == [("categories", "shader")]
    assert modrinth.calls == [("game_versions", True)]


def test_identify_asks_modrinth():
    resolver, modrinth, curseforge = _resolver()
    assert asyncio.run(resolver.identify("abc")) is None
    assert modrinth.calls == [("project_from_hash", "abc")]
    assert curseforge.calls == []

def test_build_resolver_wires_config(tmp_path):
    cfg = FetchConfig(instance_root=tmp_path, curseforge_api_key="k", curseforge_api_base="https://cf.test/v1/")

    async def scenario():
        async with httpx.AsyncClient() as client:
            return build_resolver(cfg, client)

    resolver = asyncio.run(scenario())
    assert isinstance(resolver.modrinth, ModrinthRegistry)
    assert isinstance(resolver.curseforge, CurseForgeRegistry)
    assert resolver.curseforge.api_key == "k"
    assert resolver.curseforge.api_base == "https://cf.test/v1"
    assert resolver.curseforge.file_detail_concurrency == 20
