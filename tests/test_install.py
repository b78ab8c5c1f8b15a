import asyncio
import hashlib

import httpx
import pytest

from mcfetch.config import FetchConfig
from mcfetch.errors import ResourceError
from mcfetch.hashindex import ContentHashIndex
from mcfetch.install import install_project
from mcfetch.models import Dependency, DependencyType, GameInfo, Project, Version, VersionFile

BODIES = {
    "root.jar": b"root mod",
    "lib.jar": b"library mod",
    "gone.jar": b"never served",
}


def _sha1(name):
    return hashlib.sha1(BODIES[name]).hexdigest()


def _version(project_id, filename, deps=()):
    return Version(
        id=f"{project_id}-v1",
        project_id=project_id,
        name=filename,
        game_versions=["1.20.1"],
        loaders=["fabric"],
        files=[
            VersionFile(
                filename=filename,
                url=f"https://cdn.test/{filename}",
                hashes={"sha1": _sha1(filename)},
                primary=True,
            )
        ],
        dependencies=[Dependency(project_id=d, dependency_type=DependencyType.REQUIRED) for d in deps],
    )


class FakeResolver:
    def __init__(self, versions):
        self.versions = versions

    async def resolve(self, project_id, game_versions, loaders, resource_type="mod"):
        return self.versions.get(project_id, [])

    async def get_version(self, version_id, project_id=None):
        for versions in self.versions.values():
            for version in versions:
                if version.id == version_id:
                    return version
        raise ResourceError(version_id)

    async def get_project(self, project_id):
        return Project(id=project_id, title=project_id)


def _serve(request):
    name = request.url.path.rsplit("/", 1)[-1]
    if name == "gone.jar":
        return httpx.Response(404)
    return httpx.Response(200, content=BODIES[name])


def _install(tmp_path, resolver, index, project_id="ROOT", **kwargs):
    cfg = FetchConfig(instance_root=tmp_path, github_proxy_enabled=False)
    game = GameInfo(game_version="1.20.1", loader="fabric", instance_dir=tmp_path)

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(_serve)) as client:
            return await install_project(
                project_id, game, "mod", resolver=resolver, index=index, client=client, cfg=cfg, **kwargs
            )

    return asyncio.run(scenario())


def test_installs_project_and_missing_dependency(tmp_path):
    resolver = FakeResolver(
        {"ROOT": [_version("ROOT", "root.jar", deps=["LIB"])], "LIB": [_version("LIB", "lib.jar")]}
    )
    index = ContentHashIndex()
    report = _install(tmp_path, resolver, index)
    assert report.ok
    assert sorted(p.name for p in report.installed) == ["lib.jar", "root.jar"]
    assert (tmp_path / "mods" / "root.jar").read_bytes() == BODIES["root.jar"]
    assert index.contains(tmp_path / "mods", _sha1("lib.jar"))
    assert [d.project.id for d in report.dependencies] == ["LIB"]


def test_second_install_reports_already_present(tmp_path):
    resolver = FakeResolver(
        {"ROOT": [_version("ROOT", "root.jar", deps=["LIB"])], "LIB": [_version("LIB", "lib.jar")]}
    )
    index = ContentHashIndex()
    _install(tmp_path, resolver, index)
    report = _install(tmp_path, resolver, index)
    assert report.installed == []
    assert [p.name for p in report.already_present] == ["root.jar"]
    assert report.dependencies == []


def test_failed_dependency_download_is_reported(tmp_path):
    resolver = FakeResolver(
        {"ROOT": [_version("ROOT", "root.jar", deps=["GONE"])], "GONE": [_version("GONE", "gone.jar")]}
    )
    report = _install(tmp_path, resolver, ContentHashIndex())
    assert not report.ok
    assert [name for name, _ in report.failed] == ["gone.jar"]
    assert [p.name for p in report.installed] == ["root.jar"]


def test_no_compatible_version_raises(tmp_path):
    with pytest.raises(ResourceError):
        _install(tmp_path, FakeResolver({}), ContentHashIndex())


def test_explicit_version_and_no_dependencies(tmp_path):
    resolver = FakeResolver(
        {"ROOT": [_version("ROOT", "root.jar", deps=["LIB"])], "LIB": [_version("LIB", "lib.jar")]}
    )
    report = _install(
        tmp_path, resolver, ContentHashIndex(), version_id="ROOT-v1", include_dependencies=False
    )
    assert [p.name for p in report.installed] == ["root.jar"]
    assert not (tmp_path / "mods" / "lib.jar").exists()
