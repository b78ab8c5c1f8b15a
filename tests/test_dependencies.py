import asyncio
import hashlib

from mcfetch.dependencies import ResolvedDependency, is_missing, resolve_missing_dependencies
from mcfetch.errors import NetworkError
from mcfetch.hashindex import ContentHashIndex
from mcfetch.models import Dependency, DependencyType, GameInfo, Project, Version, VersionFile


def _version(version_id, project_id, sha1=None, deps=()):
    hashes = {"sha1": sha1} if sha1 else {}
    return Version(
        id=version_id,
        project_id=project_id,
        name=version_id,
        game_versions=["1.20.1"],
        loaders=["fabric"],
        files=[VersionFile(filename=f"{version_id}.jar", url=f"https://cdn.test/{version_id}.jar", hashes=hashes, primary=True)],
        dependencies=list(deps),
    )


class FakeResolver:
    def __init__(self, versions, pinned=None, failing=()):
        self.versions = versions
        self.pinned = pinned or {}
        self.failing = set(failing)
        self.resolve_calls = []
        self.version_calls = []

    async def resolve(self, project_id, game_versions, loaders, resource_type="mod"):
        self.resolve_calls.append((project_id, list(game_versions), list(loaders), resource_type))
        if project_id in self.failing:
            raise NetworkError("registry down", 503)
        return self.versions.get(project_id, [])

    async def get_version(self, version_id, project_id=None):
        self.version_calls.append((version_id, project_id))
        return self.pinned[version_id]

    async def get_project(self, project_id):
        return Project(id=project_id, title=project_id.upper())


def _game(tmp_path):
    return GameInfo(game_version="1.20.1", loader="fabric", instance_dir=tmp_path)


def _dep(project_id, kind=DependencyType.REQUIRED, version_id=None):
    return Dependency(project_id=project_id, version_id=version_id, dependency_type=kind)


def _walk(root, game, resolver, index, **kwargs):
    return asyncio.run(
        resolve_missing_dependencies(root, game, "mod", resolver=resolver, index=index, **kwargs)
    )


def test_only_required_dependencies_with_project_ids(tmp_path):
    root = _version(
        "root",
        "R",
        deps=[
            _dep("A"),
            _dep("B", DependencyType.OPTIONAL),
            _dep(None),
            _dep("D", DependencyType.INCOMPATIBLE),
            _dep("A"),
        ],
    )
    resolver = FakeResolver({"A": [_version("a1", "A", "aa"), _version("a0", "A", "ab")]})
    missing = _walk(root, _game(tmp_path), resolver, ContentHashIndex())
    assert [(d.project.id, d.version.id) for d in missing] == [("A", "a1")]
    assert resolver.resolve_calls == [("A", ["1.20.1"], ["fabric"], "mod")]


def test_installed_dependency_is_excluded(tmp_path):
    mods = tmp_path / "mods"
    mods.mkdir()
    (mods / "lib.jar").write_bytes(b"library")
    installed_sha1 = hashlib.sha1(b"library").hexdigest()

    root = _version("root", "R", deps=[_dep("A"), _dep("B")])
    resolver = FakeResolver(
        {
            "A": [_version("a1", "A", installed_sha1)],
            "B": [_version("b1", "B", "0" * 40)],
        }
    )
    missing = _walk(root, _game(tmp_path), resolver, ContentHashIndex())
    assert [d.project.id for d in missing] == ["B"]


def test_pinned_version_is_fetched_by_id(tmp_path):
    pinned = _version("cf-77", "cf-5", "cc")
    root = _version("root", "R", deps=[_dep("cf-5", version_id="cf-77")])
    resolver = FakeResolver({}, pinned={"cf-77": pinned})
    missing = _walk(root, _game(tmp_path), resolver, ContentHashIndex())
    assert resolver.version_calls == [("cf-77", "cf-5")]
    assert resolver.resolve_calls == []
    assert missing[0].version is pinned


def test_unresolvable_and_failing_dependencies_are_skipped(tmp_path):
    root = _version("root", "R", deps=[_dep("NONE"), _dep("DOWN"), _dep("OK")])
    resolver = FakeResolver({"OK": [_version("ok1", "OK", "dd")]}, failing={"DOWN"})
    missing = _walk(root, _game(tmp_path), resolver, ContentHashIndex(), concurrency=1)
    assert [d.project.id for d in missing] == ["OK"]


def test_no_required_dependencies(tmp_path):
    resolver = FakeResolver({})
    assert _walk(_version("root", "R"), _game(tmp_path), resolver, ContentHashIndex()) == []
    assert resolver.resolve_calls == []


def test_dependency_without_hash_counts_as_missing(tmp_path):
    resolved = ResolvedDependency(project=Project(id="A", title="A"), version=_version("a1", "A"))
    assert is_missing(resolved, ContentHashIndex(), _game(tmp_path), "mod")
