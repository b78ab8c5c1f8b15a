from pathlib import Path

import pytest

from mcfetch.errors import (
    ConfigError,
    DownloadError,
    ErrorLevel,
    FetchError,
    IntegrityError,
    NetworkError,
    ValidationError,
    presentation_for,
)
from mcfetch.layout import resource_directory
from mcfetch.models import (
    Dependency,
    DependencyType,
    ForeignRef,
    GameInfo,
    NativeRef,
    Version,
    VersionFile,
    foreign_id,
    parse_ref,
)


def test_parse_ref():
    assert parse_ref("sodium") == NativeRef("sodium")
    assert parse_ref("cf-238222") == ForeignRef("238222")
    assert str(parse_ref("cf-238222")) == "cf-238222"
    assert parse_ref("cf-238222").numeric_id == 238222


@pytest.mark.parametrize("value", ["", "cf-", "cf-12a", "cf--1"])
def test_parse_ref_rejects_malformed(value):
    with pytest.raises(ValidationError):
        parse_ref(value)


def test_foreign_id_does_not_double_prefix():
    assert foreign_id(42) == "cf-42"
    assert foreign_id("cf-42") == "cf-42"


def test_primary_file_prefers_flag_then_first():
    a = VersionFile(filename="a.jar", url="https://x/a.jar")
    b = VersionFile(filename="b.jar", url="https://x/b.jar", primary=True, hashes={"sha1": "ABC"})
    flagged = Version(id="v", project_id="p", name="v", files=[a, b])
    assert flagged.primary_file() is b
    assert b.sha1 == "abc"
    assert Version(id="v", project_id="p", name="v", files=[a]).primary_file() is a
    assert Version(id="v", project_id="p", name="v").primary_file() is None


def test_required_dependencies_need_project_id():
    version = Version(
        id="v",
        project_id="p",
        name="v",
        dependencies=[
            Dependency(project_id="A", dependency_type=DependencyType.REQUIRED),
            Dependency(version_id="x", dependency_type=DependencyType.REQUIRED),
            Dependency(project_id="B"),
        ],
    )
    assert [d.project_id for d in version.required_dependencies()] == ["A"]


def test_game_info_lists():
    game = GameInfo(game_version="1.20.1", instance_dir=Path("/tmp/x"))
    assert game.game_versions == ["1.20.1"]
    assert game.loaders == []


@pytest.mark.parametrize(
    "kind, filename, expected",
    [
        ("mod", "a.jar", "mods"),
        ("shader", "a.zip", "shaderpacks"),
        ("resourcepack", "a.zip", "resourcepacks"),
        ("resourcepack", "a.jar", "mods"),
        ("datapack", "a.zip", "datapacks"),
        ("datapack", "a.JAR", "mods"),
        ("Mod", None, "mods"),
    ],
)
def test_resource_directory(tmp_path, kind, filename, expected):
    assert resource_directory(tmp_path, kind, filename) == tmp_path / expected


@pytest.mark.parametrize("kind", ["modpack", "plugin"])
def test_resource_directory_rejects_other_types(tmp_path, kind):
    with pytest.raises(ValidationError):
        resource_directory(tmp_path, kind)


@pytest.mark.parametrize(
    "exc, level",
    [
        (ConfigError("x"), ErrorLevel.POPUP),
        (IntegrityError("x", "a", "b"), ErrorLevel.NOTIFICATION),
        (DownloadError("x"), ErrorLevel.NOTIFICATION),
        (NetworkError("x", 500), ErrorLevel.NOTIFICATION),
        (FetchError("x"), ErrorLevel.SILENT),
        (KeyError("x"), ErrorLevel.POPUP),
    ],
)
def test_presentation_for(exc, level):
    assert presentation_for(exc) == level
