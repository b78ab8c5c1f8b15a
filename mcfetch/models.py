from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field

from .errors import ValidationError

FOREIGN_PREFIX = "cf-"


class ProjectType(str, Enum):
    MOD = "mod"
    DATAPACK = "datapack"
    SHADER = "shader"
    RESOURCEPACK = "resourcepack"
    MODPACK = "modpack"


class DependencyType(str, Enum):
    REQUIRED = "required"
    OPTIONAL = "optional"
    INCOMPATIBLE = "incompatible"
    EMBEDDED = "embedded"


class VersionFile(BaseModel):
    filename: str
    url: str
    size: Optional[int] = None
    hashes: Dict[str, str] = Field(default_factory=dict)
    primary: bool = False

    @property
    def sha1(self) -> Optional[str]:
        value = self.hashes.get("sha1")
        return value.lower() if value else None


class Dependency(BaseModel):
    project_id: Optional[str] = None
    version_id: Optional[str] = None
    dependency_type: DependencyType = DependencyType.OPTIONAL

    @property
    def is_resolvable_requirement(self) -> bool:
        return self.dependency_type == DependencyType.REQUIRED and bool(self.project_id)


class Version(BaseModel):
    id: str
    project_id: str
    name: str
    version_number: Optional[str] = None
    version_type: str = "release"
    game_versions: List[str] = Field(default_factory=list)
    loaders: List[str] = Field(default_factory=list)
    files: List[VersionFile] = Field(default_factory=list)
    dependencies: List[Dependency] = Field(default_factory=list)
    changelog: Optional[str] = None
    date_published: Optional[str] = None

    def primary_file(self) -> Optional[VersionFile]:
        for file in self.files:
            if file.primary:
                return file
        return self.files[0] if self.files else None

    def required_dependencies(self) -> List[Dependency]:
        return [dep for dep in self.dependencies if dep.is_resolvable_requirement]


class Project(BaseModel):
    id: str
    slug: Optional[str] = None
    title: str
    description: str = ""
    project_type: ProjectType = ProjectType.MOD
    game_versions: List[str] = Field(default_factory=list)
    loaders: List[str] = Field(default_factory=list)
    authors: List[str] = Field(default_factory=list)
    versions: List[str] = Field(default_factory=list)
    downloads: int = 0
    icon_url: Optional[str] = None
    body: Optional[str] = None


class SearchHit(BaseModel):
    project_id: str
    slug: Optional[str] = None
    title: str
    description: str = ""
    project_type: ProjectType = ProjectType.MOD
    author: Optional[str] = None
    downloads: int = 0


class Category(BaseModel):
    """A registry search category. CurseForge ids are numeric strings."""

    name: str
    slug: str
    id: Optional[str] = None
    project_type: Optional[str] = None
    header: str = ""


class LoaderTag(BaseModel):
    name: str
    supported_project_types: List[str] = Field(default_factory=list)


class GameInfo(BaseModel):
    game_version: str
    loader: Optional[str] = None
    instance_dir: Path

    @property
    def game_versions(self) -> List[str]:
        return [self.game_version]

    @property
    def loaders(self) -> List[str]:
        return [self.loader] if self.loader else []


@dataclass(frozen=True)
class NativeRef:
    id: str

    def __str__(self) -> str:
        return self.id


@dataclass(frozen=True)
class ForeignRef:
    id: str

    @property
    def numeric_id(self) -> int:
        return int(self.id)

    def __str__(self) -> str:
        return f"{FOREIGN_PREFIX}{self.id}"


ProjectRef = Union[NativeRef, ForeignRef]


def parse_ref(identifier: str) -> ProjectRef:
    """Split a registry-agnostic identifier into a tagged reference.

    Identifiers carrying the ``cf-`` prefix belong to CurseForge and must be
    numeric once the prefix is stripped; anything else is a Modrinth id or slug.
    """

    if not identifier:
        raise ValidationError("Project identifier must not be empty.")
    if identifier.startswith(FOREIGN_PREFIX):
        raw = identifier[len(FOREIGN_PREFIX):]
        if not raw.isdigit():
            raise ValidationError(f"Invalid CurseForge identifier '{identifier}'.")
        return ForeignRef(raw)
    return NativeRef(identifier)


def foreign_id(value: Union[int, str]) -> str:
    text = str(value)
    return text if text.startswith(FOREIGN_PREFIX) else f"{FOREIGN_PREFIX}{text}"
