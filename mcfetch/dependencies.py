from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from .batch import run_bounded, successes
from .hashindex import ContentHashIndex
from .layout import resource_directory
from .models import Dependency, GameInfo, Project, Version
from .resolver import VersionResolver

logger = logging.getLogger(__name__)


@dataclass
class ResolvedDependency:
    project: Project
    version: Version


def _unique_required(version: Version) -> List[Dependency]:
    unique: Dict[str, Dependency] = {}
    for dep in version.required_dependencies():
        unique.setdefault(dep.project_id, dep)
    return list(unique.values())


def is_missing(
    resolved: ResolvedDependency,
    index: ContentHashIndex,
    game: GameInfo,
    resource_type: str,
    directory: Optional[Path] = None,
) -> bool:
    primary = resolved.version.primary_file()
    if primary is None or primary.sha1 is None:
        return True
    target = directory or resource_directory(game.instance_dir, resource_type, primary.filename)
    return not index.contains(target, primary.sha1)


async def resolve_missing_dependencies(
    root_version: Version,
    game: GameInfo,
    resource_type: str = "mod",
    *,
    resolver: VersionResolver,
    index: ContentHashIndex,
    directory: Optional[Path] = None,
    concurrency: int = 10,
) -> List[ResolvedDependency]:
    """Return the required dependencies of ``root_version`` not yet installed.

    Only the root's direct dependencies are considered; their own
    dependencies are not walked. Each project id is resolved at most once per
    call. A dependency pinned to a version id is fetched by that id, which may
    point at the other registry; otherwise the first compatible version for
    ``game`` is used. Dependencies with no compatible version, or whose
    resolution fails, are logged and left out.
    """

    required = _unique_required(root_version)
    if not required:
        return []

    async def _resolve(dep: Dependency) -> Optional[ResolvedDependency]:
        if dep.version_id:
            version = await resolver.get_version(dep.version_id, dep.project_id)
        else:
            versions = await resolver.resolve(dep.project_id, game.game_versions, game.loaders, resource_type)
            if not versions:
                logger.info("No compatible version of dependency %s; skipping", dep.project_id)
                return None
            version = versions[0]
        project = await resolver.get_project(dep.project_id)
        return ResolvedDependency(project=project, version=version)

    results = await run_bounded(required, concurrency, _resolve, label="dependency resolution")
    missing: List[ResolvedDependency] = []
    for resolved in successes(results):
        if is_missing(resolved, index, game, resource_type, directory):
            missing.append(resolved)
        else:
            logger.debug("Dependency %s already installed", resolved.project.id)
    return missing
