from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

import httpx

from .config import FetchConfig
from .dependencies import ResolvedDependency, resolve_missing_dependencies
from .download import DownloadJob, download_all
from .errors import ResourceError
from .hashindex import ContentHashIndex, sha1_of
from .layout import resource_directory
from .models import GameInfo, Project, Version
from .resolver import VersionResolver

logger = logging.getLogger(__name__)


@dataclass
class InstallReport:
    project: Project
    version: Version
    installed: List[Path] = field(default_factory=list)
    already_present: List[Path] = field(default_factory=list)
    failed: List[Tuple[str, str]] = field(default_factory=list)
    dependencies: List[ResolvedDependency] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def _is_present(path: Path, sha1: Optional[str]) -> bool:
    if not path.exists():
        return False
    return sha1 is None or sha1_of(path) == sha1


def _job_for(version: Version, game: GameInfo, resource_type: str) -> DownloadJob:
    primary = version.primary_file()
    if primary is None:
        raise ResourceError(f"Version {version.id} has no downloadable file.")
    directory = resource_directory(game.instance_dir, resource_type, primary.filename)
    return DownloadJob(url=primary.url, destination=directory / primary.filename, expected_sha1=primary.sha1)


async def _select_version(
    project_id: str,
    game: GameInfo,
    resource_type: str,
    resolver: VersionResolver,
    version_id: Optional[str],
) -> Version:
    if version_id:
        return await resolver.get_version(version_id, project_id)
    versions = await resolver.resolve(project_id, game.game_versions, game.loaders, resource_type)
    if not versions:
        raise ResourceError(
            f"No version of {project_id} is compatible with {game.game_version}"
            + (f" / {game.loader}" if game.loader else "")
            + "."
        )
    return versions[0]


async def install_project(
    project_id: str,
    game: GameInfo,
    resource_type: str = "mod",
    *,
    resolver: VersionResolver,
    index: ContentHashIndex,
    client: httpx.AsyncClient,
    cfg: FetchConfig,
    version_id: Optional[str] = None,
    include_dependencies: bool = True,
) -> InstallReport:
    """Install a project and its missing required dependencies.

    Raises ResourceError only when the project itself has no usable version or
    file. Download failures, including the project's own, are collected into
    ``InstallReport.failed``.
    """

    project = await resolver.get_project(project_id)
    version = await _select_version(project_id, game, resource_type, resolver, version_id)
    report = InstallReport(project=project, version=version)

    jobs: List[DownloadJob] = [_job_for(version, game, resource_type)]
    if include_dependencies:
        report.dependencies = await resolve_missing_dependencies(
            version,
            game,
            resource_type,
            resolver=resolver,
            index=index,
            concurrency=cfg.concurrency.dependency,
        )
        for dep in report.dependencies:
            try:
                jobs.append(_job_for(dep.version, game, resource_type))
            except ResourceError as exc:
                logger.warning("Skipping dependency %s: %s", dep.project.id, exc)
                report.failed.append((dep.project.id, str(exc)))

    pending: List[DownloadJob] = []
    destinations = set()
    for job in jobs:
        if job.destination in destinations:
            continue
        destinations.add(job.destination)
        if _is_present(job.destination, job.expected_sha1):
            report.already_present.append(job.destination)
            index.record_install(job.destination, job.expected_sha1)
        else:
            pending.append(job)

    results = await download_all(client, pending, cfg.concurrency.download, cfg)
    for result in results:
        if result.ok:
            index.record_install(result.value, result.item.expected_sha1)
            report.installed.append(result.value)
        else:
            report.failed.append((result.item.destination.name, str(result.error)))

    logger.info(
        "%s: %d installed, %d already present, %d failed",
        project.title,
        len(report.installed),
        len(report.already_present),
        len(report.failed),
    )
    return report
