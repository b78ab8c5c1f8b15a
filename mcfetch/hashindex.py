from __future__ import annotations

import hashlib
import logging
import threading
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Counter as CounterType, Dict, Iterable, Optional, Set

logger = logging.getLogger(__name__)

INDEXED_SUFFIXES = {".jar", ".zip"}


def sha1_of(path: Path) -> str:
    sha = hashlib.sha1()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            sha.update(chunk)
    return sha.hexdigest()


def _iter_indexed_files(directory: Path) -> Iterable[Path]:
    if not directory.exists():
        return []
    return [f for f in directory.iterdir() if f.is_file() and f.suffix.lower() in INDEXED_SUFFIXES]


def _dir_stamp(directory: Path) -> Optional[int]:
    try:
        return directory.stat().st_mtime_ns
    except FileNotFoundError:
        return None


@dataclass
class _DirectoryEntry:
    files: Dict[str, str] = field(default_factory=dict)
    counts: CounterType[str] = field(default_factory=Counter)
    stamp: Optional[int] = None
    lock: threading.Lock = field(default_factory=threading.Lock)


class ContentHashIndex:
    """Reference-counted SHA-1 set per installation directory.

    Built lazily on the first query for a directory. Writes to one directory
    are serialized; reads never block. A directory whose mtime moved without
    going through this index is rescanned on the next query, so membership is
    a "possibly installed" hint rather than a guarantee.
    """

    def __init__(self) -> None:
        self._entries: Dict[Path, _DirectoryEntry] = {}
        self._registry_lock = threading.Lock()

    def _key(self, directory: Path) -> Path:
        return Path(directory).expanduser().resolve()

    def _entry(self, directory: Path) -> _DirectoryEntry:
        key = self._key(directory)
        entry = self._entries.get(key)
        if entry is None:
            with self._registry_lock:
                entry = self._entries.get(key)
                if entry is None:
                    entry = _DirectoryEntry()
                    self._rebuild(key, entry)
                    self._entries[key] = entry
        elif entry.stamp != _dir_stamp(key):
            with entry.lock:
                if entry.stamp != _dir_stamp(key):
                    logger.debug("Directory %s changed externally; rescanning", key)
                    self._rebuild(key, entry)
        return entry

    def _rebuild(self, directory: Path, entry: _DirectoryEntry) -> None:
        files: Dict[str, str] = {}
        for file in _iter_indexed_files(directory):
            try:
                files[file.name] = sha1_of(file)
            except OSError as exc:
                logger.warning("Could not hash %s: %s", file, exc)
        entry.files = files
        entry.counts = Counter(files.values())
        entry.stamp = _dir_stamp(directory)
        logger.debug("Indexed %d file(s) in %s", len(files), directory)

    @staticmethod
    def _decrement(entry: _DirectoryEntry, digest: str) -> None:
        entry.counts[digest] -= 1
        if entry.counts[digest] <= 0:
            del entry.counts[digest]

    def contains(self, directory: Path, sha1: Optional[str]) -> bool:
        if not sha1:
            return False
        return self._entry(directory).counts.get(sha1.lower(), 0) > 0

    def hashes(self, directory: Path) -> Set[str]:
        return set(self._entry(directory).counts)

    def add(self, directory: Path, sha1: str) -> None:
        entry = self._entry(directory)
        with entry.lock:
            entry.counts[sha1.lower()] += 1
            entry.stamp = _dir_stamp(self._key(directory))

    def remove(self, directory: Path, sha1: str) -> None:
        entry = self._entry(directory)
        digest = sha1.lower()
        with entry.lock:
            if digest in entry.counts:
                self._decrement(entry, digest)
            entry.stamp = _dir_stamp(self._key(directory))

    def record_install(self, path: Path, sha1: Optional[str] = None) -> str:
        """Record ``path`` as holding ``sha1``; re-recording the same file is a no-op."""

        digest = (sha1 or sha1_of(path)).lower()
        entry = self._entry(path.parent)
        with entry.lock:
            previous = entry.files.get(path.name)
            if previous != digest:
                if previous is not None:
                    self._decrement(entry, previous)
                entry.files[path.name] = digest
                entry.counts[digest] += 1
            entry.stamp = _dir_stamp(self._key(path.parent))
        return digest

    def record_delete(self, path: Path) -> None:
        """Delete an installed file and drop one reference to its hash.

        Other files in the same directory with identical content keep the
        hash present.
        """

        entry = self._entry(path.parent)
        with entry.lock:
            digest = entry.files.pop(path.name, None)
            if digest is None and path.exists():
                digest = sha1_of(path)
            if path.exists():
                path.unlink()
            if digest is not None and digest in entry.counts:
                self._decrement(entry, digest)
            entry.stamp = _dir_stamp(self._key(path.parent))

    def invalidate(self, directory: Path) -> None:
        with self._registry_lock:
            self._entries.pop(self._key(directory), None)
