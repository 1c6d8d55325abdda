"""Fetchers: where raw module contents come from.

The ingestion pipeline only depends on the :class:`Fetcher` interface. Two
implementations ship here: an in-memory fetcher for tests and embedding, and
a directory fetcher reading a proxy-shaped tree on disk::

    <root>/<escaped module path>/@v/<version>.info   {"Version": ..., "Time": ...}
    <root>/<escaped module path>/@v/<version>/...     module files
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from . import versions
from .config import MANIFEST_FILE
from .errors import ExtractionFailed, FetchFailed, ManifestSyntaxError
from .lifecycle import RawLatestInfo
from .modfile import parse_modfile

logger = logging.getLogger(__name__)

# Commit time used when a module carries no .info record
DEFAULT_COMMIT_TIME = datetime(2019, 1, 30, tzinfo=timezone.utc)

_UPPER_RE = re.compile(r"[A-Z]")


@dataclass
class ModuleContents:
    """Raw contents of one module version: a file tree plus its commit time."""

    module_path: str
    version: str
    commit_time: datetime
    files: Dict[str, bytes] = field(default_factory=dict)

    @property
    def manifest(self) -> Optional[bytes]:
        return self.files.get(MANIFEST_FILE)

    def paths(self) -> List[str]:
        return sorted(self.files)


class Fetcher(ABC):
    """Source of module contents."""

    @abstractmethod
    def fetch(self, module_path: str, version: str) -> ModuleContents:
        """Return the contents of *module_path* at *version*.

        Raises:
            FetchFailed: on transport errors or when the version does not exist.
        """
        ...

    def fetch_raw_latest(self, module_path: str) -> Optional[RawLatestInfo]:
        """Return the raw latest version's go.mod, when this source knows it."""
        return None


def escape_path(module_path: str) -> str:
    """Escape upper-case letters as ``!`` + lower-case, as module proxies do."""
    return _UPPER_RE.sub(lambda m: "!" + m.group(0).lower(), module_path)


def _to_bytes(files: Dict[str, Union[str, bytes]]) -> Dict[str, bytes]:
    return {
        path: data.encode("utf-8") if isinstance(data, str) else data
        for path, data in files.items()
    }


def _raw_latest_from(module_path: str, candidates: Iterable[str], load_manifest) -> Optional[RawLatestInfo]:
    """Pick the latest version in *candidates* and parse its go.mod.

    The highest release wins; pre-releases are considered only when no
    release exists. Invalid versions are ignored.
    """
    parsed = [(versions.parse(v), v) for v in candidates if versions.is_valid(v)]
    if not parsed:
        return None
    releases = [item for item in parsed if not item[0].prerelease]
    latest = max(releases or parsed, key=lambda item: item[0])[1]
    data = load_manifest(latest)
    if data is None:
        return None
    try:
        mod_file = parse_modfile(data, filename=f"{module_path}@{latest}/{MANIFEST_FILE}")
    except ManifestSyntaxError as exc:
        raise ExtractionFailed(f"raw latest go.mod: {exc}", module_path, latest) from exc
    return RawLatestInfo(module_path=module_path, version=latest, mod_file=mod_file)


@dataclass
class InMemoryModule:
    module_path: str
    version: str
    files: Dict[str, Union[str, bytes]]
    commit_time: datetime = DEFAULT_COMMIT_TIME


class InMemoryFetcher(Fetcher):
    """Serve modules registered in memory.

    With ``track_latest`` enabled the highest registered version of a module
    is reported as its raw latest version.
    """

    def __init__(self, modules: Iterable[InMemoryModule] = (), track_latest: bool = False) -> None:
        self._modules: Dict[tuple, InMemoryModule] = {}
        self.track_latest = track_latest
        for module in modules:
            self.add(module)

    def add(self, module: InMemoryModule) -> None:
        self._modules[(module.module_path, module.version)] = module

    def fetch(self, module_path: str, version: str) -> ModuleContents:
        module = self._modules.get((module_path, version))
        if module is None:
            raise FetchFailed("module version not found", module_path, version, not_found=True)
        return ModuleContents(
            module_path=module.module_path,
            version=module.version,
            commit_time=module.commit_time,
            files=_to_bytes(module.files),
        )

    def fetch_raw_latest(self, module_path: str) -> Optional[RawLatestInfo]:
        if not self.track_latest:
            return None
        candidates = [v for (p, v) in self._modules if p == module_path]

        def load(version: str) -> Optional[bytes]:
            return _to_bytes(self._modules[(module_path, version)].files).get(MANIFEST_FILE)

        return _raw_latest_from(module_path, candidates, load)


class DirectoryFetcher(Fetcher):
    """Read modules from a proxy-shaped directory tree."""

    def __init__(self, root: Path, track_latest: bool = True) -> None:
        self.root = root
        self.track_latest = track_latest

    def _version_dir(self, module_path: str) -> Path:
        return self.root / escape_path(module_path) / "@v"

    def fetch(self, module_path: str, version: str) -> ModuleContents:
        if not versions.is_valid(version):
            raise FetchFailed(f"invalid version {version!r}", module_path, version, not_found=True)
        vdir = self._version_dir(module_path)
        tree = vdir / version
        if not tree.is_dir():
            raise FetchFailed(f"no such directory {tree}", module_path, version, not_found=True)

        try:
            commit_time = self._commit_time(vdir / f"{version}.info", tree, module_path, version)
            files: Dict[str, bytes] = {}
            for fp in sorted(tree.rglob("*")):
                if fp.is_file():
                    files[fp.relative_to(tree).as_posix()] = fp.read_bytes()
        except OSError as exc:
            raise FetchFailed(f"reading {tree}: {exc}", module_path, version) from exc

        logger.debug("Fetched %d files for %s@%s from %s", len(files), module_path, version, tree)
        return ModuleContents(module_path, version, commit_time, files)

    def _commit_time(self, info_path: Path, tree: Path, module_path: str, version: str) -> datetime:
        if not info_path.exists():
            return datetime.fromtimestamp(tree.stat().st_mtime, tz=timezone.utc)
        try:
            info = json.loads(info_path.read_text(encoding="utf-8"))
            return _parse_time(info["Time"])
        except (json.JSONDecodeError, KeyError, ValueError) as exc:
            raise FetchFailed(f"bad info file {info_path}: {exc}", module_path, version) from exc

    def list_versions(self, module_path: str) -> List[str]:
        vdir = self._version_dir(module_path)
        if not vdir.is_dir():
            return []
        return sorted(
            (p.name for p in vdir.iterdir() if p.is_dir() and versions.is_valid(p.name)),
            key=versions.parse,
        )

    def fetch_raw_latest(self, module_path: str) -> Optional[RawLatestInfo]:
        if not self.track_latest:
            return None
        vdir = self._version_dir(module_path)

        def load(version: str) -> Optional[bytes]:
            gomod = vdir / version / MANIFEST_FILE
            if not gomod.exists():
                return None
            try:
                return gomod.read_bytes()
            except OSError as exc:
                raise FetchFailed(f"reading {gomod}: {exc}", module_path, version) from exc

        return _raw_latest_from(module_path, self.list_versions(module_path), load)


def _parse_time(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
