"""Core data models shared by extraction, analysis, storage and ingestion."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, NamedTuple, Optional

from .modfile import ModFile


class ModuleVersion(NamedTuple):
    """Identity of one stored module version."""

    module_path: str
    version: str

    def __str__(self) -> str:
        return f"{self.module_path}@{self.version}"


@dataclass(frozen=True)
class SourceInfo:
    """Where the source of a module version can be browsed."""

    repo_url: str
    module_dir: str = ""
    commit: str = ""


@dataclass
class LicenseMetadata:
    types: List[str]
    file_path: str


@dataclass
class Readme:
    file_path: str
    contents: str


@dataclass
class Documentation:
    synopsis: str
    html: str
    goos: str
    goarch: str


@dataclass
class UnitRecord:
    """One documentable unit (package) of a module version."""

    path: str
    name: str
    commit_time: Optional[datetime]
    is_redistributable: bool
    source_info: Optional[SourceInfo] = None
    licenses: List[LicenseMetadata] = field(default_factory=list)
    readme: Optional[Readme] = None
    documentation: Optional[Documentation] = None


@dataclass(frozen=True)
class LifecycleStatus:
    """Deprecation and retraction of a module version, derived from go.mod."""

    deprecated: bool = False
    deprecation_reason: str = ""
    retracted: bool = False
    retraction_reason: str = ""


@dataclass
class ModuleRecord:
    """Everything one ingestion writes for a (module path, version) key."""

    module_path: str
    version: str
    commit_time: Optional[datetime]
    has_go_mod: bool = True
    source_file_count: int = 0
    lifecycle: LifecycleStatus = field(default_factory=LifecycleStatus)
    units: List[UnitRecord] = field(default_factory=list)

    @property
    def key(self) -> ModuleVersion:
        return ModuleVersion(self.module_path, self.version)

    @property
    def unit_paths(self) -> List[str]:
        return sorted(u.path for u in self.units)


@dataclass
class ManifestInfo:
    """A parsed go.mod together with the version it was read from."""

    module_path: str
    resolved_version: str
    mod_file: ModFile


@dataclass
class IngestSummary:
    """Result of a successful ingestion."""

    module_path: str
    version: str
    unit_count: int
    unit_paths: List[str]
    lifecycle: LifecycleStatus
    replaced: bool


@dataclass
class VersionState:
    """Outcome of the most recent ingestion attempt for a key."""

    module_path: str
    version: str
    status: str
    error: str
    unit_count: int
    attempted_at: datetime
