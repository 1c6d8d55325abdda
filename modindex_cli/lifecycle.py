"""Deprecation and retraction status derived from a module's go.mod."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from . import versions
from .modfile import ModFile
from .models import LifecycleStatus, ManifestInfo, ModuleRecord

logger = logging.getLogger(__name__)

DEPRECATED_PREFIX = "Deprecated:"


def is_deprecated(mod_file: ModFile) -> Tuple[bool, str]:
    """Report whether the go.mod deprecates its module.

    Looks at the comments above and next to the module declaration, in file
    order. The first one starting with ``Deprecated:`` wins and its trimmed
    remainder is returned as the reason.
    """
    if mod_file.module is None:
        return False, ""
    comments = mod_file.module.comments
    for comment in comments.before + comments.suffix:
        text = comment.text
        if text.startswith(DEPRECATED_PREFIX):
            return True, text[len(DEPRECATED_PREFIX):].strip()
    return False, ""


def is_retracted(mod_file: ModFile, resolved_version: str) -> Tuple[bool, str]:
    """Report whether the go.mod retracts *resolved_version*.

    Ranges are inclusive and compared by semantic version; the first matching
    directive supplies the rationale.
    """
    if not versions.is_valid(resolved_version):
        return False, ""
    for retract in mod_file.retracts:
        if versions.in_range(resolved_version, retract.low, retract.high):
            return True, retract.rationale
    return False, ""


def analyze_lifecycle(manifest: ModFile, resolved_version: str) -> LifecycleStatus:
    deprecated, deprecation_reason = is_deprecated(manifest)
    retracted, retraction_reason = is_retracted(manifest, resolved_version)
    return LifecycleStatus(
        deprecated=deprecated,
        deprecation_reason=deprecation_reason,
        retracted=retracted,
        retraction_reason=retraction_reason,
    )


@dataclass
class RawLatestInfo:
    """The latest version of a module without considering retractions.

    Its go.mod establishes whether the module is deprecated and which of its
    versions are retracted.
    """

    module_path: str
    version: str
    mod_file: ModFile

    def populate_module(self, record: ModuleRecord) -> None:
        record.lifecycle = analyze_lifecycle(self.mod_file, record.version)


def populate_lifecycle(
    record: ModuleRecord,
    manifest: Optional[ManifestInfo],
    raw_latest: Optional[RawLatestInfo] = None,
) -> None:
    """Attach lifecycle status to *record*.

    The raw latest go.mod takes precedence over the ingested version's own.
    Without either, the record keeps the not-deprecated, not-retracted default.
    """
    if raw_latest is not None:
        logger.debug(
            "Lifecycle of %s@%s from raw latest %s",
            record.module_path, record.version, raw_latest.version,
        )
        raw_latest.populate_module(record)
    elif manifest is not None:
        record.lifecycle = analyze_lifecycle(manifest.mod_file, record.version)
    else:
        record.lifecycle = LifecycleStatus()
