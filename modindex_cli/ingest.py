"""Ingestion orchestrator: fetch → extract → analyze → store for one key."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple, Union

from .context import IngestContext, check
from .errors import IngestError, StorageUnavailable
from .extractor import MetadataExtractor
from .fetch import Fetcher
from .lifecycle import populate_lifecycle
from .models import IngestSummary, ModuleVersion, VersionState
from .store import VersionStore

logger = logging.getLogger(__name__)

STATUS_OK = "ok"


class IngestionOrchestrator:
    """Coordinates a fetcher, the metadata extractor and the version store."""

    def __init__(
        self,
        store: VersionStore,
        fetcher: Fetcher,
        extractor: Optional[MetadataExtractor] = None,
        record_states: bool = True,
    ) -> None:
        self.store = store
        self.fetcher = fetcher
        self.extractor = extractor or MetadataExtractor()
        self.record_states = record_states

    def ingest(self, module_path: str, version: str, ctx: Optional[IngestContext] = None) -> IngestSummary:
        """Ingest *module_path* at *version* and replace what is stored for it.

        Raises:
            FetchFailed, ExtractionFailed, ValidationRejected,
            StorageUnavailable, Cancelled: unchanged from the failing step.
        """
        try:
            summary = self._ingest(module_path, version, ctx)
        except IngestError as exc:
            logger.warning("Ingestion of %s@%s failed (%s): %s", module_path, version, exc.kind.value, exc)
            self._record_state(module_path, version, exc.kind.value, str(exc), 0)
            raise
        logger.info("Ingested %s@%s: %d units", module_path, version, summary.unit_count)
        self._record_state(module_path, version, STATUS_OK, "", summary.unit_count)
        return summary

    def _ingest(self, module_path: str, version: str, ctx: Optional[IngestContext]) -> IngestSummary:
        check(ctx, "fetch", module_path, version)
        contents = self.fetcher.fetch(module_path, version)
        raw_latest = self.fetcher.fetch_raw_latest(module_path)
        check(ctx, "extract", module_path, version)

        record, manifest = self.extractor.extract(contents)
        populate_lifecycle(record, manifest, raw_latest)

        replaced = self.store.replace(record, ctx)
        return IngestSummary(
            module_path=module_path,
            version=version,
            unit_count=len(record.units),
            unit_paths=record.unit_paths,
            lifecycle=record.lifecycle,
            replaced=replaced,
        )

    def _record_state(self, module_path: str, version: str, status: str, error: str, unit_count: int) -> None:
        if not self.record_states:
            return
        state = VersionState(
            module_path=module_path,
            version=version,
            status=status,
            error=error,
            unit_count=unit_count,
            attempted_at=datetime.now(timezone.utc),
        )
        try:
            self.store.upsert_version_state(state)
        except StorageUnavailable as exc:
            logger.warning("Could not record state for %s@%s: %s", module_path, version, exc)

    def ingest_many(
        self,
        requests: Iterable[Tuple[str, str]],
        workers: int = 4,
        timeout: Optional[float] = None,
    ) -> Dict[ModuleVersion, Union[IngestSummary, IngestError]]:
        """Ingest several keys in parallel.

        Duplicate keys are ingested once. Each key gets its own context with
        *timeout*; failures are returned in place of summaries.
        """
        keys: List[ModuleVersion] = list(dict.fromkeys(ModuleVersion(p, v) for p, v in requests))

        def run(key: ModuleVersion) -> Union[IngestSummary, IngestError]:
            try:
                return self.ingest(key.module_path, key.version, IngestContext(timeout))
            except IngestError as exc:
                return exc

        with ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
            results = list(pool.map(run, keys))
        return dict(zip(keys, results))
