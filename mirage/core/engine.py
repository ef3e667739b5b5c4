"""
Mirage Correlation Engine
==========================

Central orchestration engine for Mirage. Invoked once per scan tick,
it drives one snapshot through the full pipeline and keeps the set of
threat findings consistent across cycles.

Each cycle walks a fixed state machine::

    IDLE -> NORMALIZING -> RECORDING -> DETECTING -> MERGING -> PUBLISHING -> IDLE

    1. Normalizing: raw driver records become NetworkObservations.
    2. Recording:   observations are folded into the ObservationStore in
                    one atomic batch; stale histories are evicted.
    3. Detecting:   every detector runs concurrently over copies of the
                    active histories; a failing detector contributes a
                    diagnostic and no findings, and the grace countdown
                    of its open findings pauses.
    4. Merging:     detections are deduplicated by ``(type, subject)``
                    against the active findings: re-detections confirm,
                    new ones open, findings missed for the grace period
                    (or whose subject was evicted) resolve.
    5. Publishing:  the resulting FindingBatch goes to every sink; sink
                    failures are isolated like detector failures.

Cycles never overlap. A cycle that is already running when its caller
is cancelled is shielded and allowed to finish, so shutdown never
leaves the store or the finding set half-updated.

References:
    - Evans, E. (2003). Domain-Driven Design. Addison-Wesley.
    - Python asyncio documentation: Coroutines and Tasks.
      https://docs.python.org/3/library/asyncio-task.html
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Sequence

from shared.config import MirageConfig
from shared.logger import MirageLogger
from shared.models import Diagnostic, Severity

from mirage.analyzers.base import DetectionContext, Detector
from mirage.analyzers.evil_twin import EvilTwinDetector
from mirage.analyzers.karma import KarmaDetector
from mirage.analyzers.pineapple import PineappleDetector
from mirage.collectors.normalizer import SnapshotNormalizer
from mirage.core.models import (
    CycleReport,
    CycleState,
    Detection,
    Finding,
    FindingBatch,
    FindingStatus,
    FindingType,
    NormalizationResult,
)
from mirage.core.store import ObservationStore
from mirage.output.sinks import FindingSink

logger = MirageLogger("core.engine")

FindingKey = tuple[FindingType, str]


# ---------------------------------------------------------------------------
# Async helper
# ---------------------------------------------------------------------------


def run_async(coro):
    """Run *coro* to completion from synchronous code.

    Works both with and without an event loop already running in the
    calling thread.
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop and loop.is_running():
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# Correlation Engine
# ---------------------------------------------------------------------------


class CorrelationEngine:
    """Per-cycle pipeline and owner of the finding set.

    Usage::

        engine = CorrelationEngine(config, sinks=[ConsoleSink()])
        report = await engine.run_cycle(raw_records)
        report = engine.run_cycle_sync(raw_records, now=scan_time)
        engine.active_findings()

    Args:
        config:     Mirage configuration. Uses defaults if ``None``.
        store:      Observation store to own. A new one is created if ``None``.
        detectors:  Detectors to run each cycle. Defaults to Evil-Twin,
                    Karma and Pineapple built from *config*.
        sinks:      Finding sinks receiving one batch per cycle.
        normalizer: Snapshot normalizer. Built from *config* if ``None``.
    """

    def __init__(
        self,
        config: Optional[MirageConfig] = None,
        *,
        store: Optional[ObservationStore] = None,
        detectors: Optional[Sequence[Detector]] = None,
        sinks: Optional[Iterable[FindingSink]] = None,
        normalizer: Optional[SnapshotNormalizer] = None,
    ) -> None:
        self._config = config or MirageConfig()
        self._store = store if store is not None else ObservationStore(self._config.store)
        self._normalizer = normalizer or SnapshotNormalizer(self._config.normalizer)
        if detectors is None:
            detectors = [
                EvilTwinDetector(self._config.evil_twin),
                KarmaDetector(self._config.karma),
                PineappleDetector(self._config.pineapple),
            ]
        self._detectors: list[Detector] = list(detectors)
        self._sinks: list[FindingSink] = list(sinks or [])

        self._state = CycleState.IDLE
        self._cycle = self._store.last_cycle
        self._last_report: Optional[CycleReport] = None

        self._active: dict[FindingKey, Finding] = {}
        self._resolved: deque[Finding] = deque(
            maxlen=max(1, self._config.correlation.max_resolved_findings)
        )
        self._merge_lock = threading.Lock()

        self._cycle_lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None
        self._inflight: set[asyncio.Task[CycleReport]] = set()

    # ------------------------------------------------------------------ #
    #  Public API
    # ------------------------------------------------------------------ #

    async def run_cycle(
        self,
        snapshot: Iterable[Any],
        now: Optional[datetime] = None,
    ) -> CycleReport:
        """Run one full cycle over *snapshot*.

        Args:
            snapshot: Raw scan records from one scan (may be empty).
            now:      Scan time. Defaults to the current UTC time.

        Returns:
            The :class:`CycleReport` for the completed cycle.
        """
        task = asyncio.ensure_future(self._locked_cycle(list(snapshot or []), now))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return await asyncio.shield(task)

    def run_cycle_sync(
        self,
        snapshot: Iterable[Any],
        now: Optional[datetime] = None,
    ) -> CycleReport:
        """Blocking wrapper around :meth:`run_cycle` for synchronous schedulers."""
        return run_async(self.run_cycle(snapshot, now))

    async def drain(self) -> None:
        """Wait for any in-flight cycle to finish."""
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

    def add_sink(self, sink: FindingSink) -> None:
        self._sinks.append(sink)

    def active_findings(self) -> list[Finding]:
        """Copies of the active findings, most severe first."""
        with self._merge_lock:
            findings = [f.model_copy(deep=True) for f in self._active.values()]
        return sorted(findings, key=lambda f: (-f.severity.rank, f.type.value, f.subject_bssid))

    def resolved_findings(self) -> list[Finding]:
        """Copies of the retained resolved findings, oldest resolution first."""
        with self._merge_lock:
            return [f.model_copy(deep=True) for f in self._resolved]

    def finding_history(self) -> list[Finding]:
        """Every retained finding, active or resolved, by first detection."""
        findings = self.active_findings() + self.resolved_findings()
        return sorted(findings, key=lambda f: (f.first_detected_at, f.subject_bssid))

    @property
    def state(self) -> CycleState:
        return self._state

    @property
    def cycle(self) -> int:
        """Number of the last started cycle (0 before the first)."""
        return self._cycle

    @property
    def store(self) -> ObservationStore:
        return self._store

    @property
    def config(self) -> MirageConfig:
        return self._config

    @property
    def last_report(self) -> Optional[CycleReport]:
        return self._last_report

    @property
    def detectors(self) -> list[Detector]:
        return list(self._detectors)

    # ------------------------------------------------------------------ #
    #  Cycle pipeline
    # ------------------------------------------------------------------ #

    def _get_cycle_lock(self) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        if self._cycle_lock is None or self._lock_loop is not loop:
            self._cycle_lock = asyncio.Lock()
            self._lock_loop = loop
        return self._cycle_lock

    async def _locked_cycle(
        self, snapshot: list[Any], now: Optional[datetime]
    ) -> CycleReport:
        async with self._get_cycle_lock():
            try:
                return await self._execute(snapshot, now)
            finally:
                self._state = CycleState.IDLE

    async def _execute(
        self, snapshot: list[Any], now: Optional[datetime]
    ) -> CycleReport:
        started_at = datetime.now(timezone.utc)
        now = _as_utc(now) if now is not None else started_at
        self._cycle += 1
        cycle = self._cycle
        warnings: list[Diagnostic] = []

        with logger.cycle(cycle), logger.timed(f"cycle {cycle}"):
            self._state = CycleState.NORMALIZING
            normalized, held = self._normalize(snapshot, now, cycle)
            warnings.extend(normalized.warnings)

            self._state = CycleState.RECORDING
            over_capacity = self._store.record_batch(normalized.observations, cycle)
            stale = self._store.evict_stale(now, cycle)
            evicted = sorted(set(over_capacity) | set(stale))
            active = self._store.all_active(now)

            self._state = CycleState.DETECTING
            context = DetectionContext(
                now=now,
                cycle=cycle,
                histories=tuple(active),
                retention_window_seconds=self._config.store.retention_window_seconds,
            )
            detections, detector_warnings, failed = await self._run_detectors(context)
            warnings.extend(detector_warnings)
            held |= failed

            self._state = CycleState.MERGING
            batch = self._merge(detections, evicted, now, cycle, held)

            self._state = CycleState.PUBLISHING
            warnings.extend(self._publish(batch, cycle))

            logger.info(
                f"Cycle {cycle}: {len(normalized.observations)} observations, "
                f"{len(active)} active networks, {len(batch.new)} new / "
                f"{len(batch.confirmed)} confirmed / {len(batch.resolved)} resolved findings"
            )

        report = CycleReport(
            cycle=cycle,
            started_at=started_at,
            ended_at=datetime.now(timezone.utc),
            observations=len(normalized.observations),
            active_networks=len(active),
            evicted=evicted,
            batch=batch,
            warnings=warnings,
        )
        self._last_report = report
        return report

    def _normalize(
        self, snapshot: list[Any], now: datetime, cycle: int
    ) -> tuple[NormalizationResult, set[FindingType]]:
        """Normalize *snapshot*; a normalizer fault yields an empty cycle.

        The second item holds the finding types whose grace countdown is
        paused this cycle: every type when the snapshot could not be read.
        """
        try:
            return self._normalizer.normalize(snapshot, now, cycle=cycle), set()
        except Exception as exc:
            logger.exception(f"Normalizer failed in cycle {cycle}")
            problem = Diagnostic(
                source="normalizer",
                message=f"{type(exc).__name__}: {exc}",
                cycle=cycle,
            )
            empty = NormalizationResult(
                warnings=[problem],
                input_count=len(snapshot),
                dropped=len(snapshot),
            )
            return empty, set(FindingType)

    async def _run_detectors(
        self, context: DetectionContext
    ) -> tuple[list[Detection], list[Diagnostic], set[FindingType]]:
        if self._config.correlation.parallel_detectors:
            results = await asyncio.gather(
                *(
                    asyncio.to_thread(self._run_detector, detector, context)
                    for detector in self._detectors
                )
            )
        else:
            results = [self._run_detector(d, context) for d in self._detectors]

        detections: list[Detection] = []
        warnings: list[Diagnostic] = []
        failed: set[FindingType] = set()
        covered: set[FindingType] = set()
        undeclared_failure = False
        for detector, (found, problem) in zip(self._detectors, results):
            detections.extend(found)
            owned = getattr(detector, "finding_type", None)
            if problem is None:
                if owned is not None:
                    covered.add(owned)
                continue
            warnings.append(problem)
            if owned is None:
                undeclared_failure = True
            else:
                failed.add(owned)
        if undeclared_failure:
            failed.update(t for t in FindingType if t not in covered)
        return detections, warnings, failed

    def _run_detector(
        self, detector: Detector, context: DetectionContext
    ) -> tuple[list[Detection], Optional[Diagnostic]]:
        name = getattr(detector, "name", type(detector).__name__)
        try:
            return list(detector.detect(context)), None
        except Exception as exc:
            logger.exception(f"Detector {name} failed in cycle {context.cycle}")
            return [], Diagnostic(
                source=f"detector:{name}",
                message=f"{type(exc).__name__}: {exc}",
                cycle=context.cycle,
            )

    # ------------------------------------------------------------------ #
    #  Merge
    # ------------------------------------------------------------------ #

    def _merge(
        self,
        detections: list[Detection],
        evicted: list[str],
        now: datetime,
        cycle: int,
        held: Optional[set[FindingType]] = None,
    ) -> FindingBatch:
        held = held or set()
        combined: dict[FindingKey, Detection] = {}
        for det in detections:
            prior = combined.get(det.key)
            if prior is None or (det.severity.rank, det.confidence) > (
                prior.severity.rank, prior.confidence
            ):
                combined[det.key] = det

        new: list[Finding] = []
        confirmed: list[Finding] = []
        resolved: list[Finding] = []
        grace = max(1, self._config.correlation.grace_cycles)
        gone = set(evicted)

        with self._merge_lock:
            for key, det in combined.items():
                finding = self._active.get(key)
                if finding is None:
                    finding = Finding.from_detection(det, now)
                    self._active[key] = finding
                    new.append(finding)
                    logger.warning(
                        f"New {det.type.value} finding on {det.subject_bssid} "
                        f"({det.severity.value}, confidence {det.confidence:.2f})"
                    )
                    continue
                finding.last_confirmed_at = max(finding.last_confirmed_at, now)
                finding.confirmations += 1
                finding.missed_cycles = 0
                finding.confidence = max(finding.confidence, det.confidence)
                finding.severity = Severity.highest(finding.severity, det.severity)
                finding.evidence = list(det.evidence)
                finding.related_bssid = det.related_bssid or finding.related_bssid
                finding.ssid = det.ssid or finding.ssid
                confirmed.append(finding)

            for key, finding in list(self._active.items()):
                if key in combined:
                    continue
                if finding.subject_bssid in gone:
                    self._resolve(key, now, "subject BSSID evicted as stale")
                    resolved.append(finding)
                    continue
                if finding.type in held:
                    continue
                finding.missed_cycles += 1
                if finding.missed_cycles >= grace:
                    self._resolve(key, now, f"not re-detected for {grace} cycles")
                    resolved.append(finding)

            batch = FindingBatch(
                cycle=cycle,
                generated_at=now,
                active=[f.model_copy(deep=True) for f in self._active.values()],
                new=[f.model_copy(deep=True) for f in new],
                confirmed=[f.model_copy(deep=True) for f in confirmed],
                resolved=[f.model_copy(deep=True) for f in resolved],
            )
        return batch

    def _resolve(self, key: FindingKey, now: datetime, reason: str) -> None:
        """Move the finding at *key* into the audit trail (lock held)."""
        finding = self._active.pop(key)
        finding.status = FindingStatus.RESOLVED
        finding.resolved_at = now
        finding.resolution = reason
        self._resolved.append(finding)
        logger.info(
            f"Resolved {finding.type.value} finding on {finding.subject_bssid}: {reason}"
        )

    # ------------------------------------------------------------------ #
    #  Publish
    # ------------------------------------------------------------------ #

    def _publish(self, batch: FindingBatch, cycle: int) -> list[Diagnostic]:
        warnings: list[Diagnostic] = []
        for sink in self._sinks:
            name = getattr(sink, "name", type(sink).__name__)
            try:
                sink.publish(batch)
            except Exception as exc:
                logger.exception(f"Sink {name} failed in cycle {cycle}")
                warnings.append(
                    Diagnostic(
                        source=f"sink:{name}",
                        message=f"{type(exc).__name__}: {exc}",
                        cycle=cycle,
                    )
                )
        return warnings


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
