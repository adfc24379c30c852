from __future__ import annotations

import logging
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Protocol

from app.core.errors import AssetCleanupWarning


log = logging.getLogger(__name__)


class AssetRemover(Protocol):
    def remove(self, reference: str) -> None: ...


@dataclass
class ReconcileReport:
    stale: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    warnings: list[AssetCleanupWarning] = field(default_factory=list)


def stale_references(old_refs: Iterable[str], new_refs: Iterable[str]) -> list[str]:
    """`old \\ new` by exact string equality, in the order of `old_refs`."""
    keep = set(new_refs)
    out: list[str] = []
    seen: set[str] = set()
    for ref in old_refs:
        if not ref or ref in keep or ref in seen:
            continue
        seen.add(ref)
        out.append(ref)
    return out


def _remove_one(assets: AssetRemover, reference: str) -> AssetCleanupWarning | None:
    try:
        assets.remove(reference)
    except Exception as e:
        log.warning("asset cleanup failed: reference=%s error=%s", reference, e)
        return AssetCleanupWarning(reference=reference, reason=str(e) or e.__class__.__name__)
    return None


def reconcile_assets(
    assets: AssetRemover,
    old_refs: Iterable[str],
    new_refs: Iterable[str],
    *,
    max_workers: int = 4,
) -> ReconcileReport:
    """Best-effort removal of references no longer used.

    Never raises for a single failed removal; failures come back as warnings.
    """

    report = ReconcileReport(stale=stale_references(old_refs, new_refs))
    if not report.stale:
        return report

    workers = max(1, min(int(max_workers), len(report.stale)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        outcomes = list(pool.map(lambda ref: _remove_one(assets, ref), report.stale))

    for ref, warning in zip(report.stale, outcomes):
        if warning is None:
            report.removed.append(ref)
        else:
            report.warnings.append(warning)

    log.info(
        "asset reconcile: stale=%s removed=%s failed=%s",
        len(report.stale),
        len(report.removed),
        len(report.warnings),
    )
    return report
