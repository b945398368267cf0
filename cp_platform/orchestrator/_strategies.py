# cp_platform/orchestrator/_strategies.py
# conflict resolution strategies for orchestrator.
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import math
from dataclasses import replace
from collections.abc import Callable, Sequence

from ..config_base import SOURCE_PRIORITY
from ..id_map import item_timestamp, version as compute_version
from ._types import Item, Resolution, ResolutionStrategy, UnknownStrategyError

__all__ = [
    "FORMAT_SCORES",
    "quality_score",
    "resolve_by_latest_timestamp",
    "resolve_by_source_priority",
    "resolve_by_largest_size",
    "resolve_by_highest_quality",
    "resolve_by_merging_metadata",
    "resolve_by_keeping_both",
    "resolve",
]

FORMAT_SCORES: dict[str, int] = {
    "png": 10,
    "tiff": 9,
    "jpg": 7,
    "jpeg": 7,
    "webp": 6,
    "gif": 3,
}

_MIB = 1024 * 1024


def _require(items: Sequence[Item]) -> list[Item]:
    out = list(items or ())
    if not out:
        raise ValueError("cannot resolve an empty item group")
    return out


def _first_max(items: Sequence[Item], key: Callable[[Item], float]) -> Item:
    # max() keeps the first of equal keys, i.e. input order wins ties
    return max(items, key=key)


def resolve_by_latest_timestamp(items: Sequence[Item]) -> Resolution:
    group = _require(items)

    def _ts(it: Item) -> float:
        ts = item_timestamp(it)
        return ts if ts is not None else -math.inf

    winner = _first_max(group, _ts)
    return Resolution(
        strategy=ResolutionStrategy.LATEST_TIMESTAMP,
        selected_item=winner,
        reason="selected the most recently modified item",
    )


def resolve_by_source_priority(
    items: Sequence[Item],
    priority: Sequence[str] | None = None,
) -> Resolution:
    group = _require(items)
    order = [str(p).lower() for p in (priority if priority is not None else SOURCE_PRIORITY)]
    rank = {name: i for i, name in enumerate(order)}
    unlisted = len(order)
    # min() keeps the first of equal ranks
    winner = min(group, key=lambda it: rank.get(it.source, unlisted))
    return Resolution(
        strategy=ResolutionStrategy.SOURCE_PRIORITY,
        selected_item=winner,
        reason=f"selected the item from the highest priority source: {winner.source}",
    )


def resolve_by_largest_size(items: Sequence[Item]) -> Resolution:
    group = _require(items)
    winner = _first_max(group, lambda it: float(it.size or 0))
    return Resolution(
        strategy=ResolutionStrategy.LARGEST_SIZE,
        selected_item=winner,
        reason="selected the largest file",
    )


def quality_score(item: Item) -> float:
    score = 0.0
    if item.width and item.height:
        score += math.sqrt(item.width * item.height) / 1000
    if item.size:
        score += item.size / _MIB
    score += FORMAT_SCORES.get((item.format or "").lower(), 0)
    return score


def resolve_by_highest_quality(items: Sequence[Item]) -> Resolution:
    group = _require(items)
    winner = _first_max(group, quality_score)
    return Resolution(
        strategy=ResolutionStrategy.HIGHEST_QUALITY,
        selected_item=winner,
        reason="selected the highest quality image",
    )


def resolve_by_merging_metadata(items: Sequence[Item]) -> Resolution:
    group = _require(items)
    merged_md: dict = {}
    for it in group:
        merged_md.update(it.metadata or {})
    base = replace(group[0], metadata=merged_md)
    if base.version is not None:
        # keep the fingerprint honest: the merged record is new content
        base = base.with_version(compute_version(base))
    return Resolution(
        strategy=ResolutionStrategy.MERGE_METADATA,
        selected_item=base,
        reason="merged metadata from all items",
    )


def resolve_by_keeping_both(items: Sequence[Item]) -> Resolution:
    group = _require(items)
    return Resolution(
        strategy=ResolutionStrategy.KEEP_BOTH,
        selected_items=group,
        reason="kept every conflicting item",
    )


def resolve(
    strategy: ResolutionStrategy | str,
    items: Sequence[Item],
    *,
    source_priority: Sequence[str] | None = None,
) -> Resolution | None:
    """
    Single dispatcher over the closed strategy set.

    Returns None for MANUAL: nothing is computed, the caller defers the
    conflict to the pending queue.
    """
    strat = ResolutionStrategy.parse(strategy)
    if strat is ResolutionStrategy.MANUAL:
        return None
    if strat is ResolutionStrategy.LATEST_TIMESTAMP:
        return resolve_by_latest_timestamp(items)
    if strat is ResolutionStrategy.SOURCE_PRIORITY:
        return resolve_by_source_priority(items, source_priority)
    if strat is ResolutionStrategy.LARGEST_SIZE:
        return resolve_by_largest_size(items)
    if strat is ResolutionStrategy.HIGHEST_QUALITY:
        return resolve_by_highest_quality(items)
    if strat is ResolutionStrategy.MERGE_METADATA:
        return resolve_by_merging_metadata(items)
    if strat is ResolutionStrategy.KEEP_BOTH:
        return resolve_by_keeping_both(items)
    raise UnknownStrategyError(f"no resolver for strategy: {strat.value}")
