"""
kpsfm/pipeline/matching.py

Putative correspondences for every selected pair.

Descriptor matching (mutual nearest neighbour + ratio test) of the selected
pairs. Supplied matches only choose the pairs, unless the matching config
asks to reuse them as the correspondences.
"""

from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

import numpy as np

from kpsfm.errors import MatchesLoadError
from kpsfm.features import DescriberType, RegionsPerView, match_descriptors

from .config import MatchingConfig
from .state import MatchStats, Pair, PairwiseMatches, Stage, StructureState, count_correspondences

T = TypeVar("T")
R = TypeVar("R")


def parallel_map(fn: Callable[[T], R], items: Sequence[T], num_workers: int = 1) -> List[R]:
    """Ordered map over a thread pool (serial when num_workers == 1)."""
    if num_workers <= 1 or len(items) <= 1:
        return [fn(x) for x in items]
    with ThreadPoolExecutor(max_workers=num_workers) as ex:
        return list(ex.map(fn, items))


def _empty_matches() -> np.ndarray:
    return np.zeros((0, 2), dtype=np.int64)


def match_pair(
    regions: RegionsPerView,
    pair: Pair,
    describers: Iterable[DescriberType],
    config: MatchingConfig,
) -> Dict[DescriberType, np.ndarray]:
    """
    Match the two views of one pair, per describer type.

    A describer with missing/empty regions on either side yields no matches.
    """
    a, b = pair
    out: Dict[DescriberType, np.ndarray] = {}
    for describer in describers:
        ra = regions.get(a, describer)
        rb = regions.get(b, describer)
        if ra is None or rb is None:
            continue
        m = match_descriptors(
            ra, rb,
            binary=describer.is_binary,
            ratio=config.ratio,
            mutual=config.mutual,
        )
        if m:
            out[describer] = np.asarray(m, dtype=np.int64).reshape(-1, 2)
    return out


def _check_indices(regions: RegionsPerView, pair: Pair, describer: DescriberType, m: np.ndarray) -> None:
    a, b = pair
    ra = regions.get(a, describer)
    rb = regions.get(b, describer)
    if ra is None or rb is None:
        raise MatchesLoadError(
            f"Matches reference {describer.value} features of pair {pair} but no regions are loaded"
        )
    if len(m) == 0:
        return
    if m.min() < 0 or m[:, 0].max() >= len(ra) or m[:, 1].max() >= len(rb):
        raise MatchesLoadError(
            f"Feature index out of range in {describer.value} matches of pair {pair} "
            f"(regions: {len(ra)} / {len(rb)})"
        )


def reuse_matches(
    regions: RegionsPerView,
    pairs: Sequence[Pair],
    describers: Iterable[DescriberType],
    external_matches: PairwiseMatches,
) -> PairwiseMatches:
    """Take the supplied matches of the selected pairs as putative correspondences."""
    wanted = list(describers)
    out: PairwiseMatches = {}
    for pair in pairs:
        per = external_matches.get(pair, {})
        kept: Dict[DescriberType, np.ndarray] = {}
        for describer in wanted:
            m = per.get(describer)
            if m is None:
                continue
            m = np.asarray(m, dtype=np.int64).reshape(-1, 2)
            _check_indices(regions, pair, describer, m)
            if len(m):
                kept[describer] = m
        if kept:
            out[pair] = kept
    return out


def match_pairs(
    regions: RegionsPerView,
    pairs: Sequence[Pair],
    describers: Sequence[DescriberType],
    config: MatchingConfig,
    external_matches: Optional[PairwiseMatches] = None,
    num_workers: int = 1,
    logger=None,
) -> Tuple[PairwiseMatches, MatchStats]:
    """
    Produce raw correspondences for every pair.

    Regions are only read. Pairs are matched independently on the worker
    pool and merged in pair order. external_matches are taken as the
    correspondences only when config.reuse_external is set.
    """
    stats = MatchStats(pairs=len(pairs))

    for pair in pairs:
        for describer in describers:
            for vid in pair:
                r = regions.get(vid, describer)
                if r is None or len(r) == 0:
                    stats.empty_regions += 1

    if external_matches is not None and config.reuse_external:
        putative = reuse_matches(regions, pairs, describers, external_matches)
    else:
        results = parallel_map(
            lambda p: match_pair(regions, p, describers, config),
            list(pairs),
            num_workers,
        )
        putative = {p: m for p, m in zip(pairs, results) if m}

    stats.pairs_with_matches = len(putative)
    stats.correspondences = count_correspondences(putative)

    if logger:
        for pair, per in putative.items():
            logger.debug(f"  pair {pair}: " + " ".join(f"{d.value}={len(m)}" for d, m in per.items()))
    return putative, stats


def run_matching(
    state: StructureState,
    describers: Sequence[DescriberType],
    config: MatchingConfig,
    num_workers: int = 1,
    logger=None,
) -> None:
    """
    Main entry point for the matching stage.

    Updates state.putative and state.match_stats in place.
    """
    state.require(Stage.PAIRS_SELECTED)
    putative, stats = match_pairs(
        state.regions,
        state.pairs,
        describers,
        config,
        external_matches=state.external_matches,
        num_workers=num_workers,
        logger=logger,
    )
    state.putative = putative
    state.match_stats = stats
    state.advance(Stage.MATCHED)

    if logger:
        avg = stats.correspondences / max(stats.pairs_with_matches, 1)
        logger.info(
            f"[MATCHES] pairs={stats.pairs} pairs_with_matches={stats.pairs_with_matches} "
            f"correspondences={stats.correspondences} avg_per_pair={avg:.1f}"
        )
