"""
kpsfm/pipeline/pairs.py

Pair selection.

Geometry guided: camera frustum intersection (no matches supplied).
Match guided:    pairs present in the supplied matches, restricted to valid views.
"""

from __future__ import annotations
from typing import Collection, Dict, Iterable, List, Optional, Tuple

from kpsfm.geometry import Frustum, build_frustum, frustums_intersect
from kpsfm.scene import Scene

from .config import FrustumConfig
from .state import Pair, PairSet, PairStats, PairwiseMatches, Stage, StructureState


def normalize_pair(a: int, b: int) -> Pair:
    return (a, b) if a < b else (b, a)


def pairs_from_matches(matches: PairwiseMatches) -> List[Pair]:
    """Distinct view pairs present in the match data, sorted, without self-pairs."""
    out = {normalize_pair(int(a), int(b)) for (a, b) in matches.keys() if a != b}
    return sorted(out)


def filter_pairs_by_views(pairs: Iterable[Pair], valid_views: Collection[int]) -> List[Pair]:
    """Keep pairs whose both endpoints are in valid_views."""
    valid = set(valid_views)
    return sorted({p for p in pairs if p[0] in valid and p[1] in valid})


def build_frustums(scene: Scene, config: FrustumConfig) -> Dict[int, Frustum]:
    frustums: Dict[int, Frustum] = {}
    for vid in sorted(scene.valid_views()):
        w, h = scene.image_size(vid)
        frustums[vid] = build_frustum(
            scene.camera(vid), w, h,
            z_near=config.z_near,
            z_far=config.z_far,
        )
    return frustums


def frustum_intersection_pairs(
    scene: Scene,
    config: FrustumConfig,
    logger=None,
) -> Tuple[PairSet, int]:
    """
    All pairs of valid views whose frustums overlap.

    Returns:
        pairs: sorted (a, b) with a < b
        candidates: number of pairs tested
    """
    frustums = build_frustums(scene, config)
    ids = sorted(frustums.keys())

    pairs: List[Pair] = []
    candidates = 0
    for ii, a in enumerate(ids):
        for b in ids[ii + 1:]:
            candidates += 1
            if frustums_intersect(frustums[a], frustums[b], min_slack=config.min_slack):
                pairs.append((a, b))

    if logger:
        logger.debug(f"  frustum test: {len(pairs)}/{candidates} pairs overlap")
    return pairs, candidates


def select_pairs(
    scene: Scene,
    config: FrustumConfig,
    external_matches: Optional[PairwiseMatches] = None,
    logger=None,
) -> Tuple[PairSet, PairStats]:
    """
    Select the image pairs to investigate.

    Args:
        scene: Scene with views/intrinsics/poses
        config: FrustumConfig (used only without matches)
        external_matches: pre-computed matches, or None for frustum pairing

    Returns:
        pairs: sorted unique (a, b) with a < b
        stats: PairStats
    """
    stats = PairStats()

    if external_matches is None:
        stats.mode = "frustum"
        pairs, stats.candidate_pairs = frustum_intersection_pairs(scene, config, logger)
    else:
        stats.mode = "matches"
        candidates = pairs_from_matches(external_matches)
        stats.candidate_pairs = len(candidates)
        pairs = filter_pairs_by_views(candidates, scene.valid_views())
        stats.dropped_invalid_view = len(candidates) - len(pairs)

    stats.selected_pairs = len(pairs)
    return pairs, stats


def run_pair_selection(state: StructureState, config: FrustumConfig, logger=None) -> None:
    """
    Main entry point for the pair selection stage.

    Updates state.pairs and state.pair_stats in place.
    """
    state.require(Stage.LOADED)
    pairs, stats = select_pairs(state.scene, config, state.external_matches, logger)
    state.pairs = pairs
    state.pair_stats = stats
    state.advance(Stage.PAIRS_SELECTED)

    if logger:
        logger.info(
            f"[PAIRS] mode={stats.mode} candidates={stats.candidate_pairs} "
            f"selected={stats.selected_pairs} dropped_invalid_view={stats.dropped_invalid_view}"
        )
