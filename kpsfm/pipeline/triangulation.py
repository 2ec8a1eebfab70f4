"""
kpsfm/pipeline/triangulation.py

Track building and multi-view triangulation with known cameras.
"""

from __future__ import annotations
from typing import Dict, List, Optional, Tuple

import numpy as np

from kpsfm.features import RegionsPerView
from kpsfm.geometry import (
    cheirality_mask,
    pixel_to_normalized,
    reprojection_errors,
    triangulate_midpoint,
    triangulate_nview_dlt,
    view_reprojection_errors,
)
from kpsfm.geometry_utils.triangulation import (
    REJ_CHEIRALITY,
    REJ_DEGENERATE,
    REJ_AT_INFINITY,
    REJ_NONE,
    REJ_NON_FINITE,
    REJ_REPROJ,
    REJ_TOO_FEW_VIEWS,
)
from kpsfm.scene import Landmark, Observation, Scene
from kpsfm.tracks import Track, build_tracks

from .config import TriangulationConfig
from .matching import parallel_map
from .state import PairwiseMatches, Stage, StructureState, TriangulationStats

REJECTION_NAMES = {
    REJ_TOO_FEW_VIEWS: "too_few_views",
    REJ_DEGENERATE: "degenerate",
    REJ_AT_INFINITY: "at_infinity",
    REJ_NON_FINITE: "non_finite",
    REJ_CHEIRALITY: "behind_camera",
    REJ_REPROJ: "reprojection",
}


def landmark_residuals(scene: Scene, landmark: Landmark) -> Dict[int, float]:
    """Pixel reprojection error of a landmark in each observing view."""
    X = np.asarray(landmark.X, np.float64).reshape(1, 3)
    errs: Dict[int, float] = {}
    for vid in landmark.view_ids:
        errs[vid] = float(view_reprojection_errors(scene.camera(vid), X, landmark.observations[vid].x)[0])
    return errs


def triangulate_track(
    scene: Scene,
    regions: RegionsPerView,
    track: Track,
    config: TriangulationConfig,
) -> Tuple[Optional[Landmark], int]:
    """
    Triangulate one track.

    Observations are taken in view-id order, so any ordering of the same
    rays gives the same point.

    Returns:
        (landmark, code): landmark is None when rejected; code says why.
    """
    views = sorted(v for v in track.obs if scene.is_valid_view(v))
    if len(views) < config.min_track_len:
        return None, REJ_TOO_FEW_VIEWS

    cams = [scene.camera(v) for v in views]
    pix = np.asarray(
        [regions.get(v, track.describer).kpts_xy[track.obs[v]] for v in views],
        dtype=np.float64,
    ).reshape(-1, 2)

    und = np.vstack([
        c.intrinsics.undistort(p.reshape(1, 2)) for c, p in zip(cams, pix)
    ])
    x_norm = np.vstack([
        pixel_to_normalized(u.reshape(1, 2), c.K) for c, u in zip(cams, und)
    ])

    if config.method == "midpoint":
        X, code = triangulate_midpoint(x_norm, [c.R for c in cams], [c.C for c in cams], config.rank_tol)
    else:
        X, code = triangulate_nview_dlt(x_norm, [c.R for c in cams], [c.t for c in cams], config.rank_tol)
    if X is None:
        return None, code

    # in front of every camera
    for c in cams:
        if not cheirality_mask(X.reshape(1, 3), c.R, c.t)[0]:
            return None, REJ_CHEIRALITY

    if config.max_reproj_px is not None:
        for c, u in zip(cams, und):
            err = reprojection_errors(X.reshape(1, 3), u.reshape(1, 2), c.K, c.R, c.t)[0]
            if not err <= config.max_reproj_px:
                return None, REJ_REPROJ

    observations = {
        v: Observation(feature_id=int(track.obs[v]), x=pix[k].copy())
        for k, v in enumerate(views)
    }
    landmark = Landmark(
        X=np.asarray(X, np.float64).reshape(3),
        describer=track.describer.value,
        observations=observations,
    )
    return landmark, REJ_NONE


def triangulate_tracks(
    scene: Scene,
    regions: RegionsPerView,
    matches: PairwiseMatches,
    config: TriangulationConfig,
    num_workers: int = 1,
) -> Tuple[Dict[int, Landmark], List[Track], TriangulationStats]:
    """
    Build tracks from the filtered matches and triangulate them.

    Track building is a single sequential union-find pass; triangulation is
    then independent per track. Landmark ids follow track order.
    """
    tracks, tstats = build_tracks(matches, min_track_len=config.min_track_len)

    results = parallel_map(
        lambda tr: triangulate_track(scene, regions, tr, config),
        tracks,
        num_workers,
    )

    stats = TriangulationStats(tracks=len(tracks), refused_unions=tstats.refused_unions)
    landmarks: Dict[int, Landmark] = {}
    for landmark, code in results:
        if landmark is None:
            name = REJECTION_NAMES.get(code, str(code))
            stats.rejected[name] = stats.rejected.get(name, 0) + 1
            continue
        landmarks[len(landmarks)] = landmark

    stats.landmarks = len(landmarks)
    return landmarks, tracks, stats


def run_triangulation(
    state: StructureState,
    config: TriangulationConfig,
    num_workers: int = 1,
    logger=None,
) -> None:
    """
    Main entry point for the triangulation stage.

    Updates state.tracks, state.landmarks and state.triangulation_stats in place.
    """
    state.require(Stage.FILTERED)
    landmarks, tracks, stats = triangulate_tracks(
        state.scene, state.regions, state.filtered, config, num_workers
    )
    state.tracks = tracks
    state.landmarks = landmarks
    state.triangulation_stats = stats
    state.advance(Stage.TRIANGULATED)

    if logger:
        logger.info(
            f"[TRIANGULATION] tracks={stats.tracks} landmarks={stats.landmarks} "
            f"refused_unions={stats.refused_unions} rejected={stats.rejected}"
        )
