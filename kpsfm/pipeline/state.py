"""
kpsfm/pipeline/state.py

Holds the working state of one structure-estimation run and the
per-stage statistics. Stages advance strictly in order:

    Loaded -> PairsSelected -> Matched -> Filtered -> Triangulated -> Cleaned -> Saved
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, List, Mapping, Optional, Tuple

import numpy as np

from kpsfm.errors import PipelineStageError
from kpsfm.features import DescriberType, RegionsPerView
from kpsfm.scene import Landmark, Scene
from kpsfm.tracks import Track

Pair = Tuple[int, int]
# sorted unique pairs
PairSet = List[Pair]
# (a, b) with a < b  ->  describer  ->  (M,2) int64 feature indices (a-side, b-side)
PairwiseMatches = Dict[Pair, Dict[DescriberType, np.ndarray]]


class Stage(IntEnum):
    LOADED = 0
    PAIRS_SELECTED = 1
    MATCHED = 2
    FILTERED = 3
    TRIANGULATED = 4
    CLEANED = 5
    SAVED = 6


# =========================================================
# Per-stage statistics (degenerate cases are counted here, never raised)
# =========================================================

@dataclass
class PairStats:
    mode: str = "frustum"                  # "frustum" | "matches"
    candidate_pairs: int = 0
    selected_pairs: int = 0
    dropped_invalid_view: int = 0


@dataclass
class MatchStats:
    pairs: int = 0
    pairs_with_matches: int = 0
    correspondences: int = 0
    empty_regions: int = 0


@dataclass
class FilterStats:
    pairs_in: int = 0
    pairs_out: int = 0
    correspondences_in: int = 0
    correspondences_out: int = 0


@dataclass
class TriangulationStats:
    tracks: int = 0
    landmarks: int = 0
    refused_unions: int = 0
    rejected: Dict[str, int] = field(default_factory=dict)


@dataclass
class CleanupStats:
    landmarks_in: int = 0
    landmarks_out: int = 0
    removed_angle: int = 0
    removed_residual: int = 0


def count_correspondences(matches: Mapping[Pair, Mapping[DescriberType, np.ndarray]]) -> int:
    return int(sum(len(m) for per in matches.values() for m in per.values()))


class StructureState:
    """
    Working state for one run.

    Owns the landmark collection for the duration of the run; the input
    Scene is only read. build_scene() hands the landmarks back as a new
    Scene.

    Usage:
        state = StructureState(scene, regions)
        state.advance(Stage.PAIRS_SELECTED)
        ...
    """

    def __init__(
        self,
        scene: Scene,
        regions: RegionsPerView,
        external_matches: Optional[PairwiseMatches] = None,
    ):
        # landmarks never carry over from a previous run
        self.scene = scene.without_landmarks()
        self.regions = regions
        self.external_matches = external_matches
        self.stage = Stage.LOADED

        # Populated by the stages, in order
        self.pairs: List[Pair] = []
        self.putative: PairwiseMatches = {}
        self.filtered: PairwiseMatches = {}
        self.tracks: List[Track] = []
        self.landmarks: Dict[int, Landmark] = {}

        self.pair_stats = PairStats()
        self.match_stats = MatchStats()
        self.filter_stats = FilterStats()
        self.triangulation_stats = TriangulationStats()
        self.cleanup_stats = CleanupStats()

    def advance(self, stage: Stage) -> None:
        """Move to the next stage; anything but the immediate successor is an error."""
        if stage != self.stage + 1:
            raise PipelineStageError(
                f"Cannot go from {self.stage.name} to {stage.name}; "
                f"expected {Stage(min(self.stage + 1, Stage.SAVED)).name}"
            )
        self.stage = stage

    def require(self, stage: Stage) -> None:
        if self.stage != stage:
            raise PipelineStageError(f"Stage {stage.name} required, current stage is {self.stage.name}")

    def build_scene(self) -> Scene:
        """The input scene with this run's landmarks."""
        return self.scene.with_landmarks(dict(self.landmarks))
