from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from cv2 import BFMatcher, NORM_HAMMING, NORM_L2
import numpy as np

from kpsfm.errors import DescriberTypeError


class DescriberType(Enum):
    """Closed set of feature describer tags (the string is the on-disk tag)."""
    SIFT = "sift"
    SIFT_FLOAT = "sift_float"
    SIFT_UPRIGHT = "sift_upright"
    AKAZE = "akaze"
    AKAZE_LIOP = "akaze_liop"
    AKAZE_MLDB = "akaze_mldb"
    CCTAG3 = "cctag3"
    CCTAG4 = "cctag4"
    SIFT_OCV = "sift_ocv"
    AKAZE_OCV = "akaze_ocv"
    ORB = "orb"

    @property
    def is_binary(self) -> bool:
        """Binary descriptors are compared with Hamming distance, the rest with L2."""
        return self in _BINARY_DESCRIBERS

    @classmethod
    def from_string(cls, name: str) -> "DescriberType":
        key = name.strip().lower()
        try:
            return _DESCRIBER_BY_NAME[key]
        except KeyError:
            raise DescriberTypeError(
                f"Unknown describer type: {name!r}. Use one of: {', '.join(_DESCRIBER_BY_NAME)}"
            ) from None

    def to_string(self) -> str:
        return self.value


_BINARY_DESCRIBERS = frozenset({DescriberType.AKAZE_MLDB, DescriberType.ORB})
_DESCRIBER_BY_NAME: Dict[str, DescriberType] = {d.value: d for d in DescriberType}


def describer_types_from_string(names: str) -> List[DescriberType]:
    """Parse a comma separated list ("sift,akaze") keeping order, dropping duplicates."""
    out: List[DescriberType] = []
    for part in names.split(","):
        if not part.strip():
            continue
        d = DescriberType.from_string(part)
        if d not in out:
            out.append(d)
    if not out:
        raise DescriberTypeError(f"No describer type in {names!r}")
    return out


def describer_types_to_string(describers: Iterable[DescriberType]) -> str:
    return ",".join(d.to_string() for d in describers)


@dataclass(frozen=True)
class Regions:
    kpts_xy: np.ndarray             # (N,2) float64 pixel coordinates
    desc: Optional[np.ndarray]      # (N,D) float32 or uint8, None once discarded

    def __len__(self) -> int:
        return int(self.kpts_xy.shape[0])

    def without_descriptors(self) -> "Regions":
        return Regions(self.kpts_xy, None)


class RegionsPerView:
    """
    view_id -> describer -> Regions.

    Read-only after construction; use without_descriptors() to get a light copy
    that only keeps 2D coordinates.
    """

    def __init__(self, data: Mapping[int, Mapping[DescriberType, Regions]]):
        self._data: Dict[int, Dict[DescriberType, Regions]] = {
            int(vid): dict(per_desc) for vid, per_desc in data.items()
        }

    def view_ids(self) -> List[int]:
        return sorted(self._data.keys())

    def get(self, view_id: int, describer: DescriberType) -> Optional[Regions]:
        return self._data.get(view_id, {}).get(describer)

    def describers(self) -> List[DescriberType]:
        seen = {d for per in self._data.values() for d in per}
        return [d for d in DescriberType if d in seen]

    def has_descriptors(self) -> bool:
        return any(r.desc is not None for per in self._data.values() for r in per.values())

    def without_descriptors(self) -> "RegionsPerView":
        return RegionsPerView({
            vid: {d: r.without_descriptors() for d, r in per.items()}
            for vid, per in self._data.items()
        })


def match_descriptors(
    r1: Regions,
    r2: Regions,
    binary: bool = False,
    ratio: float = 0.8,
    mutual: bool = True,
) -> List[Tuple[int, int]]:
    """
    Nearest-neighbour descriptor matching.

    k=2 brute force search, Lowe ratio test, one-to-one by ascending distance,
    and optionally mutual nearest neighbours only. Brute force (not FLANN) so
    the result does not depend on randomised index construction.
    """
    if r1.desc is None or r2.desc is None or len(r1) == 0 or len(r2) == 0:
        return []

    # knn(k=2) needs at least two candidates on the train side
    if len(r1.desc) < 2 or len(r2.desc) < 2:
        return []

    if binary:
        d1 = np.ascontiguousarray(r1.desc, dtype=np.uint8)
        d2 = np.ascontiguousarray(r2.desc, dtype=np.uint8)
        norm = NORM_HAMMING
    else:
        d1 = np.ascontiguousarray(r1.desc, dtype=np.float32)
        d2 = np.ascontiguousarray(r2.desc, dtype=np.float32)
        norm = NORM_L2

    bf = BFMatcher(norm, crossCheck=False)

    m12 = make_unique_matches_by_distance(_knn_ratio(bf, d1, d2, ratio))
    if not mutual:
        return m12

    m21 = make_unique_matches_by_distance(_knn_ratio(bf, d2, d1, ratio))
    m21_set = set((j, i) for (i, j) in m21)
    return [p for p in m12 if p in m21_set]


def _knn_ratio(bf: BFMatcher, dq: np.ndarray, dt: np.ndarray, ratio: float) -> List[Tuple[int, int, float]]:
    scored: List[Tuple[int, int, float]] = []
    for m_n in bf.knnMatch(dq, dt, k=2):
        if len(m_n) < 2:
            continue
        m, n = m_n
        if m.distance < ratio * n.distance:
            scored.append((m.queryIdx, m.trainIdx, float(m.distance)))
    return scored


def make_unique_matches_by_distance(
    matches: List[Tuple[int, int, float]]
) -> List[Tuple[int, int]]:
    """
    Enforce one-to-one mapping by keeping the lowest-distance matches first.
    Input: (i, j, dist)
    Output: (i, j)
    """
    # ties broken on indices so the output is stable
    matches_sorted = sorted(matches, key=lambda x: (x[2], x[0], x[1]))
    used_i = set()
    used_j = set()
    out: List[Tuple[int, int]] = []
    for i, j, d in matches_sorted:
        if i in used_i or j in used_j:
            continue
        used_i.add(i)
        used_j.add(j)
        out.append((i, j))
    return out
