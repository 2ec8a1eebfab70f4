"""
kpsfm/scene.py

Scene model: views, intrinsics, poses and landmarks.

Views, intrinsics and poses are read-only for the whole pipeline.
Landmarks are never edited in place: stages build a new mapping and
hand it back through Scene.with_landmarks().
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Set, Tuple

import cv2
import numpy as np

# Camera model tags and the number of distortion parameters they carry
CAMERA_MODELS: Dict[str, int] = {
    "pinhole": 0,
    "radial1": 1,
    "radial3": 3,
    "brown": 5,
}


def _frozen(mapping: Optional[Mapping]) -> Mapping:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class Intrinsics:
    model: str
    width: int
    height: int
    K: np.ndarray                                 # (3,3)
    dist: np.ndarray = field(default_factory=lambda: np.zeros((0,), np.float64))

    @property
    def fx(self) -> float:
        return float(self.K[0, 0])

    @property
    def fy(self) -> float:
        return float(self.K[1, 1])

    @property
    def cx(self) -> float:
        return float(self.K[0, 2])

    @property
    def cy(self) -> float:
        return float(self.K[1, 2])

    @property
    def has_distortion(self) -> bool:
        return self.dist.size > 0 and bool(np.any(self.dist != 0.0))

    @property
    def is_valid(self) -> bool:
        K = np.asarray(self.K, np.float64)
        if K.shape != (3, 3) or not np.isfinite(K).all():
            return False
        if abs(K[2, 2] - 1.0) > 1e-6:
            return False
        return self.fx > 0 and self.fy > 0

    def opencv_dist(self) -> Optional[np.ndarray]:
        """Distortion in OpenCV order (k1, k2, p1, p2, k3), or None for an ideal pinhole."""
        if not self.has_distortion:
            return None
        d = np.asarray(self.dist, np.float64).reshape(-1)
        if self.model == "radial1":
            return np.array([d[0], 0.0, 0.0, 0.0, 0.0])
        if self.model == "radial3":
            return np.array([d[0], d[1], 0.0, 0.0, d[2]])
        if self.model == "brown":
            # stored as k1, k2, k3, t1, t2
            return np.array([d[0], d[1], d[3], d[4], d[2]])
        raise ValueError(f"Camera model {self.model!r} has no distortion")

    def undistort(self, pts_xy: np.ndarray) -> np.ndarray:
        """
        Undistort pixel coordinates, returning pixels in the same frame as K.
        No-op for models without distortion.

        The full K (skew included) maps to and from normalised coordinates;
        OpenCV only removes the distortion there.
        """
        pts = np.asarray(pts_xy, dtype=np.float64).reshape(-1, 2)
        dist = self.opencv_dist()
        if dist is None or pts.shape[0] == 0:
            return pts
        K = np.asarray(self.K, np.float64)
        x_d = np.hstack([pts, np.ones((pts.shape[0], 1))]) @ np.linalg.inv(K).T
        x_d = x_d[:, :2] / x_d[:, 2:3]
        x_n = cv2.undistortPoints(x_d.reshape(-1, 1, 2), np.eye(3), dist).reshape(-1, 2)
        return (np.hstack([x_n, np.ones((x_n.shape[0], 1))]) @ K.T)[:, :2].astype(np.float64)


@dataclass(frozen=True)
class Pose:
    """World-to-camera rotation R and camera centre C (Xc = R (X - C))."""
    R: np.ndarray  # (3,3)
    C: np.ndarray  # (3,)

    @property
    def t(self) -> np.ndarray:
        R = np.asarray(self.R, np.float64)
        return (-R @ np.asarray(self.C, np.float64).reshape(3, 1))

    @property
    def is_valid(self) -> bool:
        R = np.asarray(self.R, np.float64)
        C = np.asarray(self.C, np.float64).reshape(-1)
        if R.shape != (3, 3) or C.shape != (3,):
            return False
        if not (np.isfinite(R).all() and np.isfinite(C).all()):
            return False
        return bool(np.allclose(R @ R.T, np.eye(3), atol=1e-6)) and np.linalg.det(R) > 0


@dataclass(frozen=True)
class View:
    view_id: int
    intrinsic_id: Optional[int] = None
    pose_id: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    path: str = ""


@dataclass(frozen=True)
class ViewCamera:
    """Everything the geometry needs about one posed view."""
    view_id: int
    intrinsics: Intrinsics
    R: np.ndarray  # (3,3)
    t: np.ndarray  # (3,1)
    C: np.ndarray  # (3,)

    @property
    def K(self) -> np.ndarray:
        return self.intrinsics.K


@dataclass(frozen=True)
class Observation:
    feature_id: int
    x: np.ndarray  # (2,) observed pixel coordinate


@dataclass(frozen=True)
class Landmark:
    X: np.ndarray                          # (3,)
    describer: str
    observations: Mapping[int, Observation]

    @property
    def view_ids(self) -> Tuple[int, ...]:
        return tuple(sorted(self.observations.keys()))


@dataclass(frozen=True)
class Scene:
    views: Mapping[int, View]
    intrinsics: Mapping[int, Intrinsics]
    poses: Mapping[int, Pose]
    landmarks: Mapping[int, Landmark] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "views", _frozen(self.views))
        object.__setattr__(self, "intrinsics", _frozen(self.intrinsics))
        object.__setattr__(self, "poses", _frozen(self.poses))
        object.__setattr__(self, "landmarks", _frozen(self.landmarks))

    # =========================================================
    # View queries
    # =========================================================

    def view_ids(self) -> Tuple[int, ...]:
        return tuple(sorted(self.views.keys()))

    def intrinsics_for_view(self, view_id: int) -> Optional[Intrinsics]:
        view = self.views[view_id]
        if view.intrinsic_id is None:
            return None
        return self.intrinsics.get(view.intrinsic_id)

    def pose_for_view(self, view_id: int) -> Optional[Pose]:
        view = self.views[view_id]
        if view.pose_id is None:
            return None
        return self.poses.get(view.pose_id)

    def is_valid_view(self, view_id: int) -> bool:
        """A view is usable iff it has both a valid intrinsic and a valid pose."""
        if view_id not in self.views:
            return False
        intr = self.intrinsics_for_view(view_id)
        pose = self.pose_for_view(view_id)
        return intr is not None and pose is not None and intr.is_valid and pose.is_valid

    def valid_views(self) -> Set[int]:
        return {vid for vid in self.views if self.is_valid_view(vid)}

    def camera(self, view_id: int) -> ViewCamera:
        if not self.is_valid_view(view_id):
            raise ValueError(f"View {view_id} has no valid intrinsic/pose")
        intr = self.intrinsics_for_view(view_id)
        pose = self.pose_for_view(view_id)
        R = np.asarray(pose.R, np.float64)
        C = np.asarray(pose.C, np.float64).reshape(3)
        return ViewCamera(view_id=view_id, intrinsics=intr, R=R, t=pose.t, C=C)

    def image_size(self, view_id: int) -> Tuple[int, int]:
        """(width, height) of a view, falling back to its intrinsic, then to 2*principal point."""
        view = self.views[view_id]
        intr = self.intrinsics_for_view(view_id)
        w = view.width or (intr.width if intr is not None else None)
        h = view.height or (intr.height if intr is not None else None)
        if not w or not h:
            if intr is None:
                raise ValueError(f"View {view_id} has no image size")
            w = w or int(round(2.0 * intr.cx))
            h = h or int(round(2.0 * intr.cy))
        return int(w), int(h)

    # =========================================================
    # Landmarks
    # =========================================================

    def with_landmarks(self, landmarks: Mapping[int, Landmark]) -> "Scene":
        """New scene sharing the (read-only) views with a new landmark collection."""
        return replace(self, landmarks=landmarks)

    def without_landmarks(self) -> "Scene":
        return replace(self, landmarks={})

    def landmark_points(self) -> np.ndarray:
        """(N,3) landmark positions in landmark-id order."""
        if not self.landmarks:
            return np.zeros((0, 3), np.float64)
        return np.asarray(
            [self.landmarks[k].X for k in sorted(self.landmarks.keys())], dtype=np.float64
        ).reshape(-1, 3)
