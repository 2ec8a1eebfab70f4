"""
Synthetic scenes shared by the tests.

Cameras sit on a horizontal ring around the origin and look at it; 3D
points are scattered in a small cube around the origin, so every point is
visible in every view. Each point gets one random descriptor that every
view shares, and each view stores its features in a random order.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import cv2
import numpy as np
import pytest

from data_io.regions_io import write_regions
from data_io.scene_io import save_scene
from kpsfm.features import DescriberType, Regions, RegionsPerView
from kpsfm.geometry_utils.reprojection import project_points
from kpsfm.scene import Intrinsics, Pose, Scene, View

WIDTH, HEIGHT = 640, 480
K_DEFAULT = np.array([[800.0, 0.0, 320.0],
                      [0.0, 800.0, 240.0],
                      [0.0, 0.0, 1.0]], dtype=np.float64)


def look_at(C: np.ndarray, target: Optional[np.ndarray] = None) -> np.ndarray:
    """World-to-camera rotation for a camera at C looking at target, image y pointing down."""
    target = np.zeros(3) if target is None else np.asarray(target, np.float64)
    z = target - C
    z = z / np.linalg.norm(z)
    x = np.cross(z, np.array([0.0, 0.0, 1.0]))
    x = x / np.linalg.norm(x)
    y = np.cross(z, x)
    return np.vstack([x, y, z])


def ring_center(angle_deg: float, radius: float = 10.0) -> np.ndarray:
    a = np.radians(angle_deg)
    return np.array([radius * np.cos(a), radius * np.sin(a), 0.0])


@dataclass
class Synthetic:
    scene: Scene
    regions: RegionsPerView
    X: np.ndarray                     # (P,3) true points
    feat_of: Dict[int, np.ndarray]    # view -> (P,) feature index of each point
    descriptors: np.ndarray           # (P,128)

    def point_of(self, view_id: int, feature_id: int) -> int:
        return int(np.where(self.feat_of[view_id] == feature_id)[0][0])

    def true_matches(self, a: int, b: int) -> np.ndarray:
        return np.stack([self.feat_of[a], self.feat_of[b]], axis=1).astype(np.int64)

    def all_true_matches(self, describer: DescriberType = DescriberType.SIFT):
        ids = sorted(self.feat_of)
        return {
            (a, b): {describer: self.true_matches(a, b)}
            for i, a in enumerate(ids) for b in ids[i + 1:]
        }


def make_synthetic(
    angles_deg: Sequence[float] = (0.0, 25.0, 50.0, 75.0, 100.0),
    n_points: int = 40,
    seed: int = 0,
    dist: Optional[List[float]] = None,
) -> Synthetic:
    rng = np.random.default_rng(seed)
    X = rng.uniform(-1.5, 1.5, size=(n_points, 3))
    descriptors = rng.integers(0, 256, size=(n_points, 128)).astype(np.float32)

    model = "pinhole" if not dist else "radial3"
    intr = Intrinsics(
        model=model, width=WIDTH, height=HEIGHT, K=K_DEFAULT.copy(),
        dist=np.asarray(dist or [], np.float64),
    )

    views, poses, regions, feat_of = {}, {}, {}, {}
    for vid, angle in enumerate(angles_deg):
        C = ring_center(angle)
        R = look_at(C)
        t = -R @ C
        if dist:
            rvec, _ = cv2.Rodrigues(R)
            x, _ = cv2.projectPoints(X, rvec, t, K_DEFAULT, intr.opencv_dist())
            x = x.reshape(-1, 2)
        else:
            x = project_points(X, K_DEFAULT, R, t)

        perm = rng.permutation(n_points)           # feature f holds point perm[f]
        views[vid] = View(view_id=vid, intrinsic_id=0, pose_id=vid, width=WIDTH, height=HEIGHT)
        poses[vid] = Pose(R=R, C=C)
        regions[vid] = {DescriberType.SIFT: Regions(kpts_xy=x[perm].copy(), desc=descriptors[perm].copy())}
        feat_of[vid] = np.argsort(perm)

    scene = Scene(views=views, intrinsics={0: intr}, poses=poses)
    return Synthetic(scene, RegionsPerView(regions), X, feat_of, descriptors)


def rot_y(angle_deg: float) -> np.ndarray:
    a = np.radians(angle_deg)
    c, s = np.cos(a), np.sin(a)
    return np.array([[c, 0.0, s], [0.0, 1.0, 0.0], [-s, 0.0, c]])


def make_rotation_synthetic(yaw_deg: float = 10.0, n_points: int = 20, seed: int = 0) -> Synthetic:
    """Two views sharing a centre at the origin: identity and a yaw of yaw_deg."""
    rng = np.random.default_rng(seed)
    X = np.column_stack([
        rng.uniform(-1.0, 1.0, n_points),
        rng.uniform(-1.0, 1.0, n_points),
        rng.uniform(8.0, 12.0, n_points),
    ])
    intr = Intrinsics(model="pinhole", width=WIDTH, height=HEIGHT, K=K_DEFAULT.copy(), dist=np.zeros(0))

    views, poses, regions, feat_of = {}, {}, {}, {}
    for vid, R in enumerate([np.eye(3), rot_y(yaw_deg)]):
        x = project_points(X, K_DEFAULT, R, np.zeros(3))
        views[vid] = View(view_id=vid, intrinsic_id=0, pose_id=vid, width=WIDTH, height=HEIGHT)
        poses[vid] = Pose(R=R, C=np.zeros(3))
        regions[vid] = {DescriberType.SIFT: Regions(kpts_xy=x, desc=None)}
        feat_of[vid] = np.arange(n_points)

    scene = Scene(views=views, intrinsics={0: intr}, poses=poses)
    return Synthetic(scene, RegionsPerView(regions), X, feat_of, np.zeros((n_points, 0), np.float32))


def write_synthetic(syn: Synthetic, root) -> Dict[str, object]:
    """Scene file and features directory for a synthetic scene."""
    scene_path = root / "cameras.json"
    features_dir = root / "features"
    save_scene(syn.scene, scene_path)
    for vid in syn.regions.view_ids():
        for d in syn.regions.describers():
            write_regions(features_dir, vid, d, syn.regions.get(vid, d))
    return {"scene": scene_path, "features": features_dir}


@pytest.fixture
def synthetic() -> Synthetic:
    return make_synthetic()


@pytest.fixture
def synthetic_files(tmp_path, synthetic):
    paths = write_synthetic(synthetic, tmp_path)
    paths["syn"] = synthetic
    paths["root"] = tmp_path
    return paths


@pytest.fixture
def synthetic_factory():
    return make_synthetic
