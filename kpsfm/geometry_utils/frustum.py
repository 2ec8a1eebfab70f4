"""
kpsfm/geometry_utils/frustum.py

Camera frustums as convex polyhedra (intersection of half-spaces) and an
intersection test between two of them.

A frustum is stored as (A, b) with  A x <= b  for every point x inside it;
rows of A have unit norm, so  b - A x  is the distance to each face.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy.optimize import linprog

from kpsfm.scene import ViewCamera


@dataclass(frozen=True)
class Frustum:
    A: np.ndarray  # (M,3) unit outward normals
    b: np.ndarray  # (M,)
    C: np.ndarray  # (3,) apex (camera centre)

    def contains(self, X: np.ndarray, tol: float = 1e-9) -> bool:
        X = np.asarray(X, np.float64).reshape(3)
        return bool(np.all(self.A @ X <= self.b + tol))


def image_corner_rays(cam: ViewCamera, width: int, height: int) -> np.ndarray:
    """(4,3) camera-frame rays K^-1 [u v 1] through the image corners, clockwise."""
    corners = np.array([
        [0.0, 0.0, 1.0],
        [float(width), 0.0, 1.0],
        [float(width), float(height), 1.0],
        [0.0, float(height), 1.0],
    ], dtype=np.float64)
    Kinv = np.linalg.inv(np.asarray(cam.K, np.float64))
    return (Kinv @ corners.T).T


def build_frustum(
    cam: ViewCamera,
    width: int,
    height: int,
    z_near: float = 0.0,
    z_far: Optional[float] = None,
) -> Frustum:
    """
    Frustum of a posed camera in world coordinates.

    Four side planes through the camera centre and the image borders, a near
    plane at depth z_near and, when z_far is given, a far plane.
    """
    R = np.asarray(cam.R, np.float64)
    C = np.asarray(cam.C, np.float64).reshape(3)

    rays_cam = image_corner_rays(cam, width, height)
    rays_w = (R.T @ rays_cam.T).T
    axis_w = R.T @ np.array([0.0, 0.0, 1.0])

    normals = []
    offsets = []

    # side planes; inward normal is the cross product of consecutive corner rays
    centre_ray = rays_w.mean(axis=0)
    for k in range(4):
        n_in = np.cross(rays_w[k], rays_w[(k + 1) % 4])
        if np.dot(n_in, centre_ray) < 0:
            n_in = -n_in
        n_in /= np.linalg.norm(n_in)
        normals.append(-n_in)
        offsets.append(float(-n_in @ C))

    # near plane: axis . (x - C) >= z_near
    normals.append(-axis_w)
    offsets.append(float(-axis_w @ C - z_near))

    if z_far is not None:
        if z_far <= z_near:
            raise ValueError(f"z_far ({z_far}) must be greater than z_near ({z_near})")
        normals.append(axis_w)
        offsets.append(float(axis_w @ C + z_far))

    return Frustum(
        A=np.asarray(normals, np.float64),
        b=np.asarray(offsets, np.float64),
        C=C,
    )


def frustum_intersection_depth(f1: Frustum, f2: Frustum, cap: float = 1.0) -> float:
    """
    Radius of the largest ball (capped at `cap`) that fits in both frustums.

    Solved as a linear program in (x, s):  maximise s  s.t.  A x + s <= b
    for the faces of both frustums, 0 <= s <= cap. Returns -1 if the LP is
    infeasible (no common point at all).
    """
    A = np.vstack([f1.A, f2.A])
    b = np.concatenate([f1.b, f2.b])
    A_ub = np.hstack([A, np.ones((A.shape[0], 1))])

    c = np.array([0.0, 0.0, 0.0, -1.0])
    bounds = [(None, None), (None, None), (None, None), (0.0, cap)]

    res = linprog(c, A_ub=A_ub, b_ub=b, bounds=bounds, method="highs")
    if res.status != 0 or res.x is None:
        return -1.0
    return float(res.x[3])


def frustums_intersect(f1: Frustum, f2: Frustum, min_slack: float = 1e-6) -> bool:
    """True iff the two frustums share an interior point (touching faces do not count)."""
    return frustum_intersection_depth(f1, f2) > min_slack
