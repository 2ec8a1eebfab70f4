import numpy as np
from typing import List, Sequence

from kpsfm.geometry_utils.projective import projection_matrix
from kpsfm.geometry_utils.reprojection import _is_finite_xyz

# ----------------------------
# Small numeric helpers
# ----------------------------
_EPS_Z = 1e-12
_EPS_W = 1e-12

# rejection codes for a single track
REJ_NONE = 0
REJ_TOO_FEW_VIEWS = 1
REJ_DEGENERATE = 2
REJ_AT_INFINITY = 3
REJ_NON_FINITE = 4
REJ_CHEIRALITY = 5
REJ_REPROJ = 6


def cheirality_mask(
    X: np.ndarray,
    R: np.ndarray,
    t: np.ndarray,
) -> np.ndarray:
    """
    Keep points with positive depth in the given camera coordinates.
    Camera coordinates: Xc = R*X + t
    """
    X = np.asarray(X, dtype=np.float64).reshape(-1, 3)
    R = np.asarray(R, dtype=np.float64)
    t = np.asarray(t, dtype=np.float64).reshape(3, 1)

    keep = np.zeros((X.shape[0],), dtype=bool)
    finite = _is_finite_xyz(X) & np.isfinite(R).all() & np.isfinite(t).all()
    if not np.any(finite):
        return keep

    Xc = (R @ X[finite].T) + t
    z = Xc[2, :]
    keep[np.where(finite)[0]] = np.isfinite(z) & (z > _EPS_Z)
    return keep


def triangulate_nview_dlt(
    x_norm: np.ndarray,
    Rs: Sequence[np.ndarray],
    ts: Sequence[np.ndarray],
    rank_tol: float = 1e-9,
):
    """
    Linear multi-view triangulation in normalised camera coordinates.

    Each view contributes the two rows  x * P[2] - P[0]  and  y * P[2] - P[1]
    of P = [R | t], scaled to unit norm so every view weighs the same.
    The solution is the right singular vector of the smallest singular value.

    Args:
      x_norm: (N,2) normalised observations (K^-1 applied, undistorted)
      Rs, ts: per-view world->camera rotation (3,3) and translation (3,1)
      rank_tol: relative tolerance on the second smallest singular value;
                below it the rays do not pin down a unique point

    Returns:
      (X, code): X is (3,) or None, code is REJ_NONE or the rejection reason.
    """
    x_norm = np.asarray(x_norm, np.float64).reshape(-1, 2)
    n = x_norm.shape[0]
    if n < 2:
        return None, REJ_TOO_FEW_VIEWS

    A = np.zeros((2 * n, 4), dtype=np.float64)
    for k in range(n):
        P = projection_matrix(np.eye(3), Rs[k], ts[k])
        u, v = x_norm[k]
        r0 = u * P[2, :] - P[0, :]
        r1 = v * P[2, :] - P[1, :]
        A[2 * k] = r0 / (np.linalg.norm(r0) + 1e-300)
        A[2 * k + 1] = r1 / (np.linalg.norm(r1) + 1e-300)

    if not np.isfinite(A).all():
        return None, REJ_NON_FINITE

    _, s, Vt = np.linalg.svd(A)
    if s[0] <= 0 or s[-2] < rank_tol * s[0]:
        return None, REJ_DEGENERATE

    X_h = Vt[-1]
    if abs(X_h[3]) < _EPS_W * np.linalg.norm(X_h):
        return None, REJ_AT_INFINITY

    X = X_h[:3] / X_h[3]
    if not np.isfinite(X).all():
        return None, REJ_NON_FINITE
    return X, REJ_NONE


def triangulate_midpoint(
    x_norm: np.ndarray,
    Rs: Sequence[np.ndarray],
    Cs: Sequence[np.ndarray],
    cond_tol: float = 1e-9,
):
    """
    Least-squares point closest to all viewing rays.

    Solves  sum_k (I - d_k d_k^T) X = sum_k (I - d_k d_k^T) C_k
    with d_k the unit world direction of ray k.

    Returns:
      (X, code) like triangulate_nview_dlt.
    """
    x_norm = np.asarray(x_norm, np.float64).reshape(-1, 2)
    n = x_norm.shape[0]
    if n < 2:
        return None, REJ_TOO_FEW_VIEWS

    A = np.zeros((3, 3), dtype=np.float64)
    b = np.zeros((3,), dtype=np.float64)
    for k in range(n):
        R = np.asarray(Rs[k], np.float64)
        C = np.asarray(Cs[k], np.float64).reshape(3)
        d = R.T @ np.array([x_norm[k, 0], x_norm[k, 1], 1.0])
        d /= np.linalg.norm(d)
        M = np.eye(3) - np.outer(d, d)
        A += M
        b += M @ C

    if not (np.isfinite(A).all() and np.isfinite(b).all()):
        return None, REJ_NON_FINITE

    w = np.linalg.eigvalsh(A)
    if w[-1] <= 0 or w[0] < cond_tol * w[-1]:
        return None, REJ_DEGENERATE

    X = np.linalg.solve(A, b)
    if not np.isfinite(X).all():
        return None, REJ_NON_FINITE
    return X, REJ_NONE


def viewing_angles_deg(X: np.ndarray, cam_centers: Sequence[np.ndarray]) -> List[float]:
    """Pairwise angles between the rays C_i -> X, in degrees."""
    X = np.asarray(X, np.float64).reshape(3)
    dirs = []
    for C in cam_centers:
        v = X - np.asarray(C, np.float64).reshape(3)
        v = v / (np.linalg.norm(v) + 1e-12)
        dirs.append(v)

    angles = []
    for i in range(len(dirs)):
        for j in range(i + 1, len(dirs)):
            dot = np.clip(np.dot(dirs[i], dirs[j]), -1.0, 1.0)
            angles.append(float(np.degrees(np.arccos(dot))))
    return angles


def max_viewing_angle_deg(X: np.ndarray, cam_centers: Sequence[np.ndarray]) -> float:
    """Largest pairwise ray angle; 0 when fewer than two rays."""
    angles = viewing_angles_deg(X, cam_centers)
    return max(angles) if angles else 0.0
