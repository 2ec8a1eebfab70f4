import numpy as np

from kpsfm.geometry_utils.projective import skew
from kpsfm.scene import ViewCamera


def relative_pose(cam_i: ViewCamera, cam_j: ViewCamera):
    """(R_rel, t_rel) mapping camera-i coordinates to camera-j coordinates."""
    Ri = np.asarray(cam_i.R, np.float64)
    Rj = np.asarray(cam_j.R, np.float64)
    ti = np.asarray(cam_i.t, np.float64).reshape(3, 1)
    tj = np.asarray(cam_j.t, np.float64).reshape(3, 1)

    R_rel = Rj @ Ri.T
    t_rel = tj - R_rel @ ti
    return R_rel, t_rel


def compute_essential_matrix(cam_i: ViewCamera, cam_j: ViewCamera) -> np.ndarray:
    """E such that x2^T E x1 = 0 for normalised coordinates x1 (view i), x2 (view j)."""
    R_rel, t_rel = relative_pose(cam_i, cam_j)
    return skew(t_rel) @ R_rel


def compute_fundamental_matrix(
    cam_i: ViewCamera,
    cam_j: ViewCamera,
) -> np.ndarray:
    """Compute the fundamental matrix F such that p2^T F p1 = 0
    for corresponding points p1 in image i and p2 in image j.
    """
    Ki = np.asarray(cam_i.K, np.float64)
    Kj = np.asarray(cam_j.K, np.float64)

    E = compute_essential_matrix(cam_i, cam_j)
    F = np.linalg.inv(Kj).T @ E @ np.linalg.inv(Ki)
    F /= (np.linalg.norm(F) + 1e-12)

    return F


def epipolar_distance(
    p1: np.ndarray,  # (2,) point in image 1
    p2: np.ndarray,  # (2,) point in image 2
    F: np.ndarray,   # (3,3) fundamental matrix
) -> float:
    """
    Compute symmetric epipolar distance.

    Returns average of:
    - Distance from p2 to epipolar line of p1
    - Distance from p1 to epipolar line of p2
    """
    d = epipolar_distances(np.asarray(p1).reshape(1, 2), np.asarray(p2).reshape(1, 2), F)
    return float(d[0])


def epipolar_distances(
    pts1: np.ndarray,  # (N,2)
    pts2: np.ndarray,  # (N,2)
    F: np.ndarray,
) -> np.ndarray:
    """Vectorised symmetric epipolar distance, (N,) in pixels."""
    pts1 = np.asarray(pts1, np.float64).reshape(-1, 2)
    pts2 = np.asarray(pts2, np.float64).reshape(-1, 2)
    if pts1.shape[0] == 0:
        return np.zeros((0,), np.float64)

    ones = np.ones((pts1.shape[0], 1), np.float64)
    p1_h = np.hstack([pts1, ones])
    p2_h = np.hstack([pts2, ones])

    # Lines in image 2 from p1, lines in image 1 from p2
    l2 = p1_h @ F.T
    l1 = p2_h @ F

    num = np.abs(np.sum(p2_h * l2, axis=1))
    d2 = num / (np.sqrt(l2[:, 0] ** 2 + l2[:, 1] ** 2) + 1e-12)
    d1 = num / (np.sqrt(l1[:, 0] ** 2 + l1[:, 1] ** 2) + 1e-12)

    return (d1 + d2) / 2


def baseline_ratio(cam_i: ViewCamera, cam_j: ViewCamera) -> float:
    """Distance between the two centres over the larger centre norm (or 1 when both sit at the origin)."""
    Ci = -np.asarray(cam_i.R, np.float64).T @ np.asarray(cam_i.t, np.float64).reshape(3)
    Cj = -np.asarray(cam_j.R, np.float64).T @ np.asarray(cam_j.t, np.float64).reshape(3)
    scale = max(float(np.linalg.norm(Ci)), float(np.linalg.norm(Cj)))
    if scale <= 0.0:
        scale = 1.0
    return float(np.linalg.norm(Ci - Cj)) / scale


def compute_infinite_homography(cam_i: ViewCamera, cam_j: ViewCamera) -> np.ndarray:
    """H = Kj R_rel Ki^-1, the image-to-image map of a pure rotation (p2 ~ H p1)."""
    Ki = np.asarray(cam_i.K, np.float64)
    Kj = np.asarray(cam_j.K, np.float64)
    R_rel, _ = relative_pose(cam_i, cam_j)
    return Kj @ R_rel @ np.linalg.inv(Ki)


def _apply_homography(H: np.ndarray, pts: np.ndarray) -> np.ndarray:
    ph = np.hstack([pts, np.ones((pts.shape[0], 1), np.float64)]) @ H.T
    with np.errstate(divide="ignore", invalid="ignore"):
        return ph[:, :2] / ph[:, 2:3]


def transfer_distances(
    pts1: np.ndarray,  # (N,2)
    pts2: np.ndarray,  # (N,2)
    H: np.ndarray,     # (3,3) p2 ~ H p1
) -> np.ndarray:
    """Symmetric transfer error, (N,) in pixels; inf where a point maps to infinity."""
    pts1 = np.asarray(pts1, np.float64).reshape(-1, 2)
    pts2 = np.asarray(pts2, np.float64).reshape(-1, 2)
    if pts1.shape[0] == 0:
        return np.zeros((0,), np.float64)

    d2 = np.linalg.norm(_apply_homography(H, pts1) - pts2, axis=1)
    d1 = np.linalg.norm(_apply_homography(np.linalg.inv(H), pts2) - pts1, axis=1)
    d = (d1 + d2) / 2
    d[~np.isfinite(d)] = np.inf
    return d
