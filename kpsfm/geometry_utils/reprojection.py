"""
kpsfm/geometry_utils/reprojection.py

Projection of world points into posed views and pixel residuals.
"""

import numpy as np

from kpsfm.scene import ViewCamera

_EPS_Z = 1e-12


def _is_finite_xyz(X: np.ndarray) -> np.ndarray:
    """Return boolean mask of rows of X that are finite."""
    X = np.asarray(X)
    if X.ndim != 2 or X.shape[1] != 3:
        raise ValueError(f"Expected (N,3) array, got {X.shape}")
    return np.isfinite(X).all(axis=1)


def project_points(
    X: np.ndarray,
    K: np.ndarray,
    R: np.ndarray,
    t: np.ndarray,
) -> np.ndarray:
    """
    Ideal pinhole projection of world points (no distortion applied).

    Returns:
      x: (N,2) float64; NaN rows for non-finite points or points not in front of the camera.
    """
    X = np.asarray(X, dtype=np.float64)
    if X.ndim != 2 or X.shape[1] != 3:
        raise ValueError(f"X must be (N,3). Got {X.shape}")
    K = np.asarray(K, dtype=np.float64)
    P = K @ np.hstack([np.asarray(R, np.float64), np.asarray(t, np.float64).reshape(3, 1)])

    x_pix = np.full((X.shape[0], 2), np.nan, dtype=np.float64)
    if not np.isfinite(P).all():
        return x_pix

    ok = _is_finite_xyz(X)
    x_h = np.hstack([X[ok], np.ones((int(ok.sum()), 1))]) @ P.T
    # K[2] = (0, 0, 1): third coordinate is the camera-frame depth
    depth = x_h[:, 2]
    front = np.isfinite(depth) & (depth > _EPS_Z)

    idx = np.where(ok)[0][front]
    x_pix[idx] = x_h[front, :2] / x_h[front, 2:3]
    return x_pix


def reprojection_errors(
    X: np.ndarray,
    pts_obs: np.ndarray,
    K: np.ndarray,
    R: np.ndarray,
    t: np.ndarray,
) -> np.ndarray:
    """
    Pixel distance between projections of X and undistorted observations.

    Returns:
      err: (N,) float64, +inf where the projection is undefined.
    """
    X = np.asarray(X, dtype=np.float64).reshape(-1, 3)
    pts_obs = np.asarray(pts_obs, dtype=np.float64).reshape(-1, 2)
    diff = project_points(X, K, R, t) - pts_obs
    err = np.hypot(diff[:, 0], diff[:, 1])
    err[~np.isfinite(err)] = np.inf
    return err


def view_reprojection_errors(cam: ViewCamera, X: np.ndarray, pts_pix: np.ndarray) -> np.ndarray:
    """
    Residuals of world points against raw (possibly distorted) keypoints of one view.

    The keypoints are undistorted with the view's intrinsics first, so the
    error is measured in the undistorted image.
    """
    und = cam.intrinsics.undistort(pts_pix)
    return reprojection_errors(X, und, cam.K, cam.R, cam.t)
