import numpy as np


def projection_matrix(K: np.ndarray, R: np.ndarray, t: np.ndarray) -> np.ndarray:
    """
    Compute the 3x4 projection matrix P = K [R | t].
    Args:
        K: (3,3) intrinsic matrix
        R: (3,3) rotation matrix
        t: (3,) or (3,1) translation vector
    Returns:
        P: (3,4) projection matrix
    """

    K = np.asarray(K, np.float64)
    R = np.asarray(R, np.float64)
    t = np.asarray(t, np.float64).reshape(3, 1)

    if K.shape != (3, 3):
        raise ValueError(f"K must be (3,3), got {K.shape}")
    if R.shape != (3, 3):
        raise ValueError(f"R must be (3,3), got {R.shape}")

    return K @ np.hstack([R, t])  # 3x4


def skew(v: np.ndarray) -> np.ndarray:
    """Cross-product matrix [v]x."""
    v = np.asarray(v, np.float64).reshape(3)
    return np.array([
        [0.0, -v[2], v[1]],
        [v[2], 0.0, -v[0]],
        [-v[1], v[0], 0.0],
    ], dtype=np.float64)


def pixel_to_normalized(pts_xy: np.ndarray, K: np.ndarray) -> np.ndarray:
    """(N,2) pixels -> (N,2) normalised image coordinates K^-1 [u v 1]."""
    pts = np.asarray(pts_xy, np.float64).reshape(-1, 2)
    K = np.asarray(K, np.float64)
    x = (pts[:, 0] - K[0, 2] - K[0, 1] * (pts[:, 1] - K[1, 2]) / K[1, 1]) / K[0, 0]
    y = (pts[:, 1] - K[1, 2]) / K[1, 1]
    return np.stack([x, y], axis=1)
