# kpsfm/geometry.py
"""
Public geometry API.

Internals live in kpsfm/geometry_utils/.
Import from here in the rest of the codebase to avoid deep-path imports.
"""

from kpsfm.geometry_utils.epipolar import (
    baseline_ratio,
    compute_essential_matrix,
    compute_fundamental_matrix,
    compute_infinite_homography,
    epipolar_distance,
    epipolar_distances,
    relative_pose,
    transfer_distances,
)
from kpsfm.geometry_utils.frustum import Frustum, build_frustum, frustums_intersect
from kpsfm.geometry_utils.projective import projection_matrix, pixel_to_normalized
from kpsfm.geometry_utils.reprojection import project_points, reprojection_errors, view_reprojection_errors
from kpsfm.geometry_utils.triangulation import (
    triangulate_nview_dlt,
    triangulate_midpoint,
    viewing_angles_deg,
    max_viewing_angle_deg,
    cheirality_mask,
)

__all__ = [
    "baseline_ratio",
    "compute_essential_matrix",
    "compute_fundamental_matrix",
    "compute_infinite_homography",
    "epipolar_distance",
    "epipolar_distances",
    "relative_pose",
    "transfer_distances",
    "Frustum",
    "build_frustum",
    "frustums_intersect",
    "projection_matrix",
    "pixel_to_normalized",
    "project_points",
    "reprojection_errors",
    "view_reprojection_errors",
    "triangulate_nview_dlt",
    "triangulate_midpoint",
    "viewing_angles_deg",
    "max_viewing_angle_deg",
    "cheirality_mask",
]
