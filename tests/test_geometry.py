import cv2
import numpy as np
import pytest

from conftest import K_DEFAULT, look_at, ring_center
from kpsfm.geometry import (
    baseline_ratio,
    build_frustum,
    cheirality_mask,
    compute_essential_matrix,
    compute_fundamental_matrix,
    compute_infinite_homography,
    epipolar_distance,
    epipolar_distances,
    frustums_intersect,
    max_viewing_angle_deg,
    pixel_to_normalized,
    project_points,
    reprojection_errors,
    triangulate_midpoint,
    transfer_distances,
    triangulate_nview_dlt,
)
from kpsfm.geometry_utils.frustum import frustum_intersection_depth
from kpsfm.geometry_utils.triangulation import (
    REJ_DEGENERATE,
    REJ_NONE,
    REJ_TOO_FEW_VIEWS,
)
from kpsfm.scene import Intrinsics, ViewCamera


def _camera(view_id, C, target=None, K=K_DEFAULT):
    C = np.asarray(C, np.float64)
    R = look_at(C, target)
    intr = Intrinsics(model="pinhole", width=640, height=480, K=np.asarray(K, np.float64))
    return ViewCamera(view_id=view_id, intrinsics=intr, R=R, t=(-R @ C).reshape(3, 1), C=C)


@pytest.fixture
def cams():
    return [_camera(k, ring_center(a)) for k, a in enumerate((0.0, 30.0, 70.0))]


@pytest.fixture
def points():
    return np.random.default_rng(1).uniform(-1.0, 1.0, size=(25, 3))


def _project(cam, X):
    return project_points(X, cam.K, cam.R, cam.t)


# =========================================================
# Epipolar geometry
# =========================================================

def test_fundamental_matrix_holds_for_true_correspondences(cams, points):
    a, b = cams[0], cams[1]
    F = compute_fundamental_matrix(a, b)
    d = epipolar_distances(_project(a, points), _project(b, points), F)
    assert np.all(d < 1e-6)
    assert np.isclose(np.linalg.norm(F), 1.0)


def test_essential_matrix_on_normalized_coordinates(cams, points):
    a, b = cams[0], cams[2]
    E = compute_essential_matrix(a, b)
    x1 = pixel_to_normalized(_project(a, points), a.K)
    x2 = pixel_to_normalized(_project(b, points), b.K)
    h1 = np.hstack([x1, np.ones((len(x1), 1))])
    h2 = np.hstack([x2, np.ones((len(x2), 1))])
    residual = np.einsum("ij,jk,ik->i", h2, E, h1)
    assert np.all(np.abs(residual) < 1e-9)


def test_point_moved_off_its_epipolar_line_is_rejected(cams, points):
    a, b = cams[0], cams[1]
    F = compute_fundamental_matrix(a, b)
    p1 = _project(a, points[:1])[0]
    p2 = _project(b, points[:1])[0]

    line = F @ np.array([p1[0], p1[1], 1.0])
    normal = line[:2] / np.linalg.norm(line[:2])
    assert epipolar_distance(p1, p2, F) < 1e-6
    assert epipolar_distance(p1, p2 + 50.0 * normal, F) > 4.0


def test_epipolar_distances_empty():
    assert epipolar_distances(np.zeros((0, 2)), np.zeros((0, 2)), np.eye(3)).shape == (0,)


def test_baseline_ratio_is_zero_for_a_shared_centre(cams):
    C = np.array([1.0, 2.0, 3.0])
    a = _camera(0, C, target=np.zeros(3))
    b = _camera(1, C, target=np.array([0.0, 5.0, 0.0]))
    assert baseline_ratio(a, b) == pytest.approx(0.0, abs=1e-12)
    assert baseline_ratio(cams[0], cams[1]) > 0.1


def test_infinite_homography_transfers_points_at_infinity(cams):
    a, b = cams[0], cams[1]
    H = compute_infinite_homography(a, b)
    dirs = np.random.default_rng(2).uniform(-0.2, 0.2, size=(10, 3)) + np.array([-1.0, 0.3, 0.0])
    far = a.C.reshape(1, 3) + 1e9 * dirs
    d = transfer_distances(_project(a, far), _project(b, far), H)
    assert np.all(d < 1e-3)
    assert transfer_distances(np.zeros((0, 2)), np.zeros((0, 2)), H).shape == (0,)


# =========================================================
# Distortion
# =========================================================

def test_undistort_honours_skew():
    K = np.array([[800.0, 5.0, 320.0],
                  [0.0, 790.0, 240.0],
                  [0.0, 0.0, 1.0]])
    intr = Intrinsics(model="radial3", width=640, height=480, K=K, dist=np.array([-0.05, 0.01, 0.0]))
    x_n = np.random.default_rng(4).uniform(-0.3, 0.3, size=(20, 2))

    rays = np.hstack([x_n, np.ones((20, 1))])
    x_d, _ = cv2.projectPoints(rays, np.zeros(3), np.zeros(3), np.eye(3), intr.opencv_dist())
    pix = np.hstack([x_d.reshape(-1, 2), np.ones((20, 1))]) @ K.T

    und = intr.undistort(pix[:, :2])
    np.testing.assert_allclose(und, (rays @ K.T)[:, :2], atol=1e-2)
    np.testing.assert_allclose(pixel_to_normalized(und, K), x_n, atol=1e-5)


# =========================================================
# Triangulation
# =========================================================

def _observations(cams, X):
    return np.vstack([pixel_to_normalized(_project(c, X.reshape(1, 3)), c.K) for c in cams])


def test_dlt_recovers_point(cams, points):
    for X in points:
        x = _observations(cams, X)
        Xh, code = triangulate_nview_dlt(x, [c.R for c in cams], [c.t for c in cams])
        assert code == REJ_NONE
        np.testing.assert_allclose(Xh, X, atol=1e-6)


def test_midpoint_recovers_point(cams, points):
    for X in points:
        x = _observations(cams, X)
        Xh, code = triangulate_midpoint(x, [c.R for c in cams], [c.C for c in cams])
        assert code == REJ_NONE
        np.testing.assert_allclose(Xh, X, atol=1e-6)


def test_dlt_is_order_invariant(cams):
    X = np.array([0.3, -0.2, 0.5])
    x = _observations(cams, X)
    # noisy so the solution is not exact
    x = x + np.random.default_rng(2).normal(scale=1e-3, size=x.shape)

    order = [2, 0, 1]
    X1, _ = triangulate_nview_dlt(x, [c.R for c in cams], [c.t for c in cams])
    X2, _ = triangulate_nview_dlt(x[order], [cams[k].R for k in order], [cams[k].t for k in order])
    np.testing.assert_allclose(X1, X2, atol=1e-9)


def test_identical_rays_are_degenerate(cams):
    c = cams[0]
    x = _observations([c, c], np.array([0.1, 0.2, 0.3]))
    X, code = triangulate_nview_dlt(x, [c.R, c.R], [c.t, c.t])
    assert X is None and code == REJ_DEGENERATE
    X, code = triangulate_midpoint(x, [c.R, c.R], [c.C, c.C])
    assert X is None and code == REJ_DEGENERATE


def test_single_view_is_too_few(cams):
    c = cams[0]
    X, code = triangulate_nview_dlt(np.zeros((1, 2)), [c.R], [c.t])
    assert X is None and code == REJ_TOO_FEW_VIEWS


def test_cheirality(cams):
    c = cams[0]
    in_front = np.zeros((1, 3))
    behind = (c.C * 2.0).reshape(1, 3)
    mask = cheirality_mask(np.vstack([in_front, behind]), c.R, c.t)
    assert mask.tolist() == [True, False]


def test_projection_behind_camera_has_infinite_error(cams):
    c = cams[0]
    X = (c.C * 2.0).reshape(1, 3)
    assert np.isnan(project_points(X, c.K, c.R, c.t)).all()
    assert np.isinf(reprojection_errors(X, np.zeros((1, 2)), c.K, c.R, c.t)).all()


def test_max_viewing_angle():
    X = np.zeros(3)
    assert max_viewing_angle_deg(X, [np.array([1.0, 0, 0]), np.array([0, 1.0, 0])]) == pytest.approx(90.0)
    assert max_viewing_angle_deg(X, [np.array([1.0, 0, 0])]) == 0.0


# =========================================================
# Frustums
# =========================================================

def test_frustum_contains_the_looked_at_point(cams):
    f = build_frustum(cams[0], 640, 480)
    assert f.contains(np.zeros(3))
    assert not f.contains(cams[0].C * 2.0)


def test_facing_cameras_intersect():
    a = _camera(0, ring_center(0.0))
    b = _camera(1, ring_center(180.0))
    assert frustums_intersect(build_frustum(a, 640, 480), build_frustum(b, 640, 480))


def test_back_to_back_cameras_do_not_intersect():
    a = _camera(0, np.array([1.0, 0.0, 0.0]), target=np.array([10.0, 0.0, 0.0]))
    b = _camera(1, np.array([-1.0, 0.0, 0.0]), target=np.array([-10.0, 0.0, 0.0]))
    fa = build_frustum(a, 640, 480)
    fb = build_frustum(b, 640, 480)
    assert not frustums_intersect(fa, fb)
    assert frustum_intersection_depth(fa, fb) < 0


def test_far_plane_limits_the_frustum():
    a = _camera(0, ring_center(0.0))
    b = _camera(1, ring_center(180.0))
    # both reach only 2 units towards each other across a 20 unit gap
    fa = build_frustum(a, 640, 480, z_far=2.0)
    fb = build_frustum(b, 640, 480, z_far=2.0)
    assert not frustums_intersect(fa, fb)

    with pytest.raises(ValueError):
        build_frustum(a, 640, 480, z_near=3.0, z_far=2.0)
