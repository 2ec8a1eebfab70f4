import json

import numpy as np
import pytest

from data_io.matches_io import GeometricModel, load_pairwise_matches, save_pairwise_matches
from data_io.pointcloud_io import read_ply, write_ply
from data_io.regions_io import load_regions, load_regions_per_view, region_paths, write_regions
from data_io.parsing import load_data
from data_io.scene_io import load_scene, save_scene_outputs, scene_to_dict, valid_views
from kpsfm.errors import ConfigError, InvalidRegionsError, MatchesLoadError, SceneLoadError, SceneSaveError
from kpsfm.features import DescriberType, Regions
from kpsfm.pipeline.config import TriangulationConfig
from kpsfm.pipeline.triangulation import triangulate_tracks

SIFT = DescriberType.SIFT
ORB = DescriberType.ORB


# =========================================================
# Scene
# =========================================================

def test_scene_roundtrip_with_structure(tmp_path, synthetic):
    syn = synthetic
    landmarks, _, _ = triangulate_tracks(syn.scene, syn.regions, syn.all_true_matches(), TriangulationConfig())
    scene = syn.scene.with_landmarks(landmarks)

    out = tmp_path / "out" / "sfm.json"
    written = save_scene_outputs(scene, out)
    assert written == [tmp_path / "out" / "sfm.ply", out]

    doc = json.loads(out.read_text())
    assert len(doc["structure"]) == len(landmarks)
    first = doc["structure"][0]
    assert first["descType"] == "sift"
    assert len(first["observations"]) == len(syn.scene.views)

    loaded = load_scene(out)
    assert set(loaded.views) == set(scene.views)
    assert loaded.valid_views() == scene.valid_views()
    assert len(loaded.landmarks) == 0
    for vid in scene.views:
        a, b = scene.camera(vid), loaded.camera(vid)
        np.testing.assert_allclose(a.R, b.R)
        np.testing.assert_allclose(a.C, b.C)
        np.testing.assert_allclose(a.K, b.K)

    pts, colors = read_ply(tmp_path / "out" / "sfm.ply")
    assert colors is None
    np.testing.assert_allclose(pts, scene.landmark_points())


def test_ply_output_path_writes_only_the_point_cloud(tmp_path, synthetic):
    out = tmp_path / "cloud.ply"
    assert save_scene_outputs(synthetic.scene, out) == [out]
    assert sorted(p.name for p in tmp_path.iterdir()) == ["cloud.ply"]


def test_scene_load_errors(tmp_path):
    with pytest.raises(SceneLoadError):
        load_scene(tmp_path / "missing.json")

    bad = tmp_path / "bad.json"
    bad.write_text("{ not json")
    with pytest.raises(SceneLoadError):
        load_scene(bad)

    wrong = tmp_path / "wrong.json"
    wrong.write_text(json.dumps({"views": [{"viewId": 0}], "intrinsics": [
        {"intrinsicId": 0, "type": "radial3", "pxFocalLength": 500, "principalPoint": [1, 1],
         "distortionParams": [0.1]}
    ]}))
    with pytest.raises(SceneLoadError):
        load_scene(wrong)

    not_object = tmp_path / "list.json"
    not_object.write_text("[]")
    with pytest.raises(SceneLoadError):
        load_scene(not_object)


def test_yaml_scene(tmp_path, synthetic):
    import yaml
    path = tmp_path / "scene.yaml"
    path.write_text(yaml.safe_dump(scene_to_dict(synthetic.scene)))
    loaded = load_scene(path)
    assert loaded.valid_views() == synthetic.scene.valid_views()


def test_scene_accepts_k_matrix_and_marks_missing_pose_invalid(tmp_path):
    path = tmp_path / "k.json"
    path.write_text(json.dumps({
        "views": [{"viewId": 3, "intrinsicId": 1, "poseId": 0}, {"viewId": 4, "intrinsicId": 1}],
        "intrinsics": [{"intrinsicId": 1, "K": [[500, 0, 320], [0, 500, 240], [0, 0, 1]]}],
        "poses": [{"poseId": 0, "pose": {"transform": {
            "rotation": [1, 0, 0, 0, 1, 0, 0, 0, 1], "center": [0, 0, 0]}}}],
    }))
    scene = load_scene(path)
    assert valid_views(scene) == {3}
    assert scene.image_size(3) == (640, 480)


def test_save_error(tmp_path, synthetic):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    with pytest.raises(SceneSaveError):
        save_scene_outputs(synthetic.scene, blocker / "out.json")


# =========================================================
# Regions
# =========================================================

def test_regions_roundtrip(tmp_path, synthetic):
    r = synthetic.regions.get(0, SIFT)
    write_regions(tmp_path, 0, SIFT, r)
    back = load_regions([tmp_path], 0, SIFT)
    np.testing.assert_array_equal(back.kpts_xy, r.kpts_xy)
    np.testing.assert_array_equal(back.desc, r.desc)
    assert back.desc.dtype == np.float32


def test_binary_regions_stay_uint8(tmp_path):
    desc = np.arange(3 * 32, dtype=np.uint8).reshape(3, 32)
    write_regions(tmp_path, 5, ORB, Regions(kpts_xy=np.zeros((3, 2)), desc=desc))
    back = load_regions([tmp_path], 5, ORB)
    assert back.desc.dtype == np.uint8
    np.testing.assert_array_equal(back.desc, desc)


def test_regions_from_the_second_directory(tmp_path, synthetic):
    first, second = tmp_path / "a", tmp_path / "b"
    first.mkdir()
    write_regions(second, 2, SIFT, synthetic.regions.get(2, SIFT))
    back = load_regions([first, second], 2, SIFT)
    assert len(back) == len(synthetic.regions.get(2, SIFT))


def test_missing_or_inconsistent_regions(tmp_path, synthetic):
    with pytest.raises(InvalidRegionsError):
        load_regions([tmp_path], 0, SIFT)

    r = synthetic.regions.get(0, SIFT)
    write_regions(tmp_path, 0, SIFT, r)
    feat, _ = region_paths(tmp_path, 0, SIFT)
    feat.write_text("\n".join(feat.read_text().splitlines()[:-1]) + "\n")
    with pytest.raises(InvalidRegionsError):
        load_regions([tmp_path], 0, SIFT)

    with pytest.raises(InvalidRegionsError):
        load_regions_per_view(synthetic.scene, [tmp_path], [SIFT])


def test_regions_per_view_loads_valid_views(synthetic_files):
    syn = synthetic_files["syn"]
    regions = load_regions_per_view(syn.scene, synthetic_files["features"], [SIFT])
    assert regions.view_ids() == sorted(syn.scene.valid_views())


# =========================================================
# Matches
# =========================================================

def test_matches_roundtrip_and_normalization(tmp_path):
    m01 = np.array([[0, 1], [2, 3]], np.int64)
    m12 = np.array([[4, 5]], np.int64)
    path = save_pairwise_matches({(0, 1): {SIFT: m01}, (1, 2): {SIFT: m12, ORB: m12}}, tmp_path)
    assert path.name == "matches.f.txt"

    (tmp_path / "extra.matches.f.txt").write_text("3 0\n1\nsift 1\n7 8\n")

    loaded = load_pairwise_matches([0, 1, 2, 3], tmp_path, [SIFT])
    assert sorted(loaded) == [(0, 1), (0, 3), (1, 2)]
    np.testing.assert_array_equal(loaded[(0, 1)][SIFT], m01)
    assert ORB not in loaded[(1, 2)]
    # stored as (0, 3): columns swapped
    np.testing.assert_array_equal(loaded[(0, 3)][SIFT], [[8, 7]])


def test_matches_restricted_to_known_views(tmp_path):
    save_pairwise_matches({(0, 1): {SIFT: np.array([[0, 0]])}, (1, 9): {SIFT: np.array([[0, 0]])}}, tmp_path)
    loaded = load_pairwise_matches([0, 1], tmp_path, [SIFT])
    assert list(loaded) == [(0, 1)]


def test_geometric_model_selects_files(tmp_path):
    save_pairwise_matches({(0, 1): {SIFT: np.array([[0, 0]])}}, tmp_path, GeometricModel.ESSENTIAL)
    assert load_pairwise_matches([0, 1], tmp_path, [SIFT], GeometricModel.ESSENTIAL)
    with pytest.raises(MatchesLoadError):
        load_pairwise_matches([0, 1], tmp_path, [SIFT], GeometricModel.FUNDAMENTAL)


def test_malformed_matches(tmp_path):
    (tmp_path / "matches.f.txt").write_text("0 1\n1\nsift 2\n0 0\n")
    with pytest.raises(MatchesLoadError):
        load_pairwise_matches([0, 1], tmp_path, [SIFT])

    (tmp_path / "matches.f.txt").write_text("0 1\n1\nsift two\n")
    with pytest.raises(MatchesLoadError):
        load_pairwise_matches([0, 1], tmp_path, [SIFT])

    with pytest.raises(MatchesLoadError):
        load_pairwise_matches([0, 1], tmp_path / "nope", [SIFT])


def test_geometric_model_from_string():
    assert GeometricModel.from_string("e") is GeometricModel.ESSENTIAL
    assert GeometricModel.from_string("Homography") is GeometricModel.HOMOGRAPHY
    with pytest.raises(ConfigError):
        GeometricModel.from_string("x")


# =========================================================
# Point cloud
# =========================================================

def test_ply_with_colors(tmp_path):
    pts = np.array([[0.1, 0.2, 0.3], [1e-9, -5.0, 7.25]])
    colors = np.array([[255, 0, 10], [1, 2, 3]], np.uint8)
    write_ply(tmp_path / "c.ply", pts, colors)
    p, c = read_ply(tmp_path / "c.ply")
    np.testing.assert_array_equal(p, pts)
    np.testing.assert_array_equal(c, colors)


def test_documents_must_be_json_or_yaml_objects(tmp_path):
    txt = tmp_path / "scene.txt"
    txt.write_text("{}")
    with pytest.raises(ValueError):
        load_data(txt)

    bad_yaml = tmp_path / "bad.yaml"
    bad_yaml.write_text("a: [1, 2\n")
    with pytest.raises(ValueError):
        load_data(bad_yaml)

    with pytest.raises(FileNotFoundError):
        load_data(tmp_path / "missing.json")
