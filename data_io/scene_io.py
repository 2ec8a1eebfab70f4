"""
data_io/scene_io.py

Scene description reader/writer.

JSON (or YAML) document with "views", "intrinsics", "poses" and, on output,
"structure". Landmarks present in an input file are ignored.

Usage:
    from data_io.scene_io import load_scene, save_scene_outputs

    scene = load_scene("cameras.json")
    ...
    save_scene_outputs(result_scene, "out/structure.json")   # also writes out/structure.ply
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Mapping, Union

import numpy as np

from kpsfm.errors import SceneLoadError, SceneSaveError
from kpsfm.scene import CAMERA_MODELS, Intrinsics, Landmark, Pose, Scene, View

from .parsing import load_data
from .pointcloud_io import write_ply

SCENE_VERSION = [1, 0, 0]


# -------------------------
# Public API
# -------------------------

def load_scene(path: Union[str, Path]) -> Scene:
    """
    Read views, intrinsics and poses. Structure is not loaded.

    Raises:
        SceneLoadError: file missing, not parseable, or inconsistent
    """
    path = Path(path)
    try:
        obj = load_data(path)
    except (OSError, ValueError) as e:
        raise SceneLoadError(f"The input scene file {str(path)!r} cannot be read: {e}") from e

    try:
        return scene_from_dict(obj)
    except (KeyError, TypeError, ValueError) as e:
        raise SceneLoadError(f"The input scene file {str(path)!r} is malformed: {e}") from e


def valid_views(scene: Scene) -> set:
    """Ids of the views that have both a valid intrinsic and a valid pose."""
    return scene.valid_views()


def save_scene(scene: Scene, path: Union[str, Path]) -> None:
    """
    Write the full scene (views, intrinsics, poses, structure) as JSON.

    Raises:
        SceneSaveError: the file could not be written
    """
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        text = json.dumps(scene_to_dict(scene), indent=2)
        path.write_text(text, encoding="utf-8")
    except (OSError, TypeError, ValueError) as e:
        raise SceneSaveError(f"Error while saving the scene to {str(path)!r}: {e}") from e


def save_point_cloud(scene: Scene, path: Union[str, Path]) -> None:
    """Write the landmark positions as an ASCII PLY point cloud."""
    path = Path(path)
    try:
        write_ply(path, scene.landmark_points())
    except (OSError, ValueError) as e:
        raise SceneSaveError(f"Error while saving the point cloud to {str(path)!r}: {e}") from e


def save_scene_outputs(scene: Scene, path: Union[str, Path]) -> List[Path]:
    """
    Persist the final scene.

    A non-.ply output path also gets a <stem>.ply point cloud next to it.
    A .ply output path only gets the point cloud.

    Returns:
        List of written files, point cloud first.
    """
    path = Path(path)
    written: List[Path] = []
    if path.suffix.lower() == ".ply":
        save_point_cloud(scene, path)
        return [path]

    ply_path = path.with_suffix(".ply")
    save_point_cloud(scene, ply_path)
    written.append(ply_path)

    save_scene(scene, path)
    written.append(path)
    return written


# -------------------------
# Dict conversion
# -------------------------

def scene_from_dict(obj: Mapping[str, Any]) -> Scene:
    views: Dict[int, View] = {}
    for v in obj.get("views", []):
        vid = int(v["viewId"])
        if vid in views:
            raise ValueError(f"Duplicate viewId {vid}")
        views[vid] = View(
            view_id=vid,
            intrinsic_id=_opt_int(v.get("intrinsicId")),
            pose_id=_opt_int(v.get("poseId")),
            width=_opt_int(v.get("width")),
            height=_opt_int(v.get("height")),
            path=str(v.get("path", "")),
        )

    intrinsics: Dict[int, Intrinsics] = {}
    for it in obj.get("intrinsics", []):
        iid = int(it["intrinsicId"])
        intrinsics[iid] = _intrinsics_from_obj(it)

    poses: Dict[int, Pose] = {}
    for p in obj.get("poses", []):
        pid = int(p["poseId"])
        poses[pid] = _pose_from_obj(p)

    return Scene(views=views, intrinsics=intrinsics, poses=poses)


def scene_to_dict(scene: Scene) -> Dict[str, Any]:
    views = []
    for vid in scene.view_ids():
        v = scene.views[vid]
        d: Dict[str, Any] = {"viewId": vid}
        if v.intrinsic_id is not None:
            d["intrinsicId"] = v.intrinsic_id
        if v.pose_id is not None:
            d["poseId"] = v.pose_id
        if v.width is not None:
            d["width"] = v.width
        if v.height is not None:
            d["height"] = v.height
        if v.path:
            d["path"] = v.path
        views.append(d)

    intrinsics = []
    for iid in sorted(scene.intrinsics.keys()):
        it = scene.intrinsics[iid]
        intrinsics.append({
            "intrinsicId": iid,
            "type": it.model,
            "width": it.width,
            "height": it.height,
            "pxFocalLength": [it.fx, it.fy],
            "principalPoint": [it.cx, it.cy],
            "skew": float(it.K[0, 1]),
            "distortionParams": [float(x) for x in np.asarray(it.dist).reshape(-1)],
        })

    poses = []
    for pid in sorted(scene.poses.keys()):
        p = scene.poses[pid]
        poses.append({
            "poseId": pid,
            "pose": {"transform": {
                "rotation": [float(x) for x in np.asarray(p.R, np.float64).reshape(-1)],
                "center": [float(x) for x in np.asarray(p.C, np.float64).reshape(-1)],
            }},
        })

    structure = []
    for lid in sorted(scene.landmarks.keys()):
        structure.append(_landmark_to_obj(lid, scene.landmarks[lid]))

    return {
        "version": SCENE_VERSION,
        "views": views,
        "intrinsics": intrinsics,
        "poses": poses,
        "structure": structure,
    }


# -------------------------
# Domain decoding helpers (private)
# -------------------------

def _opt_int(x: Any):
    return None if x is None else int(x)


def _intrinsics_from_obj(it: Mapping[str, Any]) -> Intrinsics:
    """
    Intrinsics from:
      - {"K": 3x3}
      - {"fx", "fy", "cx", "cy"}
      - {"pxFocalLength": f or [fx, fy], "principalPoint": [cx, cy], "skew"?}
    """
    model = str(it.get("type", "pinhole")).lower()
    if model not in CAMERA_MODELS:
        raise ValueError(f"Unknown camera model {model!r}. Use one of {', '.join(CAMERA_MODELS)}")

    if "K" in it:
        K = _as_3x3(it["K"])
    elif all(k in it for k in ("fx", "fy", "cx", "cy")):
        K = np.array([[float(it["fx"]), 0.0, float(it["cx"])],
                      [0.0, float(it["fy"]), float(it["cy"])],
                      [0.0, 0.0, 1.0]], dtype=np.float64)
    else:
        f = np.asarray(it["pxFocalLength"], dtype=np.float64).reshape(-1)
        fx, fy = (float(f[0]), float(f[0])) if f.size == 1 else (float(f[0]), float(f[1]))
        cx, cy = (float(x) for x in it["principalPoint"])
        s = float(it.get("skew", 0.0))
        K = np.array([[fx, s, cx],
                      [0.0, fy, cy],
                      [0.0, 0.0, 1.0]], dtype=np.float64)

    dist = np.asarray(it.get("distortionParams", []), dtype=np.float64).reshape(-1)
    n_expected = CAMERA_MODELS[model]
    if dist.size not in (0, n_expected):
        raise ValueError(f"Camera model {model!r} expects {n_expected} distortion params, got {dist.size}")

    return Intrinsics(
        model=model,
        width=int(it.get("width", 0)),
        height=int(it.get("height", 0)),
        K=K,
        dist=dist,
    )


def _pose_from_obj(p: Mapping[str, Any]) -> Pose:
    tr = p["pose"]["transform"]
    R = np.asarray(tr["rotation"], dtype=np.float64).reshape(3, 3)
    C = np.asarray(tr["center"], dtype=np.float64).reshape(3)
    return Pose(R=R, C=C)


def _landmark_to_obj(lid: int, lm: Landmark) -> Dict[str, Any]:
    obs = []
    for vid in lm.view_ids:
        o = lm.observations[vid]
        obs.append({
            "observationId": vid,
            "featureId": int(o.feature_id),
            "x": [float(v) for v in np.asarray(o.x).reshape(-1)],
        })
    return {
        "landmarkId": lid,
        "descType": lm.describer,
        "X": [float(v) for v in np.asarray(lm.X).reshape(-1)],
        "observations": obs,
    }


def _as_3x3(x: Any) -> np.ndarray:
    arr = np.array(x, dtype=np.float64)
    if arr.size != 9:
        raise ValueError(f"Expected 9 values for 3x3, got {arr.size}")
    return arr.reshape(3, 3)
