"""
data_io/regions_io.py

Per-view feature regions on disk.

For view <id> and describer <d> a features directory holds:
  <id>.<d>.feat   text, one keypoint per line: x y [scale orientation]
  <id>.<d>.desc   binary, little-endian uint64 count, then count*D bytes

Real-valued describers are stored quantised to uint8 and come back as float32.
"""

from __future__ import annotations

import struct
from pathlib import Path
from typing import Dict, Iterable, Optional, Sequence, Tuple, Union

import numpy as np

from kpsfm.errors import InvalidRegionsError
from kpsfm.features import DescriberType, Regions, RegionsPerView
from kpsfm.scene import Scene

_COUNT = struct.Struct("<Q")

PathLike = Union[str, Path]


def region_paths(features_dir: PathLike, view_id: int, describer: DescriberType) -> Tuple[Path, Path]:
    base = Path(features_dir) / f"{view_id}.{describer.value}"
    return base.with_name(base.name + ".feat"), base.with_name(base.name + ".desc")


# -------------------------
# Reading
# -------------------------

def read_feat(path: PathLike) -> np.ndarray:
    """(N,2) float64 keypoint positions; extra columns (scale, orientation) are ignored."""
    rows = []
    for lineno, line in enumerate(Path(path).read_text(encoding="utf-8").splitlines(), start=1):
        parts = line.split()
        if not parts:
            continue
        if len(parts) < 2:
            raise ValueError(f"{path}:{lineno}: expected at least 2 values, got {len(parts)}")
        rows.append((float(parts[0]), float(parts[1])))
    return np.asarray(rows, dtype=np.float64).reshape(-1, 2)


def read_desc(path: PathLike, binary: bool) -> np.ndarray:
    """(N,D) descriptors: uint8 for binary describers, float32 otherwise."""
    raw = Path(path).read_bytes()
    if len(raw) < _COUNT.size:
        raise ValueError(f"{path}: truncated header")
    (count,) = _COUNT.unpack_from(raw, 0)
    payload = raw[_COUNT.size:]
    if count == 0:
        if payload:
            raise ValueError(f"{path}: trailing bytes after an empty descriptor set")
        return np.zeros((0, 0), dtype=np.uint8 if binary else np.float32)
    if len(payload) % count != 0:
        raise ValueError(f"{path}: {len(payload)} bytes do not split into {count} descriptors")

    desc = np.frombuffer(payload, dtype=np.uint8).reshape(count, len(payload) // count)
    if binary:
        return desc.copy()
    return desc.astype(np.float32)


def load_regions(
    features_dirs: Sequence[PathLike],
    view_id: int,
    describer: DescriberType,
) -> Regions:
    """
    Load one view's regions from the first directory that has both files.

    Raises:
        InvalidRegionsError: files missing, unreadable, or inconsistent
    """
    for d in features_dirs:
        feat_path, desc_path = region_paths(d, view_id, describer)
        if not (feat_path.is_file() and desc_path.is_file()):
            continue
        try:
            kpts = read_feat(feat_path)
            desc = read_desc(desc_path, describer.is_binary)
        except (OSError, ValueError) as e:
            raise InvalidRegionsError(f"Invalid regions for view {view_id} ({describer.value}): {e}") from e
        if desc.shape[0] != kpts.shape[0]:
            raise InvalidRegionsError(
                f"Invalid regions for view {view_id} ({describer.value}): "
                f"{kpts.shape[0]} keypoints but {desc.shape[0]} descriptors"
            )
        return Regions(kpts_xy=kpts, desc=desc)

    raise InvalidRegionsError(
        f"Invalid regions: no {describer.value} features for view {view_id} in "
        + ", ".join(str(d) for d in features_dirs)
    )


def load_regions_per_view(
    scene: Scene,
    features_dirs: Union[PathLike, Sequence[PathLike]],
    describers: Iterable[DescriberType],
    view_ids: Optional[Iterable[int]] = None,
    logger=None,
) -> RegionsPerView:
    """
    Load regions of every requested view (default: the scene's valid views)
    for every requested describer. Any failure aborts the whole load.
    """
    if isinstance(features_dirs, (str, Path)):
        features_dirs = [features_dirs]
    features_dirs = list(features_dirs)
    if not features_dirs:
        raise InvalidRegionsError("Invalid regions: no features directory given")

    ids = sorted(scene.valid_views() if view_ids is None else view_ids)
    describers = list(describers)

    data: Dict[int, Dict[DescriberType, Regions]] = {}
    for vid in ids:
        data[vid] = {d: load_regions(features_dirs, vid, d) for d in describers}
        if logger:
            logger.debug(
                f"  view {vid}: " + " ".join(f"{d.value}={len(r)}" for d, r in data[vid].items())
            )
    return RegionsPerView(data)


# -------------------------
# Writing
# -------------------------

def write_regions(
    features_dir: PathLike,
    view_id: int,
    describer: DescriberType,
    regions: Regions,
) -> None:
    """Write one view's regions in the layout load_regions reads."""
    if regions.desc is None:
        raise ValueError("Cannot write regions without descriptors")
    feat_path, desc_path = region_paths(features_dir, view_id, describer)
    feat_path.parent.mkdir(parents=True, exist_ok=True)

    kpts = np.asarray(regions.kpts_xy, np.float64).reshape(-1, 2)
    feat_path.write_text(
        "".join(f"{float(x)!r} {float(y)!r} 1.0 0.0\n" for x, y in kpts),
        encoding="utf-8",
    )

    desc = np.asarray(regions.desc)
    if not describer.is_binary:
        desc = np.clip(np.rint(desc), 0, 255)
    desc = np.ascontiguousarray(desc, dtype=np.uint8)
    desc_path.write_bytes(_COUNT.pack(desc.shape[0]) + desc.tobytes())
