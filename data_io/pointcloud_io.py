from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Tuple, Union

import numpy as np


def write_ply(
    path: Union[str, Path],
    points: np.ndarray,
    colors: Optional[np.ndarray] = None,
) -> None:
    """
    Write a point cloud to an ASCII PLY file.

    Args:
        path: output file path
        points: (N, 3) float array
        colors: (N, 3) uint8 array in RGB [0,255], optional
    """
    path = Path(path)
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)

    header: List[str] = [
        "ply",
        "format ascii 1.0",
        "comment landmarks from kpsfm",
        f"element vertex {points.shape[0]}",
        "property double x",
        "property double y",
        "property double z",
    ]
    if colors is not None:
        colors = np.asarray(colors, dtype=np.uint8)
        if colors.shape != (points.shape[0], 3):
            raise ValueError(f"colors must have shape (N,3), got {colors.shape}")
        header += ["property uchar red", "property uchar green", "property uchar blue"]
    header.append("end_header")

    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        f.write("\n".join(header) + "\n")
        for k, p in enumerate(points):
            line = f"{float(p[0])!r} {float(p[1])!r} {float(p[2])!r}"
            if colors is not None:
                c = colors[k]
                line += f" {int(c[0])} {int(c[1])} {int(c[2])}"
            f.write(line + "\n")


def read_ply(
    path: Union[str, Path],
) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    """
    Read an ASCII PLY point cloud written by write_ply (or any simple one).

    Returns:
      points: (N,3) float64
      colors: (N,3) uint8 in RGB, or None if not present
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"PLY not found: {path}")

    lines = path.read_text(encoding="utf-8").splitlines()
    if not lines or lines[0].strip() != "ply":
        raise ValueError("Not a PLY file (missing 'ply' header).")

    vertex_count = None
    props: List[str] = []
    in_vertex = False
    body_start = None
    for k, line in enumerate(lines[1:], start=1):
        parts = line.split()
        if not parts:
            continue
        if parts[0] == "format" and parts[1] != "ascii":
            raise ValueError(f"Only ASCII PLY supported, got: {parts[1]}")
        if parts[0] == "element":
            in_vertex = parts[1] == "vertex"
            if in_vertex:
                vertex_count = int(parts[2])
        elif parts[0] == "property" and in_vertex:
            props.append(parts[-1])
        elif parts[0] == "end_header":
            body_start = k + 1
            break

    if vertex_count is None or body_start is None:
        raise ValueError("PLY file has no vertex element.")

    rows = [line.split() for line in lines[body_start:body_start + vertex_count]]
    if len(rows) < vertex_count:
        raise ValueError("Unexpected EOF while reading PLY vertices.")
    if any(len(r) < len(props) for r in rows):
        raise ValueError("Vertex line has too few fields.")

    data = np.asarray([r[:len(props)] for r in rows], dtype=np.float64).reshape(vertex_count, len(props))
    points = data[:, [props.index("x"), props.index("y"), props.index("z")]]

    colors = None
    if all(p in props for p in ("red", "green", "blue")):
        idx = [props.index("red"), props.index("green"), props.index("blue")]
        colors = data[:, idx].astype(np.uint8)
    return points, colors
