"""
data_io/matches_io.py

Pre-computed pairwise matches.

Files <matches_dir>/*matches.<model>.txt, <model> one of f, e, h.
Each file is a sequence of blocks:

    <I> <J>
    <number of describer types>
    <describer> <number of matches>
    <feature index in I> <feature index in J>
    ...
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Collection, Dict, Iterable, List, Tuple, Union

import numpy as np

from kpsfm.errors import ConfigError, MatchesLoadError
from kpsfm.features import DescriberType

PairwiseMatches = Dict[Tuple[int, int], Dict[DescriberType, np.ndarray]]


class GeometricModel(Enum):
    FUNDAMENTAL = "f"
    ESSENTIAL = "e"
    HOMOGRAPHY = "h"

    @classmethod
    def from_string(cls, name: str) -> "GeometricModel":
        key = name.strip().lower()
        for m in cls:
            if key in (m.value, m.name.lower()):
                return m
        raise ConfigError(f"Unknown geometric model: {name!r}. Use f, e or h")


def matches_files(matches_dir: Union[str, Path], model: GeometricModel) -> List[Path]:
    return sorted(p for p in Path(matches_dir).glob(f"*matches.{model.value}.txt") if p.is_file())


def _parse_matches_text(text: str, source: str) -> List[Tuple[int, int, DescriberType, np.ndarray]]:
    tokens = text.split()
    pos = 0

    def take(n: int) -> List[str]:
        nonlocal pos
        if pos + n > len(tokens):
            raise MatchesLoadError(f"{source}: unexpected end of file")
        out = tokens[pos:pos + n]
        pos += n
        return out

    blocks = []
    while pos < len(tokens):
        try:
            i, j = (int(x) for x in take(2))
            n_desc = int(take(1)[0])
            for _ in range(n_desc):
                name, n_str = take(2)
                describer = DescriberType.from_string(name)
                n = int(n_str)
                if n < 0:
                    raise ValueError(f"negative match count {n}")
                m = np.asarray([int(x) for x in take(2 * n)], dtype=np.int64).reshape(n, 2)
                blocks.append((i, j, describer, m))
        except ValueError as e:
            raise MatchesLoadError(f"{source}: malformed matches ({e})") from e
    return blocks


def load_pairwise_matches(
    view_ids: Collection[int],
    matches_dir: Union[str, Path],
    describers: Iterable[DescriberType],
    model: GeometricModel = GeometricModel.FUNDAMENTAL,
    logger=None,
) -> PairwiseMatches:
    """
    Load matches for the given views and describers.

    Pairs are stored as (a, b) with a < b; feature columns follow.
    Matches of the same pair/describer found in several files are concatenated.

    Raises:
        MatchesLoadError: no matches file, unreadable or malformed content
    """
    matches_dir = Path(matches_dir)
    if not matches_dir.is_dir():
        raise MatchesLoadError(f"Matches directory not found: {matches_dir}")

    files = matches_files(matches_dir, model)
    if not files:
        raise MatchesLoadError(f"No '*matches.{model.value}.txt' file in {matches_dir}")

    views = set(view_ids)
    wanted = set(describers)
    out: PairwiseMatches = {}

    for path in files:
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise MatchesLoadError(f"Unable to read the matches file {path}: {e}") from e

        for i, j, describer, m in _parse_matches_text(text, str(path)):
            if i == j or i not in views or j not in views or describer not in wanted:
                continue
            if i > j:
                i, j = j, i
                m = m[:, ::-1]
            per = out.setdefault((i, j), {})
            if describer in per:
                per[describer] = np.vstack([per[describer], m])
            else:
                per[describer] = np.ascontiguousarray(m)

        if logger:
            logger.debug(f"  loaded {path.name}")

    return out


def save_pairwise_matches(
    matches: PairwiseMatches,
    matches_dir: Union[str, Path],
    model: GeometricModel = GeometricModel.FUNDAMENTAL,
    filename: str = "matches",
) -> Path:
    """Write all matches to <matches_dir>/<filename>.<model>.txt."""
    if not filename.endswith("matches"):
        raise ValueError(f"filename must end with 'matches', got {filename!r}")
    path = Path(matches_dir) / f"{filename}.{model.value}.txt"
    path.parent.mkdir(parents=True, exist_ok=True)

    lines: List[str] = []
    for (i, j) in sorted(matches.keys()):
        per = matches[(i, j)]
        lines.append(f"{i} {j}")
        lines.append(str(len(per)))
        for describer in sorted(per.keys(), key=lambda d: d.value):
            m = np.asarray(per[describer], dtype=np.int64).reshape(-1, 2)
            lines.append(f"{describer.value} {len(m)}")
            lines.extend(f"{a} {b}" for a, b in m)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path
