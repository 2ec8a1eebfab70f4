from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Mapping, Set, Tuple

import numpy as np

from kpsfm.features import DescriberType

Key = Tuple[int, int]  # (view_id, feature_index)


@dataclass
class Track:
    """A multi-view track: mapping view_id -> feature index."""
    describer: DescriberType
    obs: Dict[int, int]


@dataclass
class TrackStats:
    nodes: int = 0
    components: int = 0
    tracks_kept: int = 0
    refused_unions: int = 0


class UnionFind:
    def __init__(self, n: int):
        self.parent = np.arange(n, dtype=np.int64)
        self.rank = np.zeros(n, dtype=np.int64)

    def find(self, a: int) -> int:
        while self.parent[a] != a:
            self.parent[a] = self.parent[self.parent[a]]
            a = self.parent[a]
        return int(a)

    def union(self, a: int, b: int) -> int:
        """Merge the sets of a and b; returns the new root."""
        ra, rb = self.find(a), self.find(b)
        if ra == rb:
            return ra
        if self.rank[ra] < self.rank[rb]:
            self.parent[ra] = rb
            return rb
        if self.rank[ra] > self.rank[rb]:
            self.parent[rb] = ra
            return ra
        self.parent[rb] = ra
        self.rank[ra] += 1
        return ra


class KeyedUnionFind:
    """
    Disjoint set over (view_id, feature_index) keys.

    Unions that would put two features of the same view into one set are
    refused, so every set holds at most one feature per view.
    """

    def __init__(self, keys: List[Key]):
        self.keys = list(keys)
        self.index: Dict[Key, int] = {k: i for i, k in enumerate(self.keys)}
        self.uf = UnionFind(len(self.keys))
        # root -> views present in that set
        self.views: Dict[int, Set[int]] = {i: {k[0]} for i, k in enumerate(self.keys)}

    def union(self, a: Key, b: Key) -> bool:
        ra = self.uf.find(self.index[a])
        rb = self.uf.find(self.index[b])
        if ra == rb:
            return True
        if self.views[ra] & self.views[rb]:
            return False
        rnew = self.uf.union(ra, rb)
        rold = rb if rnew == ra else ra
        self.views[rnew] = self.views[ra] | self.views[rb]
        self.views.pop(rold, None)
        return True

    def components(self) -> Dict[int, List[Key]]:
        comp: Dict[int, List[Key]] = {}
        for i, k in enumerate(self.keys):
            comp.setdefault(self.uf.find(i), []).append(k)
        return comp


def build_tracks(
    pairwise_matches: Mapping[Tuple[int, int], Mapping[DescriberType, np.ndarray]],
    min_track_len: int = 2,
) -> Tuple[List[Track], TrackStats]:
    """
    Build tracks across views with a union-find over (view_id, feature) nodes,
    one forest per describer type.

    Pairs are merged in sorted order so the result only depends on the
    matches, not on dict ordering. Tracks come out sorted by their smallest
    (view, feature) key.

    A union that would put two features of one view in the same track is
    refused and counted in stats.refused_unions. The edge merged first
    wins, so which of the conflicting features a track keeps depends on the
    sorted pair order; the tracks are kept rather than deleted whole.
    """
    stats = TrackStats()
    tracks: List[Track] = []

    describers = sorted(
        {d for per in pairwise_matches.values() for d in per},
        key=lambda d: d.value,
    )
    pairs = sorted(pairwise_matches.keys())

    for describer in describers:
        # collect nodes in a deterministic order
        seen: Dict[Key, None] = {}
        edges: List[Tuple[Key, Key]] = []
        for (i, j) in pairs:
            m = pairwise_matches[(i, j)].get(describer)
            if m is None or len(m) == 0:
                continue
            for a, b in np.asarray(m, dtype=np.int64).reshape(-1, 2):
                ka, kb = (i, int(a)), (j, int(b))
                seen.setdefault(ka, None)
                seen.setdefault(kb, None)
                edges.append((ka, kb))

        if not edges:
            continue

        uf = KeyedUnionFind(list(seen.keys()))
        for ka, kb in edges:
            if not uf.union(ka, kb):
                stats.refused_unions += 1

        comps = uf.components()
        stats.nodes += len(uf.keys)
        stats.components += len(comps)

        per_desc: List[Track] = []
        for nodes in comps.values():
            obs = {view: feat for view, feat in sorted(nodes)}
            if len(obs) >= min_track_len:
                per_desc.append(Track(describer=describer, obs=obs))
        per_desc.sort(key=lambda tr: min(tr.obs.items()))
        tracks.extend(per_desc)

    stats.tracks_kept = len(tracks)
    return tracks, stats
