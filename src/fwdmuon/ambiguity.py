"""Sibling indices between emitted muon records.

Both indices are self-joins over the complete record set of a batch: pass 1
builds a key -> [muon_id] multimap, pass 2 emits each record's list minus
itself. Record order is preserved inside every sibling tuple.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Sequence

from .models import ForwardTrackType, MuonRecord


def associate_ambiguous_muons(muons: Sequence[MuonRecord]) -> list[tuple[int, ...]]:
    """Records built from the same forward track at other collisions."""
    by_track: dict[int, list[int]] = defaultdict(list)
    for muon in muons:
        by_track[muon.fwdtrack_id].append(muon.muon_id)
    return [
        tuple(mid for mid in by_track[muon.fwdtrack_id] if mid != muon.muon_id)
        for muon in muons
    ]


def associate_same_mft(muons: Sequence[MuonRecord]) -> list[tuple[int, ...]]:
    """Global muons sharing the MFT leg at the same collision.

    Standalone muons have no MFT leg and always get an empty tuple.
    """
    by_mft: dict[int, list[MuonRecord]] = defaultdict(list)
    for muon in muons:
        if muon.track_type == ForwardTrackType.GLOBAL_MUON_TRACK:
            by_mft[muon.mfttrack_id].append(muon)
    out: list[tuple[int, ...]] = []
    for muon in muons:
        if muon.track_type != ForwardTrackType.GLOBAL_MUON_TRACK:
            out.append(())
            continue
        out.append(
            tuple(
                other.muon_id
                for other in by_mft[muon.mfttrack_id]
                if other.muon_id != muon.muon_id and other.collision_id == muon.collision_id
            )
        )
    return out
