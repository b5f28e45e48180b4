"""Public package exports for the forward-muon skimmer."""

from .ambiguity import associate_ambiguous_muons, associate_same_mft
from .calibration import CalibrationContext, CalibrationError, Geometry, JsonCalibrationStore
from .field import FieldMap
from .models import (
    Collision,
    EventBatch,
    ForwardTrackType,
    FwdTrack,
    FwdTrackState,
    MFTTrack,
    MuonCuts,
    MuonRecord,
    MuonRecordCovariance,
    ProcessMode,
    SelectionStatus,
    SkimmerConfig,
    SkimResult,
    TrackAssociation,
)
from .propagation import MuonPropagator, PropagationPoint
from .selection import GlobalMuonCandidate, MuonSelector, StandaloneMuonCandidate, classify_candidate
from .skimmer import PrimaryMuonSkimmer

__all__ = [
    "PrimaryMuonSkimmer",
    "MuonSelector",
    "MuonPropagator",
    "PropagationPoint",
    "CalibrationContext",
    "CalibrationError",
    "JsonCalibrationStore",
    "Geometry",
    "FieldMap",
    "FwdTrack",
    "FwdTrackState",
    "MFTTrack",
    "Collision",
    "TrackAssociation",
    "EventBatch",
    "ForwardTrackType",
    "ProcessMode",
    "SelectionStatus",
    "MuonCuts",
    "SkimmerConfig",
    "MuonRecord",
    "MuonRecordCovariance",
    "SkimResult",
    "GlobalMuonCandidate",
    "StandaloneMuonCandidate",
    "classify_candidate",
    "associate_ambiguous_muons",
    "associate_same_mft",
]
