"""
Core data models for the VoiceMatch analysis service.

Immutable domain models for decoded audio, per-frame features, the
warping path between two utterances, and the final comparison result.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

import numpy as np

# Fixed inventory of coarse acoustic units. Order matters: it is the
# row/column order of LABEL_DISTANCE and of the classifier's memberships.
PHONETIC_UNITS: Tuple[str, ...] = (
    "silence",
    "vowel",
    "sonorant",
    "voiced_fricative",
    "fricative",
    "burst",
)

# Mismatch cost between units (0 = same unit, 1 = unrelated).
LABEL_DISTANCE = np.array([
    # sil   vow   son   vfr   fri   bur
    [0.00, 1.00, 1.00, 1.00, 0.80, 0.70],  # silence
    [1.00, 0.00, 0.40, 0.80, 1.00, 1.00],  # vowel
    [1.00, 0.40, 0.00, 0.60, 1.00, 0.90],  # sonorant
    [1.00, 0.80, 0.60, 0.00, 0.40, 0.70],  # voiced_fricative
    [0.80, 1.00, 1.00, 0.40, 0.00, 0.50],  # fricative
    [0.70, 1.00, 0.90, 0.70, 0.50, 0.00],  # burst
])


@dataclass(frozen=True)
class AudioSignal:
    """
    Canonical decoded form of one utterance.

    Mono float32 samples in [-1, 1] at the fixed internal sample rate.
    """

    samples: np.ndarray = field(repr=False)
    sample_rate: int
    duration: float  # seconds, after trimming
    source_hash: str  # SHA-256 of the raw bytes

    # Original stream properties
    original_sample_rate: int = 0
    original_channels: int = 1
    original_format: str = ""
    trimmed: float = 0.0  # seconds of leading/trailing silence removed

    @property
    def num_samples(self) -> int:
        return int(self.samples.shape[0])

    @property
    def peak(self) -> float:
        if self.samples.size == 0:
            return 0.0
        return float(np.max(np.abs(self.samples)))


@dataclass(frozen=True)
class Frame:
    """One time-stamped analysis frame."""

    index: int
    time: float  # seconds
    f0: Optional[float]  # Hz, None when unvoiced
    energy: float  # RMS
    energy_db: float
    label: str
    confidence: float  # [0.0, 1.0]

    @property
    def voiced(self) -> bool:
        return self.f0 is not None


@dataclass(frozen=True)
class FeatureSequence:
    """
    Time-aligned per-frame features derived from one AudioSignal.

    Columns are stored as arrays of equal length; ``f0`` holds NaN for
    unvoiced frames and ``labels`` holds indices into PHONETIC_UNITS.
    """

    f0: np.ndarray = field(repr=False)  # (n_frames,) Hz or NaN
    energy: np.ndarray = field(repr=False)  # (n_frames,) RMS
    energy_db: np.ndarray = field(repr=False)  # (n_frames,) dBFS
    labels: np.ndarray = field(repr=False)  # (n_frames,) int
    confidence: np.ndarray = field(repr=False)  # (n_frames,) [0, 1]
    mfcc: np.ndarray = field(repr=False)  # (n_frames, n_mfcc), normalized
    hop_seconds: float
    window_seconds: float
    params_version: str

    def __post_init__(self) -> None:
        n = self.f0.shape[0]
        for name in ("energy", "energy_db", "labels", "confidence"):
            if getattr(self, name).shape[0] != n:
                raise ValueError(f"FeatureSequence column '{name}' has wrong length")
        if self.mfcc.shape[0] != n:
            raise ValueError("FeatureSequence column 'mfcc' has wrong length")

    def __len__(self) -> int:
        return int(self.f0.shape[0])

    @property
    def voiced(self) -> np.ndarray:
        """Boolean mask of voiced frames."""
        return ~np.isnan(self.f0)

    @property
    def voiced_ratio(self) -> float:
        if len(self) == 0:
            return 0.0
        return float(np.mean(self.voiced))

    @property
    def times(self) -> np.ndarray:
        return np.arange(len(self)) * self.hop_seconds

    @property
    def label_names(self) -> List[str]:
        return [PHONETIC_UNITS[i] for i in self.labels]

    def frame(self, index: int) -> Frame:
        f0 = self.f0[index]
        return Frame(
            index=index,
            time=index * self.hop_seconds,
            f0=None if np.isnan(f0) else float(f0),
            energy=float(self.energy[index]),
            energy_db=float(self.energy_db[index]),
            label=PHONETIC_UNITS[int(self.labels[index])],
            confidence=float(self.confidence[index]),
        )

    def frames(self) -> Iterator[Frame]:
        for i in range(len(self)):
            yield self.frame(i)


@dataclass(frozen=True)
class Alignment:
    """
    Warping path between a user and a reference FeatureSequence.

    ``path`` rows are (user_index, reference_index) pairs.
    """

    path: np.ndarray = field(repr=False)  # (K, 2) int
    local_costs: np.ndarray = field(repr=False)  # (K,)
    total_cost: float
    user_length: int
    reference_length: int
    band_radius: int

    @property
    def normalized_cost(self) -> float:
        return self.total_cost / max(1, len(self))

    def __len__(self) -> int:
        return int(self.path.shape[0])

    @property
    def user_indices(self) -> np.ndarray:
        return self.path[:, 0]

    @property
    def reference_indices(self) -> np.ndarray:
        return self.path[:, 1]

    def validate(self) -> None:
        """
        Check the path invariants.

        Raises:
            ValueError: If the path is not pinned, not monotonic, or skips frames
        """
        if len(self) == 0:
            raise ValueError("Alignment path is empty")
        if tuple(self.path[0]) != (0, 0):
            raise ValueError(f"Path must start at (0, 0), got {tuple(self.path[0])}")
        end = (self.user_length - 1, self.reference_length - 1)
        if tuple(self.path[-1]) != end:
            raise ValueError(f"Path must end at {end}, got {tuple(self.path[-1])}")
        steps = np.diff(self.path, axis=0)
        if np.any(steps < 0):
            raise ValueError("Path indices must be non-decreasing")
        if np.any(steps > 1):
            raise ValueError("Path must not skip frames")
        if np.any(steps.sum(axis=1) == 0):
            raise ValueError("Path must advance at every step")


@dataclass(frozen=True)
class DimensionScore:
    """Score and feedback for one comparison dimension."""

    score: float  # [0.0, 1.0]
    feedback: str
    insufficient: bool = False  # neutral fallback was used

    def __post_init__(self) -> None:
        validate_score(self.score)

    def to_dict(self) -> Dict[str, Any]:
        return {'score': self.score, 'feedback': self.feedback}


@dataclass(frozen=True)
class AnalysisResult:
    """Complete comparison result for one user recording."""

    original_clip_id: str
    user_clip_id: str
    similarity_score: float  # [0.0, 1.0]
    feedback: str
    pitch: DimensionScore
    rhythm: DimensionScore
    pronunciation: DimensionScore
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        validate_score(self.similarity_score)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the wire ``data`` object."""
        return {
            'originalClipId': self.original_clip_id,
            'userClipId': self.user_clip_id,
            'similarityScore': self.similarity_score,
            'feedback': self.feedback,
            'analysisDetails': {
                'pitch': self.pitch.to_dict(),
                'rhythm': self.rhythm.to_dict(),
                'pronunciation': self.pronunciation.to_dict(),
            },
        }

    def to_record(self) -> Dict[str, Any]:
        """Wire object plus metadata, for history storage."""
        record = self.to_dict()
        record['metadata'] = self.metadata
        return record

    def to_json(self, indent: Optional[int] = 2) -> str:
        """Export as JSON string."""
        return json.dumps(self.to_dict(), indent=indent, default=str)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisResult":
        """Parse the wire ``data`` object (used by the client)."""
        details = data.get('analysisDetails') or {}

        def dim(name: str) -> DimensionScore:
            entry = details.get(name) or {}
            return DimensionScore(
                score=float(entry.get('score', 0.0)),
                feedback=str(entry.get('feedback', '')),
            )

        return cls(
            original_clip_id=str(data['originalClipId']),
            user_clip_id=str(data.get('userClipId', '')),
            similarity_score=float(data.get('similarityScore', 0.0)),
            feedback=str(data.get('feedback', '')),
            pitch=dim('pitch'),
            rhythm=dim('rhythm'),
            pronunciation=dim('pronunciation'),
        )

    def get_summary(self) -> str:
        """Get human-readable summary."""
        return (
            f"Similarity: {self.similarity_score:.0%} | "
            f"Pitch: {self.pitch.score:.0%} | "
            f"Rhythm: {self.rhythm.score:.0%} | "
            f"Pronunciation: {self.pronunciation.score:.0%}"
        )


def validate_score(score: float) -> None:
    """Validate score is in valid range."""
    if not (0.0 <= score <= 1.0):
        raise ValueError(f"Score must be in [0.0, 1.0], got {score}")
