"""
Alignment engine for the VoiceMatch analysis service.

Time-aligns a user FeatureSequence against a reference FeatureSequence
with dynamic time warping restricted to a Sakoe-Chiba band.

Tie-break: when several minimal-cost paths exist, backtracking takes
the predecessor whose normalized position is closest to the diagonal
(the path that best preserves relative pacing); remaining ties prefer
the diagonal step, then the step that advances the reference. This is
the canonical DTW tie-break and makes alignments reproducible.
"""

import math
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from voicematch.analyzers.pitch import hz_to_semitones
from voicematch.core.models import LABEL_DISTANCE, Alignment, FeatureSequence
from voicematch.core.stage import BaseStage
from voicematch.utils.errors import AlignmentError

# Relative tolerance under which two accumulated costs count as tied
TIE_TOLERANCE = 1e-9

# Backtracking order for equally good, equally diagonal predecessors:
# (user step, reference step)
_STEP_PREFERENCE: Tuple[Tuple[int, int], ...] = ((1, 1), (0, 1), (1, 0))


class FrameCostModel:
    """
    Local cost between user and reference frames, in [0, 1].

    ``w_pitch * pitch + w_label * label + w_spectral * spectral`` where
    pitch is the capped semitone distance on voiced pairs (a fixed cost
    when only one side is voiced), label is the unit distance weighted by
    both confidences, and spectral is the normalized MFCC distance.
    """

    def __init__(
        self,
        reference: FeatureSequence,
        user: FeatureSequence,
        pitch_weight: float,
        label_weight: float,
        spectral_weight: float,
        pitch_cap_semitones: float,
        voicing_mismatch_cost: float,
    ):
        self.pitch_weight = pitch_weight
        self.label_weight = label_weight
        self.spectral_weight = spectral_weight
        self.pitch_cap_semitones = pitch_cap_semitones
        self.voicing_mismatch_cost = voicing_mismatch_cost

        self._u_voiced = user.voiced
        self._r_voiced = reference.voiced
        self._u_st = np.nan_to_num(hz_to_semitones(user.f0))
        self._r_st = np.nan_to_num(hz_to_semitones(reference.f0))
        self._u_labels = user.labels
        self._r_labels = reference.labels
        self._u_conf = user.confidence
        self._r_conf = reference.confidence
        self._u_mfcc = user.mfcc
        self._r_mfcc = reference.mfcc
        self._mfcc_scale = math.sqrt(2.0 * max(1, user.mfcc.shape[1]))

    def pairs(self, user_idx: np.ndarray, ref_idx: np.ndarray) -> np.ndarray:
        """Cost of each (user_idx[k], ref_idx[k]) pair."""
        u_voiced = self._u_voiced[user_idx]
        r_voiced = self._r_voiced[ref_idx]
        pitch = np.minimum(
            np.abs(self._u_st[user_idx] - self._r_st[ref_idx]) / self.pitch_cap_semitones,
            1.0,
        )
        pitch = np.where(u_voiced & r_voiced, pitch, 0.0)
        pitch = np.where(u_voiced ^ r_voiced, self.voicing_mismatch_cost, pitch)

        label = LABEL_DISTANCE[self._u_labels[user_idx], self._r_labels[ref_idx]]
        label = label * np.sqrt(self._u_conf[user_idx] * self._r_conf[ref_idx])

        diff = self._u_mfcc[user_idx] - self._r_mfcc[ref_idx]
        spectral = np.minimum(np.sqrt(np.sum(diff ** 2, axis=1)) / self._mfcc_scale, 1.0)

        return (
            self.pitch_weight * pitch
            + self.label_weight * label
            + self.spectral_weight * spectral
        )

    def row(self, i: int, lo: int, hi: int) -> np.ndarray:
        """Costs of user frame ``i`` against reference frames ``lo..hi``."""
        ref_idx = np.arange(lo, hi + 1)
        return self.pairs(np.full(ref_idx.shape[0], i), ref_idx)


class BandedCostMatrix:
    """Accumulated DTW cost stored only inside the band, one slice per row."""

    def __init__(self, n_user: int, n_ref: int):
        self.n_user = n_user
        self.n_ref = n_ref
        self.lo = np.zeros(n_user, dtype=np.int64)
        self.rows: List[np.ndarray] = []

    def get(self, i: int, j: int) -> float:
        if i < 0 or j < 0 or i >= len(self.rows):
            return math.inf
        offset = j - int(self.lo[i])
        row = self.rows[i]
        if offset < 0 or offset >= row.shape[0]:
            return math.inf
        return float(row[offset])

    def slice(self, i: int, lo: int, hi: int) -> np.ndarray:
        """Values of row ``i`` on columns ``lo..hi`` (inf outside the band)."""
        out = np.full(hi - lo + 1, np.inf)
        if i < 0:
            return out
        row_lo = int(self.lo[i])
        row_hi = row_lo + self.rows[i].shape[0] - 1
        a, b = max(lo, row_lo), min(hi, row_hi)
        if a <= b:
            out[a - lo:b - lo + 1] = self.rows[i][a - row_lo:b - row_lo + 1]
        return out


class DTWAligner(BaseStage[Alignment]):
    """
    Band-constrained DTW over the combined frame cost.

    Steps are (1,1), (1,0) and (0,1) with unit weights, so the path
    never skips a frame on either side.
    """

    def __init__(
        self,
        min_frames: int = 3,
        band_ratio: float = 0.15,
        min_band: int = 10,
        pitch_weight: float = 0.35,
        label_weight: float = 0.35,
        spectral_weight: float = 0.30,
        pitch_cap_semitones: float = 12.0,
        voicing_mismatch_cost: float = 0.5,
    ):
        """
        Initialize aligner.

        Args:
            min_frames: Shorter sequences raise AlignmentError
            band_ratio: Band radius as a fraction of the longer sequence
            min_band: Lower bound on the band radius in frames
            pitch_weight: Weight of the pitch term in the frame cost
            label_weight: Weight of the phonetic-label term
            spectral_weight: Weight of the MFCC term
            pitch_cap_semitones: Pitch distance that counts as maximal
            voicing_mismatch_cost: Pitch cost when only one frame is voiced
        """
        super().__init__("aligner", "1.0.0")
        total = pitch_weight + label_weight + spectral_weight
        if total <= 0:
            raise ValueError("Alignment cost weights must not all be zero")
        self.min_frames = min_frames
        self.band_ratio = band_ratio
        self.min_band = min_band
        self.pitch_weight = pitch_weight / total
        self.label_weight = label_weight / total
        self.spectral_weight = spectral_weight / total
        self.pitch_cap_semitones = pitch_cap_semitones
        self.voicing_mismatch_cost = voicing_mismatch_cost

    def align(self, reference: FeatureSequence, user: FeatureSequence) -> Alignment:
        """
        Align ``user`` against ``reference``.

        Raises:
            AlignmentError: Either sequence shorter than min_frames
        """
        return self.run(reference, user)

    def cost_model(self, reference: FeatureSequence, user: FeatureSequence) -> FrameCostModel:
        return FrameCostModel(
            reference,
            user,
            pitch_weight=self.pitch_weight,
            label_weight=self.label_weight,
            spectral_weight=self.spectral_weight,
            pitch_cap_semitones=self.pitch_cap_semitones,
            voicing_mismatch_cost=self.voicing_mismatch_cost,
        )

    def _run_impl(self, reference: FeatureSequence, user: FeatureSequence) -> Alignment:
        n_user, n_ref = len(user), len(reference)
        if n_user < self.min_frames or n_ref < self.min_frames:
            raise AlignmentError(
                f"Recording too short to compare: {n_user} user frames, "
                f"{n_ref} reference frames (minimum {self.min_frames})",
                reference_frames=n_ref,
                user_frames=n_user,
            )
        if reference.params_version != user.params_version:
            raise ValueError("Sequences were extracted with different parameters")

        costs = self.cost_model(reference, user)
        radius = self.band_radius(n_user, n_ref)
        accumulated = accumulate(costs, n_user, n_ref, radius)
        path = backtrack(accumulated)

        alignment = Alignment(
            path=path,
            local_costs=costs.pairs(path[:, 0], path[:, 1]),
            total_cost=accumulated.get(n_user - 1, n_ref - 1),
            user_length=n_user,
            reference_length=n_ref,
            band_radius=radius,
        )
        alignment.validate()
        self.logger.debug(
            f"Aligned {n_user}x{n_ref} frames, band {radius}, "
            f"path {len(alignment)}, cost {alignment.normalized_cost:.4f}"
        )
        return alignment

    def band_radius(self, n_user: int, n_ref: int) -> int:
        """Band radius wide enough that a step path always fits."""
        longer, shorter = max(n_user, n_ref), min(n_user, n_ref)
        return int(max(
            self.min_band,
            math.ceil(round(self.band_ratio * longer, 6)),
            math.ceil(longer / shorter),
        ))


def band_limits(i: int, n_user: int, n_ref: int, radius: int) -> Tuple[int, int]:
    """
    Sakoe-Chiba band of row ``i`` around the length-scaled diagonal.

    Returns the inclusive reference-index range within ``radius`` of
    ``i * (n_ref - 1) / (n_user - 1)``.
    """
    center = i * (n_ref - 1) / (n_user - 1) if n_user > 1 else 0.0
    lo = max(0, int(math.ceil(center - radius)))
    hi = min(n_ref - 1, int(math.floor(center + radius)))
    return lo, hi


def accumulate(costs: FrameCostModel, n_user: int, n_ref: int, radius: int) -> BandedCostMatrix:
    """
    Fill the accumulated cost ``D[i, j] = c(i, j) + min(D[i-1, j-1], D[i-1, j], D[i, j-1])``.

    Within a row the horizontal term unrolls to
    ``D[i, j] = S[j] + min_{k <= j}(B[k] - S[k-1])`` with ``S`` the prefix
    sum of the row's local costs and ``B`` the best vertical/diagonal
    predecessor, so each row is a vectorized running minimum.
    """
    acc = BandedCostMatrix(n_user, n_ref)
    for i in range(n_user):
        lo, hi = band_limits(i, n_user, n_ref, radius)
        local = costs.row(i, lo, hi)

        if i == 0:
            best_prev = np.full(hi - lo + 1, np.inf)
            if lo == 0:
                best_prev[0] = 0.0
        else:
            best_prev = np.minimum(
                acc.slice(i - 1, lo - 1, hi - 1),  # diagonal
                acc.slice(i - 1, lo, hi),  # vertical
            )

        prefix = np.cumsum(local)
        shifted = np.concatenate(([0.0], prefix[:-1]))
        row = prefix + np.minimum.accumulate(best_prev - shifted)

        acc.lo[i] = lo
        acc.rows.append(row)
    return acc


def diagonal_offset(i: int, j: int, n_user: int, n_ref: int) -> float:
    """Distance of (i, j) from the normalized diagonal, in [0, 1]."""
    u = i / (n_user - 1) if n_user > 1 else 0.0
    r = j / (n_ref - 1) if n_ref > 1 else 0.0
    return abs(u - r)


def backtrack(accumulated: BandedCostMatrix) -> np.ndarray:
    """
    Recover the warping path from the accumulated costs.

    Returns:
        np.ndarray: (K, 2) int array of (user_index, reference_index)
            from (0, 0) to the last cell
    """
    n_user, n_ref = accumulated.n_user, accumulated.n_ref
    i, j = n_user - 1, n_ref - 1
    if not math.isfinite(accumulated.get(i, j)):
        raise ValueError("No admissible warping path inside the band")

    path: List[Tuple[int, int]] = [(i, j)]
    while (i, j) != (0, 0):
        candidates = []
        for rank, (di, dj) in enumerate(_STEP_PREFERENCE):
            value = accumulated.get(i - di, j - dj)
            if math.isfinite(value):
                candidates.append((value, rank, i - di, j - dj))
        if not candidates:
            raise ValueError(f"Warping path broken at ({i}, {j})")

        best = min(c[0] for c in candidates)
        tolerance = TIE_TOLERANCE * max(1.0, abs(best))
        tied = [c for c in candidates if c[0] - best <= tolerance]
        _, _, i, j = min(
            tied,
            key=lambda c: (diagonal_offset(c[2], c[3], n_user, n_ref), c[1]),
        )
        path.append((i, j))

    path.reverse()
    return np.asarray(path, dtype=np.int64)


def create_aligner(config: Optional[Dict[str, Any]] = None) -> DTWAligner:
    """
    Factory function to create DTWAligner from the ``alignment`` config section.
    """
    if config is None:
        config = {}

    return DTWAligner(
        min_frames=config.get('min_frames', 3),
        band_ratio=config.get('band_ratio', 0.15),
        min_band=config.get('min_band', 10),
        pitch_weight=config.get('pitch_weight', 0.35),
        label_weight=config.get('label_weight', 0.35),
        spectral_weight=config.get('spectral_weight', 0.30),
        pitch_cap_semitones=config.get('pitch_cap_semitones', 12.0),
        voicing_mismatch_cost=config.get('voicing_mismatch_cost', 0.5),
    )
