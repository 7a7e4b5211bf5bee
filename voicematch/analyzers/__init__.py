"""
Per-frame analyzers used by the feature extractor.
"""

from voicematch.analyzers.pitch import PitchTrack, PyinPitchTracker, hz_to_semitones
from voicematch.analyzers.phonetic import FrameCues, RuleBasedPhoneticClassifier

__all__ = [
    "PitchTrack",
    "PyinPitchTracker",
    "hz_to_semitones",
    "FrameCues",
    "RuleBasedPhoneticClassifier",
]
