"""
VoiceMatch voice-comparison analysis service.

Compares a learner's recorded utterance against a reference clip and
scores pitch, rhythm and pronunciation similarity using librosa
features and band-constrained dynamic time warping.
"""

__version__ = "1.0.0"
__author__ = "VoiceMatch Team"
