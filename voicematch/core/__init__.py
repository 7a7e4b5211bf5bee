"""
Core module containing data models, pipeline stages, and analysis engine.

Uses lazy imports for modules with heavy dependencies (librosa).
"""

# Models are lightweight - import directly
from voicematch.core.models import (
    PHONETIC_UNITS,
    LABEL_DISTANCE,
    AudioSignal,
    Frame,
    FeatureSequence,
    Alignment,
    DimensionScore,
    AnalysisResult,
    validate_score,
)

__all__ = [
    # Models (always available)
    "PHONETIC_UNITS",
    "LABEL_DISTANCE",
    "AudioSignal",
    "Frame",
    "FeatureSequence",
    "Alignment",
    "DimensionScore",
    "AnalysisResult",
    "validate_score",
    # Heavy modules (lazy loaded)
    "AudioDecoder",
    "create_audio_decoder",
    "FeatureExtractor",
    "create_feature_extractor",
    "DTWAligner",
    "create_aligner",
    "Scorer",
    "create_scorer",
    "ReferenceFeatureCache",
    "create_feature_cache",
    "VoiceAnalysisEngine",
    "create_analysis_engine",
]


def __getattr__(name: str):
    """Lazy load modules with heavy dependencies."""
    if name in ("AudioDecoder", "create_audio_decoder"):
        from voicematch.core.decoder import AudioDecoder, create_audio_decoder
        return AudioDecoder if name == "AudioDecoder" else create_audio_decoder
    elif name in ("FeatureExtractor", "create_feature_extractor"):
        from voicematch.core.features import FeatureExtractor, create_feature_extractor
        return FeatureExtractor if name == "FeatureExtractor" else create_feature_extractor
    elif name in ("DTWAligner", "create_aligner"):
        from voicematch.core.alignment import DTWAligner, create_aligner
        return DTWAligner if name == "DTWAligner" else create_aligner
    elif name in ("Scorer", "create_scorer"):
        from voicematch.core.scorer import Scorer, create_scorer
        return Scorer if name == "Scorer" else create_scorer
    elif name in ("ReferenceFeatureCache", "create_feature_cache"):
        from voicematch.core.cache import ReferenceFeatureCache, create_feature_cache
        return ReferenceFeatureCache if name == "ReferenceFeatureCache" else create_feature_cache
    elif name in ("VoiceAnalysisEngine", "create_analysis_engine"):
        from voicematch.core.engine import VoiceAnalysisEngine, create_analysis_engine
        return VoiceAnalysisEngine if name == "VoiceAnalysisEngine" else create_analysis_engine
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
