"""
Utility modules for configuration, logging, and error handling.
"""

from voicematch.utils.errors import (
    VoiceMatchError,
    ValidationError,
    ClipNotFoundError,
    AudioError,
    DecodeError,
    FormatError,
    SizeExceeded,
    DurationExceeded,
    AlignmentError,
    ProcessingTimeout,
    AnalysisCancelled,
    ServerError,
    ConfigurationError,
)
from voicematch.utils.logging import get_logger, setup_logging, JSONFormatter
from voicematch.utils.config import ConfigManager, load_config, get_default_config

__all__ = [
    "VoiceMatchError",
    "ValidationError",
    "ClipNotFoundError",
    "AudioError",
    "DecodeError",
    "FormatError",
    "SizeExceeded",
    "DurationExceeded",
    "AlignmentError",
    "ProcessingTimeout",
    "AnalysisCancelled",
    "ServerError",
    "ConfigurationError",
    "get_logger",
    "setup_logging",
    "JSONFormatter",
    "ConfigManager",
    "load_config",
    "get_default_config",
]
