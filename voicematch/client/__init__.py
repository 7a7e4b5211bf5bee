"""
Python client for the VoiceMatch analysis API.
"""

from voicematch.client.session import ApiSession
from voicematch.client.singleflight import SingleFlight
from voicematch.client.client import (
    ApiError,
    TokenRefreshError,
    VoiceMatchClient,
    create_client,
    parse_envelope,
)

__all__ = [
    "ApiSession",
    "SingleFlight",
    "ApiError",
    "TokenRefreshError",
    "VoiceMatchClient",
    "create_client",
    "parse_envelope",
]
