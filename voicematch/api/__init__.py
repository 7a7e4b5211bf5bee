"""
HTTP API for the VoiceMatch analysis service.
"""

from voicematch.api.app import API_PREFIX, create_app

__all__ = ["API_PREFIX", "create_app"]
