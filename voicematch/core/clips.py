"""
Reference clip storage for the VoiceMatch analysis service.

The engine resolves an ``originalClipId`` to the reference recording
through a ClipStore. Clip CRUD lives elsewhere; these stores only read.
"""

import logging
import re
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, runtime_checkable

from voicematch.core.media import content_type_for
from voicematch.utils.errors import ClipNotFoundError, ConfigurationError, ValidationError

CLIP_ID_PATTERN = re.compile(r'^[A-Za-z0-9_.\-]{1,128}$')
CLIP_EXTENSIONS = ('wav', 'mp3', 'm4a', 'mp4')


@dataclass(frozen=True)
class ReferenceClip:
    """A stored reference recording."""

    clip_id: str
    data: bytes = field(repr=False)
    filename: str
    content_type: str


@runtime_checkable
class ClipStore(Protocol):
    """Read-only lookup of reference clips."""

    def fetch(self, clip_id: str) -> ReferenceClip:
        """
        Raises:
            ClipNotFoundError: No clip with this id
        """
        ...


def validate_clip_id(clip_id: Any) -> str:
    """
    Check a clip id before it is used as a lookup key.

    Raises:
        ValidationError: Empty, too long, or containing characters
            outside letters, digits, '_', '.', '-'
    """
    if not isinstance(clip_id, str) or not clip_id.strip():
        raise ValidationError("originalClipId is required", field='originalClipId')
    clip_id = clip_id.strip()
    if not CLIP_ID_PATTERN.match(clip_id) or clip_id in ('.', '..'):
        raise ValidationError(
            "originalClipId may only contain letters, digits, '_', '.' and '-' "
            "(at most 128 characters)",
            field='originalClipId'
        )
    return clip_id


class LocalClipStore:
    """
    Directory of ``<clip_id>.<ext>`` files.

    Extensions are tried in CLIP_EXTENSIONS order, so a clip stored as
    both WAV and MP3 resolves to the WAV file.
    """

    def __init__(self, directory: Path, extensions: Iterable[str] = CLIP_EXTENSIONS):
        self.directory = Path(directory)
        self.extensions = tuple(extensions)
        self.logger = logging.getLogger("clips")

    def fetch(self, clip_id: str) -> ReferenceClip:
        clip_id = validate_clip_id(clip_id)
        for ext in self.extensions:
            path = self.directory / f"{clip_id}.{ext}"
            if path.is_file():
                self.logger.debug(f"Resolved clip {clip_id} to {path}")
                return ReferenceClip(
                    clip_id=clip_id,
                    data=path.read_bytes(),
                    filename=path.name,
                    content_type=content_type_for(path.name),
                )
        raise ClipNotFoundError(clip_id)

    def list_clips(self) -> List[str]:
        """Ids of all clips in the directory."""
        if not self.directory.is_dir():
            return []
        ids = {
            p.stem for p in self.directory.iterdir()
            if p.is_file() and p.suffix.lower().lstrip('.') in self.extensions
        }
        return sorted(ids)


class InMemoryClipStore:
    """Clip store backed by a dict, for tests and embedding."""

    def __init__(self, clips: Optional[Dict[str, ReferenceClip]] = None):
        self._clips: Dict[str, ReferenceClip] = dict(clips or {})
        self._lock = threading.Lock()

    def add(self, clip_id: str, data: bytes, filename: str,
            content_type: Optional[str] = None) -> ReferenceClip:
        clip = ReferenceClip(
            clip_id=validate_clip_id(clip_id),
            data=data,
            filename=filename,
            content_type=content_type or content_type_for(filename),
        )
        with self._lock:
            self._clips[clip.clip_id] = clip
        return clip

    def fetch(self, clip_id: str) -> ReferenceClip:
        clip_id = validate_clip_id(clip_id)
        with self._lock:
            clip = self._clips.get(clip_id)
        if clip is None:
            raise ClipNotFoundError(clip_id)
        return clip

    def list_clips(self) -> List[str]:
        with self._lock:
            return sorted(self._clips)


def create_clip_store(config: Optional[Dict[str, Any]] = None) -> ClipStore:
    """
    Factory function to create a ClipStore from the ``clips`` config section.

    Raises:
        ConfigurationError: Unknown backend
    """
    if config is None:
        config = {}

    backend = config.get('backend', 'local')
    if backend == 'local':
        return LocalClipStore(Path(config.get('directory', 'data/clips')))
    if backend == 'memory':
        return InMemoryClipStore()
    raise ConfigurationError(f"Unknown clip store backend: {backend}", config_key='clips.backend')
