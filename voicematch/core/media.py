"""
Media-type checks for uploaded audio.

Kept free of audio libraries so the API client can apply the same
rules before uploading.
"""

import mimetypes
from pathlib import PurePosixPath
from typing import Iterable, Optional

from voicematch.utils.errors import FormatError

ACCEPTED_EXTENSIONS = ('mp3', 'mp4', 'wav', 'm4a')

# MIME types that say nothing about the content
GENERIC_CONTENT_TYPES = ('', 'application/octet-stream', 'binary/octet-stream')

AUDIO_CONTENT_TYPES = {
    'audio/mpeg': 'mp3',
    'audio/mp3': 'mp3',
    'audio/mpeg3': 'mp3',
    'audio/x-mpeg-3': 'mp3',
    'audio/wav': 'wav',
    'audio/wave': 'wav',
    'audio/x-wav': 'wav',
    'audio/vnd.wave': 'wav',
    'audio/mp4': 'm4a',
    'audio/m4a': 'm4a',
    'audio/x-m4a': 'm4a',
}


def file_extension(filename: Optional[str]) -> str:
    """Lower-case extension without the dot ('' when there is none)."""
    if not filename:
        return ''
    return PurePosixPath(filename.replace('\\', '/')).suffix.lower().lstrip('.')


def validate_media_type(
    filename: Optional[str],
    content_type: Optional[str],
    accepted: Iterable[str] = ACCEPTED_EXTENSIONS,
) -> str:
    """
    Decide the container format of an upload.

    ``video/*`` is refused even when the extension is accepted (an .mp4
    upload must be declared as audio). Generic or missing MIME types fall
    back to the file extension.

    Args:
        filename: Client-supplied file name
        content_type: Client-supplied MIME type, parameters allowed
        accepted: Accepted format names

    Returns:
        str: Format name to hand to the decoder

    Raises:
        FormatError: Media type or extension not accepted
    """
    accepted = tuple(accepted)
    mime = (content_type or '').split(';', 1)[0].strip().lower()
    ext = file_extension(filename)

    if mime.startswith('video/'):
        raise FormatError(
            f"Video uploads are not supported ({mime}). Please upload an audio recording.",
            content_type=mime,
            extension=ext or None,
        )

    if mime in GENERIC_CONTENT_TYPES:
        if ext in accepted:
            return ext
        raise FormatError(
            f"Unsupported file type '{ext or 'unknown'}'. "
            f"Accepted: {', '.join(accepted)}",
            content_type=mime or None,
            extension=ext or None,
        )

    if mime.startswith('audio/'):
        if ext in accepted:
            return ext
        fmt = AUDIO_CONTENT_TYPES.get(mime)
        if fmt in accepted:
            return fmt

    raise FormatError(
        f"Unsupported media type '{mime}'. Accepted: {', '.join(accepted)}",
        content_type=mime,
        extension=ext or None,
    )


# Declared type for each accepted container (an .mp4 upload is audio)
EXTENSION_CONTENT_TYPES = {
    'wav': 'audio/wav',
    'mp3': 'audio/mpeg',
    'm4a': 'audio/mp4',
    'mp4': 'audio/mp4',
}


def content_type_for(filename: str) -> str:
    """MIME type to declare for a local audio file."""
    ext = file_extension(filename)
    if ext in EXTENSION_CONTENT_TYPES:
        return EXTENSION_CONTENT_TYPES[ext]
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or 'application/octet-stream'
