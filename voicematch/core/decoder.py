"""
Audio decoder for the VoiceMatch analysis service.

Decodes uploaded or stored audio bytes into the canonical AudioSignal:
mono, resampled to the internal rate, peak-safe, with leading and
trailing silence trimmed down to a small guard band.
"""

import hashlib
import io
import logging
import os
import tempfile
from typing import Any, Dict, Optional, Set, Tuple

import librosa
import numpy as np
import soundfile as sf

from voicematch.core.models import AudioSignal
from voicematch.core.stage import BaseStage
from voicematch.utils.errors import DecodeError, DurationExceeded, FormatError, SizeExceeded


# Accepted container formats and the backend that reads them
SUPPORTED_FORMATS: Dict[str, str] = {
    'wav': 'soundfile',
    'mp3': 'audioread',
    'mp4': 'audioread',
    'm4a': 'audioread',
}

TARGET_SAMPLE_RATE: int = 16000  # Hz
MAX_FILE_SIZE: int = 10485760  # 10 MB
MAX_DURATION: float = 60.0  # seconds

# Decoding stops this far past max_duration: an overlong file still yields
# more than max_duration of samples but is never read in full
DECODE_MARGIN_SECONDS: float = 0.5

logger = logging.getLogger(__name__)


class AudioDecoder(BaseStage[AudioSignal]):
    """
    Decodes audio bytes and creates AudioSignal instances.

    Stateless after construction, so one decoder serves all requests.
    """

    def __init__(
        self,
        target_sr: int = TARGET_SAMPLE_RATE,
        max_file_size: int = MAX_FILE_SIZE,
        max_duration: float = MAX_DURATION,
        trim_top_db: float = 40.0,
        trim_guard_ms: float = 50.0,
        min_trimmed_ms: float = 100.0,
        silence_floor: float = 1e-4,
    ):
        """
        Initialize decoder with limits and normalization parameters.

        Args:
            target_sr: Internal sample rate every signal is resampled to
            max_file_size: Maximum payload size in bytes
            max_duration: Maximum recording duration in seconds
            trim_top_db: Frames quieter than peak minus this are silence
            trim_guard_ms: Silence kept on each side after trimming
            min_trimmed_ms: Trimming never leaves less than this
            silence_floor: Signals with a lower peak are left untrimmed
        """
        super().__init__("decoder", "1.0.0")
        self.target_sr = target_sr
        self.max_file_size = max_file_size
        self.max_duration = max_duration
        self.trim_top_db = trim_top_db
        self.trim_guard_ms = trim_guard_ms
        self.min_trimmed_ms = min_trimmed_ms
        self.silence_floor = silence_floor
        self.supported_formats: Set[str] = set(SUPPORTED_FORMATS.keys())

    def decode(self, data: bytes, format_hint: str) -> AudioSignal:
        """
        Decode raw bytes into an AudioSignal.

        Args:
            data: Encoded audio bytes
            format_hint: Container format ("wav", "mp3", "mp4", "m4a"),
                a file name or an extension with leading dot

        Raises:
            FormatError: Format not supported
            SizeExceeded: Payload larger than max_file_size
            DecodeError: Corrupt or empty audio
            DurationExceeded: Recording longer than max_duration
        """
        return self.run(data, format_hint)

    def _run_impl(self, data: bytes, format_hint: str) -> AudioSignal:
        fmt = self.normalize_format(format_hint)

        # Step 1: Validate payload
        self._validate_size(data)

        # Step 2: Decode at the native rate
        native, native_sr = self._load_native(data, fmt)
        channels = 1 if native.ndim == 1 else native.shape[0]
        num_samples = native.shape[-1]

        # Step 3: Enforce duration before any further work
        self._validate_duration(num_samples, native_sr)

        # Step 4: Downmix and resample
        mono = librosa.to_mono(native) if native.ndim > 1 else native
        if native_sr != self.target_sr:
            mono = librosa.resample(mono, orig_sr=native_sr, target_sr=self.target_sr)
        samples = self._normalize(mono.astype(np.float32))

        # Step 5: Trim silence
        samples, trimmed = self._trim_silence(samples)

        logger.debug(
            f"Decoded {fmt}: {native_sr} Hz, {channels} ch, "
            f"{num_samples / native_sr:.2f}s (trimmed {trimmed:.2f}s)"
        )

        return AudioSignal(
            samples=samples,
            sample_rate=self.target_sr,
            duration=samples.shape[0] / self.target_sr,
            source_hash=hashlib.sha256(data).hexdigest(),
            original_sample_rate=int(native_sr),
            original_channels=int(channels),
            original_format=fmt.upper(),
            trimmed=trimmed,
        )

    def normalize_format(self, format_hint: Optional[str]) -> str:
        """Reduce a file name, extension or format name to a supported format key."""
        hint = (format_hint or '').strip().lower()
        if '.' in hint:
            hint = hint.rsplit('.', 1)[-1]
        if hint not in self.supported_formats:
            raise FormatError(
                f"Format '{hint or 'unknown'}' not supported. "
                f"Supported formats: {', '.join(sorted(self.supported_formats))}",
                extension=hint or None
            )
        return hint

    def _validate_size(self, data: bytes) -> None:
        if not data:
            raise DecodeError("Audio payload is empty")

        size = len(data)
        if size > self.max_file_size:
            raise SizeExceeded(
                f"File too large: {size / 1024 / 1024:.1f} MB. "
                f"Maximum: {self.max_file_size / 1024 / 1024:.1f} MB",
                size=size,
                max_size=self.max_file_size
            )

    def _validate_duration(self, num_samples: int, sample_rate: int) -> None:
        """Exactly max_duration is accepted; one sample more is not."""
        max_samples = int(round(self.max_duration * sample_rate))
        if num_samples > max_samples:
            duration = num_samples / sample_rate
            raise DurationExceeded(
                f"Recording too long: over {self.max_duration:.0f}s ({duration:.2f}s decoded)",
                duration=duration,
                max_duration=self.max_duration
            )

    def _load_native(self, data: bytes, fmt: str) -> Tuple[np.ndarray, int]:
        """Decode to float32 at the native rate; channels first when multi-channel."""
        if SUPPORTED_FORMATS[fmt] == 'soundfile':
            audio, sample_rate = self._load_with_soundfile(data, fmt)
        else:
            audio, sample_rate = self._load_with_librosa(data, fmt)

        if audio.size == 0:
            raise DecodeError("Audio stream contains no samples", format=fmt)
        if not np.all(np.isfinite(audio)):
            raise DecodeError("Audio stream contains invalid sample values", format=fmt)

        return audio, int(sample_rate)

    def _load_with_soundfile(self, data: bytes, fmt: str) -> Tuple[np.ndarray, int]:
        try:
            with sf.SoundFile(io.BytesIO(data)) as f:
                sample_rate = f.samplerate
                limit = int(round((self.max_duration + DECODE_MARGIN_SECONDS) * sample_rate))
                audio = f.read(frames=limit, dtype='float32', always_2d=True)
        except sf.LibsndfileError as e:
            if 'unsupported' in str(e).lower():
                raise FormatError(
                    f"Unsupported {fmt} encoding: {e}", extension=fmt
                ) from e
            raise DecodeError(f"Failed to decode {fmt} audio: {e}", format=fmt) from e
        except (RuntimeError, ValueError) as e:
            raise DecodeError(f"Failed to decode {fmt} audio: {e}", format=fmt) from e

        # soundfile is frames-first; librosa convention is channels-first
        audio = audio.T
        if audio.shape[0] == 1:
            audio = audio[0]
        return audio, sample_rate

    def _load_with_librosa(self, data: bytes, fmt: str) -> Tuple[np.ndarray, int]:
        # Compressed containers go through a temporary file for audioread/ffmpeg
        fd, tmp_path = tempfile.mkstemp(suffix=f'.{fmt}')
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(data)
            audio, sample_rate = librosa.load(
                tmp_path,
                sr=None,
                mono=False,
                duration=self.max_duration + DECODE_MARGIN_SECONDS,
                dtype=np.float32,
            )
        except Exception as e:
            raise DecodeError(f"Failed to decode {fmt} audio: {e}", format=fmt) from e
        finally:
            try:
                os.unlink(tmp_path)
            except OSError:
                logger.warning(f"Could not remove temporary file {tmp_path}")
        return audio, sample_rate

    def _normalize(self, samples: np.ndarray) -> np.ndarray:
        """Scale down only when the signal clips; quiet signals stay quiet."""
        peak = float(np.max(np.abs(samples))) if samples.size else 0.0
        if peak > 1.0:
            logger.warning(f"Audio contains clipping (max: {peak:.2f}), normalizing")
            samples = samples / peak
        return samples

    def _trim_silence(self, samples: np.ndarray) -> Tuple[np.ndarray, float]:
        n = samples.shape[0]
        if n == 0 or float(np.max(np.abs(samples))) < self.silence_floor:
            return samples, 0.0

        frame_length = max(2, int(0.025 * self.target_sr))
        hop_length = max(1, int(0.010 * self.target_sr))
        _, (start, end) = librosa.effects.trim(
            samples,
            top_db=self.trim_top_db,
            frame_length=frame_length,
            hop_length=hop_length,
        )

        guard = int(self.trim_guard_ms / 1000.0 * self.target_sr)
        start = max(0, int(start) - guard)
        end = min(n, int(end) + guard)

        min_len = int(self.min_trimmed_ms / 1000.0 * self.target_sr)
        if end - start < min_len:
            return samples, 0.0

        trimmed = samples[start:end]
        return trimmed, (n - trimmed.shape[0]) / self.target_sr


def create_audio_decoder(config: Optional[Dict[str, Any]] = None) -> AudioDecoder:
    """
    Factory function to create AudioDecoder from the ``audio`` config section.

    Args:
        config: Optional configuration dict

    Returns:
        AudioDecoder: Configured decoder instance
    """
    if config is None:
        config = {}

    return AudioDecoder(
        target_sr=config.get('target_sample_rate', TARGET_SAMPLE_RATE),
        max_file_size=config.get('max_file_size', MAX_FILE_SIZE),
        max_duration=config.get('max_duration', MAX_DURATION),
        trim_top_db=config.get('trim_top_db', 40.0),
        trim_guard_ms=config.get('trim_guard_ms', 50.0),
        min_trimmed_ms=config.get('min_trimmed_ms', 100.0),
        silence_floor=config.get('silence_floor', 1e-4),
    )
