"""
Analysis engine for the VoiceMatch analysis service.

Main orchestration engine: validates a request, resolves the reference
clip, runs decode and feature extraction for both recordings in
parallel, then aligns and scores them.
"""

import hashlib
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, TypeVar

from voicematch.core.alignment import DTWAligner, create_aligner
from voicematch.core.cache import ReferenceFeatureCache, create_feature_cache
from voicematch.core.clips import ClipStore, ReferenceClip, create_clip_store, validate_clip_id
from voicematch.core.decoder import AudioDecoder, create_audio_decoder
from voicematch.core.features import FeatureExtractor, create_feature_extractor
from voicematch.core.history import HistoryStore, create_history_store
from voicematch.core.media import ACCEPTED_EXTENSIONS, validate_media_type
from voicematch.core.models import AnalysisResult, FeatureSequence
from voicematch.core.scorer import Scorer, create_scorer
from voicematch.utils.errors import (
    AnalysisCancelled,
    AudioError,
    ProcessingTimeout,
    ServerError,
    SizeExceeded,
    ValidationError,
)

R = TypeVar('R')


def make_user_clip_id(audio: bytes) -> str:
    """Content-derived id: identical uploads get identical ids."""
    return "usr_" + hashlib.sha256(audio).hexdigest()[:16]


class RequestContext:
    """
    Deadline and cancellation state of one request.

    ``checkpoint`` is called at every stage boundary; no stage starts
    after the deadline or after cancellation.
    """

    def __init__(self, timeout: float, cancel_event: Optional[threading.Event] = None):
        self.timeout = timeout
        self.deadline = time.monotonic() + timeout
        self.cancel_event = cancel_event
        self._aborted = threading.Event()

    def remaining(self) -> float:
        return max(0.0, self.deadline - time.monotonic())

    def abort(self) -> None:
        """Stop sibling workers of this request at their next boundary."""
        self._aborted.set()

    def checkpoint(self, stage: str) -> None:
        if self._aborted.is_set() or (self.cancel_event is not None and self.cancel_event.is_set()):
            raise AnalysisCancelled(stage=stage)
        if time.monotonic() >= self.deadline:
            self.abort()
            raise ProcessingTimeout(
                f"Analysis did not finish within {self.timeout:.0f}s",
                stage=stage,
                timeout=self.timeout,
            )


class VoiceAnalysisEngine:
    """
    Main analysis engine - orchestrates all pipeline stages.

    Design:
    - Dependency Injection: stages and collaborators are injected (testable)
    - Parallel Execution: reference and user extraction run concurrently
    - Caching: reference features cached by clip, content and parameters
    - No per-request state: one engine serves concurrent requests
    """

    def __init__(
        self,
        decoder: AudioDecoder,
        extractor: FeatureExtractor,
        aligner: DTWAligner,
        scorer: Scorer,
        clip_store: Optional[ClipStore] = None,
        history_store: Optional[HistoryStore] = None,
        cache: Optional[ReferenceFeatureCache] = None,
        max_workers: int = 4,
        timeout_seconds: float = 120.0,
        accepted_extensions: Iterable[str] = ACCEPTED_EXTENSIONS,
    ):
        """
        Initialize analysis engine.

        Args:
            decoder: Audio decoder stage
            extractor: Feature extractor stage (shared by both recordings)
            aligner: DTW aligner stage
            scorer: Scorer stage
            clip_store: Reference clip lookup (required for analyze())
            history_store: Optional sink for completed results
            cache: Optional reference feature cache
            max_workers: Max parallel extraction workers
            timeout_seconds: Per-request time budget
            accepted_extensions: Accepted upload formats
        """
        self.decoder = decoder
        self.extractor = extractor
        self.aligner = aligner
        self.scorer = scorer
        self.clip_store = clip_store
        self.history_store = history_store
        self.cache = cache
        self.timeout_seconds = timeout_seconds
        self.accepted_extensions = tuple(accepted_extensions)
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='voicematch')
        self.logger = logging.getLogger('engine')

    def analyze(
        self,
        original_clip_id: str,
        audio: bytes,
        filename: Optional[str],
        content_type: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> AnalysisResult:
        """
        Compare an uploaded recording against a stored reference clip.

        Args:
            original_clip_id: Reference clip id
            audio: Uploaded audio bytes
            filename: Upload file name (extension used as format fallback)
            content_type: Upload MIME type
            cancel_event: Set by the caller to abort at the next stage boundary

        Returns:
            AnalysisResult: Complete comparison result

        Raises:
            VoiceMatchError: Any request, audio or processing failure
        """
        start_time = time.time()
        ctx = RequestContext(self.timeout_seconds, cancel_event)

        # Step 1: Validate request
        clip_id = validate_clip_id(original_clip_id)
        fmt = self._validate_upload(audio, filename, content_type)

        # Step 2: Resolve reference
        ctx.checkpoint("lookup")
        if self.clip_store is None:
            raise ServerError("No clip store configured", stage_name="lookup")
        clip = self.clip_store.fetch(clip_id)

        self.logger.info(f"Analyzing {len(audio)} bytes against clip {clip_id}")
        return self._run_pipeline(clip, audio, fmt, ctx, start_time)

    def analyze_files(self, reference_path: Path, user_path: Path) -> AnalysisResult:
        """
        Compare two local files without a clip store.

        The reference file stem is used as the clip id.
        """
        reference_path, user_path = Path(reference_path), Path(user_path)
        for path in (reference_path, user_path):
            if not path.is_file():
                raise FileNotFoundError(f"Audio file not found: {path}")

        start_time = time.time()
        ctx = RequestContext(self.timeout_seconds)
        audio = user_path.read_bytes()
        fmt = self._validate_upload(audio, user_path.name, None)

        clip = ReferenceClip(
            clip_id=reference_path.stem,
            data=reference_path.read_bytes(),
            filename=reference_path.name,
            content_type='',
        )
        self.logger.info(f"Comparing {user_path.name} against {reference_path.name}")
        return self._run_pipeline(clip, audio, fmt, ctx, start_time)

    def _validate_upload(self, audio: bytes, filename: Optional[str],
                         content_type: Optional[str]) -> str:
        if not audio:
            raise ValidationError("userAudio is required", field='userAudio')
        if len(audio) > self.decoder.max_file_size:
            raise SizeExceeded(
                f"File too large: {len(audio) / 1024 / 1024:.1f} MB. "
                f"Maximum: {self.decoder.max_file_size / 1024 / 1024:.1f} MB",
                size=len(audio),
                max_size=self.decoder.max_file_size
            )
        return validate_media_type(filename, content_type, self.accepted_extensions)

    def _run_pipeline(
        self,
        clip: ReferenceClip,
        audio: bytes,
        fmt: str,
        ctx: RequestContext,
        start_time: float,
    ) -> AnalysisResult:
        user_clip_id = make_user_clip_id(audio)

        # Step 3: Decode and extract both recordings in parallel
        ctx.checkpoint("extract")
        reference_future = self.executor.submit(self._reference_features, clip, ctx)
        user_future = self.executor.submit(self._user_features, audio, fmt, ctx)
        try:
            user_features = self._wait(user_future, ctx, "extract")
            reference_features = self._wait(reference_future, ctx, "extract")
        except BaseException:
            # Let the other worker stop at its next boundary
            ctx.abort()
            raise

        # Step 4: Align
        ctx.checkpoint("align")
        alignment = self.aligner.align(reference_features, user_features)

        # Step 5: Score
        ctx.checkpoint("score")
        result = self.scorer.score(
            alignment, reference_features, user_features, clip.clip_id, user_clip_id
        )

        ctx.checkpoint("respond")
        processing_time = time.time() - start_time
        metadata = dict(result.metadata)
        metadata.update({
            'processing_time': round(processing_time, 3),
            'reference_duration': round(len(reference_features) * reference_features.hop_seconds, 3),
            'user_duration': round(len(user_features) * user_features.hop_seconds, 3),
            'params_version': self.extractor.params_version,
        })
        result = replace(result, metadata=metadata)

        # Step 6: History (never fails the request)
        self._record_history(result)

        self.logger.info(
            f"Analysis complete in {processing_time:.3f}s: {result.get_summary()}"
        )
        return result

    def _wait(self, future: Any, ctx: RequestContext, stage: str) -> R:
        try:
            return future.result(timeout=ctx.remaining())
        except FutureTimeoutError:
            ctx.abort()
            raise ProcessingTimeout(
                f"Analysis did not finish within {self.timeout_seconds:.0f}s",
                stage=stage,
                timeout=self.timeout_seconds,
            )

    def _user_features(self, audio: bytes, fmt: str, ctx: RequestContext) -> FeatureSequence:
        ctx.checkpoint("decode")
        signal = self.decoder.decode(audio, fmt)
        ctx.checkpoint("features")
        return self.extractor.extract(signal)

    def _reference_features(self, clip: ReferenceClip, ctx: RequestContext) -> FeatureSequence:
        def compute() -> FeatureSequence:
            ctx.checkpoint("decode")
            try:
                signal = self.decoder.decode(clip.data, clip.filename)
            except AudioError as e:
                # A broken reference is our problem, not the user's
                self.logger.error(f"Reference clip {clip.clip_id} is unreadable: {e}")
                raise ServerError(
                    f"Reference clip {clip.clip_id} could not be decoded",
                    stage_name="decoder",
                    original_error=e
                ) from e
            ctx.checkpoint("features")
            return self.extractor.extract(signal)

        if self.cache is None:
            return compute()

        key = (
            clip.clip_id,
            hashlib.sha256(clip.data).hexdigest(),
            self.extractor.params_version,
        )
        return self.cache.get_or_compute(key, compute)

    def _record_history(self, result: AnalysisResult) -> None:
        if self.history_store is None:
            return
        try:
            self.history_store.record(result)
        except Exception as e:
            self.logger.warning(f"Failed to record history for {result.user_clip_id}: {e}")

    def get_stats(self) -> Dict[str, Any]:
        """Engine configuration and cache statistics."""
        return {
            'params_version': self.extractor.params_version,
            'timeout_seconds': self.timeout_seconds,
            'accepted_extensions': list(self.accepted_extensions),
            'cache': self.cache.get_stats() if self.cache else None,
        }

    def shutdown(self) -> None:
        """Shutdown thread pool gracefully."""
        self.logger.info("Shutting down analysis engine")
        self.executor.shutdown(wait=True)

    def __enter__(self) -> "VoiceAnalysisEngine":
        """Context manager support."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Cleanup on context exit."""
        self.shutdown()


def create_analysis_engine(config: Dict[str, Any]) -> VoiceAnalysisEngine:
    """
    Factory function to create fully configured analysis engine.

    Args:
        config: Configuration dict (see get_default_config)

    Returns:
        VoiceAnalysisEngine: Configured engine
    """
    audio_config = config.get('audio', {})
    decoder = create_audio_decoder(audio_config)
    extractor = create_feature_extractor(
        config.get('features', {}), sample_rate=decoder.target_sr
    )
    aligner = create_aligner(config.get('alignment', {}))
    scorer = create_scorer(config.get('scoring', {}))

    clip_store = create_clip_store(config.get('clips', {}))
    history_store = create_history_store(config.get('history', {}))
    cache = create_feature_cache(config.get('cache', {}))

    engine_config = config.get('engine', {})
    return VoiceAnalysisEngine(
        decoder=decoder,
        extractor=extractor,
        aligner=aligner,
        scorer=scorer,
        clip_store=clip_store,
        history_store=history_store,
        cache=cache,
        max_workers=engine_config.get('max_workers', 4),
        timeout_seconds=engine_config.get('timeout_seconds', 120.0),
        accepted_extensions=audio_config.get('accepted_extensions', ACCEPTED_EXTENSIONS),
    )
