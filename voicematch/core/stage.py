"""
Pipeline stage base for the VoiceMatch analysis service.

Every stage (decode, extract, align, score) shares the same contract:
a name, a version, timing logs, and error wrapping so that only
VoiceMatchError subclasses ever leave a stage.
"""

import logging
import time
from abc import abstractmethod
from typing import Any, Generic, TypeVar

from voicematch.utils.errors import ServerError, VoiceMatchError

# Type variable for stage outputs
T = TypeVar('T')


class BaseStage(Generic[T]):
    """
    Template Method base: ``run()`` times and guards ``_run_impl()``.

    Known pipeline errors (VoiceMatchError) pass through unchanged;
    anything else is logged with its traceback and wrapped in ServerError.
    """

    def __init__(self, name: str, version: str):
        self._name = name
        self._version = version
        self.logger = logging.getLogger(f"stage.{name}")

    @property
    def name(self) -> str:
        """Return stage name."""
        return self._name

    @property
    def version(self) -> str:
        """Return stage version."""
        return self._version

    def run(self, *args: Any, **kwargs: Any) -> T:
        """
        Run the stage with timing and error handling.

        Raises:
            VoiceMatchError: Known failure raised by the stage
            ServerError: Any unexpected failure
        """
        start_time = time.perf_counter()

        try:
            result = self._run_impl(*args, **kwargs)
        except VoiceMatchError as e:
            self.logger.info(f"{self.name} rejected input: {e.reason or e.code}")
            raise
        except Exception as e:
            self.logger.exception(f"{self.name} failed: {e}")
            raise ServerError(
                f"{self.name} stage failed: {e}",
                stage_name=self.name,
                original_error=e
            ) from e

        elapsed = time.perf_counter() - start_time
        self.logger.debug(f"{self.name} complete in {elapsed:.3f}s")
        return result

    @abstractmethod
    def _run_impl(self, *args: Any, **kwargs: Any) -> T:
        """Subclasses implement the actual stage logic."""
        raise NotImplementedError
