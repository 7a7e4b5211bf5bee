"""
HTTP client for the VoiceMatch analysis API.

Uploads a recording to ``POST /analyze-voice/``, refreshes the access
token once on 401 (one refresh shared by all concurrent callers), and
turns the tagged response envelope into an AnalysisResult or ApiError.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import requests

from voicematch.client.session import DEFAULT_BASE_URL, ApiSession
from voicematch.client.singleflight import SingleFlight
from voicematch.core.media import ACCEPTED_EXTENSIONS, content_type_for, validate_media_type
from voicematch.core.models import AnalysisResult
from voicematch.utils.errors import FormatError

REFRESH_PATH = "auth/token/refresh/"
ANALYZE_PATH = "analyze-voice/"


class ApiError(Exception):
    """Failure reported by the API, or detected before/after the call."""

    def __init__(self, code: str, message: str, status_code: Optional[int] = None,
                 reason: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.reason = reason

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"{self.code} ({self.status_code}): {self.message}"
        return f"{self.code}: {self.message}"


class TokenRefreshError(ApiError):
    """Raised when the session cannot obtain a new access token."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__("UNAUTHORIZED", message, status_code)


def parse_envelope(response: requests.Response) -> Dict[str, Any]:
    """
    Return the ``data`` object of a success envelope.

    Raises:
        ApiError: Failure envelope, or a body that is not an envelope
    """
    status = response.status_code
    try:
        body = response.json()
    except ValueError:
        raise ApiError(
            "INVALID_RESPONSE", f"Server returned a non-JSON response (HTTP {status})", status
        )

    if not isinstance(body, dict) or not isinstance(body.get('success'), bool):
        raise ApiError("INVALID_RESPONSE", "Response is not a VoiceMatch envelope", status)

    if body['success']:
        data = body.get('data')
        if not isinstance(data, dict):
            raise ApiError("INVALID_RESPONSE", "Success envelope without data", status)
        return data

    error = body.get('error')
    if not isinstance(error, dict):
        raise ApiError("INVALID_RESPONSE", "Failure envelope without error", status)
    raise ApiError(
        str(error.get('code', 'SERVER_ERROR')),
        str(error.get('message', 'Unknown error')),
        status,
        reason=error.get('reason'),
    )


class VoiceMatchClient:
    """
    Thread-safe client bound to one ApiSession.

    Concurrent 401s trigger a single token refresh; each request is
    retried at most once.
    """

    def __init__(
        self,
        session: Optional[ApiSession] = None,
        http: Optional[requests.Session] = None,
        timeout: float = 60.0,
        refresh_timeout: float = 10.0,
    ):
        """
        Initialize client.

        Args:
            session: Credentials and base URL (signed-out default session when omitted)
            http: requests session to send through
            timeout: Seconds to wait for an analysis response
            refresh_timeout: Seconds to wait for a token refresh
        """
        self.session = session or ApiSession()
        self.http = http or requests.Session()
        self.timeout = timeout
        self.refresh_timeout = refresh_timeout
        self._refresher: SingleFlight[str] = SingleFlight()
        self.logger = logging.getLogger("client")

    def analyze_voice(
        self,
        original_clip_id: str,
        audio_path: Union[str, Path],
        test_id: Optional[str] = None,
        test_type: Optional[Union[int, str]] = None,
        content_type: Optional[str] = None,
    ) -> AnalysisResult:
        """
        Upload a recording for comparison against ``original_clip_id``.

        Args:
            original_clip_id: Reference clip id
            audio_path: Local audio file (mp3, mp4, wav, m4a)
            test_id: Optional practice/exam test id, passed through
            test_type: Optional test type, passed through
            content_type: MIME type to declare (derived from the extension when omitted)

        Returns:
            AnalysisResult parsed from the success envelope

        Raises:
            ApiError: Client-side rejection, network failure, or API failure
        """
        audio_path = Path(audio_path)
        content_type = content_type or content_type_for(audio_path.name)

        # Step 1: Reject what the server would reject, before uploading
        try:
            validate_media_type(audio_path.name, content_type, ACCEPTED_EXTENSIONS)
        except FormatError as e:
            raise ApiError(e.code, e.message, reason=e.reason) from e
        if not audio_path.is_file():
            raise ApiError("INVALID_PARAMETERS", f"Audio file not found: {audio_path}")

        audio = audio_path.read_bytes()
        fields = {'originalClipId': original_clip_id}
        if test_id is not None:
            fields['test_id'] = str(test_id)
        if test_type is not None:
            fields['test_type'] = str(test_type)

        # Step 2: Send, refreshing the token once on 401
        token_used = self.session.current_token()
        response = self._post_analysis(fields, audio_path.name, audio, content_type)
        if response.status_code == 401:
            self.logger.info("Access token rejected, refreshing")
            self._refresh_after(token_used)
            response = self._post_analysis(fields, audio_path.name, audio, content_type)
            if response.status_code == 401:
                raise ApiError(
                    "UNAUTHORIZED", "Your session has expired. Please log in again.", 401
                )

        # Step 3: Parse the envelope
        data = parse_envelope(response)
        try:
            return AnalysisResult.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise ApiError(
                "INVALID_RESPONSE", f"Malformed analysis result: {e}", response.status_code
            ) from e

    def refresh_access_token(self) -> str:
        """
        Exchange the refresh token for a new access token.

        The response schema is ``{"access": str}``.

        Raises:
            TokenRefreshError: No refresh token, rejected refresh, or bad response
        """
        refresh_token = self.session.refresh_token
        if not refresh_token:
            raise TokenRefreshError("No refresh token available")

        try:
            response = self.http.post(
                self.session.url(REFRESH_PATH),
                json={'refresh': refresh_token},
                timeout=self.refresh_timeout,
            )
        except requests.RequestException as e:
            raise TokenRefreshError(f"Token refresh failed: {e}") from e

        if response.status_code != 200:
            self.session.clear()
            raise TokenRefreshError(
                "Your session has expired. Please log in again.", response.status_code
            )

        try:
            access = response.json().get('access')
        except (ValueError, AttributeError):
            access = None
        if not isinstance(access, str) or not access:
            raise TokenRefreshError("Token refresh response has no access token", 200)

        self.session.set_token(access)
        self.logger.info("Access token refreshed")
        return access

    def _refresh_after(self, token_used: Optional[str]) -> None:
        # Another caller may already have replaced the rejected token
        if token_used is not None and self.session.current_token() != token_used:
            return
        self._refresher.do(self.refresh_access_token)

    def _post_analysis(
        self, fields: Dict[str, str], filename: str, audio: bytes, content_type: str
    ) -> requests.Response:
        try:
            return self.http.post(
                self.session.url(ANALYZE_PATH),
                data=fields,
                files={'userAudio': (filename, audio, content_type)},
                headers=self.session.auth_headers(),
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise ApiError("NETWORK_ERROR", "The server did not respond in time.") from e
        except requests.RequestException as e:
            raise ApiError(
                "NETWORK_ERROR", "No response from server. Please check your connection."
            ) from e

    def health(self) -> Dict[str, Any]:
        """Server health ``data`` object."""
        try:
            response = self.http.get(self.session.url("health"), timeout=self.refresh_timeout)
        except requests.RequestException as e:
            raise ApiError("NETWORK_ERROR", f"Health check failed: {e}") from e
        return parse_envelope(response)

    def close(self) -> None:
        self.http.close()

    def __enter__(self) -> "VoiceMatchClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def create_client(
    base_url: str = DEFAULT_BASE_URL,
    token: Optional[str] = None,
    refresh_token: Optional[str] = None,
    timeout: float = 60.0,
) -> VoiceMatchClient:
    """
    Factory function to create a client with a fresh session.
    """
    session = ApiSession(base_url=base_url, token=token, refresh_token=refresh_token)
    return VoiceMatchClient(session=session, timeout=timeout)
