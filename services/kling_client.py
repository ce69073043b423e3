"""Kling image-to-video client: signed submit plus bounded polling."""
from __future__ import annotations

import base64
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence

import httpx
import jwt

from assets_store import ClipArtifact, SceneInput
from config import (
    ANIMATION_DEFAULT_PROMPT,
    ANIMATION_NEGATIVE_PROMPT,
    KLING_ACCESS_KEY,
    KLING_API_BASE,
    KLING_CFG_SCALE,
    KLING_CLIP_DURATION_S,
    KLING_HTTP_TIMEOUT_S,
    KLING_MODE,
    KLING_MODEL,
    KLING_POLL_INTERVALS,
    KLING_POLL_MAX_ATTEMPTS,
    KLING_SECRET_KEY,
    KLING_TOKEN_SKEW_S,
    KLING_TOKEN_TTL_S,
)
from observability.logger import get_logger

LOGGER = get_logger("animation.services.kling")

IMAGE2VIDEO_PATH = "/v1/videos/image2video"

_AUTH_CODES = {1000, 1001, 1002, 1003, 1004}
_RATE_LIMIT_CODES = {1302, 1303}
_SUCCEEDED = {"succeed", "succeeded", "success", "completed"}
_FAILED = {"failed", "failure", "error"}


class RemoteError(RuntimeError):
    """Base class for failures talking to the video service."""

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


class RemoteAuthError(RemoteError):
    """Credentials are missing or the service rejected the token."""


class RemoteRateLimitError(RemoteError):
    """The service refused the request because of rate or concurrency limits."""


class RemoteTaskError(RemoteError):
    """Unexpected response or transport failure."""


class RemoteTaskFailedError(RemoteError):
    """The remote task reached a terminal failed state."""


class RemoteTimeoutError(RemoteError, TimeoutError):
    """Polling ran out of attempts before the task finished."""

    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


@dataclass
class TaskHandle:
    task_id: str
    token: str
    token_expires_at: float


def build_api_token(
    access_key: str,
    secret_key: str,
    *,
    ttl_s: int = KLING_TOKEN_TTL_S,
    skew_s: int = KLING_TOKEN_SKEW_S,
    now: Optional[float] = None,
) -> str:
    """Return a short-lived HS256 token identifying ``access_key``."""

    if not access_key or not secret_key:
        raise RemoteAuthError("KLING_ACCESS_KEY / KLING_SECRET_KEY are not configured")
    issued = int(now if now is not None else time.time())
    claims = {
        "iss": access_key,
        "exp": issued + int(ttl_s),
        "nbf": issued - int(skew_s),
    }
    return jwt.encode(claims, secret_key, algorithm="HS256", headers={"alg": "HS256", "typ": "JWT"})


def _encode_image(scene: SceneInput) -> str:
    try:
        data = scene.image_path.read_bytes()
    except OSError as exc:
        raise RemoteTaskError(f"cannot read scene image {scene.image_path}: {exc}") from exc
    return base64.b64encode(data).decode("ascii")


def _error_message(payload: Any, response: httpx.Response) -> str:
    if isinstance(payload, dict):
        message = payload.get("message") or payload.get("error")
        if isinstance(message, dict):
            message = message.get("message")
        if message:
            return str(message)
    return response.text.strip()[:300] or f"HTTP {response.status_code}"


def _is_transient(exc: RemoteTaskError) -> bool:
    """Server-side and transport trouble is retried; a rejected request is not."""

    status = exc.status_code
    if status is not None and status >= 500:
        return True
    if exc.code not in (None, 0):
        return False
    return status is None or status < 400


def _artifact_from(task_id: str, data: Dict[str, Any]) -> ClipArtifact:
    result = data.get("task_result")
    videos = result.get("videos") if isinstance(result, dict) else None
    video = videos[0] if isinstance(videos, list) and videos and isinstance(videos[0], dict) else {}
    video_url = str(video.get("url") or "").strip()
    if not video_url:
        raise RemoteTaskFailedError(f"task {task_id} succeeded without a video url")
    duration = video.get("duration")
    try:
        duration_s = float(duration) if duration not in (None, "") else None
    except (TypeError, ValueError) as exc:
        raise RemoteTaskFailedError(f"task {task_id} returned a bad clip duration: {duration!r}") from exc
    return ClipArtifact(url=video_url, task_id=task_id, duration_s=duration_s)


class KlingClient:
    """Submits one scene to the service and waits a bounded time for the clip."""

    def __init__(
        self,
        *,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        api_base: str = KLING_API_BASE,
        model: str = KLING_MODEL,
        mode: str = KLING_MODE,
        duration_s: int = KLING_CLIP_DURATION_S,
        cfg_scale: float = KLING_CFG_SCALE,
        max_attempts: int = KLING_POLL_MAX_ATTEMPTS,
        poll_intervals: Sequence[float] = KLING_POLL_INTERVALS,
        timeout_s: float = KLING_HTTP_TIMEOUT_S,
        http_client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._access_key = access_key if access_key is not None else KLING_ACCESS_KEY
        self._secret_key = secret_key if secret_key is not None else KLING_SECRET_KEY
        self._api_base = api_base.rstrip("/")
        self._model = model
        self._mode = mode
        self._duration_s = duration_s
        self._cfg_scale = cfg_scale
        self._max_attempts = max(1, int(max_attempts))
        self._poll_intervals = tuple(poll_intervals) or (10.0,)
        self._timeout_s = timeout_s
        self._http_client = http_client
        self._sleep = sleep
        self._clock = clock

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @property
    def access_key(self) -> str:
        return self._access_key

    def has_credentials(self) -> bool:
        return bool(self._access_key and self._secret_key)

    def poll_budget_seconds(self) -> float:
        return sum(self._delay_for(attempt) for attempt in range(1, self._max_attempts + 1))

    def close(self) -> None:
        if self._http_client is not None:
            self._http_client.close()
            self._http_client = None

    def _client(self) -> httpx.Client:
        if self._http_client is None:
            timeout = httpx.Timeout(
                timeout=self._timeout_s,
                connect=min(20.0, self._timeout_s),
            )
            self._http_client = httpx.Client(timeout=timeout)
        return self._http_client

    def _issue_token(self) -> tuple[str, float]:
        now = self._clock()
        token = build_api_token(self._access_key, self._secret_key, now=now)
        return token, now + KLING_TOKEN_TTL_S

    def _headers(self, token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}

    def _delay_for(self, attempt: int) -> float:
        return self._poll_intervals[min(attempt - 1, len(self._poll_intervals) - 1)]

    def _classify(self, response: httpx.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError:
            payload = None
        status = response.status_code
        code = payload.get("code") if isinstance(payload, dict) else None
        message = _error_message(payload, response)
        if status in {401, 403} or code in _AUTH_CODES:
            raise RemoteAuthError(f"authentication rejected: {message}", status, code)
        if status == 429 or code in _RATE_LIMIT_CODES:
            raise RemoteRateLimitError(f"rate limited: {message}", status, code)
        if status >= 400:
            raise RemoteTaskError(f"HTTP {status}: {message}", status, code)
        if not isinstance(payload, dict):
            raise RemoteTaskError("response is not a JSON object", status)
        if code not in (None, 0):
            raise RemoteTaskError(f"service error {code}: {message}", status, code)
        data = payload.get("data")
        if not isinstance(data, dict):
            raise RemoteTaskError("response has no data object", status, code)
        return data

    def submit(self, scene: SceneInput, prompt_hint: Optional[str] = None) -> TaskHandle:
        token, expires_at = self._issue_token()
        body = {
            "model_name": self._model,
            "mode": self._mode,
            "duration": str(self._duration_s),
            "cfg_scale": self._cfg_scale,
            "image": _encode_image(scene),
            "prompt": (prompt_hint or scene.prompt or ANIMATION_DEFAULT_PROMPT)[:2500],
            "negative_prompt": ANIMATION_NEGATIVE_PROMPT,
        }
        url = f"{self._api_base}{IMAGE2VIDEO_PATH}"
        try:
            response = self._client().post(url, headers=self._headers(token), json=body)
        except httpx.HTTPError as exc:
            raise RemoteTaskError(f"submit transport error: {exc}") from exc
        data = self._classify(response)
        task_id = str(data.get("task_id") or "").strip()
        if not task_id:
            raise RemoteTaskError("service returned no task_id", response.status_code)
        LOGGER.info("kling_task_submitted", extra={"task_id": task_id, "scene": scene.index})
        return TaskHandle(task_id=task_id, token=token, token_expires_at=expires_at)

    def poll(self, handle: TaskHandle) -> ClipArtifact:
        url = f"{self._api_base}{IMAGE2VIDEO_PATH}/{handle.task_id}"
        for attempt in range(1, self._max_attempts + 1):
            self._sleep(self._delay_for(attempt))
            if self._clock() >= handle.token_expires_at - 60:
                handle.token, handle.token_expires_at = self._issue_token()
            try:
                response = self._client().get(url, headers=self._headers(handle.token))
                data = self._classify(response)
            except (RemoteRateLimitError, RemoteTaskError) as exc:
                if isinstance(exc, RemoteTaskError) and not _is_transient(exc):
                    raise RemoteTaskFailedError(
                        f"task {handle.task_id} status request rejected: {exc.message}",
                        exc.status_code,
                        exc.code,
                    ) from exc
                LOGGER.warning(
                    "kling_poll_transient",
                    extra={"task_id": handle.task_id, "attempt": attempt, "error": str(exc)},
                )
                continue
            except httpx.HTTPError as exc:
                LOGGER.warning(
                    "kling_poll_transport_error",
                    extra={"task_id": handle.task_id, "attempt": attempt, "error": str(exc)},
                )
                continue

            task_status = str(data.get("task_status") or "").strip().lower()
            LOGGER.debug(
                "kling_poll_status",
                extra={"task_id": handle.task_id, "attempt": attempt, "task_status": task_status},
            )
            if task_status in _FAILED:
                reason = data.get("task_status_msg") or "task failed"
                raise RemoteTaskFailedError(f"task {handle.task_id} failed: {reason}")
            if task_status in _SUCCEEDED:
                artifact = _artifact_from(handle.task_id, data)
                artifact.extra["poll_attempts"] = attempt
                LOGGER.info("kling_task_succeeded", extra={"task_id": handle.task_id, "attempt": attempt})
                return artifact

        raise RemoteTimeoutError(
            f"task {handle.task_id} not finished after {self._max_attempts} polls",
            self._max_attempts,
        )

    def generate(self, scene: SceneInput, prompt_hint: Optional[str] = None) -> ClipArtifact:
        handle = self.submit(scene, prompt_hint)
        return self.poll(handle)


__all__ = [
    "KlingClient",
    "RemoteAuthError",
    "RemoteError",
    "RemoteRateLimitError",
    "RemoteTaskError",
    "RemoteTaskFailedError",
    "RemoteTimeoutError",
    "TaskHandle",
    "build_api_token",
]
