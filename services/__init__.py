"""Service layer utilities."""

from .kling_client import (  # noqa: F401
    KlingClient,
    RemoteAuthError,
    RemoteError,
    RemoteRateLimitError,
    RemoteTaskError,
    RemoteTaskFailedError,
    RemoteTimeoutError,
    TaskHandle,
    build_api_token,
)

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
