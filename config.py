# -*- coding: utf-8 -*-

import os

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    value = str(os.getenv(name, "")).strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = str(os.getenv(name, "")).strip()
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_float_list(name: str, default: str) -> tuple[float, ...]:
    raw = str(os.getenv(name, "")).strip()
    if not raw:
        raw = default
    delays = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            delays.append(max(0.0, float(part)))
        except ValueError:
            continue
    if not delays:
        delays = [float(value) for value in default.split(",") if value]
    return tuple(delays)


def _env_bool(name: str, default: bool) -> bool:
    raw = str(os.getenv(name, "")).strip().lower()
    if not raw:
        return default
    return raw not in {"0", "false", "off", "no"}


def _env_str(name: str, default: str) -> str:
    return str(os.getenv(name, default)).strip() or default


# Kling image-to-video API
KLING_ACCESS_KEY = str(os.getenv("KLING_ACCESS_KEY", "")).strip()
KLING_SECRET_KEY = str(os.getenv("KLING_SECRET_KEY", "")).strip()
KLING_API_BASE = _env_str("KLING_API_BASE", "https://api.klingai.com").rstrip("/")
KLING_MODEL = _env_str("KLING_MODEL", "kling-v1")
KLING_MODE = _env_str("KLING_MODE", "std")
KLING_CLIP_DURATION_S = max(1, _env_int("KLING_CLIP_DURATION_S", 5))
KLING_CFG_SCALE = min(1.0, max(0.0, _env_float("KLING_CFG_SCALE", 0.5)))
KLING_TOKEN_TTL_S = max(60, _env_int("KLING_TOKEN_TTL_S", 1800))
KLING_TOKEN_SKEW_S = max(0, _env_int("KLING_TOKEN_SKEW_S", 5))
KLING_HTTP_TIMEOUT_S = max(1.0, _env_float("KLING_HTTP_TIMEOUT_S", 60.0))

# Bounded polling: attempts x delay has to stay well below the host ceiling.
KLING_POLL_MAX_ATTEMPTS = max(1, _env_int("KLING_POLL_MAX_ATTEMPTS", 30))
KLING_POLL_INTERVALS = _env_float_list("KLING_POLL_INTERVALS", "10")

# Continuation
ANIMATION_TICK_MINUTES = max(0.1, _env_float("ANIMATION_TICK_MINUTES", 5.0))
ANIMATION_RESUME_ON_BOOT = _env_bool("ANIMATION_RESUME_ON_BOOT", True)
ANIMATION_ABORT_WAIT_S = max(0.0, _env_float("ANIMATION_ABORT_WAIT_S", 10.0))

FAILURE_POLICY_CONTINUE = "continue"
FAILURE_POLICY_HALT = "halt"
FAILURE_POLICIES = (FAILURE_POLICY_CONTINUE, FAILURE_POLICY_HALT)
ANIMATION_FAILURE_POLICY = _env_str("ANIMATION_FAILURE_POLICY", FAILURE_POLICY_CONTINUE).lower()
if ANIMATION_FAILURE_POLICY not in FAILURE_POLICIES:
    ANIMATION_FAILURE_POLICY = FAILURE_POLICY_CONTINUE

# Storage
ASSETS_DIR = _env_str("ASSETS_DIR", "stories")
JOB_STATE_PATH = _env_str("JOB_STATE_PATH", "state/animation_job.json")

ANIMATION_DEFAULT_PROMPT = _env_str(
    "ANIMATION_DEFAULT_PROMPT",
    "Gentle storybook animation, soft camera push-in, subtle character motion, warm light",
)
ANIMATION_NEGATIVE_PROMPT = _env_str(
    "ANIMATION_NEGATIVE_PROMPT",
    "blurry, distorted faces, extra limbs, text, watermark",
)
