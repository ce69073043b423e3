"""Scene inputs and animated clip outputs of story packages on disk."""
from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import httpx

LOGGER = logging.getLogger("animation.assets")

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".webp")
MANIFEST_FILENAME = "scenes.json"
_SCENE_IMAGE_RE = re.compile(r"^scene_(\d+)$")
_UNSAFE_COMPONENT_RE = re.compile(r"[\\/\x00]")


class InputMissingError(LookupError):
    """The scene input for one index is not available."""


@dataclass
class SceneInput:
    """Everything needed to animate one scene."""

    index: int
    image_path: Path
    prompt: Optional[str] = None


@dataclass
class ClipArtifact:
    """Reference to a finished remote clip."""

    url: str
    task_id: Optional[str] = None
    duration_s: Optional[float] = None
    extra: Dict[str, Any] = field(default_factory=dict)


class AssetLocator(Protocol):
    """Resolves per-scene inputs and records outputs."""

    def count_inputs(self, subject_id: str, variant: str) -> int:
        ...

    def get_input(self, subject_id: str, variant: str, index: int) -> Optional[SceneInput]:
        ...

    def output_exists(self, subject_id: str, variant: str, index: int) -> bool:
        ...

    def store(self, subject_id: str, variant: str, index: int, artifact: ClipArtifact) -> str:
        ...


def _check_component(value: str, label: str) -> str:
    text = str(value or "").strip()
    if not text or text in {".", ".."} or _UNSAFE_COMPONENT_RE.search(text):
        raise ValueError(f"invalid {label}: {value!r}")
    return text


def _manifest_prompt(entry: Any) -> Optional[str]:
    if isinstance(entry, str):
        return entry.strip() or None
    if isinstance(entry, dict):
        for key in ("animation_prompt", "prompt", "text"):
            value = entry.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return None


class FileAssetLocator:
    """Story packages laid out as ``<base>/<subject>/images/scene_<n>.<ext>``.

    Clips are written to ``<base>/<subject>/<variant>/clips/scene_<n>.mp4``
    together with a ``.json`` sidecar describing where they came from.
    """

    def __init__(
        self,
        base_dir: str | Path,
        *,
        http_client: Optional[httpx.Client] = None,
        download_timeout_s: float = 120.0,
    ) -> None:
        self._base_dir = Path(base_dir).resolve()
        self._http_client = http_client
        self._download_timeout_s = download_timeout_s

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def _subject_dir(self, subject_id: str) -> Path:
        return self._base_dir / _check_component(subject_id, "subject_id")

    def _variant_dir(self, subject_id: str, variant: str) -> Path:
        return self._subject_dir(subject_id) / _check_component(variant, "variant")

    def clip_path(self, subject_id: str, variant: str, index: int) -> Path:
        return self._variant_dir(subject_id, variant) / "clips" / f"scene_{int(index)}.mp4"

    def _load_manifest(self, subject_id: str, variant: str) -> Optional[List[Any]]:
        for candidate in (
            self._variant_dir(subject_id, variant) / MANIFEST_FILENAME,
            self._subject_dir(subject_id) / MANIFEST_FILENAME,
        ):
            if not candidate.is_file():
                continue
            try:
                raw = json.loads(candidate.read_text(encoding="utf-8"))
            except json.JSONDecodeError as exc:
                LOGGER.warning("scene_manifest_invalid", extra={"path": str(candidate), "error": str(exc)})
                continue
            if isinstance(raw, dict):
                raw = raw.get("scenes")
            if isinstance(raw, list):
                return raw
            LOGGER.warning("scene_manifest_not_a_list", extra={"path": str(candidate)})
        return None

    def _image_indices(self, subject_id: str) -> List[int]:
        images_dir = self._subject_dir(subject_id) / "images"
        if not images_dir.is_dir():
            return []
        indices = []
        for path in images_dir.iterdir():
            if path.suffix.lower() not in IMAGE_EXTENSIONS or not path.is_file():
                continue
            match = _SCENE_IMAGE_RE.match(path.stem)
            if match:
                indices.append(int(match.group(1)))
        return sorted(indices)

    def count_inputs(self, subject_id: str, variant: str) -> int:
        subject_dir = self._subject_dir(subject_id)
        if not subject_dir.is_dir():
            raise FileNotFoundError(f"story folder not found: {subject_dir}")
        manifest = self._load_manifest(subject_id, variant)
        if manifest is not None:
            return len(manifest)
        indices = self._image_indices(subject_id)
        return indices[-1] if indices else 0

    def get_input(self, subject_id: str, variant: str, index: int) -> Optional[SceneInput]:
        images_dir = self._subject_dir(subject_id) / "images"
        image_path = None
        for extension in IMAGE_EXTENSIONS:
            candidate = images_dir / f"scene_{int(index)}{extension}"
            if candidate.is_file():
                image_path = candidate
                break
        if image_path is None:
            return None
        prompt = None
        manifest = self._load_manifest(subject_id, variant)
        if manifest and 1 <= index <= len(manifest):
            prompt = _manifest_prompt(manifest[index - 1])
        return SceneInput(index=int(index), image_path=image_path, prompt=prompt)

    def output_exists(self, subject_id: str, variant: str, index: int) -> bool:
        path = self.clip_path(subject_id, variant, index)
        return path.is_file() and path.stat().st_size > 0

    def store(self, subject_id: str, variant: str, index: int, artifact: ClipArtifact) -> str:
        target = self.clip_path(subject_id, variant, index)
        target.parent.mkdir(parents=True, exist_ok=True)
        part_path = target.with_name(f".{target.name}.part")
        client = self._http_client or httpx.Client(timeout=self._download_timeout_s, follow_redirects=True)
        size = 0
        try:
            with client.stream("GET", artifact.url) as response:
                response.raise_for_status()
                with part_path.open("wb") as handle:
                    for chunk in response.iter_bytes():
                        handle.write(chunk)
                        size += len(chunk)
            if size == 0:
                raise ValueError(f"empty clip downloaded from {artifact.url}")
            os.replace(part_path, target)
        finally:
            if self._http_client is None:
                client.close()
            if part_path.exists():
                part_path.unlink()

        metadata = {
            "subject_id": subject_id,
            "variant": variant,
            "index": int(index),
            "source_url": artifact.url,
            "task_id": artifact.task_id,
            "duration_s": artifact.duration_s,
            "bytes": size,
            "stored_at": datetime.now(timezone.utc).isoformat(),
        }
        if artifact.extra:
            metadata["extra"] = artifact.extra
        target.with_suffix(".json").write_text(
            json.dumps(metadata, ensure_ascii=False, indent=2, sort_keys=True),
            encoding="utf-8",
        )
        relative = target.relative_to(self._base_dir).as_posix()
        LOGGER.info("clip_stored", extra={"path": relative, "bytes": size})
        return relative


__all__ = [
    "AssetLocator",
    "ClipArtifact",
    "FileAssetLocator",
    "InputMissingError",
    "SceneInput",
]
