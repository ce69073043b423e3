import json
import sys
from pathlib import Path

import httpx
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from assets_store import ClipArtifact, FileAssetLocator  # noqa: E402


def _story(base: Path, subject: str, indices, *, ext=".png") -> Path:
    images = base / subject / "images"
    images.mkdir(parents=True)
    for index in indices:
        (images / f"scene_{index}{ext}").write_bytes(b"img")
    return base / subject


def _download_client(body=b"\x00\x00\x00\x18ftypmp42", status=200):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(status, content=body)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    client.seen = seen
    return client


def test_count_inputs_uses_highest_scene_index(tmp_path):
    _story(tmp_path, "moon-rabbit", [1, 2, 4])
    (tmp_path / "moon-rabbit" / "images" / "cover.png").write_bytes(b"img")

    locator = FileAssetLocator(tmp_path)

    assert locator.count_inputs("moon-rabbit", "en") == 4


def test_count_inputs_prefers_manifest(tmp_path):
    story = _story(tmp_path, "moon-rabbit", [1, 2])
    (story / "scenes.json").write_text(json.dumps({"scenes": ["a", "b", "c"]}), encoding="utf-8")

    assert FileAssetLocator(tmp_path).count_inputs("moon-rabbit", "en") == 3


def test_variant_manifest_overrides_subject_manifest(tmp_path):
    story = _story(tmp_path, "moon-rabbit", [1, 2])
    (story / "scenes.json").write_text(json.dumps(["a", "b", "c"]), encoding="utf-8")
    (story / "bn").mkdir()
    (story / "bn" / "scenes.json").write_text(
        json.dumps([{"animation_prompt": "khorgosh chand dekhe"}, {"prompt": "dui"}]),
        encoding="utf-8",
    )
    locator = FileAssetLocator(tmp_path)

    assert locator.count_inputs("moon-rabbit", "bn") == 2
    assert locator.get_input("moon-rabbit", "bn", 1).prompt == "khorgosh chand dekhe"
    assert locator.get_input("moon-rabbit", "en", 2).prompt == "b"


def test_count_inputs_missing_story_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        FileAssetLocator(tmp_path).count_inputs("nope", "en")


def test_get_input_handles_gaps_and_extensions(tmp_path):
    _story(tmp_path, "owl", [1, 3])
    (tmp_path / "owl" / "images" / "scene_2.webp").write_bytes(b"img")
    locator = FileAssetLocator(tmp_path)

    assert locator.get_input("owl", "en", 1).image_path.name == "scene_1.png"
    assert locator.get_input("owl", "en", 2).image_path.name == "scene_2.webp"
    assert locator.get_input("owl", "en", 4) is None
    assert locator.get_input("owl", "en", 3).prompt is None


@pytest.mark.parametrize("subject", ["", "..", "a/b", "a\\b"])
def test_rejects_unsafe_path_components(tmp_path, subject):
    with pytest.raises(ValueError):
        FileAssetLocator(tmp_path).count_inputs(subject, "en")


def test_store_downloads_clip_and_writes_sidecar(tmp_path):
    _story(tmp_path, "owl", [1])
    client = _download_client()
    locator = FileAssetLocator(tmp_path, http_client=client)
    artifact = ClipArtifact(url="https://cdn.test/owl-1.mp4", task_id="task-1", duration_s=5.0, extra={"poll_attempts": 3})

    assert locator.output_exists("owl", "en", 1) is False
    relative = locator.store("owl", "en", 1, artifact)

    assert relative == "owl/en/clips/scene_1.mp4"
    assert locator.output_exists("owl", "en", 1) is True
    assert client.seen == ["https://cdn.test/owl-1.mp4"]
    sidecar = json.loads((tmp_path / "owl" / "en" / "clips" / "scene_1.json").read_text(encoding="utf-8"))
    assert sidecar["task_id"] == "task-1"
    assert sidecar["extra"] == {"poll_attempts": 3}
    assert sorted(p.name for p in (tmp_path / "owl" / "en" / "clips").iterdir()) == ["scene_1.json", "scene_1.mp4"]


def test_store_empty_download_leaves_no_output(tmp_path):
    _story(tmp_path, "owl", [1])
    locator = FileAssetLocator(tmp_path, http_client=_download_client(body=b""))

    with pytest.raises(ValueError):
        locator.store("owl", "en", 1, ClipArtifact(url="https://cdn.test/empty.mp4"))

    assert locator.output_exists("owl", "en", 1) is False
    assert list((tmp_path / "owl" / "en" / "clips").iterdir()) == []


def test_store_http_error_propagates(tmp_path):
    _story(tmp_path, "owl", [1])
    locator = FileAssetLocator(tmp_path, http_client=_download_client(status=404))

    with pytest.raises(httpx.HTTPStatusError):
        locator.store("owl", "en", 1, ClipArtifact(url="https://cdn.test/gone.mp4"))

    assert locator.output_exists("owl", "en", 1) is False


def test_zero_byte_clip_does_not_count_as_output(tmp_path):
    _story(tmp_path, "owl", [1])
    clips = tmp_path / "owl" / "en" / "clips"
    clips.mkdir(parents=True)
    (clips / "scene_1.mp4").write_bytes(b"")

    assert FileAssetLocator(tmp_path).output_exists("owl", "en", 1) is False
