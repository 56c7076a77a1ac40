from __future__ import annotations

import io
from pathlib import Path

import pytest

PIL = pytest.importorskip("PIL")

from PIL import Image  # noqa: E402

from mcp_servers.webview.errors import ExecutionError  # noqa: E402
from mcp_servers.webview.screenshot import (  # noqa: E402
    clamp_quality,
    decode_data_url,
    encode_data_url,
    encode_jpeg,
    process_capture,
)


def _capture(width: int, height: int, *, quality: int = 85, **extra) -> dict:
    img = Image.effect_noise((width, height), 48).convert("RGB")
    return {"data": encode_data_url(encode_jpeg(img, quality)), "width": width, "height": height, **extra}


def test_clamp_quality() -> None:
    assert clamp_quality(0) == 1
    assert clamp_quality(150) == 100
    assert clamp_quality("70") == 70
    assert clamp_quality(None) == 85
    assert clamp_quality(float("inf")) == 85
    assert clamp_quality(float("nan")) == 85


def test_decode_rejects_non_image_urls() -> None:
    with pytest.raises(ExecutionError):
        decode_data_url("data:text/plain;base64,aGVsbG8=")
    with pytest.raises(ExecutionError):
        decode_data_url("data:image/jpeg;base64,@@@")
    with pytest.raises(ExecutionError):
        decode_data_url("not a data url")


def test_wide_capture_is_scaled_to_max_width() -> None:
    out = process_capture(_capture(1600, 400, tier=1), quality=80, max_width=800)
    assert out["width"] == 800
    assert out["height"] == 200
    assert out["rescaled"] is True
    assert out["tier"] == 1
    assert out["mimeType"] == "image/jpeg"
    with Image.open(io.BytesIO(decode_data_url(out["data"]))) as img:
        assert img.size == (800, 200)
        assert img.format == "JPEG"


def test_narrow_capture_is_never_upscaled() -> None:
    src = _capture(320, 240)
    out = process_capture(src, max_width=1920)
    assert (out["width"], out["height"]) == (320, 240)
    assert out["rescaled"] is False
    assert out["data"] == src["data"]


def test_lower_quality_is_not_larger() -> None:
    img = Image.effect_noise((640, 480), 64).convert("RGB")
    sizes = [len(encode_jpeg(img, q)) for q in (20, 50, 85, 100)]
    assert sizes == sorted(sizes)


def test_omitted_frames_become_a_warning_not_an_error() -> None:
    out = process_capture(_capture(200, 100, frames={"total": 3, "composited": 1, "omitted": 2}))
    assert out["frames"]["omitted"] == 2
    (warning,) = out["warnings"]
    assert warning["kind"] == "PartialResult"
    assert warning["totalFrames"] == 3
    assert warning["omittedFrames"] == 2

    clean = process_capture(_capture(200, 100, frames={"total": 1, "composited": 1, "omitted": 0}))
    assert "warnings" not in clean


def test_output_path_receives_the_jpeg(tmp_path: Path) -> None:
    target = tmp_path / "shots" / "main.jpg"
    out = process_capture(_capture(100, 50), output_path=str(target))
    assert out["path"] == str(target)
    assert target.read_bytes()[:2] == b"\xff\xd8"
    assert out["bytes"] == target.stat().st_size


def test_missing_or_corrupt_data_is_an_execution_error() -> None:
    with pytest.raises(ExecutionError):
        process_capture({"data": ""})
    with pytest.raises(ExecutionError):
        process_capture({"data": encode_data_url(b"definitely not a jpeg")})
