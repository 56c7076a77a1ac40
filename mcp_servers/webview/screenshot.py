"""
Host-side screenshot post-processing.

The webview returns a JPEG data URL plus capture metadata. Before it reaches
the client the host:
- decodes and verifies the image,
- enforces the max-width invariant (HiDPI embedders may return a wider bitmap),
- attaches a PartialResult warning when embedded frames were omitted,
- optionally writes the JPEG to disk.
"""

from __future__ import annotations

import base64
import binascii
import logging
from io import BytesIO
from pathlib import Path
from typing import Any

from .errors import ExecutionError, PartialResult

logger = logging.getLogger("mcp.webview.screenshot")

DEFAULT_QUALITY = 85
DEFAULT_MAX_WIDTH = 1920
MIME_TYPE = "image/jpeg"


def clamp_quality(value: Any) -> int:
    try:
        q = int(round(float(value)))
    except (TypeError, ValueError, OverflowError):
        return DEFAULT_QUALITY
    return max(1, min(100, q))


def decode_data_url(data_url: str) -> bytes:
    header, sep, body = data_url.partition(",")
    if not sep or not header.startswith("data:image/") or ";base64" not in header:
        raise ExecutionError(reason="Screenshot data is not a base64 image data URL")
    try:
        return base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ExecutionError(reason=f"Screenshot data is not valid base64: {exc}") from exc


def encode_data_url(raw: bytes) -> str:
    return f"data:{MIME_TYPE};base64,{base64.b64encode(raw).decode('ascii')}"


def encode_jpeg(img: Any, quality: int) -> bytes:
    buf = BytesIO()
    img.convert("RGB").save(buf, format="JPEG", quality=clamp_quality(quality))
    return buf.getvalue()


def _open_image(raw: bytes) -> Any:
    from PIL import Image, UnidentifiedImageError  # type: ignore[import-not-found]

    try:
        img = Image.open(BytesIO(raw))
        img.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise ExecutionError(reason=f"Screenshot data is not a decodable image: {exc}") from exc
    return img


def fit_width(img: Any, max_width: int) -> Any:
    """Downscale `img` to `max_width` keeping the aspect ratio. Never upscales."""
    from PIL import Image  # type: ignore[import-not-found]

    if img.width <= max_width:
        return img
    height = max(1, round(img.height * max_width / img.width))
    return img.convert("RGB").resize((max_width, height), Image.Resampling.LANCZOS)


def process_capture(
    data: Any,
    *,
    quality: int = DEFAULT_QUALITY,
    max_width: int = DEFAULT_MAX_WIDTH,
    output_path: str | None = None,
) -> dict[str, Any]:
    body = data if isinstance(data, dict) else {"data": data}
    data_url = body.get("data")
    if not isinstance(data_url, str) or not data_url:
        raise ExecutionError(reason="Screenshot capture returned no image data")

    raw = decode_data_url(data_url)
    img = _open_image(raw)
    rescaled = False
    if img.width > max_width:
        img = fit_width(img, max_width)
        raw = encode_jpeg(img, quality)
        data_url = encode_data_url(raw)
        rescaled = True
        logger.debug("screenshot rescaled to %dx%d", img.width, img.height)

    out: dict[str, Any] = {
        "data": data_url,
        "mimeType": MIME_TYPE,
        "width": img.width,
        "height": img.height,
        "bytes": len(raw),
        "quality": quality,
        "tier": body.get("tier"),
        "rescaled": rescaled,
    }

    frames = body.get("frames") if isinstance(body.get("frames"), dict) else None
    if frames is not None:
        out["frames"] = frames
        total = int(frames.get("total") or 0)
        omitted = int(frames.get("omitted") or 0)
        if omitted > 0:
            out["warnings"] = [PartialResult(total_frames=total, omitted_frames=omitted).to_dict()]

    if output_path:
        path = Path(output_path).expanduser()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(raw)
        except OSError as exc:
            raise ExecutionError(reason=f"Failed to write screenshot to {path}: {exc}") from exc
        out["path"] = str(path)

    return out


__all__ = [
    "DEFAULT_MAX_WIDTH",
    "DEFAULT_QUALITY",
    "MIME_TYPE",
    "clamp_quality",
    "decode_data_url",
    "encode_data_url",
    "encode_jpeg",
    "fit_width",
    "process_capture",
]
