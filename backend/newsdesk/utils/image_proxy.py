from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import requests
from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
    ),
    "Accept": "image/avif,image/webp,image/apng,image/*,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}
FETCH_TIMEOUT_SECONDS = 15

# Instagram accepts feed images between 4:5 portrait and 1.91:1 landscape.
MIN_ASPECT_RATIO = 4 / 5
MAX_ASPECT_RATIO = 1.91
MAX_WIDTH = 1440
MIN_DIMENSION = 320
MAX_BYTES = 8 * 1024 * 1024
MAX_DOWNLOAD_BYTES = 20 * 1024 * 1024
DOWNLOAD_CHUNK_SIZE = 64 * 1024
JPEG_QUALITY = 85


class ImageProxyError(Exception):
    """Raised when a source image cannot be proxied."""

    def __init__(self, message: str, status_code: int = 502, **extra: Any) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.extra = extra


@dataclass
class SourceImage:
    data: bytes
    content_type: str
    final_url: str


def validate_source_url(src: Optional[str]) -> str:
    if not src or not src.strip():
        raise ImageProxyError("Missing src parameter", status_code=400)
    src = src.strip()
    if not (src.startswith("http://") or src.startswith("https://")):
        raise ImageProxyError("Invalid URL: must start with http:// or https://", status_code=400)
    return src


def read_capped(response: requests.Response, limit: int = MAX_DOWNLOAD_BYTES) -> bytes:
    """Read a streamed response body, refusing anything larger than ``limit`` bytes."""
    declared = response.headers.get("Content-Length")
    if declared and declared.isdigit() and int(declared) > limit:
        response.close()
        raise ImageProxyError(f"Image is larger than {limit} bytes", status_code=413, contentLength=int(declared))

    chunks = []
    received = 0
    try:
        for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
            received += len(chunk)
            if received > limit:
                raise ImageProxyError(f"Image is larger than {limit} bytes", status_code=413)
            chunks.append(chunk)
    except requests.RequestException as exc:
        raise ImageProxyError(f"Failed to read source image: {exc}", status_code=502) from exc
    finally:
        response.close()
    return b"".join(chunks)


def fetch_source_image(src: Optional[str], session: Optional[requests.Session] = None) -> SourceImage:
    """Download the image at ``src`` with browser-like headers."""
    url = validate_source_url(src)
    http = session or requests
    logger.info("Fetching image from %s", url)
    try:
        response = http.get(url, headers=BROWSER_HEADERS, timeout=FETCH_TIMEOUT_SECONDS, stream=True)
    except requests.RequestException as exc:
        raise ImageProxyError(f"Failed to fetch source image: {exc}", status_code=502) from exc

    if not response.ok:
        logger.error("Failed to fetch image %s: %s", url, response.status_code)
        response.close()
        raise ImageProxyError("Failed to fetch source image", status_code=502, status=response.status_code)

    content_type = response.headers.get("Content-Type") or "image/jpeg"
    if not content_type.startswith("image/"):
        logger.error("Response for %s is not an image: %s", url, content_type)
        response.close()
        raise ImageProxyError("Source URL does not return an image", status_code=400, contentType=content_type)

    data = read_capped(response, MAX_DOWNLOAD_BYTES)
    if not data:
        raise ImageProxyError("Image is empty", status_code=502)
    return SourceImage(data=data, content_type=content_type, final_url=response.url or url)


def _center_crop_to_ratio(image: Image.Image) -> Image.Image:
    width, height = image.size
    ratio = width / height
    if ratio > MAX_ASPECT_RATIO:
        new_width = int(round(height * MAX_ASPECT_RATIO))
        left = (width - new_width) // 2
        return image.crop((left, 0, left + new_width, height))
    if ratio < MIN_ASPECT_RATIO:
        new_height = int(round(width / MIN_ASPECT_RATIO))
        top = (height - new_height) // 2
        return image.crop((0, top, width, top + new_height))
    return image


def prepare_for_instagram(data: bytes) -> Tuple[bytes, Dict[str, Any]]:
    """Re-encode an image as an Instagram-safe JPEG and return it with its metadata."""
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except Image.DecompressionBombError as exc:
        raise ImageProxyError(f"Image is too large to process: {exc}", status_code=422) from exc
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise ImageProxyError(f"Could not decode image: {exc}", status_code=422) from exc

    original = {"format": (image.format or "unknown").lower(), "width": image.width, "height": image.height}
    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[-1])
        image = background
    elif image.mode != "RGB":
        image = image.convert("RGB")

    image = _center_crop_to_ratio(image)
    if image.width > MAX_WIDTH:
        new_height = max(int(image.height * MAX_WIDTH / image.width), 1)
        image = image.resize((MAX_WIDTH, new_height), Image.Resampling.LANCZOS)

    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=JPEG_QUALITY, optimize=True)
    output = buffer.getvalue()
    return output, {
        "original": original,
        "output": {"format": "jpeg", "width": image.width, "height": image.height, "bytes": len(output)},
    }


def detect_image_signature(data: bytes) -> Optional[str]:
    if data[:3] == b"\xff\xd8\xff":
        return "jpeg"
    if data[:4] == b"\x89PNG":
        return "png"
    if data[:4] == b"GIF8":
        return "gif"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "webp"
    if data[4:8] == b"ftyp" and b"avif" in data[8:12]:
        return "avif"
    return None


def _sniff_non_image(data: bytes) -> str:
    head = data[:100].decode("utf-8", errors="ignore").lower()
    if "<html" in head or "<!doctype" in head:
        return "HTML"
    if "%pdf" in head:
        return "PDF"
    if "<?xml" in head:
        return "XML"
    return "unknown"


def analyze_image(src: Optional[str], session: Optional[requests.Session] = None) -> Tuple[Dict[str, Any], int]:
    """Fetch ``src`` and report whether it would survive the Instagram pipeline.

    Returns the report and the HTTP status the debug endpoint should use.
    """
    url = validate_source_url(src)
    http = session or requests
    try:
        response = http.get(url, headers=BROWSER_HEADERS, timeout=FETCH_TIMEOUT_SECONDS, stream=True)
    except requests.RequestException as exc:
        return {"src": url, "error": f"Request failed: {exc}", "okForIG": False}, 422

    try:
        data = read_capped(response, MAX_DOWNLOAD_BYTES)
    except ImageProxyError as exc:
        return {"src": url, "error": str(exc), "okForIG": False, **exc.extra}, 422
    content_type = response.headers.get("Content-Type", "")
    report: Dict[str, Any] = {
        "src": url,
        "finalUrl": response.url or url,
        "status": response.status_code,
        "headers": {
            "content-type": content_type,
            "content-length": response.headers.get("Content-Length", ""),
            "cache-control": response.headers.get("Cache-Control", ""),
        },
        "firstBytesSignature": data[:32].hex(" "),
        "detectedIsImage": False,
        "okForIG": False,
    }
    if not response.ok:
        report["error"] = f"Upstream returned {response.status_code}"
        return report, 422
    if not data:
        report["error"] = "Image is empty"
        return report, 422

    signature = detect_image_signature(data)
    if not content_type.startswith("image/") and signature is None:
        detected = _sniff_non_image(data)
        report["detectedType"] = detected
        report["error"] = f"Upstream returned {detected} content (Content-Type: {content_type})"
        return report, 422

    report["detectedIsImage"] = True
    report["signature"] = signature
    try:
        _, meta = prepare_for_instagram(data)
    except ImageProxyError as exc:
        report["error"] = str(exc)
        return report, 422

    output = meta["output"]
    too_small = min(output["width"], output["height"]) < MIN_DIMENSION
    too_large = output["width"] > MAX_WIDTH or output["bytes"] > MAX_BYTES
    report.update(meta)
    report["okForIG"] = not too_small and not too_large
    if too_small:
        report["warning"] = f"Image is smaller than {MIN_DIMENSION}px on one side"
    return report, 200
