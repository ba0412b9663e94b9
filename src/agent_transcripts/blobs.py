"""Replace inline base64 images with content-addressed blob references."""

import base64
import binascii
import hashlib
import logging
import re
from typing import Any, Optional

from .models import ImageRef, TranscriptBlob

logger = logging.getLogger("agent_transcripts.blobs")

DATA_URL_PATTERN = re.compile(r"^data:([^;]+);base64,([\s\S]+)$")
UNKNOWN_MEDIA_TYPE = "image/unknown"

BlobMap = dict[str, TranscriptBlob]


def decode_base64(data: str) -> bytes:
    """Decode base64 text, tolerating whitespace and missing padding."""
    compact = re.sub(r"\s+", "", data)
    compact += "=" * (-len(compact) % 4)
    return base64.b64decode(compact)


def store_blob(data: bytes, media_type: str, blobs: BlobMap) -> str:
    """Add ``data`` to the blob map and return its SHA-256 digest."""
    sha256 = hashlib.sha256(data).hexdigest()
    if sha256 not in blobs:
        blobs[sha256] = TranscriptBlob(data=data, media_type=media_type)
    return sha256


def image_reference(sha256: str, media_type: str) -> dict:
    return {
        "type": "image",
        "source": {"type": "sha256", "mediaType": media_type, "sha256": sha256},
    }


def _media_type(source: dict) -> str:
    for key in ("mediaType", "media_type"):
        if isinstance(source.get(key), str):
            return source[key]
    return UNKNOWN_MEDIA_TYPE


def sanitize_images(value: Any, blobs: BlobMap) -> Any:
    """Return a copy of ``value`` with inline images moved into ``blobs``.

    Any ``{"type": "image", "source": {"data": ...}}`` node, at any depth,
    is replaced by a sha256 reference. Undecodable data is replaced by an
    ``omitted`` source so raw bytes never reach the transcript.
    """
    if isinstance(value, list):
        return [sanitize_images(item, blobs) for item in value]
    if not isinstance(value, dict):
        return value

    source = value.get("source")
    if value.get("type") == "image" and isinstance(source, dict):
        data = source.get("data")
        if isinstance(data, str) and data:
            media_type = _media_type(source)
            try:
                decoded = decode_base64(data)
            except (binascii.Error, ValueError):
                logger.warning("Dropping undecodable %s image data", media_type)
                return {"type": "image", "source": {"type": "omitted", "mediaType": media_type}}
            return image_reference(store_blob(decoded, media_type, blobs), media_type)

    return {key: sanitize_images(item, blobs) for key, item in value.items()}


def extract_image_references(value: Any) -> list[ImageRef]:
    """Collect the sha256 image references of an already-sanitized value."""
    images: list[ImageRef] = []

    def traverse(v: Any) -> None:
        if isinstance(v, list):
            for item in v:
                traverse(item)
            return
        if not isinstance(v, dict):
            return
        source = v.get("source")
        if (
            v.get("type") == "image"
            and isinstance(source, dict)
            and source.get("type") == "sha256"
            and isinstance(source.get("sha256"), str)
        ):
            media_type = source.get("mediaType")
            images.append(
                ImageRef(
                    sha256=source["sha256"],
                    media_type=media_type if isinstance(media_type, str) else UNKNOWN_MEDIA_TYPE,
                )
            )
            return
        for item in v.values():
            traverse(item)

    traverse(value)
    return images


def merge_image_references(message: dict, value: Any) -> dict:
    """Add the image references found in ``value`` to ``message["images"]``.

    References already on the message are kept once. ``message`` is updated
    in place with a new list and returned.
    """
    images = list(message.get("images") or [])
    known = {image["sha256"] for image in images}
    for ref in extract_image_references(value):
        if ref.sha256 not in known:
            known.add(ref.sha256)
            images.append(ref.to_dict())
    if images:
        message["images"] = images
    return message


def image_from_data_url(part: dict, blobs: BlobMap) -> Optional[ImageRef]:
    """Store the image of a ``data:`` URL part (``image_url``/``imageUrl``/``url``)."""
    raw_url = part.get("image_url") or part.get("imageUrl") or part.get("url")
    if isinstance(raw_url, dict):
        raw_url = raw_url.get("url")
    if not isinstance(raw_url, str):
        return None

    match = DATA_URL_PATTERN.match(raw_url.strip())
    if not match:
        return None
    media_type = match.group(1) or UNKNOWN_MEDIA_TYPE
    try:
        decoded = decode_base64(match.group(2))
    except (binascii.Error, ValueError):
        logger.warning("Dropping undecodable %s data URL", media_type)
        return None
    return ImageRef(sha256=store_blob(decoded, media_type, blobs), media_type=media_type)
