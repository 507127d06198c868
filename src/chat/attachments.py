"""Attachment normalization and upload validation.

Attachment records historically arrived in several shapes (media-host
responses, legacy client payloads). ``normalize_attachment`` folds all of
them into the canonical ``Attachment`` record at the message-store ingress.
``validate_upload`` applies the per-kind extension / MIME / size limits
before bytes are sent to the media host.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from src.shared.errors import ValidationError
from src.shared.types import Attachment, AttachmentKind

if TYPE_CHECKING:
    from collections.abc import Mapping


@dataclass(frozen=True)
class UploadLimits:
    extensions: frozenset[str]
    mime_types: frozenset[str]
    max_bytes: int


UPLOAD_LIMITS: dict[str, UploadLimits] = {
    AttachmentKind.IMAGE: UploadLimits(
        extensions=frozenset({"jpg", "jpeg", "png", "gif", "webp"}),
        mime_types=frozenset({"image/jpeg", "image/png", "image/gif", "image/webp"}),
        max_bytes=10 * 1024 * 1024,
    ),
    AttachmentKind.VIDEO: UploadLimits(
        extensions=frozenset({"mp4", "avi", "mov", "mkv", "webm"}),
        mime_types=frozenset(
            {
                "video/mp4",
                "video/quicktime",
                "video/x-msvideo",
                "video/x-matroska",
                "video/webm",
            }
        ),
        max_bytes=100 * 1024 * 1024,
    ),
}

# Source field names, canonical name first.
_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "url": ("url", "secure_url", "urlCloudinary"),
    "public_id": ("public_id", "publicId"),
    "kind": ("kind", "type", "tipo"),
    "original_name": ("original_name", "originalName", "nombreOriginal"),
    "size": ("size", "bytes", "tamaño", "tamanio"),
    "duration": ("duration", "duracion"),
    "dimensions": ("dimensions", "anchoAlto"),
}

_LEGACY_KINDS = {"imagen": AttachmentKind.IMAGE, "video": AttachmentKind.VIDEO}


def _pick(raw: Mapping[str, Any], name: str) -> Any:
    for alias in _FIELD_ALIASES[name]:
        value = raw.get(alias)
        if value is not None and value != "":
            return value
    return None


def _normalize_kind(value: Any) -> str:
    kind = str(value or "").strip().lower()
    kind = _LEGACY_KINDS.get(kind, kind)
    if kind not in AttachmentKind.ALL:
        msg = f"Unsupported attachment kind: {value!r}"
        raise ValidationError(msg, field="kind")
    return kind


def _normalize_dimensions(raw: Mapping[str, Any]) -> str | None:
    dims = _pick(raw, "dimensions")
    if dims is None and raw.get("width") and raw.get("height"):
        dims = f"{raw['width']}x{raw['height']}"
    if dims is None:
        return None
    dims = str(dims)
    # Media hosts report "undefinedxundefined" for audio-only uploads.
    if "undefined" in dims or "None" in dims:
        return None
    return dims


def normalize_attachment(raw: Attachment | Mapping[str, Any]) -> Attachment:
    """Fold any known attachment shape into the canonical record.

    Raises:
        ValidationError: url, public id or kind is missing or invalid.
    """
    if isinstance(raw, Attachment):
        return raw

    url = _pick(raw, "url")
    public_id = _pick(raw, "public_id")
    if not url or not public_id:
        msg = "Attachment requires url and publicId"
        raise ValidationError(msg, field="attachments")

    size = _pick(raw, "size")
    duration = _pick(raw, "duration")
    try:
        size = int(size) if size is not None else 0
        duration = float(duration) if duration is not None else None
    except (TypeError, ValueError) as exc:
        msg = "Attachment size and duration must be numeric"
        raise ValidationError(msg, field="attachments") from exc
    return Attachment(
        url=str(url),
        public_id=str(public_id),
        kind=_normalize_kind(_pick(raw, "kind")),
        original_name=str(_pick(raw, "original_name") or ""),
        size=size,
        duration=duration,
        dimensions=_normalize_dimensions(raw),
    )


def validate_upload(*, filename: str, content_type: str, size: int) -> str:
    """Validate an upload against the per-kind limits.

    Returns:
        The attachment kind (``image`` or ``video``).

    Raises:
        ValidationError: MIME type, extension or size not allowed.
    """
    kind = next(
        (k for k, limits in UPLOAD_LIMITS.items() if content_type in limits.mime_types),
        None,
    )
    if kind is None:
        msg = f"File type not allowed: {content_type}"
        raise ValidationError(msg, field="file")

    limits = UPLOAD_LIMITS[kind]
    extension = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    if extension not in limits.extensions:
        allowed = ", ".join(sorted(limits.extensions))
        msg = f"Extension not allowed. Valid extensions: {allowed}"
        raise ValidationError(msg, field="file")

    if size <= 0:
        msg = "File is empty"
        raise ValidationError(msg, field="file")
    if size > limits.max_bytes:
        msg = f"File too large. Maximum size: {limits.max_bytes // (1024 * 1024)}MB"
        raise ValidationError(msg, field="file")

    return kind
