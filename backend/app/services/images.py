"""Image classification and grouping for maintenance requests.

Image records reach us in several shapes: ORM rows, API schemas, and plain
dicts from older clients that used ``url``/``imageUrl`` keys and sometimes
omitted the type or upload time. ``normalize_image`` applies the defaulting
rules once so everything downstream sees a ``MaintenanceImageResponse``.
"""

from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from pydantic import ValidationError as SchemaValidationError

from app.models.enums import ImageType
from app.schemas.maintenance import ImageGroup, MaintenanceImageResponse

# Display order of the stages
STAGE_ORDER = (
    ImageType.INITIAL,
    ImageType.ADDITIONAL,
    ImageType.PROGRESS,
    ImageType.COMPLETION,
)

STAGE_LABELS = {
    ImageType.INITIAL: "Initial Request",
    ImageType.ADDITIONAL: "Additional Images",
    ImageType.PROGRESS: "Work in Progress",
    ImageType.COMPLETION: "Completion",
}

# Untyped uploads from the generic uploader are shown with the additional images
STAGE_ALIASES = {ImageType.GENERAL: ImageType.ADDITIONAL}

_URL_KEYS = ("image_url", "imageUrl", "url")
_TYPE_KEYS = ("image_type", "imageType", "type")
_UPLOADED_KEYS = ("uploaded_at", "uploadedAt", "created_at")


def _pick(raw: Any, keys: Iterable[str]) -> Any:
    for key in keys:
        if isinstance(raw, dict):
            value = raw.get(key)
        else:
            value = getattr(raw, key, None)
        if value not in (None, ""):
            return value
    return None


def parse_image_type(value: Any) -> Optional[ImageType]:
    """Coerce a stored type to ``ImageType``; unknown values become None."""
    if value is None or isinstance(value, ImageType):
        return value
    try:
        return ImageType(str(value).strip().lower())
    except ValueError:
        return None


def normalize_image(raw: Any, now: Optional[datetime] = None) -> Optional[MaintenanceImageResponse]:
    """Return a displayable image, or None when the record has no usable URL.

    Missing type defaults to ``initial`` and missing upload time to ``now``.
    The input is never modified.
    """
    if isinstance(raw, str):
        raw = {"image_url": raw}

    url = _pick(raw, _URL_KEYS)
    if not isinstance(url, str) or not url.strip():
        return None

    uploaded_at = _pick(raw, _UPLOADED_KEYS)
    if isinstance(uploaded_at, str):
        try:
            uploaded_at = datetime.fromisoformat(uploaded_at.replace("Z", "+00:00"))
        except ValueError:
            uploaded_at = None
    if isinstance(uploaded_at, datetime) and uploaded_at.tzinfo is not None:
        uploaded_at = uploaded_at.astimezone(timezone.utc).replace(tzinfo=None)

    try:
        return MaintenanceImageResponse(
            id=_pick(raw, ("id",)),
            image_url=url.strip(),
            image_type=parse_image_type(_pick(raw, _TYPE_KEYS)) or ImageType.INITIAL,
            description=_pick(raw, ("description",)),
            uploaded_by=_pick(raw, ("uploaded_by", "uploadedBy")),
            uploaded_at=uploaded_at or now or datetime.utcnow(),
        )
    except SchemaValidationError:
        return None


def displayable_images(images: Iterable[Any], now: Optional[datetime] = None) -> list[MaintenanceImageResponse]:
    """Normalize, drop images without a URL, and sort by upload time."""
    now = now or datetime.utcnow()
    normalized = [img for img in (normalize_image(raw, now) for raw in images) if img is not None]
    # url and id make the order total, so input order never leaks into the output
    return sorted(
        normalized,
        key=lambda img: (img.uploaded_at, img.image_url, str(img.id or "")),
    )


def stage_of(image: MaintenanceImageResponse) -> ImageType:
    image_type = image.image_type or ImageType.INITIAL
    return STAGE_ALIASES.get(image_type, image_type)


def organize(images: Iterable[Any], now: Optional[datetime] = None) -> list[ImageGroup]:
    """Group a request's images by stage for display.

    Groups come out in ``STAGE_ORDER``; stages without images are omitted.
    Pure: the same images always produce the same groups.
    """
    grouped: dict[ImageType, list[MaintenanceImageResponse]] = {stage: [] for stage in STAGE_ORDER}
    for image in displayable_images(images, now):
        grouped[stage_of(image)].append(image)

    return [
        ImageGroup(stage=stage, label=STAGE_LABELS[stage], images=grouped[stage])
        for stage in STAGE_ORDER
        if grouped[stage]
    ]


def images_of_stage(images: Iterable[Any], stage: ImageType, now: Optional[datetime] = None) -> list[MaintenanceImageResponse]:
    return [img for img in displayable_images(images, now) if stage_of(img) == stage]
