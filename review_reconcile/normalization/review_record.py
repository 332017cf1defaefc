# ==============================================
# ReviewRecord
# ==============================================
#
# PURPOSE:
#   Typed, read-only view over one raw review document. Every field the
#   reconciliation jobs look at has a named accessor, so classification,
#   recovery and planning never index the raw dict with path strings.
#
# WHY THIS CLASS EXISTS:
#   The collection holds three generations of review shapes. Any field
#   may be absent, null, or of the "wrong" type. Absence is an input,
#   not a fault: no accessor raises on a missing or mistyped value.
#
# CLASS: ReviewRecord
# -------------------
#   Constructor:
#   ------------
#   - __init__(document: Mapping)
#
#   Accessors (raw values):
#   -----------------------
#   document_id (stored `_id`), record_id (its string form), user_id,
#   restaurant_id, username, restaurant_name,
#   created_at, legacy_timestamp, updated_at, dish, dish_name, images,
#   media, media_photos, is_deleted, caption, schema_version,
#   normalize_error, menu_item_id, dish_id, dish_category
#
#   Derived checks:
#   ---------------
#   - has_valid_user_id / has_valid_restaurant_id / has_valid_foreign_keys
#   - created_at_kind / legacy_timestamp_kind -> TemporalKind
#   - has_bool_is_deleted, has_media_photos_list, has_nested_objects
#   - photo_count, has_any_photo, has_caption
#
# FUNCTIONS:
# ----------
# - is_external_place_id(value, policy=PLACE_ID_POLICY) -> bool
# - parse_timestamp(value) -> datetime | None
# - is_timestamp(value) -> bool
#
# ==============================================

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Mapping, Optional

from bson.timestamp import Timestamp


# Current canonical generation written by the normalize job
CANONICAL_SCHEMA_VERSION = 2

# Top-level objects that only exist on structured reviews
NESTED_OBJECT_FIELDS = ("media", "facets", "notes", "stats")


@dataclass(frozen=True)
class PlaceIdPolicy:
    """
    Shape of an external place identifier accepted as a restaurantId.

    Changing any bound is a policy change: bump ``version``.
    """
    version: int
    prefix: str
    min_length: int
    max_length: int


PLACE_ID_POLICY = PlaceIdPolicy(version=1, prefix="ChIJ", min_length=20, max_length=40)


class TemporalKind(Enum):
    """How a date-like field is physically stored."""
    TIMESTAMP = "timestamp"
    STRING = "string"
    MISSING = "missing"
    OTHER = "other"


DATETIME_FORMATS = [
    "%Y-%m-%dT%H:%M:%SZ",
    "%Y-%m-%dT%H:%M:%S.%fZ",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%a, %d %b %Y %H:%M:%S GMT",
    "%B %d, %Y",
]

_ZULU_SUFFIX = re.compile(r"[zZ]$")


def non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def is_timestamp(value: Any) -> bool:
    """True for store-native timestamps (BSON dates and BSON timestamps)."""
    return isinstance(value, (datetime, Timestamp))


def is_external_place_id(value: Any, policy: PlaceIdPolicy = PLACE_ID_POLICY) -> bool:
    """Check ``value`` against the external place identifier pattern."""
    if not isinstance(value, str):
        return False
    trimmed = value.strip()
    return (
        trimmed.startswith(policy.prefix)
        and policy.min_length <= len(trimmed) <= policy.max_length
    )


def temporal_kind(value: Any) -> TemporalKind:
    if value is None:
        return TemporalKind.MISSING
    if is_timestamp(value):
        return TemporalKind.TIMESTAMP
    if isinstance(value, str):
        return TemporalKind.STRING
    return TemporalKind.OTHER


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Turn a stored date value into an aware UTC datetime.

    Accepts native timestamps as-is, and ISO-8601 or a handful of common
    date strings. Returns None for anything unparseable.
    """
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, Timestamp):
        return value.as_datetime()
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    try:
        return _as_utc(datetime.fromisoformat(_ZULU_SUFFIX.sub("+00:00", text)))
    except ValueError:
        pass

    for fmt in DATETIME_FORMATS:
        try:
            return _as_utc(datetime.strptime(text, fmt))
        except ValueError:
            continue
    return None


class ReviewRecord:
    """Read-only accessor layer over a raw review document."""

    def __init__(self, document: Mapping[str, Any]):
        self._doc = document or {}

    def __repr__(self) -> str:
        return f"ReviewRecord({self.record_id!r})"

    @property
    def raw(self) -> Mapping[str, Any]:
        return self._doc

    def has_field(self, name: str) -> bool:
        return name in self._doc

    # --- Identity ---

    @property
    def document_id(self) -> Any:
        """The stored `_id`, untouched. Use this for queries and writes."""
        return self._doc.get("_id")

    @property
    def record_id(self) -> Optional[str]:
        value = self._doc.get("_id")
        return None if value is None else str(value)

    # --- Foreign keys and their human-readable fallbacks ---

    @property
    def user_id(self) -> Any:
        return self._doc.get("userId")

    @property
    def restaurant_id(self) -> Any:
        return self._doc.get("restaurantId")

    @property
    def username(self) -> Any:
        return self._doc.get("username")

    @property
    def restaurant_name(self) -> Any:
        return self._doc.get("restaurantName")

    @property
    def has_valid_user_id(self) -> bool:
        return non_empty_str(self.user_id)

    @property
    def has_valid_restaurant_id(self) -> bool:
        return non_empty_str(self.restaurant_id) or is_external_place_id(self.restaurant_id)

    @property
    def has_valid_foreign_keys(self) -> bool:
        return self.has_valid_user_id and self.has_valid_restaurant_id

    @property
    def has_fallback_identity(self) -> bool:
        return non_empty_str(self.username) and non_empty_str(self.restaurant_name)

    # --- Temporal fields ---

    @property
    def created_at(self) -> Any:
        return self._doc.get("createdAt")

    @property
    def legacy_timestamp(self) -> Any:
        return self._doc.get("timestamp")

    @property
    def updated_at(self) -> Any:
        return self._doc.get("updatedAt")

    @property
    def created_at_kind(self) -> TemporalKind:
        return temporal_kind(self.created_at)

    @property
    def legacy_timestamp_kind(self) -> TemporalKind:
        return temporal_kind(self.legacy_timestamp)

    # --- Dish ---

    @property
    def dish(self) -> Any:
        return self._doc.get("dish")

    @property
    def dish_name(self) -> Any:
        return self._doc.get("dishName")

    @property
    def has_dish_name(self) -> bool:
        # Non-string names still count when they stringify to something
        return self.dish_name is not None and str(self.dish_name).strip() != ""

    # --- Photos ---

    @property
    def images(self) -> Any:
        return self._doc.get("images")

    @property
    def media(self) -> Any:
        return self._doc.get("media")

    @property
    def media_photos(self) -> Optional[List[Any]]:
        """``media.photos`` when it is a list, otherwise None."""
        media = self.media
        if isinstance(media, Mapping) and isinstance(media.get("photos"), list):
            return media["photos"]
        return None

    @property
    def has_media_photos_list(self) -> bool:
        return self.media_photos is not None

    @property
    def photo_count(self) -> int:
        photos = self.media_photos
        return len(photos) if photos is not None else 0

    @property
    def has_any_photo(self) -> bool:
        images = self.images
        return (isinstance(images, list) and len(images) > 0) or self.photo_count > 0

    # --- Content and flags ---

    @property
    def caption(self) -> Any:
        return self._doc.get("caption")

    @property
    def has_caption(self) -> bool:
        return non_empty_str(self.caption)

    @property
    def is_deleted(self) -> Any:
        return self._doc.get("isDeleted")

    @property
    def has_bool_is_deleted(self) -> bool:
        return isinstance(self.is_deleted, bool)

    @property
    def schema_version(self) -> Any:
        return self._doc.get("schemaVersion")

    @property
    def normalize_error(self) -> Any:
        return self._doc.get("normalizeError")

    @property
    def has_nested_objects(self) -> bool:
        return any(isinstance(self._doc.get(key), Mapping) for key in NESTED_OBJECT_FIELDS)

    # --- Secondary identifiers (census only) ---

    @property
    def menu_item_id(self) -> Any:
        return self._doc.get("menuItemId")

    @property
    def dish_id(self) -> Any:
        return self._doc.get("dishId")

    @property
    def dish_category(self) -> Any:
        return self._doc.get("dishCategory")
