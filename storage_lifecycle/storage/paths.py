"""
Photo Storage Path Grammar

Object keys follow a fixed layout:

    [users/{user_id}/]albums/{album_id}/photos/{photo_id}/{file_type}.{ext}

Helpers here build and parse keys in that layout. Every path segment is
sanitized so generated keys are always safe for S3 and CDN URLs.
"""
import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from .errors import ConfigurationError


class FileType(str, Enum):
    """Stored variant of a photo"""
    ORIGINAL = "original"
    THUMBNAIL = "thumbnail"
    PREVIEW = "preview"
    WATERMARKED = "watermarked"


DEFAULT_EXTENSION = "jpg"
MAX_SEGMENT_LENGTH = 255

_WHITESPACE = re.compile(r"\s+")
_UNSAFE = re.compile(r'[<>:"|?*\x00-\x1f]')
_DASH_RUNS = re.compile(r"[-_]{2,}")


@dataclass(frozen=True)
class ParsedPath:
    """
    Components extracted from a photo key
    """
    album_id: str
    photo_id: str
    file_type: Optional[FileType]
    extension: str
    full_path: str
    user_id: Optional[str] = None


def sanitize_path_segment(segment: str) -> str:
    """
    Make a string safe to use as one path segment.

    Whitespace becomes dashes, characters rejected by S3 tooling and control
    characters are dropped, runs of dashes/underscores collapse to one dash,
    and leading/trailing dashes and dots are removed.

    Args:
        segment: Raw segment value

    Returns:
        Sanitized segment, never empty ("file" when nothing survives)
    """
    value = segment.strip()
    value = _WHITESPACE.sub("-", value)
    value = _UNSAFE.sub("", value)
    value = _DASH_RUNS.sub("-", value)
    value = value.strip("-.")
    value = value[:MAX_SEGMENT_LENGTH]
    return value or "file"


def get_file_extension(filename: str) -> str:
    """Lowercase extension without the dot; empty when there is none."""
    name = filename.rsplit("/", 1)[-1]
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[-1].lower()


def generate_photo_path(
    album_id: str,
    photo_id: str,
    file_type: FileType,
    extension: Optional[str] = None,
    user_id: Optional[str] = None,
) -> str:
    """
    Build the key for one photo variant.

    Args:
        album_id: Album identifier
        photo_id: Photo identifier
        file_type: Stored variant
        extension: File extension without dot (default "jpg")
        user_id: Owner; adds a users/{user_id}/ prefix when set

    Returns:
        Object key

    Raises:
        ConfigurationError: When album_id or photo_id is empty
    """
    if not album_id or not photo_id:
        raise ConfigurationError("album_id and photo_id are required to build a photo path")

    ext = sanitize_path_segment(extension.lstrip(".").lower()) if extension else DEFAULT_EXTENSION
    parts = []
    if user_id:
        parts += ["users", sanitize_path_segment(user_id)]
    parts += [
        "albums", sanitize_path_segment(album_id),
        "photos", sanitize_path_segment(photo_id),
        f"{FileType(file_type).value}.{ext}",
    ]
    return "/".join(parts)


def generate_original_path(album_id: str, photo_id: str, extension: str = DEFAULT_EXTENSION,
                           user_id: Optional[str] = None) -> str:
    return generate_photo_path(album_id, photo_id, FileType.ORIGINAL, extension, user_id)


def generate_thumbnail_path(album_id: str, photo_id: str, extension: str = DEFAULT_EXTENSION,
                            user_id: Optional[str] = None) -> str:
    return generate_photo_path(album_id, photo_id, FileType.THUMBNAIL, extension, user_id)


def generate_preview_path(album_id: str, photo_id: str, extension: str = DEFAULT_EXTENSION,
                          user_id: Optional[str] = None) -> str:
    return generate_photo_path(album_id, photo_id, FileType.PREVIEW, extension, user_id)


def generate_date_based_path(
    album_id: str,
    photo_id: str,
    file_type: FileType,
    date: datetime,
    extension: Optional[str] = None,
) -> str:
    """
    Build a key partitioned by year and month:
    albums/{album_id}/photos/{YYYY}/{MM}/{photo_id}/{file_type}.{ext}
    """
    if not album_id or not photo_id:
        raise ConfigurationError("album_id and photo_id are required to build a photo path")

    ext = sanitize_path_segment(extension.lstrip(".").lower()) if extension else DEFAULT_EXTENSION
    return "/".join([
        "albums", sanitize_path_segment(album_id),
        "photos", f"{date.year:04d}", f"{date.month:02d}",
        sanitize_path_segment(photo_id),
        f"{FileType(file_type).value}.{ext}",
    ])


def generate_album_path(album_id: str, user_id: Optional[str] = None) -> str:
    """Prefix holding every photo of an album (no trailing slash)."""
    if not album_id:
        raise ConfigurationError("album_id is required to build an album path")
    prefix = f"users/{sanitize_path_segment(user_id)}/" if user_id else ""
    return f"{prefix}albums/{sanitize_path_segment(album_id)}/photos"


def generate_user_path(user_id: str) -> str:
    """Prefix holding every album of a user (no trailing slash)."""
    if not user_id:
        raise ConfigurationError("user_id is required to build a user path")
    return f"users/{sanitize_path_segment(user_id)}/albums"


def parse_photo_path(path: str) -> Optional[ParsedPath]:
    """
    Parse a key produced by generate_photo_path.

    Returns:
        Parsed components, or None when the key does not follow the layout.
        ``file_type`` is None when the file name is not a known variant.
    """
    parts = [p for p in path.split("/") if p]

    if len(parts) >= 6 and parts[0] == "users" and parts[2] == "albums" and parts[4] == "photos":
        user_id, album_id, photo_id = parts[1], parts[3], parts[5]
        filename = parts[6] if len(parts) > 6 else ""
    elif len(parts) >= 4 and parts[0] == "albums" and parts[2] == "photos":
        user_id, album_id, photo_id = None, parts[1], parts[3]
        filename = parts[4] if len(parts) > 4 else ""
    else:
        return None

    stem = filename.rsplit(".", 1)[0] if "." in filename else filename
    try:
        file_type = FileType(stem)
    except ValueError:
        file_type = None

    return ParsedPath(
        album_id=album_id,
        photo_id=photo_id,
        file_type=file_type,
        extension=get_file_extension(filename),
        full_path=path,
        user_id=user_id,
    )
