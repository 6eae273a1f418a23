"""
File organization helpers built on the photo path grammar.
"""
from typing import List, Optional, Set

from .paths import FileType, generate_album_path, parse_photo_path, sanitize_path_segment
from .provider import StorageProvider


async def list_album_files(
    provider: StorageProvider,
    album_id: str,
    user_id: Optional[str] = None,
) -> List[str]:
    """Every key stored for an album."""
    prefix = generate_album_path(album_id, user_id) + "/"
    return [key async for key in provider.iter_keys(prefix)]


async def find_files_by_photo_id(
    provider: StorageProvider,
    album_id: str,
    photo_id: str,
    user_id: Optional[str] = None,
) -> List[str]:
    """Every variant stored for one photo."""
    prefix = f"{generate_album_path(album_id, user_id)}/{sanitize_path_segment(photo_id)}/"
    return [key async for key in provider.iter_keys(prefix)]


async def get_album_file_count(
    provider: StorageProvider,
    album_id: str,
    user_id: Optional[str] = None,
) -> int:
    return len(await list_album_files(provider, album_id, user_id))


async def get_photo_file_types(
    provider: StorageProvider,
    album_id: str,
    photo_id: str,
    user_id: Optional[str] = None,
) -> Set[FileType]:
    """Variants present for a photo, e.g. {ORIGINAL, THUMBNAIL}."""
    file_types = set()
    for key in await find_files_by_photo_id(provider, album_id, photo_id, user_id):
        parsed = parse_photo_path(key)
        if parsed is not None and parsed.file_type is not None:
            file_types.add(parsed.file_type)
    return file_types
