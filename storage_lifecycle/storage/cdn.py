"""
CDN URL Generator

Builds public and signed URLs for stored objects, with optional image
transformation query parameters. Public URLs are cached for a short TTL;
signed URLs embed expiring credentials and are always generated fresh.
"""
import asyncio
import hashlib
import json
import logging
from dataclasses import replace
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import quote

from storage_lifecycle.core.cache import UrlCacheBackend
from .errors import ConfigurationError
from .models import CdnUrlOptions, ImageTransformParams

logger = logging.getLogger(__name__)

# Public URL cache TTL in seconds, independent of the URL's own expiry
PUBLIC_URL_CACHE_TTL = 300

# Characters encodeURIComponent leaves untouched
_URI_COMPONENT_SAFE = "-_.!~*'()"

# Presigns a GET for (key, expires_in_seconds)
UrlSigner = Callable[[str, int], Awaitable[str]]


def encode_component(value: str) -> str:
    return quote(value, safe=_URI_COMPONENT_SAFE)


def encode_key_path(key: str) -> str:
    """Percent-encode each path segment separately so '/' separators survive."""
    return "/".join(encode_component(segment) for segment in key.split("/"))


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, int(value)))


def transform_query_pairs(transform: Optional[ImageTransformParams]) -> List[Tuple[str, str]]:
    """
    Serialize image transformation parameters in CDN order:
    w, h, fit, f, q, sharpen, blur, rotate, progressive.
    """
    if transform is None:
        return []

    pairs: List[Tuple[str, str]] = []
    if transform.width:
        pairs.append(("w", str(int(transform.width))))
    if transform.height:
        pairs.append(("h", str(int(transform.height))))
    if transform.fit:
        pairs.append(("fit", transform.fit))
    if transform.format and transform.format != "auto":
        pairs.append(("f", transform.format))
    if transform.quality is not None:
        pairs.append(("q", str(_clamp(transform.quality, 1, 100))))
    if transform.sharpen:
        pairs.append(("sharpen", "1"))
    if transform.blur is not None:
        pairs.append(("blur", str(_clamp(transform.blur, 0, 250))))
    if transform.rotate:
        pairs.append(("rotate", str(int(transform.rotate))))
    if transform.progressive:
        pairs.append(("progressive", "1"))
    return pairs


def build_query_string(
    transform: Optional[ImageTransformParams] = None,
    query_params: Optional[Dict[str, Any]] = None,
) -> str:
    """Custom query parameters first, then transformation parameters."""
    parts = [
        f"{encode_component(str(k))}={encode_component(_format_value(v))}"
        for k, v in (query_params or {}).items()
        if v is not None
    ]
    parts += [f"{k}={encode_component(v)}" for k, v in transform_query_pairs(transform)]
    return "&".join(parts)


def append_query(url: str, query: str) -> str:
    if not query:
        return url
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{query}"


def build_cache_key(key: str, options: CdnUrlOptions) -> str:
    """Hash of every input that changes the generated URL."""
    material = json.dumps(
        [
            key,
            "signed" if options.signed else "public",
            options.expires_in,
            options.transform.to_dict() if options.transform else None,
            options.query_params or None,
        ],
        sort_keys=True,
        default=str,
    )
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


class CdnUrlGenerator:
    """
    CDN URL generator

    Features:
    - Public URLs on a custom domain or the provider's default endpoint
    - Signed URLs through a provider presigner
    - Image transformation parameters (resize, format, quality, ...)
    - Public URL caching with a fixed 5 minute TTL
    """

    def __init__(
        self,
        public_base_url: str,
        signer: Optional[UrlSigner] = None,
        cache: Optional[UrlCacheBackend] = None,
        cache_ttl: float = PUBLIC_URL_CACHE_TTL,
    ):
        """
        Initialize CDN URL generator

        Args:
            public_base_url: Base for public URLs, e.g. https://cdn.example.com
            signer: Coroutine returning a presigned GET URL for (key, expires_in)
            cache: URL cache backend; None disables caching
            cache_ttl: Cache lifetime of public URLs in seconds
        """
        self.public_base_url = public_base_url.rstrip("/")
        self.signer = signer
        self.cache = cache
        self.cache_ttl = cache_ttl

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{encode_key_path(key)}"

    async def generate(self, key: str, options: Optional[CdnUrlOptions] = None) -> str:
        """
        Generate a CDN URL for an object.

        Args:
            key: Object key
            options: Signed flag, expiry, transformations, custom query parameters

        Returns:
            URL string
        """
        if not key:
            raise ValueError("Object key is required to generate a CDN URL")

        options = options or CdnUrlOptions()
        query = build_query_string(options.transform, options.query_params)

        if options.signed:
            if self.signer is None:
                raise ConfigurationError("Signed URLs require a provider signer")
            signed = await self.signer(key, options.expires_in)
            return append_query(signed, query)

        cache_key = build_cache_key(key, options)
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                return cached

        url = append_query(self.public_url(key), query)

        if self.cache is not None:
            self.cache.set(cache_key, url, self.cache_ttl)
        return url

    async def generate_bulk(
        self,
        keys: Iterable[str],
        options: Optional[CdnUrlOptions] = None,
        parallel: bool = True,
    ) -> Dict[str, str]:
        """
        Generate URLs for many keys with the same options.

        Returns:
            Mapping of key to URL, in input order
        """
        keys = list(keys)
        if parallel:
            urls = await asyncio.gather(*(self.generate(k, options) for k in keys))
        else:
            urls = [await self.generate(k, options) for k in keys]
        return dict(zip(keys, urls))

    async def thumbnail_url(
        self,
        key: str,
        size: int = 300,
        fit: str = "cover",
        options: Optional[CdnUrlOptions] = None,
    ) -> str:
        """Square WebP thumbnail, quality 85."""
        transform = ImageTransformParams(width=size, height=size, fit=fit, format="webp", quality=85)
        return await self.generate(key, replace(options or CdnUrlOptions(), transform=transform))

    async def preview_url(
        self,
        key: str,
        max_width: int = 1200,
        options: Optional[CdnUrlOptions] = None,
    ) -> str:
        """Progressive WebP preview scaled down to ``max_width``, quality 90."""
        transform = ImageTransformParams(
            width=max_width,
            fit="scale-down",
            format="webp",
            quality=90,
            progressive=True,
        )
        return await self.generate(key, replace(options or CdnUrlOptions(), transform=transform))

    def clear_cache(self) -> None:
        if self.cache is not None:
            self.cache.clear()

    def cleanup_cache(self) -> int:
        """Drop expired cached URLs; returns the number removed."""
        if self.cache is None:
            return 0
        return self.cache.cleanup()
