"""Monthly certificate template resolution from an on-disk directory.

Filenames are matched against rank tokens (numeric prefix, Uzbek
"N-daraja" and ordinal words, English ordinals). Unmatched ranks fall back
to sorted position. The grand template for the three-month streak is
matched separately. Results are cached for a short TTL.
"""

from __future__ import annotations

import logging
import os
import re
import time
from collections.abc import Callable, Sequence
from functools import lru_cache
from urllib.parse import quote

from tarbiya.config import get_settings

logger = logging.getLogger(__name__)

FIRST_PATTERNS = (r"^1", r"1[-_\s]?daraj", r"bir", r"first")
SECOND_PATTERNS = (r"^2", r"2[-_\s]?daraj", r"ikki", r"second")
THIRD_PATTERNS = (r"^3", r"3[-_\s]?daraj", r"uch", r"third")
TOP_PATTERNS = (r"oliy", r"grand", r"supreme", r"top")


def pick_template_file(files: Sequence[str], patterns: Sequence[str]) -> str | None:
    """First file matching the earliest pattern (case-insensitive), in file order."""
    for pattern in patterns:
        regex = re.compile(pattern, re.IGNORECASE)
        for name in files:
            if regex.search(name):
                return name
    return None


def monthly_rank_template_url(templates: dict | None, rank: int) -> str | None:
    """Template URL for a monthly rank (1-3), or None."""
    if not templates:
        return None
    return {1: templates.get("first"), 2: templates.get("second"), 3: templates.get("third")}.get(rank)


class CertificateTemplateResolver:
    """Maps template files to award ranks, cached for ``ttl_seconds``."""

    def __init__(
        self,
        directory: str,
        base_url: str = "/certificates/templates",
        extension: str = ".pdf",
        ttl_seconds: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.directory = directory
        self.base_url = base_url.rstrip("/")
        self.extension = extension.lower()
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._loaded_at: float | None = None
        self._templates: dict | None = None

    def _url(self, name: str | None) -> str | None:
        return f"{self.base_url}/{quote(name)}" if name else None

    def _list_files(self) -> list[str] | None:
        if not os.path.isdir(self.directory):
            return None
        try:
            names = os.listdir(self.directory)
        except OSError:
            logger.warning("Certificate template directory unreadable: %s", self.directory, exc_info=True)
            return None
        return sorted(
            name for name in names
            if name.lower().endswith(self.extension)
            and os.path.isfile(os.path.join(self.directory, name))
        )

    def resolve(self, force_reload: bool = False) -> dict | None:
        """Return {first, second, third, top} URLs, or None when no directory is usable."""
        now = self._clock()
        if (
            not force_reload
            and self._loaded_at is not None
            and now - self._loaded_at < self.ttl_seconds
        ):
            return self._templates

        files = self._list_files()
        if files is None:
            self._loaded_at, self._templates = now, None
            return None

        first = pick_template_file(files, FIRST_PATTERNS)
        second = pick_template_file(files, SECOND_PATTERNS)
        third = pick_template_file(files, THIRD_PATTERNS)
        top = pick_template_file(files, TOP_PATTERNS)

        # Positional fallback over the sorted listing.
        if first is None and len(files) > 0:
            first = files[0]
        if second is None and len(files) > 1:
            second = files[1]
        if third is None and len(files) > 2:
            third = files[2]

        templates = {
            "first": self._url(first),
            "second": self._url(second),
            "third": self._url(third),
            "top": self._url(top),
        }
        self._loaded_at, self._templates = now, templates
        return templates

    def clear(self) -> None:
        self._loaded_at, self._templates = None, None


@lru_cache
def get_template_resolver() -> CertificateTemplateResolver:
    """Process-wide resolver built from settings."""
    settings = get_settings()
    return CertificateTemplateResolver(
        directory=settings.certificate_template_dir,
        base_url=settings.certificate_template_base_url,
        extension=settings.certificate_template_extension,
        ttl_seconds=settings.certificate_template_ttl_seconds,
    )


def resolve_monthly_certificate_templates(force_reload: bool = False) -> dict | None:
    return get_template_resolver().resolve(force_reload)
