"""
Loading and validation of per-site descriptor files (``config/sites/*.json``).
"""

import json
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Union

from pydantic import ValidationError

from .models import SiteDescriptor


logger = logging.getLogger(__name__)


class SiteConfigError(Exception):
    """A site descriptor file could not be parsed or failed validation."""

    def __init__(self, path: Union[str, Path], message: str):
        self.path = str(path)
        super().__init__(f"{self.path}: {message}")


def _describe(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err["loc"]) or "<root>"
        parts.append(f"'{field}' {err['msg']}")
    return "invalid site config: " + "; ".join(parts)


def load_site_descriptor(path: Union[str, Path]) -> SiteDescriptor:
    """Parse and validate one descriptor file, raising :class:`SiteConfigError`."""
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise SiteConfigError(path, f"unreadable JSON ({e})") from e

    if not isinstance(raw, dict):
        raise SiteConfigError(path, "top-level value must be an object")

    try:
        return SiteDescriptor.model_validate(raw)
    except ValidationError as e:
        raise SiteConfigError(path, _describe(e)) from e


def load_site_descriptors(directory: Union[str, Path]) -> List[SiteDescriptor]:
    """Load every ``*.json`` descriptor in ``directory``.

    A broken file is logged and skipped so that the remaining sites still run.
    A missing directory means no sites are configured.
    """
    directory = Path(directory)
    if not directory.is_dir():
        logger.warning("Site config directory not found: %s", directory)
        return []

    descriptors: List[SiteDescriptor] = []
    for path in sorted(directory.glob("*.json")):
        try:
            descriptors.append(load_site_descriptor(path))
        except SiteConfigError as e:
            logger.error("Skipping site config: %s", e)
    return descriptors


def active_sites(
    descriptors: Iterable[SiteDescriptor],
    site_ids: Optional[Iterable[str]] = None,
) -> List[SiteDescriptor]:
    wanted = set(site_ids or [])
    return [
        d for d in descriptors
        if d.is_active and (not wanted or d.site_id in wanted)
    ]
