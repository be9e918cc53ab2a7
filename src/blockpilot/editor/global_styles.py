"""Global styles (site-wide settings) access, merge rules and snapshots."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Protocol, Sequence, runtime_checkable

from ..errors import ErrorCode, ToolError

__all__ = [
    "GlobalStylesBackend",
    "GlobalStylesRecord",
    "GlobalStylesService",
    "InMemoryGlobalStylesBackend",
    "StylesSnapshot",
    "StylesUpdate",
    "deep_merge",
    "merge_by_slug",
]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class GlobalStylesRecord:
    record_id: str
    settings: Dict[str, Any] = field(default_factory=dict)
    styles: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class StylesSnapshot:
    """Deep copy of a global styles record taken before it was edited."""

    record_id: str
    original_settings: Mapping[str, Any]
    original_styles: Mapping[str, Any]


@dataclass(slots=True)
class StylesUpdate:
    message: str
    updated_colors: List[Dict[str, Any]] = field(default_factory=list)


@runtime_checkable
class GlobalStylesBackend(Protocol):
    """Host-side access to the editable global styles record."""

    async def get_record(self) -> GlobalStylesRecord | None:
        ...

    async def edit_record(
        self,
        record_id: str,
        *,
        settings: Mapping[str, Any] | None = None,
        styles: Mapping[str, Any] | None = None,
    ) -> None:
        ...

    async def save_record(self, record_id: str) -> None:
        ...

    def theme_palette_slugs(self) -> Sequence[str]:
        ...


class InMemoryGlobalStylesBackend:
    """Backend keeping the record in memory; edits are pending until saved."""

    def __init__(self, record: GlobalStylesRecord | None = None, *, theme_slugs: Sequence[str] = ()) -> None:
        self.record = record
        self.saved: GlobalStylesRecord | None = copy.deepcopy(record)
        self._theme_slugs = list(theme_slugs)
        self.edits = 0

    async def get_record(self) -> GlobalStylesRecord | None:
        return self.record

    async def edit_record(
        self,
        record_id: str,
        *,
        settings: Mapping[str, Any] | None = None,
        styles: Mapping[str, Any] | None = None,
    ) -> None:
        if self.record is None or self.record.record_id != record_id:
            raise ToolError(ErrorCode.STYLES_UNAVAILABLE, f"Global styles record {record_id} not found")
        if settings is not None:
            self.record.settings = copy.deepcopy(dict(settings))
        if styles is not None:
            self.record.styles = copy.deepcopy(dict(styles))
        self.edits += 1

    async def save_record(self, record_id: str) -> None:
        self.saved = copy.deepcopy(self.record)

    def theme_palette_slugs(self) -> Sequence[str]:
        return list(self._theme_slugs)


class GlobalStylesService:
    def __init__(self, backend: GlobalStylesBackend) -> None:
        self._backend = backend

    @property
    def backend(self) -> GlobalStylesBackend:
        return self._backend

    async def _require_record(self) -> GlobalStylesRecord:
        record = await self._backend.get_record()
        if record is None:
            raise ToolError(
                ErrorCode.STYLES_UNAVAILABLE,
                "Could not find global styles. Make sure the site editor is available.",
            )
        return record

    async def get_current_styles(self) -> Dict[str, Any]:
        record = await self._require_record()
        palette = record.settings.get("color", {}).get("palette", {})
        if isinstance(palette, list):
            theme_palette, custom_palette = list(palette), []
        else:
            theme_palette = list(palette.get("theme") or [])
            custom_palette = list(palette.get("custom") or [])
        return {
            "id": record.record_id,
            "palette": [*theme_palette, *custom_palette],
            "theme_palette": theme_palette,
            "custom_palette": custom_palette,
            "settings": copy.deepcopy(record.settings),
            "styles": copy.deepcopy(record.styles),
        }

    async def capture(self) -> StylesSnapshot:
        record = await self._require_record()
        return StylesSnapshot(
            record_id=record.record_id,
            original_settings=copy.deepcopy(record.settings),
            original_styles=copy.deepcopy(record.styles),
        )

    async def restore(self, snapshot: StylesSnapshot) -> None:
        await self._backend.edit_record(
            snapshot.record_id,
            settings=copy.deepcopy(dict(snapshot.original_settings)),
            styles=copy.deepcopy(dict(snapshot.original_styles)),
        )
        LOGGER.debug("Restored global styles record %s", snapshot.record_id)

    async def commit(self) -> None:
        record = await self._backend.get_record()
        if record is not None:
            await self._backend.save_record(record.record_id)

    async def update_global_styles(
        self,
        settings: Mapping[str, Any],
        styles: Mapping[str, Any] | None = None,
    ) -> StylesUpdate:
        """Merge ``settings`` (and optional ``styles``) into the current record.

        Custom palette entries whose slug belongs to the theme palette are
        moved to the theme palette so they override the theme color instead
        of adding a duplicate.
        """

        record = await self._require_record()
        settings = self._route_theme_slugs(record, settings)
        new_settings = deep_merge(record.settings, settings)
        new_styles = deep_merge(record.styles, styles) if styles else None
        await self._backend.edit_record(record.record_id, settings=new_settings, styles=new_styles)

        palette = settings.get("color", {}).get("palette", {}) if isinstance(settings.get("color"), Mapping) else {}
        updated_colors = [*(palette.get("theme") or []), *(palette.get("custom") or [])] if isinstance(palette, Mapping) else []
        message = "Updated global styles."
        if updated_colors:
            message = f"Updated {len(updated_colors)} color(s) in the global palette."
        if settings.get("typography"):
            message += " Typography settings updated."
        if settings.get("spacing"):
            message += " Spacing settings updated."
        message += " Click Accept to save or Decline to revert."
        return StylesUpdate(message=message, updated_colors=list(updated_colors))

    def _route_theme_slugs(self, record: GlobalStylesRecord, settings: Mapping[str, Any]) -> Dict[str, Any]:
        settings = copy.deepcopy(dict(settings))
        palette = settings.get("color", {}).get("palette") if isinstance(settings.get("color"), Mapping) else None
        if not isinstance(palette, dict):
            return settings
        custom_entries = palette.get("custom")
        if not isinstance(custom_entries, list) or not custom_entries:
            return settings
        current_palette = record.settings.get("color", {}).get("palette", {})
        entity_theme = current_palette.get("theme", []) if isinstance(current_palette, Mapping) else []
        theme_slugs = {entry.get("slug") for entry in entity_theme if isinstance(entry, Mapping)}
        theme_slugs.update(self._backend.theme_palette_slugs())
        theme_entries = [entry for entry in custom_entries if entry.get("slug") in theme_slugs]
        if not theme_entries:
            return settings
        remaining = [entry for entry in custom_entries if entry.get("slug") not in theme_slugs]
        palette["theme"] = [*(palette.get("theme") or []), *theme_entries]
        if remaining:
            palette["custom"] = remaining
        else:
            palette.pop("custom", None)
        return settings


def _is_slug_array(items: Sequence[Any]) -> bool:
    return bool(items) and all(isinstance(item, Mapping) and isinstance(item.get("slug"), str) for item in items)


def merge_by_slug(target: Sequence[Mapping[str, Any]], source: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """Merge two slug-keyed lists: matching entries are updated in place, new ones appended."""

    by_slug = {item["slug"]: item for item in source}
    merged = [{**item, **by_slug[item["slug"]]} if item.get("slug") in by_slug else dict(item) for item in target]
    existing = {item.get("slug") for item in target}
    merged.extend(dict(item) for item in source if item["slug"] not in existing)
    return merged


def deep_merge(target: Mapping[str, Any], source: Mapping[str, Any]) -> Dict[str, Any]:
    output: Dict[str, Any] = copy.deepcopy(dict(target))
    for key, value in source.items():
        current = target.get(key)
        if isinstance(value, list) and isinstance(current, list) and _is_slug_array(value):
            output[key] = merge_by_slug(current, value)
        elif isinstance(value, Mapping):
            if isinstance(current, Mapping):
                output[key] = deep_merge(current, value)
            else:
                output[key] = copy.deepcopy(dict(value))
        else:
            output[key] = copy.deepcopy(value)
    return output
