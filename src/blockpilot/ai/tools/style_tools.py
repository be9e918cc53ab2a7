"""Global styles tools. Both fall back to the capability provider when the local service cannot answer."""

from __future__ import annotations

import logging
from typing import Any, ClassVar

from ...errors import ToolError, ValidationError
from .base import EditorTool, ToolContext
from .registry import ParameterSchema, ToolCategory

LOGGER = logging.getLogger(__name__)


class GetGlobalStylesTool(EditorTool):
    name: ClassVar[str] = "get-global-styles"
    description: ClassVar[str] = "Read the site's current global styles and color palette"
    category: ClassVar[ToolCategory] = ToolCategory.STYLES
    chainable = True

    async def execute(self, context: ToolContext, params: dict[str, Any]) -> dict[str, Any] | None:
        if context.styles is None:
            return None
        await context.report("Reading site color palette…", 500)
        await context.report("Analyzing theme settings…", 600)
        try:
            styles = await context.styles.get_current_styles()
        except ToolError as exc:
            LOGGER.debug("Local global styles unavailable: %s", exc)
            await context.report("Checking site settings…", 400)
            return None
        if not styles["palette"] and not styles["settings"]:
            return None
        await context.report(f"✓ Found {len(styles['palette'])} colors in palette", 700)
        return {"styles": styles, "message": "Retrieved global styles from editor"}


class UpdateGlobalStylesTool(EditorTool):
    """Merge new settings into the global styles record, pending accept or decline."""

    name: ClassVar[str] = "update-global-styles"
    description: ClassVar[str] = "Change site-wide colors, typography and spacing"
    parameters: ClassVar[tuple[ParameterSchema, ...]] = (
        ParameterSchema(
            "settings", "object", "Partial theme.json settings to merge", required=True, additional_properties=True
        ),
        ParameterSchema("styles", "object", "Partial theme.json styles to merge", additional_properties=True),
    )
    category: ClassVar[ToolCategory] = ToolCategory.STYLES
    mutates = "settings"

    async def execute(self, context: ToolContext, params: dict[str, Any]) -> dict[str, Any] | None:
        settings = params.get("settings")
        styles = params.get("styles")
        if not isinstance(settings, dict):
            raise ValidationError(message="Parameter 'settings' must be an object", suggestion="")
        if styles is not None and not isinstance(styles, dict):
            raise ValidationError(message="Parameter 'styles' must be an object", suggestion="")
        if context.styles is None:
            return None
        await context.report("Reading current styles…", 500)
        await context.report("Applying style changes to your site…", 600)
        try:
            update = await context.styles.update_global_styles(settings, styles)
        except ToolError as exc:
            LOGGER.warning("Global styles update failed locally: %s", exc)
            await context.report("Retrying with alternative method…", 400)
            return None
        await context.report("✓ Styles updated! Review and Accept or Decline.", 800)
        return {"success": True, "message": update.message, "updatedColors": update.updated_colors}
