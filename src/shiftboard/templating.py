from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

PLACEHOLDER_PATTERN = re.compile(r"\{(\w+)\}")


def render_template(template: str | None, context: Mapping[str, Any] | None) -> str:
    """Substitute ``{key}`` placeholders from ``context`` in a single pass.

    Missing or ``None`` values render as an empty string so raw tokens never
    reach a recipient. Substituted text is not rescanned.
    """
    if not template:
        return ""
    values = context or {}

    def _replace(match: re.Match[str]) -> str:
        value = values.get(match.group(1))
        return "" if value is None else str(value)

    return PLACEHOLDER_PATTERN.sub(_replace, template)
