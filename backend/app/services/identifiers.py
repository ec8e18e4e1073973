"""
Identifier normalization for sandbox and project keys.

Provider IDs and paths built from them occasionally arrive with doubled
separators ("ab--cd", "/root//x"). Every ID or path that is persisted or
used as a lookup key goes through these helpers first so the same entity
always maps to the same key.
"""

import re
from typing import Optional

from app.core.config import settings

_HYPHEN_RUN = re.compile(r'-{2,}')
_SLASH_RUN = re.compile(r'/{2,}')


def normalize_id(value: Optional[str]) -> str:
    """Collapse runs of hyphens. None or empty gives ''."""
    if not value:
        return ""
    return _HYPHEN_RUN.sub('-', str(value))


def normalize_path(value: Optional[str]) -> str:
    """Collapse runs of slashes, then runs of hyphens."""
    if not value:
        return ""
    return normalize_id(_SLASH_RUN.sub('/', str(value)))


def build_project_path(
    user_id: str,
    sandbox_id: str,
    project_id: str,
    root: Optional[str] = None
) -> str:
    """<root>/<user_id>/<sandbox_id>/<project_id>, every component normalized"""
    base = root or settings.PROJECTS_ROOT
    return normalize_path(
        f"{base}/{normalize_id(user_id)}/{normalize_id(sandbox_id)}/{normalize_id(project_id)}"
    )
