"""Game-system schema loader.

Reads ``<schemas_dir>/<code>.yaml`` as plain text for injection into
prompts.  The code is restricted to ASCII letters, digits and hyphens so
it can never escape the schema directory.  A missing, unreadable, or
invalid schema degrades to an empty string.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from lorekeeper.config import EnrichmentConfig

logger = logging.getLogger(__name__)

_VALID_CODE = re.compile(r"[A-Za-z0-9-]+")


def is_valid_schema_code(code: str) -> bool:
    return bool(_VALID_CODE.fullmatch(code))


class FileSchemaSource:
    """Loads game-system schema YAML files from a directory.

    Args:
        schemas_dir: Directory holding one ``<code>.yaml`` per system.
    """

    def __init__(self, schemas_dir: str | Path = "schemas") -> None:
        self._schemas_dir = Path(schemas_dir)

    @classmethod
    def from_config(cls, config: EnrichmentConfig) -> FileSchemaSource:
        return cls(config.schemas_dir)

    @property
    def schemas_dir(self) -> Path:
        return self._schemas_dir

    def load_schema(self, code: str) -> str:
        if not is_valid_schema_code(code):
            logger.warning("Invalid game system code %r; schema skipped.", code)
            return ""

        path = self._schemas_dir / f"{code}.yaml"
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Failed to load game system schema %s: %s", path, e)
            return ""

    def __repr__(self) -> str:
        return f"FileSchemaSource(schemas_dir={str(self._schemas_dir)!r})"
