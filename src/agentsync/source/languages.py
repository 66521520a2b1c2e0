"""Tree-sitter grammars for builder source files.

Both dialects come from the ``tree-sitter-typescript`` distribution; plain
JavaScript files are read with the TypeScript grammar, which accepts them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from tree_sitter import Language, Parser

logger = logging.getLogger(__name__)


class Dialect(str, Enum):
    TYPESCRIPT = "typescript"
    TSX = "tsx"


@dataclass(frozen=True)
class LangConfig:
    """A loaded grammar and the dialect it parses."""

    dialect: Dialect
    language: Language

    def parser(self) -> Parser:
        return Parser(self.language)


_DIALECTS: dict[str, Dialect] = {
    ".ts": Dialect.TYPESCRIPT,
    ".mts": Dialect.TYPESCRIPT,
    ".cts": Dialect.TYPESCRIPT,
    ".js": Dialect.TYPESCRIPT,
    ".mjs": Dialect.TYPESCRIPT,
    ".tsx": Dialect.TSX,
    ".jsx": Dialect.TSX,
}

_LOADED: dict[Dialect, LangConfig] = {}


# ---- Loading ----


def _load(dialect: Dialect) -> LangConfig:
    import tree_sitter_typescript as tstypescript

    capsule = (
        tstypescript.language_tsx() if dialect is Dialect.TSX else tstypescript.language_typescript()
    )
    logger.debug("Loaded %s grammar", dialect.value)
    return LangConfig(dialect=dialect, language=Language(capsule))


def get_lang_config(extension: str) -> LangConfig | None:
    """Grammar for a file extension (``".ts"``), or ``None`` when it is not a source file."""
    dialect = _DIALECTS.get(extension.lower())
    if dialect is None:
        return None
    config = _LOADED.get(dialect)
    if config is None:
        config = _LOADED[dialect] = _load(dialect)
    return config


def supported_extensions() -> frozenset[str]:
    return frozenset(_DIALECTS)


def clear_cache() -> None:
    """Forget loaded grammars; the next lookup loads them again."""
    _LOADED.clear()
