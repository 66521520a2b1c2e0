"""Source tree access: grammars, structured documents and the declaration indexer."""

from agentsync.source.document import CodeStyle, SourceDocument
from agentsync.source.languages import clear_cache, get_lang_config, supported_extensions
from agentsync.source.indexer import (
    BindingTable,
    Declaration,
    FileIndex,
    ImportBinding,
    SourceIndex,
    extract_imports,
    index_directory,
)

__all__ = [
    "BindingTable",
    "CodeStyle",
    "Declaration",
    "FileIndex",
    "ImportBinding",
    "SourceDocument",
    "SourceIndex",
    "clear_cache",
    "extract_imports",
    "get_lang_config",
    "index_directory",
    "supported_extensions",
]
