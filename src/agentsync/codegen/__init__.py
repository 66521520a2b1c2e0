"""Code generation: value rendering, property patching, imports and emission."""

from agentsync.codegen.emitter import FileResult, FileStatus, PendingFile, emit
from agentsync.codegen.imports import ImportManager, module_specifier
from agentsync.codegen.merger import (
    EntityResult,
    FileSession,
    Outcome,
    RunContext,
    merge_entity,
)
from agentsync.codegen.property_writer import PatchReport, PropertyWriter
from agentsync.codegen.schema import compile_schema

__all__ = [
    "EntityResult",
    "FileResult",
    "FileSession",
    "FileStatus",
    "ImportManager",
    "Outcome",
    "PatchReport",
    "PendingFile",
    "PropertyWriter",
    "RunContext",
    "compile_schema",
    "emit",
    "merge_entity",
    "module_specifier",
]
