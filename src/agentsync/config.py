"""Run configuration: ``.agentsync/config.yml`` in the target directory."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

import yaml

from agentsync.model.graph_builder import factory_kinds
from agentsync.source.document import CodeStyle

if TYPE_CHECKING:
    from pathlib import Path

    from agentsync.model.entities import EntityKind

logger = logging.getLogger(__name__)

CONFIG_DIR = ".agentsync"
CONFIG_FILE = "config.yml"

REMOVAL_POLICIES = ("keep", "report", "delete")


@dataclass
class SyncConfig:
    """Settings for one synchronization run."""

    style: CodeStyle = field(default_factory=CodeStyle)
    sdk_module: str = "@inkeep/agents-sdk"
    core_module: str = "@inkeep/agents-core"
    zod_module: str = "zod"
    import_extension: str = ""
    removed_entities: str = "report"
    workers: int = 1
    exclude: tuple[str, ...] = ("node_modules", "dist", "build")
    factories: dict[str, str] = field(default_factory=dict)

    def module(self, key: str) -> str:
        """Module specifier for ``"sdk"``, ``"core"`` or ``"zod"``."""
        modules = {"sdk": self.sdk_module, "core": self.core_module, "zod": self.zod_module}
        return modules[key]

    def factory_kinds(self) -> dict[str, EntityKind]:
        return factory_kinds(self.factories)


def _parse_style(data: dict[str, Any], base: CodeStyle) -> CodeStyle:
    kwargs: dict[str, Any] = {}
    quote = data.get("quote")
    if quote in ("single", "'"):
        kwargs["quote"] = "'"
    elif quote in ("double", '"'):
        kwargs["quote"] = '"'
    elif quote is not None:
        logger.warning("Ignoring style.quote %r (expected single or double)", quote)

    indent = data.get("indent")
    if indent == "tab":
        kwargs["indent"] = "\t"
    elif isinstance(indent, int) and not isinstance(indent, bool) and 0 < indent <= 8:
        kwargs["indent"] = " " * indent
    elif indent is not None:
        logger.warning("Ignoring style.indent %r", indent)

    for flag in ("semicolons", "trailing_commas"):
        if isinstance(data.get(flag), bool):
            kwargs[flag] = data[flag]
    width = data.get("print_width")
    if isinstance(width, int) and not isinstance(width, bool) and width > 0:
        kwargs["print_width"] = width

    return replace(base, **kwargs)


def config_from_mapping(data: dict[str, Any]) -> SyncConfig:
    """Build a :class:`SyncConfig` from a parsed mapping, ignoring bad values."""
    config = SyncConfig()
    style = data.get("style")
    if isinstance(style, dict):
        config.style = _parse_style(style, config.style)

    for key in ("sdk_module", "core_module", "zod_module", "import_extension"):
        value = data.get(key)
        if isinstance(value, str):
            setattr(config, key, value)

    removal = data.get("removed_entities")
    if removal in REMOVAL_POLICIES:
        config.removed_entities = removal
    elif removal is not None:
        logger.warning("Ignoring removed_entities %r (expected keep, report or delete)", removal)

    workers = data.get("workers")
    if isinstance(workers, int) and not isinstance(workers, bool) and workers > 0:
        config.workers = workers

    exclude = data.get("exclude")
    if isinstance(exclude, list):
        config.exclude = tuple(str(item) for item in exclude)

    factories = data.get("factories")
    if isinstance(factories, dict):
        config.factories = {str(k): str(v) for k, v in factories.items()}
    return config


def load_config(target_dir: Path) -> SyncConfig:
    """Load ``.agentsync/config.yml`` from *target_dir*.

    Falls back to defaults for a missing file, unreadable YAML or missing keys.
    """
    config_path = target_dir / CONFIG_DIR / CONFIG_FILE
    if not config_path.is_file():
        return SyncConfig()

    try:
        with config_path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError):
        logger.warning("Failed to read %s, using default settings", config_path)
        return SyncConfig()

    if data is None:
        return SyncConfig()
    if not isinstance(data, dict):
        logger.warning("%s is not a mapping, using default settings", config_path)
        return SyncConfig()
    return config_from_mapping(data)
