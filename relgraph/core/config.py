"""Typed configuration loading and access.

Dataclasses for the optional relgraph.toml file. Every table and key is
optional; missing values fall back to the defaults below.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .result import Err, Ok, Result
from .structured import StrDict, as_str_dict, get_int, get_str, get_table

__all__ = [
    "Config",
    "ConfigError",
    "CompileConfig",
    "CostConfig",
    "GraphConfig",
    "ViewportConfig",
    "load_config",
    "load_config_or_default",
    "DEFAULT_SCHEMA_BASE",
    "DEFAULT_TITLE",
    "DEFAULT_WORKERS",
    "DEFAULT_WINDOW_MONTHS",
    "DEFAULT_BYTES_PER_TOKEN",
]

DEFAULT_SCHEMA_BASE = "https://example.org/release-graph/schemas"
DEFAULT_TITLE = "Release Index"
DEFAULT_WORKERS = 4
DEFAULT_WINDOW_MONTHS = 3
DEFAULT_BYTES_PER_TOKEN = 4


@dataclass(frozen=True, slots=True)
class ConfigError:
    """Error when config cannot be loaded or parsed."""

    message: str
    path: Path | None = None


@dataclass(frozen=True, slots=True)
class GraphConfig:
    """Document-level settings shared by every resource."""

    schema_base: str = DEFAULT_SCHEMA_BASE
    title: str = DEFAULT_TITLE

    def schema_for(self, kind: str) -> str:
        return f"{self.schema_base.rstrip('/')}/{kind}.json"


@dataclass(frozen=True, slots=True)
class CompileConfig:
    """Worker pool size for per-series and per-period units."""

    workers: int = DEFAULT_WORKERS


@dataclass(frozen=True, slots=True)
class ViewportConfig:
    """How many security months of disclosures the fast index carries."""

    window_months: int = DEFAULT_WINDOW_MONTHS


@dataclass(frozen=True, slots=True)
class CostConfig:
    bytes_per_token: int = DEFAULT_BYTES_PER_TOKEN


@dataclass(frozen=True, slots=True)
class Config:
    """Main configuration container."""

    graph: GraphConfig = field(default_factory=GraphConfig)
    compile: CompileConfig = field(default_factory=CompileConfig)
    viewport: ViewportConfig = field(default_factory=ViewportConfig)
    cost: CostConfig = field(default_factory=CostConfig)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Config:
        """Create Config from a mapping (parsed TOML)."""
        graph: StrDict = get_table(data, "graph") or {}
        compile_: StrDict = get_table(data, "compile") or {}
        viewport: StrDict = get_table(data, "viewport") or {}
        cost: StrDict = get_table(data, "cost") or {}

        workers = get_int(compile_, "workers")
        if workers is not None and workers < 1:
            raise ValueError(f"compile.workers must be >= 1, got {workers}")
        window = get_int(viewport, "window_months")
        if window is not None and window < 0:
            raise ValueError(f"viewport.window_months must be >= 0, got {window}")
        bpt = get_int(cost, "bytes_per_token")
        if bpt is not None and bpt < 1:
            raise ValueError(f"cost.bytes_per_token must be >= 1, got {bpt}")

        return cls(
            graph=GraphConfig(
                schema_base=get_str(graph, "schema_base") or DEFAULT_SCHEMA_BASE,
                title=get_str(graph, "title") or DEFAULT_TITLE,
            ),
            compile=CompileConfig(workers=workers or DEFAULT_WORKERS),
            viewport=ViewportConfig(
                window_months=DEFAULT_WINDOW_MONTHS if window is None else window
            ),
            cost=CostConfig(bytes_per_token=bpt or DEFAULT_BYTES_PER_TOKEN),
        )


def _parse_toml(path: Path) -> Result[StrDict, ConfigError]:
    """Parse a TOML file, handling I/O and parse errors."""
    import tomllib

    try:
        content = path.read_bytes()
        data_obj: object = tomllib.loads(content.decode("utf-8"))
        data = as_str_dict(data_obj)
        if data is None:
            return Err(ConfigError("Config root must be a TOML table", path=path))
        return Ok(data)
    except FileNotFoundError:
        return Err(ConfigError(f"Config file not found: {path}", path=path))
    except PermissionError:
        return Err(ConfigError(f"Permission denied reading: {path}", path=path))
    except tomllib.TOMLDecodeError as e:
        return Err(ConfigError(f"Invalid TOML syntax: {e}", path=path))
    except UnicodeDecodeError as e:
        return Err(ConfigError(f"Error reading config: {e}", path=path))


def load_config(path: Path) -> Result[Config, ConfigError]:
    """Load and parse configuration from a TOML file.

    Args:
        path: Path to relgraph.toml

    Returns:
        Ok(Config) on success, Err(ConfigError) on failure
    """
    result = _parse_toml(path)
    if isinstance(result, Err):
        return result

    try:
        return Ok(Config.from_dict(result.value))
    except (KeyError, TypeError, ValueError) as e:
        return Err(ConfigError(f"Invalid config structure: {e}", path=path))


def load_config_or_default(path: Path) -> Config:
    """Load config from file, or return the default config if it is missing or invalid."""
    result = load_config(path)
    if isinstance(result, Ok):
        return result.value
    return Config()
