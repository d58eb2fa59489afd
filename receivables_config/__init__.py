"""
receivables_config -- single public entrypoint for receivables configuration.

Responsibility:
    ``get_active_config()`` is the only way runtime code obtains
    configuration.  YAML loading is internal to this package.

Architecture position:
    Configuration -- sits above ``receivables_kernel`` and below
    ``receivables_services`` / ``receivables_batch``.  The kernel never
    imports from here; services receive values through constructors.

Audit relevance:
    Every load emits a ``receivables_config_loaded`` log entry with the
    config_id, version and checksum so an operation can be tied back to the
    configuration that governed it.
"""

from __future__ import annotations

from pathlib import Path

from receivables_config.loader import compute_checksum, load_config, load_yaml_file
from receivables_config.schema import BatchScheduleDef, ReceivablesConfig
from receivables_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"

_cache: dict[Path, ReceivablesConfig] = {}


def get_active_config(path: Path | str | None = None) -> ReceivablesConfig:
    """
    The ONLY public configuration entrypoint.

    Loads ``defaults.yaml`` next to this module unless ``path`` is given.
    Results are cached per resolved path; ``clear_config_cache()`` resets.

    Raises:
        FileNotFoundError, yaml.YAMLError, ValueError.
    """
    resolved = Path(path).resolve() if path is not None else _DEFAULT_CONFIG_PATH.resolve()
    cached = _cache.get(resolved)
    if cached is not None:
        return cached

    config, checksum = load_config(resolved)
    _cache[resolved] = config
    _logger.info(
        "receivables_config_loaded",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": checksum,
            "path": str(resolved),
        },
    )
    return config


def clear_config_cache() -> None:
    _cache.clear()


__all__ = [
    "BatchScheduleDef",
    "ReceivablesConfig",
    "clear_config_cache",
    "compute_checksum",
    "get_active_config",
    "load_yaml_file",
]
