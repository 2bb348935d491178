"""
financing_config -- single public entrypoint for engine configuration.

Responsibility:
    ``get_active_config()`` is the only way services obtain configuration at
    runtime.  It reads the YAML file named by ``FINANCING_CONFIG_PATH`` or,
    when unset, the packaged ``defaults.yaml``.

Audit relevance:
    Every call emits a ``FINANCING_CONFIG_TRACE`` log entry with the source
    path and a checksum of the effective settings.
"""

from __future__ import annotations

import os
from pathlib import Path

from financing_config.loader import compute_checksum, load_config
from financing_config.schema import EXPIRED_OFFER_POLICIES, FinancingConfig
from financing_kernel.logging_config import get_logger

_logger = get_logger("config")

CONFIG_PATH_ENV = "FINANCING_CONFIG_PATH"
_DEFAULT_CONFIG_FILE = Path(__file__).parent / "defaults.yaml"


def get_active_config(path: Path | str | None = None) -> FinancingConfig:
    """Load the effective configuration.

    Precedence: explicit ``path`` argument, then ``FINANCING_CONFIG_PATH``,
    then the packaged defaults.
    """
    source = Path(path or os.environ.get(CONFIG_PATH_ENV) or _DEFAULT_CONFIG_FILE)
    config = load_config(source)
    _logger.info(
        "FINANCING_CONFIG_TRACE",
        extra={
            "trace_type": "FINANCING_CONFIG_TRACE",
            "source": str(source),
            "checksum": compute_checksum(config.to_dict()),
        },
    )
    return config


__all__ = [
    "CONFIG_PATH_ENV",
    "EXPIRED_OFFER_POLICIES",
    "FinancingConfig",
    "get_active_config",
    "load_config",
]
