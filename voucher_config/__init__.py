"""
voucher_config -- jurisdiction tables and runtime settings.

Responsibility:
    Provides the tax table (``get_tax_table()``) and runtime settings
    (``load_settings()``) consumed by the services layer.  The tax engine
    never reads configuration itself; rules are handed to it.

Architecture position:
    Configuration -- sits above ``voucher_kernel`` and below
    ``voucher_services``.  The kernel MUST NEVER import from
    ``voucher_config``.

Audit relevance:
    Every table load emits a ``VOUCHER_CONFIG_TRACE`` log entry with the
    table checksum and jurisdiction codes, tying each derived tax split to
    the exact table version that produced it.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from voucher_config.loader import (
    API_KEY_ENV,
    load_tax_table,
    load_yaml_file,
    parse_settings,
)
from voucher_config.schema import (
    AISettings,
    CoreSettings,
    JurisdictionRule,
    TaxComponentDef,
    TaxTable,
)
from voucher_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULT_TABLE_PATH = Path(__file__).parent / "tables" / "default.yaml"

__all__ = [
    "API_KEY_ENV",
    "DEFAULT_TABLE_PATH",
    "AISettings",
    "CoreSettings",
    "JurisdictionRule",
    "TaxComponentDef",
    "TaxTable",
    "get_tax_table",
    "load_settings",
]


def get_tax_table(path: Path | str | None = None) -> TaxTable:
    """
    Load a jurisdiction tax table (the bundled default when no path).

    Raises:
        FileNotFoundError: If the file does not exist.
        InvalidTaxTableError: If the table is structurally invalid.
    """
    table_path = Path(path) if path is not None else DEFAULT_TABLE_PATH
    table = load_tax_table(table_path)
    _logger.info(
        "VOUCHER_CONFIG_TRACE",
        extra={
            "trace_type": "VOUCHER_CONFIG_TRACE",
            "table_path": str(table_path),
            "table_version": table.version,
            "checksum": table.checksum,
            "jurisdictions": list(table.codes),
        },
    )
    return table


def load_settings(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> CoreSettings:
    """
    Load runtime settings from YAML (defaults when no path).

    The AI API key comes only from the VOUCHER_AI_API_KEY variable of
    ``environ`` (``os.environ`` when not given).
    """
    data = load_yaml_file(Path(path)) if path is not None else {}
    return parse_settings(data, os.environ if environ is None else environ)
