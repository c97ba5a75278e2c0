"""
Configuration Loader (``voucher_config.loader``).

Responsibility
--------------
Loads the YAML jurisdiction table and runtime settings files and parses
them into typed ``voucher_config.schema`` dataclass instances.  Callers
normally go through ``voucher_config.get_tax_table()`` and
``voucher_config.load_settings()``.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass.
* Rates and amounts are parsed to Decimal through ``str``, never float.
* A structurally invalid table raises ``InvalidTaxTableError`` naming the
  jurisdiction; no silent defaults for required fields.
* ``compute_checksum`` produces a deterministic SHA-256 hash for table
  identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid table structure  -> ``InvalidTaxTableError``.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from voucher_config.schema import (
    AISettings,
    CoreSettings,
    JurisdictionRule,
    TaxComponentDef,
    TaxTable,
)
from voucher_kernel.domain.values import ZERO, Currency
from voucher_kernel.exceptions import InvalidTaxTableError

API_KEY_ENV = "VOUCHER_AI_API_KEY"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, jurisdiction: str, what: str) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise InvalidTaxTableError(jurisdiction, f"{what} must be a number, got {value!r}")
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidTaxTableError(
            jurisdiction, f"{what} must be a number, got {value!r}"
        ) from None
    if not result.is_finite() or result < ZERO:
        raise InvalidTaxTableError(jurisdiction, f"{what} must be non-negative, got {value!r}")
    return result


def parse_component(data: Mapping[str, Any], jurisdiction: str) -> TaxComponentDef:
    """Parse a TaxComponentDef from a dict."""
    if not isinstance(data, Mapping) or not data.get("name"):
        raise InvalidTaxTableError(jurisdiction, f"component needs a name: {data!r}")
    name = str(data["name"])
    return TaxComponentDef(
        name=name,
        rate=parse_decimal(data.get("rate"), jurisdiction, f"{name} rate"),
        output_ledger=str(data.get("output_ledger", "")),
        input_ledger=str(data.get("input_ledger", "")),
    )


def parse_components(
    data: Any, jurisdiction: str, key: str
) -> tuple[TaxComponentDef, ...]:
    if data is None:
        return ()
    if not isinstance(data, list):
        raise InvalidTaxTableError(jurisdiction, f"{key} must be a list")
    components = tuple(parse_component(c, jurisdiction) for c in data)
    if components and sum((c.rate for c in components), ZERO) <= ZERO:
        raise InvalidTaxTableError(jurisdiction, f"{key} shares must sum to a positive rate")
    return components


def parse_jurisdiction(code: str, data: Mapping[str, Any]) -> JurisdictionRule:
    """
    Parse a JurisdictionRule from a dict.

    Raises:
        InvalidTaxTableError: on missing currency, a half-specified dual
            rule, a rule that is both dual and flat, or bad numbers.
    """
    code = str(code).strip().upper()
    if not isinstance(data, Mapping):
        raise InvalidTaxTableError(code, "rule must be a mapping")
    if not data.get("currency"):
        raise InvalidTaxTableError(code, "currency is required")

    digits = data.get("minor_unit_digits", 2)
    if isinstance(digits, bool) or not isinstance(digits, int):
        raise InvalidTaxTableError(code, f"minor_unit_digits must be an integer, got {digits!r}")
    try:
        currency = Currency(str(data["currency"]), digits)
    except ValueError as e:
        raise InvalidTaxTableError(code, str(e)) from e

    intra = parse_components(data.get("intra_region"), code, "intra_region")
    inter = parse_components(data.get("inter_region"), code, "inter_region")
    flat = parse_components(data.get("flat"), code, "flat")

    if bool(intra) != bool(inter):
        raise InvalidTaxTableError(code, "dual rule needs both intra_region and inter_region")
    if intra and flat:
        raise InvalidTaxTableError(code, "rule cannot be both dual and flat")
    if not intra and not flat:
        raise InvalidTaxTableError(code, "rule needs flat or intra_region/inter_region components")

    return JurisdictionRule(
        code=code,
        currency=currency,
        default_rate=parse_decimal(data.get("default_rate", 0), code, "default_rate"),
        intra_region=intra,
        inter_region=inter,
        flat=flat,
    )


def parse_tax_table(data: Mapping[str, Any]) -> TaxTable:
    """Parse a whole table document."""
    jurisdictions = data.get("jurisdictions")
    if not isinstance(jurisdictions, Mapping) or not jurisdictions:
        raise InvalidTaxTableError("*", "table needs a non-empty 'jurisdictions' mapping")
    rules = {
        rule.code: rule
        for rule in (parse_jurisdiction(code, body) for code, body in jurisdictions.items())
    }
    return TaxTable(
        version=int(data.get("version", 1)),
        rules=rules,
        checksum=compute_checksum(dict(data)),
    )


def load_tax_table(path: Path) -> TaxTable:
    return parse_tax_table(load_yaml_file(Path(path)))


def parse_settings(
    data: Mapping[str, Any],
    environ: Mapping[str, str] | None = None,
) -> CoreSettings:
    """
    Parse CoreSettings from a dict.

    The AI API key is read only from the environment, never from files.
    """
    env = environ or {}
    ai_data = data.get("ai") or {}
    defaults = AISettings()
    ai = AISettings(
        endpoint=str(ai_data.get("endpoint", defaults.endpoint)),
        model=str(ai_data.get("model", defaults.model)),
        timeout_seconds=float(ai_data.get("timeout_seconds", defaults.timeout_seconds)),
        api_key=env.get(API_KEY_ENV) or None,
    )
    region = data.get("company_region")
    table_path = data.get("tax_table")
    return CoreSettings(
        jurisdiction=str(data.get("jurisdiction", "IN")).upper(),
        company_region=str(region) if region else None,
        context_limit=int(data.get("context_limit", 10)),
        allow_negative_quantity=bool(data.get("allow_negative_quantity", False)),
        tax_table_path=str(table_path) if table_path else None,
        ai=ai,
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
