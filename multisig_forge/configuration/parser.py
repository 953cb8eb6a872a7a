"""
Configuration Loader — read and write operator configurations as JSON.

A configuration file holds one SystemConfig: the role list with its member
assignment table, the spending policy, and optionally the multisig owners.
Loading fills any role list left empty with the default role template, so a
file may declare only the policy and the member table.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from multisig_forge.configuration.schema import (
    DEFAULT_ROLES,
    ContractSystem,
    SystemConfig,
)
from multisig_forge.errors import ConfigurationError


# ════════════════════════════════════════════════════════════════
# Loading
# ════════════════════════════════════════════════════════════════


def parse_system_config(raw: dict[str, Any]) -> SystemConfig:
    """
    Build a SystemConfig from decoded JSON.

    Raises:
        ConfigurationError: If the document does not match the schema.
    """
    if not isinstance(raw, dict):
        raise ConfigurationError("Configuration document must be a JSON object")
    try:
        config = SystemConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc

    if not config.roles.roles:
        config.roles.roles = [r.model_copy(deep=True) for r in DEFAULT_ROLES.values()]
    return config


def load_system_config(path: str | Path) -> SystemConfig:
    """Load a SystemConfig from a JSON file."""
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Configuration file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"{path} is not valid JSON: {exc}") from exc
    return parse_system_config(raw)


# ════════════════════════════════════════════════════════════════
# Saving
# ════════════════════════════════════════════════════════════════


def system_config_to_json(config: SystemConfig) -> str:
    """Serialize a configuration to stable, human-editable JSON."""
    return json.dumps(config.model_dump(mode="json"), indent=2, ensure_ascii=False)


def save_system_config(config: SystemConfig, output_path: str | Path) -> Path:
    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(system_config_to_json(config), encoding="utf-8")
    return path


def write_contract_system(system: ContractSystem, output_dir: str | Path) -> list[Path]:
    """
    Write each generated module to `<logical_name>.sol` plus `metadata.json`.

    Returns:
        Paths written, modules first, metadata last.
    """
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)
    written: list[Path] = []
    for module in system.modules:
        path = out / module.filename
        path.write_text(module.source_text, encoding="utf-8")
        written.append(path)

    meta_path = out / "metadata.json"
    meta_path.write_text(
        json.dumps(system.metadata.model_dump(mode="json"), indent=2),
        encoding="utf-8",
    )
    written.append(meta_path)
    return written
