"""TOML-based bastion configuration.

Loads ~/.bastion/defaults.toml (global) and bastion.toml (project),
merges them, and resolves the [aws] and [logging] tables into settings.

Example bastion.toml:

    [aws]
    region = "eu-west-1"
    instance_type = "t3.micro"
    ssh_user = "ec2-user"

    [logging]
    level = "DEBUG"
    console = true
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from bastion.aws.config import BastionConfig
from bastion.observability.logging import LogConfig

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".bastion" / "defaults.toml"
PROJECT_CONFIG_NAME = "bastion.toml"

_SECTIONS = ("aws", "logging")


@dataclass(frozen=True, slots=True)
class Settings:
    aws: BastionConfig = field(default_factory=BastionConfig)
    logging: LogConfig = field(default_factory=LogConfig)


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    with path.open("rb") as f:
        return tomllib.load(f)


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    """Read and merge the global and project files. Project values win."""
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)

    merged = _deep_merge(global_cfg, project_cfg)
    for section in _SECTIONS:
        merged.setdefault(section, {})
    return merged


def _build_log_config(raw: RawConfig) -> LogConfig:
    valid = {f.name for f in fields(LogConfig)}
    unknown = set(raw) - valid
    if unknown:
        raise ValueError(
            f"Unknown logging option(s): {', '.join(sorted(unknown))}. "
            f"Valid: {', '.join(sorted(valid))}"
        )
    return LogConfig(**raw)


def resolve_settings(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> Settings:
    """Load both config files and build typed settings from them.

    Raises:
        ValueError: On an unknown top-level table or option, or an invalid value.
    """
    config = load_config(project_dir=project_dir, global_path=global_path)

    unknown = set(config) - set(_SECTIONS)
    if unknown:
        raise ValueError(
            f"Unknown config table(s): {', '.join(sorted(unknown))}. "
            f"Valid: {', '.join(_SECTIONS)}"
        )

    return Settings(
        aws=BastionConfig.from_dict(config["aws"]),
        logging=_build_log_config(config["logging"]),
    )
