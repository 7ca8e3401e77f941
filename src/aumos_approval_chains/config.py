"""Engine configuration loader with Pydantic v2 validation.

Loads and validates an ``approval_chains.yaml`` file into a typed
:class:`EngineConfig` object.  Unknown keys are allowed so newer config
files keep loading on older releases.

Example
-------
>>> loader = ConfigLoader()
>>> config = loader.load_string('''
... persistence:
...   backend: json
...   path: ./state/approvals.json
...   mode: sync
... scheduler:
...   enabled: true
...   interval_seconds: 30
... ''')
>>> config.persistence.mode
'sync'
>>> config.scheduler.interval_seconds
30.0
"""
from __future__ import annotations

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field

from aumos_approval_chains.chains.schema import ChainSpec

DEFAULT_CONFIG_PATH = Path("approval_chains.yaml")


class SchedulerConfig(BaseModel):
    """Configuration for the timeout scheduler."""

    model_config = {"extra": "allow"}

    enabled: bool = Field(default=False)
    interval_seconds: float = Field(default=60.0, gt=0)


class PersistenceConfig(BaseModel):
    """Where engine state is stored and how durably."""

    model_config = {"extra": "allow"}

    backend: Literal["memory", "json"] = Field(default="memory")
    path: Path = Field(default=Path("./approval_state.json"))
    mode: Literal["async", "sync"] = Field(default="async")


class AuditConfig(BaseModel):
    """Configuration for the JSONL transition log."""

    model_config = {"extra": "allow"}

    enabled: bool = Field(default=False)
    log_path: Path = Field(default=Path("./approval_audit.jsonl"))


class ConfiguredChain(ChainSpec):
    """A chain declared in the config file, optionally with a fixed id."""

    id: str | None = Field(default=None, min_length=1)


class EngineConfig(BaseModel):
    """Top-level engine configuration schema.

    All sections are optional and fall back to defaults.
    """

    model_config = {"extra": "allow"}

    version: str = Field(default="1")
    install_default_chains: bool = Field(default=True)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    persistence: PersistenceConfig = Field(default_factory=PersistenceConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
    chains: list[ConfiguredChain] = Field(default_factory=list)


class ConfigLoader:
    """Loads and validates engine YAML configuration."""

    def load(self, config_path: Path) -> EngineConfig:
        """Load and validate a config file.

        Raises
        ------
        FileNotFoundError:
            When the config file does not exist.
        ValueError:
            When the YAML content fails Pydantic validation.
        """
        if not config_path.exists():
            raise FileNotFoundError(f"Approval chain config not found: {config_path}")

        with config_path.open("r", encoding="utf-8") as fh:
            raw: dict[str, object] = yaml.safe_load(fh) or {}

        return EngineConfig.model_validate(raw)

    def load_string(self, yaml_content: str) -> EngineConfig:
        """Load and validate a YAML string directly."""
        raw: dict[str, object] = yaml.safe_load(yaml_content) or {}
        return EngineConfig.model_validate(raw)

    def load_or_defaults(self, config_path: Path) -> EngineConfig:
        """Load ``config_path`` when it exists, otherwise return defaults."""
        if config_path.exists():
            return self.load(config_path)
        return self.defaults()

    def defaults(self) -> EngineConfig:
        """Return a configuration with every default applied."""
        return EngineConfig()
