from __future__ import annotations

import os
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_HEALING_MODEL,
    DEFAULT_HEALING_TEMPERATURE,
    DEFAULT_HEALING_TIMEOUT,
    DEFAULT_STEP_TIMEOUT,
)


class ExecutionSettings(BaseModel):
    """Runtime limits applied by the orchestrator and step runner."""

    step_timeout: float = Field(default=DEFAULT_STEP_TIMEOUT, gt=0)
    healing_timeout: float = Field(default=DEFAULT_HEALING_TIMEOUT, gt=0)
    step_delay: float = Field(default=0.0, ge=0)


class HealingSettings(BaseModel):
    """Configuration for the language-model backed fix proposer."""

    enabled: bool = True
    model: str = DEFAULT_HEALING_MODEL
    temperature: float = DEFAULT_HEALING_TEMPERATURE


class ClassifierSettings(BaseModel):
    """Additional substring rules layered on the built-in ones."""

    extra_permanent_patterns: List[str] = Field(default_factory=list)
    extra_healable_patterns: List[str] = Field(default_factory=list)


class MendflowConfig(BaseModel):
    """Top-level configuration model."""

    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)
    healing: HealingSettings = Field(default_factory=HealingSettings)
    classifier: ClassifierSettings = Field(default_factory=ClassifierSettings)
    database_url: Optional[str] = None


def load_config(path: Optional[str] = None) -> MendflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to MENDFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("MENDFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = MendflowConfig(**data)
    else:
        config = MendflowConfig()

    env_db_url = os.getenv("MENDFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_model = os.getenv("MENDFLOW_HEALING_MODEL")
    if env_model:
        config.healing.model = env_model
    return config
