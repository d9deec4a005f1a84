from __future__ import annotations

import os
from typing import Any, Dict

import yaml


class ConfigService:
    """
    Manages layered config:
    - config/default.yaml (checked in)
    - config/config.yaml (local overrides, also written by the settings API)
    """

    def __init__(self, config_dir: str = "config"):
        self.default_path = os.path.join(config_dir, "default.yaml")
        self.overrides_path = os.path.join(config_dir, "config.yaml")

    @staticmethod
    def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge override into base and return base."""
        for k, v in (override or {}).items():
            if isinstance(v, dict) and isinstance(base.get(k), dict):
                ConfigService.deep_merge(base[k], v)
            else:
                base[k] = v
        return base

    @staticmethod
    def read_yaml(path: str) -> Dict[str, Any]:
        if not os.path.exists(path):
            return {}
        with open(path, "r") as f:
            return yaml.safe_load(f) or {}

    def load_default(self) -> Dict[str, Any]:
        return self.read_yaml(self.default_path)

    def load_overrides(self) -> Dict[str, Any]:
        return self.read_yaml(self.overrides_path)

    def load_effective_config(self) -> Dict[str, Any]:
        merged = self.load_default()
        overrides = self.load_overrides()
        return self.deep_merge(merged, overrides)

    def save_overrides(self, overrides: Dict[str, Any]) -> None:
        os.makedirs(os.path.dirname(self.overrides_path) or ".", exist_ok=True)
        with open(self.overrides_path, "w") as f:
            yaml.safe_dump(overrides or {}, f, sort_keys=False)

    def update_overrides(self, patch: Dict[str, Any]) -> Dict[str, Any]:
        """Merge patch into the saved overrides and write them back."""
        overrides = self.deep_merge(self.load_overrides(), patch)
        self.save_overrides(overrides)
        return overrides
