"""
Optional project settings read from provplan.yaml.

    provider: local
    state_file: provplan.state.json
    timeouts:
      default: 300
      per_kind:
        aws_cloudfront_distribution: 1800
    providers:
      local:
        region: eu-west-1
        account_id: "123456789012"
        fail_kinds: []

Command-line flags take precedence over the file.
"""
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import yaml
from rich.console import Console

console = Console(stderr=True)

DEFAULT_CONFIG_FILE = "provplan.yaml"


@dataclass
class Settings:
    provider: str = "local"
    state_file: str = "provplan.state.json"
    default_timeout: Optional[float] = None
    timeouts: Dict[str, float] = field(default_factory=dict)
    providers: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def provider_settings(self, name: str) -> Dict[str, Any]:
        return dict(self.providers.get(name) or {})


def _from_dict(data: Dict[str, Any]) -> Settings:
    settings = Settings()
    if "provider" in data:
        settings.provider = str(data["provider"])
    if "state_file" in data:
        settings.state_file = str(data["state_file"])
    timeouts = data.get("timeouts") or {}
    if timeouts.get("default") is not None:
        settings.default_timeout = float(timeouts["default"])
    settings.timeouts = {str(k): float(v) for k, v in (timeouts.get("per_kind") or {}).items()}
    settings.providers = {
        str(k): dict(v or {}) for k, v in (data.get("providers") or {}).items()
    }
    return settings


def load_settings(path: Optional[str] = None) -> Settings:
    """Load settings from path, or from provplan.yaml in the working directory."""
    config_file = path or DEFAULT_CONFIG_FILE
    if not os.path.exists(config_file):
        if path:
            console.print(f"[yellow]Warning:[/yellow] config file '{path}' not found, using defaults.")
        return Settings()

    try:
        with open(config_file, "r") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError("top level must be a mapping")
        return _from_dict(data)
    except (yaml.YAMLError, ValueError, TypeError, AttributeError) as exc:
        console.print(
            f"[yellow]Warning:[/yellow] ignoring invalid config {config_file}: {exc}"
        )
        return Settings()
