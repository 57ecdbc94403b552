from typing import Any, Dict, Optional

from provplan.providers.base import ProvisioningAPI
from provplan.providers.local import LocalProvider

PROVIDERS = {
    "local": LocalProvider,
}


def get_provider(name: str, settings: Optional[Dict[str, Any]] = None) -> ProvisioningAPI:
    """Instantiate a provider by name; settings are passed as keyword arguments."""
    try:
        cls = PROVIDERS[name]
    except KeyError:
        raise ValueError(
            f"unknown provider '{name}' (available: {', '.join(sorted(PROVIDERS))})"
        ) from None
    return cls(**(settings or {}))
