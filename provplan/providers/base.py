from typing import Any, Dict

from provplan.models.resource import RealizedResource


class ProvisioningAPI:
    """
    The one call the driver needs from a provisioning backend.

    Implementations create the resource and return its realized record, or
    raise ProvisioningError. Attribute values arrive fully resolved: no
    Reference or Template objects are ever passed in.
    """

    name = "base"

    def create(self, kind: str, name: str, attributes: Dict[str, Any]) -> RealizedResource:
        raise NotImplementedError
