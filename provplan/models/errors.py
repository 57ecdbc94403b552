"""
Error types raised while planning and applying a declaration set.

Static errors (DuplicateResource, DanglingReference, CycleDetected) are raised
before any provisioning call and need a fix to the declarations. Runtime
errors (ProvisioningError and subclasses) come from the provisioning API and
stop the run at the failing resource.
"""
from typing import Any, Dict, List, Optional

from provplan.models.resource import ResourceKey


class ProvplanError(Exception):
    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} (context: {context_str})"
        return self.message


class ParseError(ProvplanError):
    def __init__(self, path: str, reason: str):
        super().__init__(f"failed to parse {path}: {reason}", {})
        self.path = path
        self.reason = reason


class PlanError(ProvplanError):
    """Base for errors found while ordering the declaration set."""


class DuplicateResource(PlanError):
    def __init__(self, key: ResourceKey, first_file: str = "", second_file: str = ""):
        context = {}
        if first_file or second_file:
            context = {"first": first_file, "second": second_file}
        super().__init__(f"resource '{key.address}' is declared more than once", context)
        self.key = key


class DanglingReference(PlanError):
    def __init__(self, source: ResourceKey, target: ResourceKey):
        super().__init__(
            f"'{source.address}' references undeclared resource '{target.address}'"
        )
        self.source = source
        self.target = target


class CycleDetected(PlanError):
    def __init__(self, cycle: List[ResourceKey]):
        path = " -> ".join(k.address for k in cycle + cycle[:1])
        super().__init__(f"reference cycle detected: {path}")
        self.cycle = cycle


class ProvisioningError(ProvplanError):
    def __init__(self, key: ResourceKey, reason: str, transient: bool = False):
        super().__init__(f"failed to create '{key.address}': {reason}")
        self.key = key
        self.reason = reason
        self.transient = transient


class ProvisioningTimeout(ProvisioningError):
    """The call timed out locally; the remote side may still have completed it."""

    def __init__(self, key: ResourceKey, seconds: float):
        super().__init__(
            key,
            f"no response within {seconds:g}s, the operation may still complete remotely",
            transient=True,
        )
        self.seconds = seconds


class ApplyAborted(ProvplanError):
    """
    The provisioning API raised something other than ProvisioningError.

    ``result`` carries what was realized before the failure so the caller
    can still record it; the original exception is ``__cause__``.
    """

    def __init__(self, key: ResourceKey, cause: BaseException):
        super().__init__(
            f"provider crashed while creating '{key.address}': "
            f"{type(cause).__name__}: {cause}"
        )
        self.key = key
        self.result = None


class ApplyCanceled(ProvplanError):
    def __init__(self, next_key: Optional[ResourceKey] = None):
        where = f" before '{next_key.address}'" if next_key else ""
        super().__init__(f"apply canceled{where}")
        self.next_key = next_key
