"""
Execution driver: realizes a plan one resource at a time.

Each resource's references are replaced with outputs of resources realized
earlier in the same run. The first ProvisioningError stops the run; resources
already created are left as they are and recorded in the returned snapshot.
Any other exception from the API is raised as ApplyAborted, which carries
the same partial result.
"""
import json
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from rich.console import Console

from provplan.models.errors import (
    ApplyAborted,
    ApplyCanceled,
    ProvisioningError,
    ProvisioningTimeout,
    ProvplanError,
)
from provplan.models.resource import RealizedResource, Reference, Resource, ResourceKey, Template
from provplan.planner.resolver import Plan
from provplan.planner.state import StateSnapshot
from provplan.providers.base import ProvisioningAPI

console = Console(stderr=True)


class TimeoutPolicy:
    """Per-call timeout in seconds; None means wait as long as the API takes."""

    def __init__(self, default: Optional[float] = None, per_kind: Optional[Dict[str, float]] = None):
        self.default = default
        self.per_kind = dict(per_kind or {})

    def for_kind(self, kind: str) -> Optional[float]:
        return self.per_kind.get(kind, self.default)


@dataclass
class ApplyResult:
    plan: Plan
    state: StateSnapshot
    realized: List[RealizedResource] = field(default_factory=list)
    failed: Optional[ResourceKey] = None
    error: Optional[ProvplanError] = None
    canceled: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.canceled

    @property
    def pending(self) -> List[ResourceKey]:
        """Keys never attempted in this run."""
        done = {rr.key for rr in self.realized}
        if self.failed:
            done.add(self.failed)
        return [k for k in self.plan.keys() if k not in done]

    def status(self, key: ResourceKey) -> str:
        if key == self.failed:
            return "failed"
        if any(rr.key == key for rr in self.realized):
            return "created"
        return "canceled" if self.canceled else "pending"


def _stringify(val: Any) -> str:
    if isinstance(val, str):
        return val
    return json.dumps(val, sort_keys=True)


def substitute(val: Any, owner: ResourceKey, realized: Dict[ResourceKey, RealizedResource]) -> Any:
    """Replace references in val with realized outputs."""
    if isinstance(val, Reference):
        target = realized.get(val.target)
        if target is None:
            raise ProvisioningError(owner, f"'{val.target.address}' has not been realized")
        try:
            return target.lookup(val.path)
        except KeyError:
            raise ProvisioningError(
                owner, f"'{val}' is not an output of '{val.target.address}'"
            ) from None
    if isinstance(val, Template):
        return "".join(
            _stringify(substitute(p, owner, realized)) if isinstance(p, Reference) else p
            for p in val.parts
        )
    if isinstance(val, dict):
        return {k: substitute(v, owner, realized) for k, v in val.items()}
    if isinstance(val, list):
        return [substitute(v, owner, realized) for v in val]
    return val


class Driver:
    def __init__(
        self,
        api: ProvisioningAPI,
        timeouts: Optional[TimeoutPolicy] = None,
        cancel_event: Optional[threading.Event] = None,
        out: Optional[Console] = None,
    ):
        self.api = api
        self.timeouts = timeouts or TimeoutPolicy()
        self.cancel_event = cancel_event or threading.Event()
        self.out = out or console

    def _create(self, resource: Resource, attributes: Dict[str, Any]) -> RealizedResource:
        timeout = self.timeouts.for_kind(resource.kind)
        if timeout is None:
            return self.api.create(resource.kind, resource.name, attributes)

        # Daemon worker so a hung call never holds up interpreter exit
        outcome: Dict[str, Any] = {}

        def _call():
            try:
                outcome["value"] = self.api.create(resource.kind, resource.name, attributes)
            except Exception as exc:
                outcome["error"] = exc

        worker = threading.Thread(
            target=_call, name=f"provplan-create-{resource.address}", daemon=True
        )
        worker.start()
        worker.join(timeout)
        if worker.is_alive():
            raise ProvisioningTimeout(resource.key, timeout)
        if "error" in outcome:
            raise outcome["error"]
        return outcome["value"]

    def apply(self, plan: Plan, state: StateSnapshot) -> ApplyResult:
        realized: Dict[ResourceKey, RealizedResource] = {}
        order: List[RealizedResource] = []
        failed: Optional[ResourceKey] = None
        error: Optional[ProvplanError] = None
        canceled = False

        for step, resource in enumerate(plan, 1):
            if self.cancel_event.is_set():
                canceled = True
                error = ApplyCanceled(resource.key)
                self.out.print(f"[yellow]Canceled[/yellow] before {resource.address}")
                break

            self.out.print(f"[dim]({step}/{len(plan)})[/dim] creating {resource.address}")
            try:
                attributes = substitute(resource.attributes, resource.key, realized)
                rr = self._create(resource, attributes)
            except ProvisioningError as exc:
                failed, error = resource.key, exc
                self.out.print(f"[red]Failed:[/red] {exc}")
                break
            except Exception as exc:
                aborted = ApplyAborted(resource.key, exc)
                aborted.result = ApplyResult(
                    plan=plan,
                    state=state.succeed(order),
                    realized=order,
                    failed=resource.key,
                    error=aborted,
                )
                self.out.print(f"[red]Aborted:[/red] {aborted}")
                raise aborted from exc

            # Identity comes from the declaration, not from the backend
            rr = RealizedResource(resource.kind, resource.name, dict(rr.outputs))
            realized[rr.key] = rr
            order.append(rr)

        return ApplyResult(
            plan=plan,
            state=state.succeed(order),
            realized=order,
            failed=failed,
            error=error,
            canceled=canceled,
        )
