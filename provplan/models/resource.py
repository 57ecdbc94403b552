from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, NamedTuple, Tuple, Union


class ResourceKey(NamedTuple):
    kind: str      # e.g. "aws_s3_bucket", "AWS::S3::Bucket", "storage_bucket"
    name: str      # logical name in the declaration

    @property
    def address(self) -> str:
        return f"{self.kind}.{self.name}" if self.kind else self.name

    @classmethod
    def parse(cls, address: str) -> "ResourceKey":
        kind, _, name = address.partition(".")
        return cls(kind, name)


@dataclass(frozen=True)
class Reference:
    """
    A promise on an output attribute of another resource.

    The value is only known once the target has been realized. An empty
    attribute path stands for the target's ``id`` output.
    """
    kind: str
    name: str
    attribute: Tuple[Union[str, int], ...] = ()

    @property
    def target(self) -> ResourceKey:
        return ResourceKey(self.kind, self.name)

    @property
    def path(self) -> Tuple[Union[str, int], ...]:
        return self.attribute or ("id",)

    def __str__(self) -> str:
        suffix = "".join(f".{p}" for p in self.attribute)
        return f"{self.target.address}{suffix}"


@dataclass(frozen=True)
class Template:
    """String built from literal parts and references, joined after realization."""
    parts: Tuple[Union[str, Reference], ...]

    def references(self) -> List[Reference]:
        return [p for p in self.parts if isinstance(p, Reference)]

    def __str__(self) -> str:
        return "".join(p if isinstance(p, str) else "${" + str(p) + "}" for p in self.parts)


def iter_references(val: Any) -> Iterator[Reference]:
    """Recursively yield every reference inside an attribute value."""
    if isinstance(val, Reference):
        yield val
    elif isinstance(val, Template):
        yield from val.references()
    elif isinstance(val, dict):
        for v in val.values():
            yield from iter_references(v)
    elif isinstance(val, (list, tuple)):
        for item in val:
            yield from iter_references(item)


@dataclass
class Resource:
    kind: str
    name: str
    attributes: Dict[str, Any] = field(default_factory=dict)
    depends_on: List[ResourceKey] = field(default_factory=list)
    source_format: str = ""      # "terraform", "cloudformation", "manifest"
    source_file: str = ""
    index: int = 0               # position in the declaration set

    @property
    def key(self) -> ResourceKey:
        return ResourceKey(self.kind, self.name)

    @property
    def address(self) -> str:
        return self.key.address

    def references(self) -> List[Reference]:
        return list(iter_references(self.attributes))

    def dependencies(self) -> List[ResourceKey]:
        """Keys this resource must wait for, in first-seen order, without duplicates."""
        seen = {}
        for ref in self.references():
            seen.setdefault(ref.target, None)
        for dep in self.depends_on:
            seen.setdefault(dep, None)
        return list(seen)


@dataclass
class RealizedResource:
    kind: str
    name: str
    outputs: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> ResourceKey:
        return ResourceKey(self.kind, self.name)

    def lookup(self, path: Tuple[Union[str, int], ...]) -> Any:
        """Drill into outputs; raises KeyError when the path does not exist."""
        cur: Any = self.outputs
        for step in path:
            if isinstance(cur, dict) and step in cur:
                cur = cur[step]
            elif isinstance(cur, list) and isinstance(step, int) and -len(cur) <= step < len(cur):
                cur = cur[step]
            else:
                raise KeyError(".".join(str(p) for p in path))
        return cur

    def to_dict(self) -> dict:
        return {"kind": self.kind, "name": self.name, "outputs": self.outputs}

    @classmethod
    def from_dict(cls, data: dict) -> "RealizedResource":
        if not isinstance(data, dict) or not data.get("kind") or not data.get("name"):
            raise ValueError(f"state record without kind and name: {data!r}")
        if not isinstance(data.get("outputs") or {}, dict):
            raise ValueError(f"outputs of {data['kind']}.{data['name']} must be a mapping")
        return cls(kind=data["kind"], name=data["name"], outputs=dict(data.get("outputs") or {}))
