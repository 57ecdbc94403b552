"""
Parser for the native provplan manifest format.

    resources:
      - kind: storage_bucket
        name: site
        attributes:
          acl: private
      - kind: cdn_distribution
        name: site
        depends_on: [storage_bucket.site]
        attributes:
          origin_domain: !ref storage_bucket.site.domain_name

JSON manifests spell a reference as {"$ref": "storage_bucket.site.domain_name"}.
"""
import json
import os
from typing import Any, List

import yaml
from rich.console import Console

from provplan.detect import detect_format
from provplan.models.errors import ParseError
from provplan.models.resource import Reference, Resource, ResourceKey

console = Console(stderr=True)


def parse_reference(text: str) -> Reference:
    """'kind.name[.attr...]' -> Reference; numeric segments index into lists."""
    pieces = text.strip().split(".")
    if len(pieces) < 2 or not all(pieces[:2]):
        raise ValueError(f"reference '{text}' must look like kind.name[.attribute]")
    path = tuple(int(p) if p.isdigit() else p for p in pieces[2:])
    return Reference(pieces[0], pieces[1], path)


class _ManifestLoader(yaml.SafeLoader):
    pass


def _ref_constructor(loader: yaml.SafeLoader, node: yaml.Node) -> Reference:
    return parse_reference(loader.construct_scalar(node))


_ManifestLoader.add_constructor("!ref", _ref_constructor)


def _convert(val: Any) -> Any:
    if isinstance(val, dict):
        if len(val) == 1 and isinstance(val.get("$ref"), str):
            return parse_reference(val["$ref"])
        return {k: _convert(v) for k, v in val.items()}
    if isinstance(val, list):
        return [_convert(v) for v in val]
    return val


def _load(filepath: str) -> List[Any]:
    _, ext = os.path.splitext(filepath.lower())
    with open(filepath) as fh:
        if ext == ".json":
            return [json.load(fh)]
        return list(yaml.load_all(fh, Loader=_ManifestLoader))


def parse_file(filepath: str, strict: bool = False) -> List[Resource]:
    resources: List[Resource] = []

    try:
        docs = _load(filepath)
    except Exception as exc:
        if strict:
            raise ParseError(filepath, str(exc)) from exc
        console.print(f"[yellow]Warning:[/yellow] failed to parse {filepath}: {exc}")
        return resources

    for doc in docs:
        if not isinstance(doc, dict):
            continue
        for entry in doc.get("resources") or []:
            if not isinstance(entry, dict) or not entry.get("kind") or not entry.get("name"):
                console.print(
                    f"[yellow]Warning:[/yellow] skipping entry without kind/name in {filepath}"
                )
                continue
            depends = entry.get("depends_on") or []
            if isinstance(depends, str):
                depends = [depends]
            try:
                attributes = _convert(entry.get("attributes") or {})
                depends_on = [
                    d.target if isinstance(d, Reference) else ResourceKey.parse(str(d))
                    for d in depends
                ]
            except ValueError as exc:
                console.print(f"[yellow]Warning:[/yellow] {entry['kind']}.{entry['name']}: {exc}")
                continue
            resources.append(Resource(
                kind=str(entry["kind"]),
                name=str(entry["name"]),
                attributes=attributes,
                depends_on=depends_on,
                source_format="manifest",
                source_file=filepath,
            ))

    return resources


def parse_directory(path: str) -> List[Resource]:
    resources: List[Resource] = []

    if os.path.isfile(path):
        if detect_format(path) == "manifest":
            resources.extend(parse_file(path))
        return resources

    for root, _, files in sorted(os.walk(path)):
        for fname in sorted(files):
            fpath = os.path.join(root, fname)
            if detect_format(fpath) == "manifest":
                resources.extend(parse_file(fpath))

    return resources
