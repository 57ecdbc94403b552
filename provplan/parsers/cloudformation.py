import json
import os
import re
from typing import Any, Dict, List, Set, Union

import yaml
from rich.console import Console

from provplan.detect import detect_format
from provplan.models.errors import ParseError
from provplan.models.resource import Reference, Resource, ResourceKey, Template

console = Console(stderr=True)


# ------------------------------------------------------------------ CFN YAML loader
# yaml.safe_load can't handle CloudFormation-specific tags (!Ref, !Sub, !If, etc.).
# We register multi-constructors that turn them into plain dicts so the rest of the
# parser can operate on normal Python objects.

class _CfnLoader(yaml.SafeLoader):
    pass


def _cfn_tag_constructor(loader: yaml.SafeLoader, tag_suffix: str, node: yaml.Node) -> Any:
    """Convert any !Tag into {"Tag": value} so downstream code can traverse it."""
    if isinstance(node, yaml.ScalarNode):
        return {tag_suffix: loader.construct_scalar(node)}
    if isinstance(node, yaml.SequenceNode):
        return {tag_suffix: loader.construct_sequence(node, deep=True)}
    if isinstance(node, yaml.MappingNode):
        return {tag_suffix: loader.construct_mapping(node, deep=True)}
    return {tag_suffix: None}


# Intrinsic short forms (!Ref, !GetAtt, !Sub, ...) become {"Ref": ...} style mappings
_CfnLoader.add_multi_constructor("!", _cfn_tag_constructor)

_SUB_VAR_RE = re.compile(r"\$\{([^}!][^}]*)\}")


class _Converter:
    """
    Rewrites intrinsic functions that point at other resources into
    Reference / Template values. Refs to parameters and AWS:: pseudo
    parameters are not resources and are left untouched.
    """

    def __init__(self, types: Dict[str, str], parameters: Set[str]):
        self.types = types
        self.parameters = parameters

    def _is_literal_name(self, name: str) -> bool:
        return name.startswith("AWS::") or name in self.parameters

    def reference(self, name: str, attribute: tuple = ()) -> Reference:
        # Undeclared targets keep an empty kind; the resolver reports them
        return Reference(self.types.get(name, ""), name, attribute)

    def _get_att(self, val: Any) -> Any:
        if isinstance(val, str) and "." in val:
            name, attr = val.split(".", 1)
        elif isinstance(val, list) and len(val) == 2 and isinstance(val[0], str):
            name, attr = val[0], val[1]
        else:
            return None
        if not isinstance(attr, str):
            return None
        return self.reference(name, tuple(attr.split(".")))

    def _sub(self, val: Any) -> Any:
        variables: Dict[str, Any] = {}
        if isinstance(val, list) and val and isinstance(val[0], str):
            text = val[0]
            if len(val) > 1 and isinstance(val[1], dict):
                variables = {k: self.convert(v) for k, v in val[1].items()}
        elif isinstance(val, str):
            text = val
        else:
            return None

        parts: List[Union[str, Reference]] = []
        pos = 0
        for m in _SUB_VAR_RE.finditer(text):
            var = m.group(1).strip()
            if var in variables:
                value = variables[var]
            elif self._is_literal_name(var):
                continue
            elif "." in var:
                name, attr = var.split(".", 1)
                value = self.reference(name, tuple(attr.split(".")))
            else:
                value = self.reference(var)
            if m.start() > pos:
                parts.append(text[pos:m.start()])
            if isinstance(value, Template):
                parts.extend(value.parts)
            elif isinstance(value, Reference):
                parts.append(value)
            else:
                parts.append(str(value))
            pos = m.end()
        if pos == 0:
            return text
        if pos < len(text):
            parts.append(text[pos:])
        return Template(tuple(parts))

    def convert(self, val: Any) -> Any:
        if isinstance(val, dict):
            if len(val) == 1:
                (fn, arg), = val.items()
                if fn == "Ref" and isinstance(arg, str) and not self._is_literal_name(arg):
                    return self.reference(arg)
                if fn in ("GetAtt", "Fn::GetAtt"):
                    converted = self._get_att(arg)
                    if converted is not None:
                        return converted
                if fn in ("Sub", "Fn::Sub"):
                    converted = self._sub(arg)
                    if converted is not None:
                        return converted
            return {k: self.convert(v) for k, v in val.items()}
        if isinstance(val, list):
            return [self.convert(item) for item in val]
        return val


def _load_template(filepath: str) -> Any:
    _, ext = os.path.splitext(filepath.lower())
    with open(filepath) as fh:
        if ext == ".json":
            return json.load(fh)
        return yaml.load(fh, Loader=_CfnLoader)


def parse_file(filepath: str, strict: bool = False) -> List[Resource]:
    resources: List[Resource] = []

    try:
        template = _load_template(filepath)
    except Exception as exc:
        if strict:
            raise ParseError(filepath, str(exc)) from exc
        console.print(f"[yellow]Warning:[/yellow] failed to parse {filepath}: {exc}")
        return resources

    if not isinstance(template, dict):
        return resources

    cfn_resources = template.get("Resources", {})
    if not isinstance(cfn_resources, dict):
        return resources

    parameters = template.get("Parameters") or {}
    types = {
        name: str(definition.get("Type", ""))
        for name, definition in cfn_resources.items()
        if isinstance(definition, dict)
    }
    converter = _Converter(types, set(parameters) if isinstance(parameters, dict) else set())

    for logical_name, definition in cfn_resources.items():
        if not isinstance(definition, dict):
            continue
        properties = definition.get("Properties", {}) or {}

        depends = definition.get("DependsOn", [])
        if isinstance(depends, str):
            depends = [depends]
        depends_on = [
            ResourceKey(types.get(d, ""), d) for d in depends if isinstance(d, str)
        ]

        resources.append(Resource(
            kind=types[logical_name],
            name=logical_name,
            attributes=converter.convert(properties),
            depends_on=depends_on,
            source_format="cloudformation",
            source_file=filepath,
        ))

    return resources


def parse_directory(path: str) -> List[Resource]:
    resources: List[Resource] = []

    if os.path.isfile(path):
        if detect_format(path) == "cloudformation":
            resources.extend(parse_file(path))
        return resources

    for root, _, files in sorted(os.walk(path)):
        for fname in sorted(files):
            fpath = os.path.join(root, fname)
            if detect_format(fpath) == "cloudformation":
                resources.extend(parse_file(fpath))

    return resources
