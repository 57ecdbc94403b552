import os
import re
from typing import Any, Iterator, List, Optional, Tuple, Union

import hcl2
from rich.console import Console

from provplan.detect import detect_format
from provplan.models.errors import ParseError
from provplan.models.resource import Reference, Resource, ResourceKey, Template

console = Console(stderr=True)

# A resource traversal such as aws_s3_bucket.site.arn or aws_instance.app[0].id.
# Anything preceded by a dot (data.x.y, module.x.y, local.x.y) is not a resource.
_TRAVERSAL_RE = re.compile(
    r"(?<![\w.\-])([a-z][a-z0-9]*_[a-z0-9_]+)\.([A-Za-z_][\w\-]*)"
    r"((?:\.[A-Za-z_][\w\-]*|\[\d+\])*)"
)

_ATTR_STEP_RE = re.compile(r"\.([A-Za-z_][\w\-]*)|\[(\d+)\]")


def _unwrap(val: Any) -> Any:
    """
    python-hcl2 wraps single-element blocks in a list.
    Recursively unwrap single-element lists that contain dicts.
    """
    if isinstance(val, list):
        if len(val) == 1 and isinstance(val[0], dict):
            return _unwrap(val[0])
        return [_unwrap(v) for v in val]
    if isinstance(val, dict):
        return {k: _unwrap(v) for k, v in val.items()}
    return val


def _strip_quotes(val: str) -> str:
    # Newer python-hcl2 releases keep the quotes around string literals
    if len(val) >= 2 and val[0] == '"' and val[-1] == '"':
        return val[1:-1]
    return val


def _closing_brace(val: str, start: int) -> int:
    """Index of the '}' closing the "${" at start, or -1 when unbalanced."""
    depth = 0
    i = start + 1
    while i < len(val):
        ch = val[i]
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return -1


def _interpolations(val: str) -> Iterator[Tuple[int, int, str]]:
    """
    Yield (start, end, inner) for each top-level ${ ... } region of val.
    Braces are counted so jsonencode({...}) bodies stay in one region.
    """
    pos = 0
    while True:
        start = val.find("${", pos)
        if start < 0:
            return
        end = _closing_brace(val, start)
        if end < 0:
            return  # unbalanced, treat the rest as literal text
        yield start, end + 1, val[start + 2:end]
        pos = end + 1


def _literal_spans(expr: str) -> List[Tuple[int, int]]:
    """
    (start, end) spans of quoted string text inside an expression.

    file("user_data.sh") yields the span of user_data.sh. Interpolations
    inside a quoted string are not part of any span, so the reference in
    "${aws_s3_bucket.site.arn}/*" is still found.
    """
    spans: List[Tuple[int, int]] = []
    i, n = 0, len(expr)
    while i < n:
        if expr[i] != '"':
            i += 1
            continue
        j = text_start = i + 1
        while j < n and expr[j] != '"':
            if expr[j] == "\\":
                j += 2
                continue
            if expr.startswith("${", j):
                end = _closing_brace(expr, j)
                if end < 0:
                    j = n
                    break
                spans.append((text_start, j))
                # Quoted text nested inside the interpolation is literal too
                spans.extend((s + j + 2, e + j + 2) for s, e in _literal_spans(expr[j + 2:end]))
                j = text_start = end + 1
                continue
            j += 1
        spans.append((text_start, min(j, n)))
        i = j + 1
    return spans


def _reference_from_match(m: "re.Match") -> Reference:
    path: List[Union[str, int]] = []
    for name, idx in _ATTR_STEP_RE.findall(m.group(3)):
        path.append(int(idx) if idx else name)
    return Reference(m.group(1), m.group(2), tuple(path))


def _split_expression(expr: str) -> List[Union[str, Reference]]:
    """Split the inside of a ${...} region into literal text and references."""
    literals = _literal_spans(expr)
    parts: List[Union[str, Reference]] = []
    pos = 0
    for m in _TRAVERSAL_RE.finditer(expr):
        if any(start <= m.start() < end for start, end in literals):
            continue
        if m.start() > pos:
            parts.append(expr[pos:m.start()])
        parts.append(_reference_from_match(m))
        pos = m.end()
    if pos < len(expr):
        parts.append(expr[pos:])
    return parts


def _convert_string(val: str) -> Any:
    """
    Turn an HCL string into a literal, a Reference or a Template.

    "${aws_s3_bucket.site.id}"      -> Reference
    "${aws_s3_bucket.site.arn}/*"   -> Template(ref, "/*")
    "plain"                         -> "plain"
    """
    val = _strip_quotes(val)
    parts: List[Union[str, Reference]] = []
    pos = 0
    found = False
    for start, end, inner in _interpolations(val):
        single = _TRAVERSAL_RE.fullmatch(inner.strip())
        if single:
            if start == 0 and end == len(val):
                return _reference_from_match(single)
            if start > pos:
                parts.append(val[pos:start])
            parts.append(_reference_from_match(single))
            pos = end
            found = True
            continue
        pieces = _split_expression(inner)
        if any(isinstance(p, Reference) for p in pieces):
            if start > pos:
                parts.append(val[pos:start])
            parts.append("${")
            parts.extend(pieces)
            parts.append("}")
            pos = end
            found = True
    if not found:
        return val
    if pos < len(val):
        parts.append(val[pos:])
    return Template(tuple(_merge_literals(parts)))


def _merge_literals(parts: List[Union[str, Reference]]) -> List[Union[str, Reference]]:
    merged: List[Union[str, Reference]] = []
    for p in parts:
        if isinstance(p, str) and merged and isinstance(merged[-1], str):
            merged[-1] += p
        elif p != "":
            merged.append(p)
    return merged


def _convert(val: Any) -> Any:
    """Recursively convert string values that carry resource references."""
    if isinstance(val, str):
        return _convert_string(val)
    if isinstance(val, list):
        return [_convert(v) for v in val]
    if isinstance(val, dict):
        return {k: _convert(v) for k, v in val.items()}
    return val


def _dependency_key(entry: Any) -> Optional[ResourceKey]:
    if not isinstance(entry, str):
        return None
    text = _strip_quotes(entry).strip()
    if text.startswith("${") and text.endswith("}"):
        text = text[2:-1].strip()
    m = _TRAVERSAL_RE.match(text)
    if not m:
        return None
    return ResourceKey(m.group(1), m.group(2))


def _build(resource_type: str, name: str, raw_props: Any, filepath: str) -> Resource:
    props = _unwrap(raw_props) if isinstance(raw_props, dict) else {}
    if not isinstance(props, dict):
        props = {}
    depends_raw = props.pop("depends_on", [])
    if not isinstance(depends_raw, list):
        depends_raw = [depends_raw]
    depends_on = []
    for entry in depends_raw:
        key = _dependency_key(entry)
        if key is None:
            console.print(
                f"[yellow]Warning:[/yellow] ignoring depends_on entry {entry!r} "
                f"in {resource_type}.{name} ({filepath})"
            )
            continue
        depends_on.append(key)
    return Resource(
        kind=resource_type,
        name=_strip_quotes(name),
        attributes=_convert(props),
        depends_on=depends_on,
        source_format="terraform",
        source_file=filepath,
    )


def parse_file(filepath: str, strict: bool = False) -> List[Resource]:
    resources: List[Resource] = []
    try:
        with open(filepath) as fh:
            data = hcl2.load(fh)
    except Exception as exc:
        if strict:
            raise ParseError(filepath, str(exc)) from exc
        console.print(f"[yellow]Warning:[/yellow] failed to parse {filepath}: {exc}")
        return resources

    for resource_block in data.get("resource", []):
        for resource_type, instances in resource_block.items():
            resource_type = _strip_quotes(resource_type)
            if isinstance(instances, list):
                # hcl2 wraps the block in a list
                for instance_map in instances:
                    if not isinstance(instance_map, dict):
                        continue
                    for name, raw_props in instance_map.items():
                        resources.append(_build(resource_type, name, raw_props, filepath))
            elif isinstance(instances, dict):
                for name, raw_props in instances.items():
                    resources.append(_build(resource_type, name, raw_props, filepath))

    return resources


def parse_directory(path: str) -> List[Resource]:
    resources: List[Resource] = []

    if os.path.isfile(path):
        if detect_format(path) == "terraform":
            resources.extend(parse_file(path))
        return resources

    for root, _, files in sorted(os.walk(path)):
        for fname in sorted(files):
            fpath = os.path.join(root, fname)
            if detect_format(fpath) == "terraform":
                resources.extend(parse_file(fpath))

    return resources
