import json
import os

import yaml

# Loader that tolerates CloudFormation-specific YAML tags (!Ref, !Sub, etc.)
# and the manifest !ref tag without raising an error, so detect_format can
# read any template.
class _TagTolerantLoader(yaml.SafeLoader):
    pass

_TagTolerantLoader.add_multi_constructor(
    "!",
    lambda loader, suffix, node: loader.construct_yaml_str(node)
    if isinstance(node, yaml.ScalarNode) else None,
)


def _is_cloudformation(doc: dict) -> bool:
    if "AWSTemplateFormatVersion" in doc:
        return True
    resources = doc.get("Resources")
    return isinstance(resources, dict) and any(
        isinstance(v, dict) and str(v.get("Type", "")).startswith("AWS::")
        for v in resources.values()
    )


def _is_manifest(doc: dict) -> bool:
    resources = doc.get("resources")
    return (
        isinstance(resources, list)
        and bool(resources)
        and all(isinstance(r, dict) and "kind" in r and "name" in r for r in resources)
    )


def detect_format(filepath: str) -> str:
    """
    Return 'terraform', 'cloudformation', 'manifest', or 'unknown'.
    """
    _, ext = os.path.splitext(filepath.lower())

    if ext == ".tf":
        return "terraform"

    if ext == ".json":
        try:
            with open(filepath) as fh:
                data = json.load(fh)
        except (OSError, ValueError):
            return "unknown"
        if isinstance(data, dict):
            if _is_cloudformation(data):
                return "cloudformation"
            if _is_manifest(data):
                return "manifest"
        return "unknown"

    if ext in (".yaml", ".yml"):
        try:
            with open(filepath) as fh:
                docs = list(yaml.load_all(fh, Loader=_TagTolerantLoader))
        except (OSError, yaml.YAMLError):
            return "unknown"

        # First document that looks like something we know wins
        for doc in docs:
            if not isinstance(doc, dict):
                continue
            if _is_cloudformation(doc):
                return "cloudformation"
            if _is_manifest(doc):
                return "manifest"

    return "unknown"
