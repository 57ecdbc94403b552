import os
from typing import List, Sequence

from rich.console import Console

from provplan.detect import detect_format
from provplan.models.resource import Resource
from provplan.parsers import cloudformation, manifest, terraform

console = Console(stderr=True)

PARSERS = {
    "terraform": terraform.parse_file,
    "cloudformation": cloudformation.parse_file,
    "manifest": manifest.parse_file,
}


def collect_files(paths: Sequence[str]) -> List[str]:
    """Expand directories into file paths, in a stable order."""
    files = []
    for p in paths:
        if os.path.isfile(p):
            files.append(p)
        elif os.path.isdir(p):
            for root, dirs, fnames in os.walk(p):
                dirs.sort()
                for fname in sorted(fnames):
                    files.append(os.path.join(root, fname))
        else:
            console.print(f"[yellow]Warning:[/yellow] '{p}' does not exist, skipping.")
    return files


def load_declarations(file_paths: Sequence[str], strict: bool = False) -> List[Resource]:
    """
    Parse every supported file and number the resources in declaration
    order: file order first, then order of appearance inside each file.
    """
    resources: List[Resource] = []
    for fp in file_paths:
        parse = PARSERS.get(detect_format(fp))
        if parse is None:
            console.print(f"[dim]Skipping unsupported file:[/dim] {fp}")
            continue
        resources.extend(parse(fp, strict=strict))
    for i, r in enumerate(resources):
        r.index = i
    return resources
