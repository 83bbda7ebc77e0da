from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Union

from .errors import LoadError


def load_class_names(metadata_path: Union[str, Path]) -> Dict[int, str]:
    """
    Load class names from the lightweight `metadata.yaml` format:

        names:
          0: person
          1: bicycle
          ...

    Parsed by hand to avoid a PyYAML dependency.
    """

    names: Dict[int, str] = {}
    in_names = False

    with open(metadata_path, "r", encoding="utf-8") as f:
        for raw in f:
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            if line == "names:":
                in_names = True
                continue
            if not in_names:
                continue

            if ":" not in line:
                continue
            left, right = line.split(":", 1)
            left = left.strip()
            right = right.strip().strip("'").strip('"')
            if not left.isdigit():
                continue
            names[int(left)] = right

    return names


def load_labels(path: Union[str, Path]) -> List[str]:
    """
    Ordered label list indexed by class id.

    `.yaml` / `.yml` files use the `names:` mapping above (gaps are filled with
    the id as text); anything else is a plain `classes.txt` with one label per line.
    """

    p = Path(path)
    if not p.exists():
        raise LoadError(f"Label asset not found: {p}")

    if p.suffix.lower() in {".yaml", ".yml"}:
        names = load_class_names(p)
        if not names:
            raise LoadError(f"No class names found in {p}")
        return [names.get(i, str(i)) for i in range(max(names) + 1)]

    lines = p.read_text(encoding="utf-8").split("\n")
    labels = [line.rstrip("\r").strip() for line in lines]
    while labels and not labels[-1]:
        labels.pop()
    if not labels:
        raise LoadError(f"Label file is empty: {p}")
    return labels
