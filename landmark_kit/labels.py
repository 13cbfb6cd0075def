from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Union

# Classes of the bundled landmark model, in output order.
LANDMARK_CLASS_NAMES = (
    "Bujang_Senang_Statue",
    "Fort_Alice",
    "JKR_Pigeon",
    "Jalan_Bayu_Pigeon",
    "Old_Bomba_Roundabout_Pigeon",
    "Old_Bus_Station_Swallows",
    "Rumah_Sri_Aman",
    "Simanggang_Town_Roundabout_Pigeon",
    "Three_Fish_Statue",
    "Tze_Yin_Khor_Guan_Yin",
)


def _parse_names_mapping(lines: List[str]) -> Dict[int, str]:
    names: Dict[int, str] = {}
    in_names = False
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line == "names:":
            in_names = True
            continue
        if not in_names:
            continue

        # Parse "id: label"
        if ":" not in line:
            continue
        left, right = line.split(":", 1)
        left = left.strip()
        right = right.strip().strip("'").strip('"')
        if not left.isdigit():
            continue
        names[int(left)] = right
    return names


def load_class_names(path: Union[str, Path]) -> List[str]:
    """
    Load the ordered class label table.

    Two formats are accepted:

    - `labels.txt`: one name per line, line order is class order
    - `metadata.yaml` exported alongside the model:

        names:
          0: Fort_Alice
          1: Rumah_Sri_Aman
          ...

    The YAML file is read with a line parser, so PyYAML is not needed.
    """

    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Label file not found: {p}")
    lines = p.read_text(encoding="utf-8").splitlines()

    if p.suffix.lower() in {".yaml", ".yml"}:
        mapping = _parse_names_mapping(lines)
        if not mapping:
            raise ValueError(f"No 'names:' mapping found in {p}")
        expected = list(range(len(mapping)))
        if sorted(mapping) != expected:
            raise ValueError(f"Class ids in {p} must be contiguous from 0, got {sorted(mapping)}")
        return [mapping[i] for i in expected]

    names = [line.strip() for line in lines if line.strip()]
    if not names:
        raise ValueError(f"Label file is empty: {p}")
    return names
