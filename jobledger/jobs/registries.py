"""Registry naming for batch launches.

Each batch launch gets its own registry directory under ``regdir``, named
``reg001``, ``reg002``, ... Numbers only go up: a deleted registry's number is
never handed out again unless it was the highest one.
"""

from __future__ import annotations

import re
from pathlib import Path

from jobledger.jobs.errors import StorageUnavailable

REGISTRY_RE = re.compile(r"^reg(?P<number>\d+)$")


def format_registry_name(number: int) -> str:
    return f"reg{number:03d}"


def parse_registry_name(name: str) -> int | None:
    m = REGISTRY_RE.match(str(name))
    if not m:
        return None
    return int(m.group("number"))


def ensure_regdir(regdir: str | Path) -> Path:
    """Create ``regdir`` (and parents) if missing."""
    root = Path(regdir)
    try:
        root.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise StorageUnavailable(f"cannot create registry directory {root}: {exc}") from exc
    return root


def list_registries(regdir: str | Path) -> list[str]:
    root = Path(regdir)
    if not root.is_dir():
        return []
    names = [p.name for p in root.iterdir() if parse_registry_name(p.name) is not None]
    return sorted(names, key=parse_registry_name)


def next_registry_name(regdir: str | Path) -> str:
    """Return the next unused registry name under ``regdir``, creating ``regdir`` if needed."""

    ensure_regdir(regdir)
    numbers = [parse_registry_name(n) for n in list_registries(regdir)]
    if not numbers:
        return format_registry_name(1)
    return format_registry_name(max(numbers) + 1)
