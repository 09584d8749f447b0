"""Loading of the static target registry."""

import json
import logging
from pathlib import Path

from fleettop.models import TARGET_KINDS, Target

logger = logging.getLogger(__name__)


class RegistryError(Exception):
    """The target registry could not be loaded. Fatal at startup."""


def load_targets(path: str | Path) -> tuple[Target, ...]:
    """
    Load the ordered list of targets from a JSON file.

    The file holds an array of objects with ``name`` and ``address`` keys.
    ``ip`` is accepted in place of ``address``. An optional ``type`` of
    ``"server"`` (the default) or ``"website"`` selects how the target is
    probed; any other keys are ignored.

    Raises:
        RegistryError: If the file is missing or unreadable, is not a JSON
            array, contains an invalid entry, an unknown type or a duplicate name,
            or is empty.
    """
    path = Path(path)
    try:
        with path.open(encoding="utf-8") as fh:
            data = json.load(fh)
    except FileNotFoundError:
        raise RegistryError(f"target registry not found: {path}") from None
    except json.JSONDecodeError as e:
        raise RegistryError(f"target registry {path} is not valid JSON: {e}") from e
    except OSError as e:
        raise RegistryError(f"cannot read target registry {path}: {e}") from e

    targets = parse_targets(data, source=str(path))
    logger.info("Loaded %d target(s) from %s", len(targets), path)
    return targets


def parse_targets(data: object, source: str = "<registry>") -> tuple[Target, ...]:
    """Validate decoded registry data and build Target objects."""
    if not isinstance(data, list):
        raise RegistryError(f"{source}: expected a JSON array of targets")

    targets: list[Target] = []
    seen: set[str] = set()
    for index, entry in enumerate(data):
        if not isinstance(entry, dict):
            raise RegistryError(f"{source}: entry {index} is not an object")

        name = entry.get("name")
        address = entry.get("address", entry.get("ip"))
        if not isinstance(name, str) or not name.strip():
            raise RegistryError(f"{source}: entry {index} has no name")
        if not isinstance(address, str) or not address.strip():
            raise RegistryError(f"{source}: target {name!r} has no address")

        kind = entry.get("type", "server")
        if not isinstance(kind, str) or kind.strip().lower() not in TARGET_KINDS:
            raise RegistryError(f"{source}: target {name!r} has unknown type {kind!r}")

        name = name.strip()
        if name in seen:
            raise RegistryError(f"{source}: duplicate target name {name!r}")
        seen.add(name)
        targets.append(Target(name=name, address=address.strip(), kind=kind.strip().lower()))

    if not targets:
        raise RegistryError(f"{source}: no targets to monitor")
    return tuple(targets)
