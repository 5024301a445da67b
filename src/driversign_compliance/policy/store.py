"""
driversign_compliance.policy.store

Policy Store: per-platform signing requirements behind an immutable snapshot.

Responsibilities:
- Load and validate the YAML policy document (all-or-nothing).
- Resolve `(platform, driver_class)` to exactly one `Policy` or raise `NotFoundError`.
- Swap the whole table atomically on reload so readers never see a partial policy.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from driversign_compliance.errors import PolicyLoadError
from driversign_compliance.observability.logging import get_logger
from driversign_compliance.policy.models import Policy, PolicyDocument, PolicySnapshot

log = get_logger(__name__)


def build_snapshot(data: Any, *, source: str | None = None) -> PolicySnapshot:
    if not isinstance(data, dict):
        where = source or "<mapping>"
        raise PolicyLoadError(f"Invalid policy in {where}: top level must be a mapping")
    try:
        doc = PolicyDocument.model_validate(data)
    except ValidationError as e:
        where = source or "<mapping>"
        raise PolicyLoadError(f"Invalid policy in {where}: {e}") from e
    return PolicySnapshot.from_document(doc, source=source)


def load_policy_file(path: str | Path) -> PolicySnapshot:
    """Parse a policy YAML file into a snapshot. Raises `PolicyLoadError`."""
    policy_path = Path(path)
    if not policy_path.is_file():
        raise PolicyLoadError(f"Policy file not found: {policy_path}")

    try:
        with policy_path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise PolicyLoadError(f"Invalid YAML in {policy_path}: {e}") from e
    except OSError as e:
        raise PolicyLoadError(f"Cannot read {policy_path}: {e}") from e

    return build_snapshot(data, source=str(policy_path))


class PolicyStore:
    """
    Readers call `lookup` without locking: they dereference `_snapshot` once, and the
    snapshot itself is immutable. Writers serialise on `_reload_lock`.
    """

    def __init__(self, snapshot: PolicySnapshot | None = None) -> None:
        self._snapshot = snapshot or PolicySnapshot.empty()
        self._reload_lock = threading.Lock()

    @classmethod
    def from_file(cls, path: str | Path) -> PolicyStore:
        return cls(load_policy_file(path))

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> PolicyStore:
        return cls(build_snapshot(data))

    def snapshot(self) -> PolicySnapshot:
        return self._snapshot

    @property
    def version(self) -> str:
        return self._snapshot.version

    def lookup(self, platform: str, driver_class: str) -> Policy:
        """Raises `NotFoundError` for an unknown combination; never falls back."""
        return self._snapshot.lookup(platform, driver_class)

    def reload(self, path: str | Path | None = None) -> PolicySnapshot:
        """
        Re-read the policy document and swap it in. On any error the current
        snapshot stays active and the error propagates.
        """

        with self._reload_lock:
            target = path if path is not None else self._snapshot.source
            if target is None:
                raise PolicyLoadError("No policy source to reload from")
            fresh = load_policy_file(target)
            previous = self._snapshot.version
            self._snapshot = fresh

        log.info(
            "policy_reloaded",
            source=fresh.source,
            previous_version=previous,
            version=fresh.version,
            fingerprint=fresh.fingerprint,
            entries=len(fresh.table),
        )
        return fresh

    def replace(self, snapshot: PolicySnapshot) -> None:
        with self._reload_lock:
            self._snapshot = snapshot


# --- Module Notes -----------------------------------------------------------
# A missing entry is never defaulted: unknown combinations must fail closed upstream.
