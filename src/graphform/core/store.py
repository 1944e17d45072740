"""State stores: keyed persistence for resource lifecycle records.

Records are addressed by ``(stack, stage, resource_id)``. "Not found" is a
normal absent result; every other backend failure raises ``StateStoreError``.
"""

from __future__ import annotations

import contextlib
import logging
import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from pydantic import ValidationError

from graphform.core.lock import StateLock
from graphform.core.state import ReplacedState, ResourceState, dump_state, load_state
from graphform.errors import StateStoreError

if TYPE_CHECKING:
    from contextlib import AbstractContextManager

logger = logging.getLogger(__name__)


class StateStore(Protocol):
    """Persistence contract shared by every backend."""

    def list_stacks(self) -> list[str]: ...

    def list_stages(self, stack: str) -> list[str]: ...

    def get(self, stack: str, stage: str, resource_id: str) -> ResourceState | None: ...

    def get_replaced_resources(self, stack: str, stage: str) -> list[ReplacedState]: ...

    def set(
        self, stack: str, stage: str, resource_id: str, record: ResourceState
    ) -> ResourceState: ...

    def delete(self, stack: str, stage: str, resource_id: str) -> None: ...

    def list(self, stack: str, stage: str) -> list[str]: ...

    def lock(self, stack: str, stage: str) -> AbstractContextManager[object]: ...


class InMemoryStateStore:
    """Process-local store: stack -> stage -> resource id -> record."""

    def __init__(
        self, initial: dict[str, dict[str, dict[str, ResourceState]]] | None = None
    ) -> None:
        self._stacks: dict[str, dict[str, dict[str, ResourceState]]] = initial or {}

    def list_stacks(self) -> list[str]:
        return sorted(self._stacks)

    def list_stages(self, stack: str) -> list[str]:
        return sorted(self._stacks.get(stack, {}))

    def get(self, stack: str, stage: str, resource_id: str) -> ResourceState | None:
        return self._stacks.get(stack, {}).get(stage, {}).get(resource_id)

    def get_replaced_resources(self, stack: str, stage: str) -> list[ReplacedState]:
        records = self._stacks.get(stack, {}).get(stage, {}).values()
        return [r for r in records if isinstance(r, ReplacedState)]

    def set(
        self, stack: str, stage: str, resource_id: str, record: ResourceState
    ) -> ResourceState:
        self._stacks.setdefault(stack, {}).setdefault(stage, {})[resource_id] = record
        return record

    def delete(self, stack: str, stage: str, resource_id: str) -> None:
        self._stacks.get(stack, {}).get(stage, {}).pop(resource_id, None)

    def list(self, stack: str, stage: str) -> list[str]:
        return sorted(self._stacks.get(stack, {}).get(stage, {}))

    def lock(self, stack: str, stage: str) -> AbstractContextManager[object]:
        return contextlib.nullcontext()


class LocalStateStore:
    """One JSON document per resource at ``<root>/state/<stack>/<stage>/<id>.json``."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)
        self._state_dir = self.root / "state"
        self._created_dirs: set[Path] = set()

    def _stage_dir(self, stack: str, stage: str) -> Path:
        return self._state_dir / stack / stage

    def _path(self, stack: str, stage: str, resource_id: str) -> Path:
        return self._stage_dir(stack, stage) / f"{resource_id}.json"

    def _ensure_dir(self, path: Path) -> None:
        if path in self._created_dirs:
            return
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StateStoreError(f"Cannot create state directory {path}: {e}") from e
        self._created_dirs.add(path)

    def _list_dir(self, path: Path, *, dirs: bool) -> list[str]:
        try:
            entries = list(path.iterdir())
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StateStoreError(f"Cannot list {path}: {e}") from e
        if dirs:
            return sorted(p.name for p in entries if p.is_dir())
        return sorted(p.stem for p in entries if p.is_file() and p.suffix == ".json")

    def list_stacks(self) -> list[str]:
        return self._list_dir(self._state_dir, dirs=True)

    def list_stages(self, stack: str) -> list[str]:
        return self._list_dir(self._state_dir / stack, dirs=True)

    def list(self, stack: str, stage: str) -> list[str]:
        return self._list_dir(self._stage_dir(stack, stage), dirs=False)

    def get(self, stack: str, stage: str, resource_id: str) -> ResourceState | None:
        path = self._path(stack, stage, resource_id)
        try:
            payload = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StateStoreError(f"Cannot read state file {path}: {e}") from e
        try:
            return load_state(payload)
        except ValidationError as e:
            raise StateStoreError(f"Invalid state file {path}: {e}") from e

    def get_replaced_resources(self, stack: str, stage: str) -> list[ReplacedState]:
        records = (self.get(stack, stage, rid) for rid in self.list(stack, stage))
        return [r for r in records if isinstance(r, ReplacedState)]

    def set(
        self, stack: str, stage: str, resource_id: str, record: ResourceState
    ) -> ResourceState:
        """Write a record atomically (temp file + rename)."""
        directory = self._stage_dir(stack, stage)
        self._ensure_dir(directory)
        path = self._path(stack, stage, resource_id)
        content = dump_state(record)

        tmp_file: Path | None = None
        try:
            fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(directory))
            tmp_file = Path(tmp_path)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            tmp_file.replace(path)
        except OSError as e:
            raise StateStoreError(f"Cannot write state file {path}: {e}") from e
        finally:
            if tmp_file is not None:
                with contextlib.suppress(FileNotFoundError):
                    tmp_file.unlink()
        logger.debug("State saved: %s status=%s path=%s", resource_id, record.status, path)
        return record

    def delete(self, stack: str, stage: str, resource_id: str) -> None:
        path = self._path(stack, stage, resource_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise StateStoreError(f"Cannot delete state file {path}: {e}") from e
        logger.debug("State removed: %s path=%s", resource_id, path)

    def lock(self, stack: str, stage: str) -> StateLock:
        return StateLock(self._state_dir / stack / f"{stage}.lock")
