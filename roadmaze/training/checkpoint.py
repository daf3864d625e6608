"""Model slots: save / load / delete / copy / list.

Each slot holds:
  - slot_<n>.pt    the agent blob from DQNAgent.serialize()
                   (both networks, optimizer, epsilon, episode counter,
                   hyperparameters)
  - slot_<n>.json  side-channel metadata (name, hyperparameters of the
                   run, episode history, score, ...) so listing slots never
                   has to unpickle weights

Both files of a slot are first written to temporary files. Only when both
are on disk are they moved into place with os.replace, so a save or copy
that fails while writing leaves the previous slot contents untouched.
Deleting a slot that does not exist is a no-op.
"""

from __future__ import annotations

import json
import os
import tempfile
import time
from typing import Any

from ..errors import ModelStoreError
from .agent import DQNAgent


class ModelStore:
    """Slot-indexed model storage in one directory."""

    def __init__(self, root_dir: str):
        self.root_dir = root_dir

    def _blob_path(self, slot: int) -> str:
        return os.path.join(self.root_dir, f"slot_{int(slot)}.pt")

    def _meta_path(self, slot: int) -> str:
        return os.path.join(self.root_dir, f"slot_{int(slot)}.json")

    def _stage(self, data: bytes) -> str:
        """Write `data` to a temporary file in the slot directory."""
        os.makedirs(self.root_dir, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.root_dir, prefix=".tmp_")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
        except BaseException:
            os.remove(tmp)
            raise
        return tmp

    def _write_slot(self, slot: int, blob: bytes, meta: dict[str, Any]) -> None:
        staged: list[str] = []
        try:
            staged.append(self._stage(blob))
            staged.append(self._stage(json.dumps(meta, indent=2).encode("utf-8")))
        except BaseException:
            for tmp in staged:
                os.remove(tmp)
            raise
        os.replace(staged[0], self._blob_path(slot))
        os.replace(staged[1], self._meta_path(slot))

    def exists(self, slot: int) -> bool:
        return os.path.exists(self._blob_path(slot))

    def save(self, slot: int, agent: DQNAgent, metadata: dict[str, Any] | None = None) -> dict[str, Any]:
        """Write agent + metadata to `slot`. Returns the stored metadata."""
        meta: dict[str, Any] = dict(metadata or {})
        meta["slot"] = int(slot)
        meta["saved_at"] = time.time()
        meta.setdefault("hyperparams", agent.hyperparams)
        meta["episode_count"] = int(agent.episode_count)

        try:
            blob = agent.serialize()
            self._write_slot(slot, blob, meta)
        except (OSError, TypeError, ValueError, RuntimeError) as e:
            raise ModelStoreError(f"could not save slot {slot}: {e}") from e
        return meta

    def load(self, slot: int, device=None) -> tuple[DQNAgent, dict[str, Any]]:
        """Rebuild the agent stored in `slot` (fresh object; nothing live is touched)."""
        if not self.exists(slot):
            raise ModelStoreError(f"slot {slot} is empty")
        try:
            with open(self._blob_path(slot), "rb") as f:
                agent = DQNAgent.deserialize(f.read(), device=device)
            meta = self.metadata(slot)
        except ModelStoreError:
            raise
        except Exception as e:
            raise ModelStoreError(f"could not load slot {slot}: {e}") from e
        return agent, meta

    def metadata(self, slot: int) -> dict[str, Any]:
        path = self._meta_path(slot)
        if not os.path.exists(path):
            return {"slot": int(slot)}
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise ModelStoreError(f"could not read metadata of slot {slot}: {e}") from e

    def delete(self, slot: int) -> None:
        for path in (self._blob_path(slot), self._meta_path(slot)):
            try:
                os.remove(path)
            except FileNotFoundError:
                pass
            except OSError as e:
                raise ModelStoreError(f"could not delete slot {slot}: {e}") from e

    def copy(self, src: int, dst: int) -> dict[str, Any]:
        if not self.exists(src):
            raise ModelStoreError(f"slot {src} is empty")
        try:
            meta = self.metadata(src)
            meta["slot"] = int(dst)
            meta["copied_from"] = int(src)
            with open(self._blob_path(src), "rb") as f:
                blob = f.read()
            self._write_slot(dst, blob, meta)
        except OSError as e:
            raise ModelStoreError(f"could not copy slot {src} to {dst}: {e}") from e
        return meta

    def list_slots(self) -> list[dict[str, Any]]:
        """Metadata of every filled slot, sorted by slot number."""
        if not os.path.isdir(self.root_dir):
            return []
        slots = []
        for name in os.listdir(self.root_dir):
            if name.startswith("slot_") and name.endswith(".pt"):
                try:
                    slots.append(int(name[len("slot_"):-len(".pt")]))
                except ValueError:
                    continue
        return [self.metadata(s) for s in sorted(slots)]
