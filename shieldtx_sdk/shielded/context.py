"""
Local shielded-pool state: scan checkpoint and the notes we can spend.
"""
import os
import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

import portalocker

from ..models import ShieldedBlock, ShieldedNote
from .notes import ViewingKey

logger = logging.getLogger(__name__)

SHIELDED_FILE = "shielded.json"


class ShieldedContext:
    """
    Notes and nullifiers observed while scanning the chain.

    The checkpoint is the highest block height fully applied to this
    context; balances are authoritative only up to it.
    """

    def __init__(self, base_dir: Optional[Path] = None, filename: str = SHIELDED_FILE):
        self.path: Optional[Path] = Path(base_dir) / filename if base_dir is not None else None
        self.checkpoint: Optional[int] = None
        self.notes: Dict[str, ShieldedNote] = {}
        self.spent: Set[str] = set()

    @classmethod
    def from_dir(cls, base_dir: Path) -> "ShieldedContext":
        ctx = cls(base_dir)
        if ctx.exists():
            ctx.load()
        return ctx

    def exists(self) -> bool:
        return self.path is not None and self.path.exists()

    def _get_lock_path(self) -> str:
        return str(self.path) + '.lock'

    def load(self) -> None:
        if self.path is None:
            return
        with portalocker.Lock(self._get_lock_path(), timeout=10):
            with open(self.path, 'r') as f:
                data = json.load(f)
        self.checkpoint = data.get("checkpoint")
        self.notes = {
            n["commitment"]: ShieldedNote.model_validate(n) for n in data.get("notes", [])
        }
        self.spent = set(data.get("spent", []))
        logger.debug(f"Loaded shielded context at checkpoint {self.checkpoint} with {len(self.notes)} notes")

    def save(self) -> None:
        """Persist the context, replacing the previous file atomically."""
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "checkpoint": self.checkpoint,
            "notes": [n.model_dump() for n in self.notes.values()],
            "spent": sorted(self.spent),
        }
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with portalocker.Lock(self._get_lock_path(), timeout=10):
            with open(tmp_path, 'w') as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)

    def apply_block(self, block: ShieldedBlock, viewing_keys: Iterable[ViewingKey]) -> int:
        """
        Record the notes in block decryptable by viewing_keys and mark spent notes.

        Returns:
            Number of new notes recorded
        """
        viewing_keys = list(viewing_keys)
        found = 0
        for output in block.outputs:
            if output.commitment in self.notes:
                continue
            for vk in viewing_keys:
                opening = vk.try_decrypt(output)
                if opening is None:
                    continue
                self.notes[output.commitment] = ShieldedNote(
                    commitment=output.commitment,
                    height=block.height,
                    nullifier=vk.nullifier(output.commitment),
                    **opening
                )
                found += 1
                break

        if block.nullifiers:
            by_nullifier = {n.nullifier: n.commitment for n in self.notes.values()}
            for nullifier in block.nullifiers:
                commitment = by_nullifier.get(nullifier)
                if commitment is not None:
                    self.spent.add(commitment)
        return found

    def spendable_notes(self, viewing_key: ViewingKey, token: Optional[str] = None) -> List[ShieldedNote]:
        return [
            n for n in self.notes.values()
            if n.commitment not in self.spent
            and n.nullifier == viewing_key.nullifier(n.commitment)
            and (token is None or n.token == token)
        ]

    def balance(self, viewing_key: ViewingKey, token: str) -> int:
        return sum(n.value for n in self.spendable_notes(viewing_key, token))
