"""
Shielded pool support: keys, notes, local state and sync.
"""
from .notes import (
    ViewingKey, SpendingKey, NoteBuilder, SealedBoxNoteBuilder,
    note_commitment, parse_payment_address
)
from .context import ShieldedContext

__all__ = [
    'ViewingKey', 'SpendingKey', 'NoteBuilder', 'SealedBoxNoteBuilder',
    'note_commitment', 'parse_payment_address', 'ShieldedContext'
]
