# -*- coding: utf-8 -*-

"""Transaction helpers for the SQLAlchemy model handles.

Writes commit immediately, except inside ``SQLAModelHandle.run_transaction``:
- the transaction state is stored in a ContextVar, so it's request-local
- nested writes flush and mark the state
- the outermost transaction commits (or rolls back) once
"""

from __future__ import annotations

from contextvars import ContextVar, Token
from dataclasses import dataclass
from typing import Optional

_DEFAULT_DEPTH = 0


class _Writes:
    """Write marker shared by all the levels of one outermost transaction."""

    __slots__ = ("seen",)

    def __init__(self) -> None:
        self.seen = False


@dataclass(frozen=True)
class _TxState:
    depth: int = _DEFAULT_DEPTH
    writes: Optional[_Writes] = None


_TX_STATE: ContextVar[_TxState] = ContextVar("crudrouter_tx_state", default=_TxState())


def begin() -> Token[_TxState]:
    """Enter a (possibly nested) transaction."""
    state = _TX_STATE.get()
    writes = state.writes if state.depth > 0 and state.writes is not None else _Writes()
    return _TX_STATE.set(_TxState(depth=state.depth + 1, writes=writes))


def end(token: Token[_TxState]) -> None:
    """Leave the transaction entered with ``token``."""
    _TX_STATE.reset(token)


def in_transaction() -> bool:
    """Return True when the writes should be grouped instead of committed."""
    return _TX_STATE.get().depth > 0


def is_outermost() -> bool:
    """Return True when the active transaction isn't nested in another one."""
    return _TX_STATE.get().depth == 1


def note_write() -> None:
    """Record a write in the active transaction, nested levels included."""
    state = _TX_STATE.get()
    if state.depth > 0 and state.writes is not None:
        state.writes.seen = True


def has_writes() -> bool:
    """Return True if writes were observed in the active transaction."""
    writes = _TX_STATE.get().writes
    return writes is not None and writes.seen
