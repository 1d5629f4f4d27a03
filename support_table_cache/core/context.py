"""Strand-local scoped values.

A strand is the unit of execution that owns a value set with
:meth:`ScopedContext.scoped`: the running asyncio task when there is one,
otherwise the OS thread. Values are kept in a table mapping strand identity to
a small dict, guarded by a lock. A strand's entry is removed as soon as its
outermost scope exits, so the table never grows with the number of strands
that have come and gone.

Usage:
    from support_table_cache.core.context import ScopedContext

    context = ScopedContext()
    with context.scoped("disabled", True):
        assert context.get("disabled") is True
    assert context.get("disabled") is None
"""

import asyncio
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Hashable, Iterator, Optional, Tuple, TypeVar

T = TypeVar("T")

StrandId = Tuple[int, Optional[int]]

_MISSING = object()


def current_strand_id() -> StrandId:
    """Identity of the calling strand: (thread ident, asyncio task id or None)."""
    try:
        task = asyncio.current_task()
    except RuntimeError:
        # No event loop running in this thread
        task = None
    return (threading.get_ident(), id(task) if task is not None else None)


class ScopedContext:
    """Hierarchical strand-local key/value store with guaranteed restoration."""

    def __init__(self):
        self._lock = threading.Lock()
        self._locals: Dict[StrandId, Dict[Hashable, Any]] = {}

    def get(self, key: Hashable, default: Any = None) -> Any:
        """Get the value set for key in the calling strand."""
        with self._lock:
            strand_locals = self._locals.get(current_strand_id())
        if strand_locals is None:
            return default
        return strand_locals.get(key, default)

    @contextmanager
    def scoped(self, key: Hashable, value: Any) -> Iterator[Any]:
        """Set key to value for the dynamic extent of the with block.

        The previous value is restored when the block exits, whether normally
        or by an exception. If the strand had no storage before this call, the
        storage is torn down entirely instead.
        """
        strand_id = current_strand_id()
        created = False
        with self._lock:
            strand_locals = self._locals.get(strand_id)
            if strand_locals is None:
                strand_locals = {}
                self._locals[strand_id] = strand_locals
                created = True

        previous = strand_locals.get(key, _MISSING)
        strand_locals[key] = value
        try:
            yield value
        finally:
            if created:
                with self._lock:
                    self._locals.pop(strand_id, None)
            elif previous is _MISSING:
                strand_locals.pop(key, None)
            else:
                strand_locals[key] = previous

    def run(self, key: Hashable, value: Any, func: Callable[..., T], *args, **kwargs) -> T:
        """Call func with key set to value and return its result."""
        with self.scoped(key, value):
            return func(*args, **kwargs)

    @property
    def active_strands(self) -> int:
        """Number of strands currently holding scoped values."""
        with self._lock:
            return len(self._locals)
