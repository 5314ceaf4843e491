import inspect
from typing import Any, Callable, Optional


class CancelToken:
    """
    Is-still-active flag for work that resumes after a suspension point.
    Results of an awaited call must only be applied while the token is live.
    """

    def __init__(self):
        self._cancelled = False
        self._callbacks = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self):
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for cb in callbacks:
            cb()

    def on_cancel(self, cb: Callable[[], None]):
        if self._cancelled:
            cb()
        else:
            self._callbacks.append(cb)


async def dispatch(handler: Optional[Callable[..., Any]], *args) -> None:
    """Call a sync or async handler; None is a no-op."""
    if handler is None:
        return
    result = handler(*args)
    if inspect.isawaitable(result):
        await result
