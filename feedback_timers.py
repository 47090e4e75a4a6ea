import asyncio
from typing import Any, Callable, Optional


class FeedbackTimers:
    """Named one-shot callbacks for transient UI feedback.

    Scheduling a name that is already pending replaces the earlier callback,
    so a superseding event never lets a stale timer fire.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop
        self._handles: dict[str, asyncio.TimerHandle] = {}

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def schedule(self, name: str, delay: float, callback: Callable[..., Any], *args: Any) -> None:
        self.cancel(name)

        def fire() -> None:
            self._handles.pop(name, None)
            callback(*args)

        self._handles[name] = self._get_loop().call_later(max(0.0, delay), fire)

    def cancel(self, name: str) -> bool:
        handle = self._handles.pop(name, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_prefix(self, prefix: str) -> None:
        for name in [name for name in self._handles if name.startswith(prefix)]:
            self.cancel(name)

    def cancel_all(self) -> None:
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()

    def __contains__(self, name: str) -> bool:
        return name in self._handles

    def __len__(self) -> int:
        return len(self._handles)
