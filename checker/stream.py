from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

from checker.errors import CheckerError


class ResponseStream(Protocol):
    """Output sink the pipeline writes into."""

    def reference(self, location: str) -> None: ...

    def markdown(self, text: str) -> None: ...


class RecordingResponseStream:
    """Collects references and fragments for a single JSON reply."""

    def __init__(self) -> None:
        self.references: List[str] = []
        self.fragments: List[str] = []

    def reference(self, location: str) -> None:
        self.references.append(location)

    def markdown(self, text: str) -> None:
        self.fragments.append(text)

    def text(self) -> str:
        return "".join(self.fragments)


def sse_event(payload: Dict[str, Any], event: str = "message") -> str:
    return f"event: {event}\ndata: {json.dumps(payload, ensure_ascii=False)}\n\n"


class EventResponseStream:
    """Turns sink calls into server-sent event frames.

    The handler task writes, the response generator drains `events()` until
    `close()` is called.
    """

    def __init__(self) -> None:
        self._queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()

    def reference(self, location: str) -> None:
        self._queue.put_nowait(sse_event({"uri": location}, event="reference"))

    def markdown(self, text: str) -> None:
        self._queue.put_nowait(sse_event({"text": text}, event="markdown"))

    def done(self, fragments: int, cancelled: bool, reference: Optional[str] = None) -> None:
        self._queue.put_nowait(
            sse_event(
                {"fragments": fragments, "cancelled": cancelled, "reference": reference},
                event="done",
            )
        )

    def error(self, exc: CheckerError) -> None:
        self._queue.put_nowait(sse_event(exc.to_response(), event="error"))

    def close(self) -> None:
        self._queue.put_nowait(None)

    async def events(self) -> AsyncIterator[str]:
        while True:
            frame = await self._queue.get()
            if frame is None:
                return
            yield frame
