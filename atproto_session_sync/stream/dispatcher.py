"""
Stream frame decoding and dispatch.

Turns raw frames into StreamEvents and forwards the actionable ones
(record creations in the wanted collection) to a registered callback.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable

from .types import CommitOperation, EventKind, FrameDecodeError, StreamEvent

logger = logging.getLogger(__name__)

_RAW_PREVIEW_CHARS = 200


def queue_handoff(queue: asyncio.Queue[StreamEvent]) -> Callable[[StreamEvent], None]:
    """Callback that hands events to a queue without blocking.

    The caller consumes the queue at its own pace. When the queue is full
    the event is dropped and logged rather than stalling the stream.
    """

    def handoff(event: StreamEvent) -> None:
        try:
            queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(f"Event queue full, dropping event {event.uri or event.did}")

    return handoff


class EventDispatcher:
    """Decodes frames and dispatches actionable events.

    Only ``commit`` events whose operation is ``create`` and whose
    collection is ``wanted_collection`` reach the callback. Everything else
    is consumed silently. Malformed frames are logged and skipped.

    The callback runs synchronously on the receive loop, so it should only
    enqueue work (see ``queue_handoff``).
    """

    def __init__(
        self,
        wanted_collection: str,
        callback: Callable[[StreamEvent], None] | None = None,
    ) -> None:
        self.wanted_collection = wanted_collection
        self.callback = callback

        self.decoded = 0
        self.forwarded = 0
        self.ignored = 0
        self.malformed = 0

    def decode(self, frame: str | bytes) -> StreamEvent:
        """Decode one raw frame.

        Raises:
            FrameDecodeError: If the frame is not a valid event
        """
        try:
            data = json.loads(frame)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise FrameDecodeError(f"Invalid JSON: {e}") from e
        return StreamEvent.from_dict(data)

    def is_actionable(self, event: StreamEvent) -> bool:
        return (
            event.kind is EventKind.COMMIT
            and event.operation is CommitOperation.CREATE
            and event.collection == self.wanted_collection
        )

    def dispatch(self, event: StreamEvent) -> bool:
        """Forward an event to the callback if it is actionable.

        Returns:
            True if the event was forwarded
        """
        if not self.is_actionable(event):
            self.ignored += 1
            return False

        logger.debug(f"New record detected: {event.uri}")
        self.forwarded += 1

        if self.callback is not None:
            try:
                self.callback(event)
            except Exception:
                # Consumer errors never reach the receive loop
                logger.exception(f"Event callback failed for {event.uri}")
        return True

    def handle_frame(self, frame: str | bytes) -> StreamEvent | None:
        """Decode and dispatch one frame.

        Returns:
            The decoded event (forwarded or not), or None if the frame was malformed
        """
        try:
            event = self.decode(frame)
        except FrameDecodeError as e:
            self.malformed += 1
            preview = frame[:_RAW_PREVIEW_CHARS]
            logger.warning(f"Failed to decode stream frame: {e} (raw: {preview!r})")
            return None

        self.decoded += 1
        self.dispatch(event)
        return event

    def stats(self) -> dict[str, int]:
        return {
            "decoded": self.decoded,
            "forwarded": self.forwarded,
            "ignored": self.ignored,
            "malformed": self.malformed,
        }
