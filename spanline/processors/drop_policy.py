"""Buffer overflow handling strategies for span batching."""

from typing import Deque, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from spanline.tracer.span import Span


class DropPolicy:
    """Base policy deciding how to handle span buffer overflow."""

    def handle(self, buffer: Deque["Span"], span: "Span", max_size: int) -> Optional["Span"]:
        """
        Apply the drop policy.

        Returns the span that was dropped (the incoming one or an evicted
        one), or None if nothing was dropped.
        """
        raise NotImplementedError


class DropNewestPolicy(DropPolicy):
    """Drop the incoming span if the buffer is full."""

    def handle(self, buffer: Deque["Span"], span: "Span", max_size: int) -> Optional["Span"]:
        if len(buffer) < max_size:
            buffer.append(span)
            return None
        return span


class DropOldestPolicy(DropPolicy):
    """Evict the oldest buffered span to make room for a new one."""

    def handle(self, buffer: Deque["Span"], span: "Span", max_size: int) -> Optional["Span"]:
        evicted = None
        if len(buffer) >= max_size and buffer:
            evicted = buffer.popleft()
        if len(buffer) < max_size:
            buffer.append(span)
            return evicted
        return span


DEFAULT_DROP_POLICY = DropNewestPolicy()
