"""W3C baggage: user-defined key/value pairs propagated with the trace."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterator, Mapping, Optional, Tuple
from urllib.parse import quote, unquote

logger = logging.getLogger(__name__)

BAGGAGE_HEADER = "baggage"

MAX_MEMBERS = 180
MAX_HEADER_BYTES = 8192
MAX_MEMBER_BYTES = 4096


@dataclass(frozen=True)
class BaggageEntry:
    value: str
    # Raw ";property" text kept verbatim; the pipeline never interprets it.
    metadata: Optional[str] = None


class Baggage(Mapping[str, str]):
    """
    Immutable, ordered mapping of baggage keys to values.

    Mutators return a new Baggage; the receiver is never changed.
    """

    __slots__ = ("_entries",)

    def __init__(self, entries: Optional[Mapping[str, object]] = None) -> None:
        normalized: Dict[str, BaggageEntry] = {}
        for key, entry in (entries or {}).items():
            if not isinstance(entry, BaggageEntry):
                entry = BaggageEntry(value=str(entry))
            normalized[key] = entry
        self._entries = normalized

    def __getitem__(self, key: str) -> str:
        return self._entries[key].value

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Baggage):
            return self._entries == other._entries
        return NotImplemented

    def __hash__(self) -> int:
        return hash(tuple(self._entries.items()))

    def __repr__(self) -> str:
        return f"Baggage({dict(self.items())!r})"

    def entry(self, key: str) -> Optional[BaggageEntry]:
        return self._entries.get(key)

    def entries(self) -> Tuple[Tuple[str, BaggageEntry], ...]:
        return tuple(self._entries.items())

    def set(self, key: str, value: str, metadata: Optional[str] = None) -> "Baggage":
        entries = dict(self._entries)
        # re-setting a key moves it to the end, matching header order on inject
        entries.pop(key, None)
        entries[key] = BaggageEntry(value=str(value), metadata=metadata)
        return Baggage(entries)

    def remove(self, key: str) -> "Baggage":
        if key not in self._entries:
            return self
        entries = dict(self._entries)
        del entries[key]
        return Baggage(entries)


EMPTY_BAGGAGE = Baggage()


def _is_token(key: str) -> bool:
    # RFC 7230 token characters
    if not key:
        return False
    for ch in key:
        if ch.isalnum() and ch.isascii():
            continue
        if ch in "!#$%&'*+-.^_`|~":
            continue
        return False
    return True


def format_baggage(baggage: Baggage) -> str:
    """Serialize baggage to a header value (values percent-encoded)."""
    members = []
    size = 0
    for key, entry in baggage.entries():
        member = f"{key}={quote(entry.value, safe='')}"
        if entry.metadata:
            member = f"{member};{entry.metadata}"
        extra = len(member.encode("utf-8")) + (1 if members else 0)
        if len(members) >= MAX_MEMBERS or size + extra > MAX_HEADER_BYTES:
            logger.debug(f"Baggage limits reached, not propagating '{key}' and later entries")
            break
        members.append(member)
        size += extra
    return ",".join(members)


def parse_baggage(header_value: Optional[str]) -> Baggage:
    """
    Parse a baggage header value.

    Malformed members are skipped. Once the member count or byte budget is
    exhausted, remaining members are ignored. Never raises.
    """
    if not header_value:
        return EMPTY_BAGGAGE

    entries: Dict[str, BaggageEntry] = {}
    size = 0
    for raw_member in header_value.split(","):
        member = raw_member.strip()
        if not member:
            continue
        member_bytes = len(member.encode("utf-8"))
        if member_bytes > MAX_MEMBER_BYTES:
            logger.debug("Skipping over-long baggage member")
            continue
        if len(entries) >= MAX_MEMBERS or size + member_bytes > MAX_HEADER_BYTES:
            logger.debug("Baggage header exceeds limits, truncating")
            break

        pair, _, metadata = member.partition(";")
        key, sep, value = pair.partition("=")
        key = key.strip()
        if not sep or not _is_token(key):
            continue
        try:
            decoded = unquote(value.strip(), errors="strict")
        except UnicodeDecodeError:
            continue
        entries.pop(key, None)
        entries[key] = BaggageEntry(value=decoded, metadata=metadata.strip() or None)
        size += member_bytes

    return Baggage(entries) if entries else EMPTY_BAGGAGE
