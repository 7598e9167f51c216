from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import AbstractSet, Dict, FrozenSet, Iterable, List, Optional, Tuple

from lightshow.midi_file import NOTE_OFF, NOTE_ON, NoteEvent
from lightshow.tempo_map import TempoMap


@dataclass(frozen=True)
class DimmerCandidate:
    kind: str
    tick: int
    note_name: str
    note_number: int
    velocity: int
    length_ms: Optional[int] = None
    same_notes: Tuple[str, ...] = ()
    cancelled: bool = False


@dataclass
class _Open:
    """Mutable working record used only while a table is being built."""

    event: NoteEvent
    seq: int = 0
    length_ms: Optional[int] = None
    same_notes: List[str] = field(default_factory=list)
    cancelled: bool = False

    def freeze(self) -> DimmerCandidate:
        ev = self.event
        return DimmerCandidate(
            kind=ev.kind,
            tick=ev.tick,
            note_name=ev.note_name,
            note_number=ev.note_number,
            velocity=ev.velocity,
            length_ms=self.length_ms,
            same_notes=tuple(self.same_notes),
            cancelled=self.cancelled,
        )


@dataclass(frozen=True)
class DimmerTable:
    entries: Tuple[DimmerCandidate, ...] = ()
    # (tick, note_number) of notes folded into a survivor's same_notes
    merged: FrozenSet[Tuple[int, int]] = frozenset()

    def find(self, tick: int, note_number: int) -> Optional[DimmerCandidate]:
        for c in self.entries:
            if c.tick == tick and c.note_number == note_number:
                return c
        return None

    def is_merged(self, tick: int, note_number: int) -> bool:
        return (tick, note_number) in self.merged

    def __len__(self) -> int:
        return len(self.entries)


def _sort_key(rec: _Open):
    # Missing lengths order after any computed length
    length = rec.length_ms
    return (rec.event.tick, length is None, length if length is not None else 0, rec.event.note_number)


def build_dimmer_table(
    note_events: Iterable[NoteEvent],
    tempo_map: TempoMap,
    dimmable_range: AbstractSet[int],
    disabled_notes: AbstractSet[str] = frozenset(),
) -> DimmerTable:
    """Pair dimmable note on/off events and merge simultaneous equal-length notes.

    Disabled note names are skipped up front, so they never pair, merge or
    absorb an enabled note.

    Pairing is last-in-first-out per note name: a note off closes the most
    recently opened note on with the same name. Offs with nothing open are
    dropped, and ons that are never closed do not reach the table.

    Paired notes are sorted by (tick, length_ms, note_number). Walking that
    order, each surviving note absorbs every other note with the same tick and
    length but a different name: their names go into `same_notes` and they
    are cancelled. The table holds the survivors in sorted order.
    """
    open_by_name: Dict[str, List[_Open]] = {}
    paired: List[_Open] = []

    for seq, ev in enumerate(note_events):
        if ev.note_number not in dimmable_range or ev.note_name in disabled_notes:
            continue
        if ev.kind == NOTE_ON:
            open_by_name.setdefault(ev.note_name, []).append(_Open(event=ev, seq=seq))
            continue
        if ev.kind != NOTE_OFF:
            continue
        stack = open_by_name.get(ev.note_name)
        if not stack:
            continue
        rec = stack.pop()
        dur = tempo_map.tick_duration_at(rec.event.tick)
        if dur is not None:
            rec.length_ms = int(math.floor(dur * (ev.tick - rec.event.tick)))
        paired.append(rec)

    # Most recently opened first before the stable sort
    paired.sort(key=lambda r: r.seq, reverse=True)
    ordered = sorted(paired, key=_sort_key)

    for rec in ordered:
        if rec.cancelled:
            continue
        aligned = [
            other for other in ordered
            if other.event.tick == rec.event.tick
            and other.length_ms == rec.length_ms
            and other.event.note_name != rec.event.note_name
        ]
        rec.same_notes = [a.event.note_name for a in aligned]
        for a in aligned:
            a.cancelled = True

    return DimmerTable(
        entries=tuple(r.freeze() for r in ordered if not r.cancelled),
        merged=frozenset((r.event.tick, r.event.note_number) for r in ordered if r.cancelled),
    )


def describe(table: DimmerTable) -> List[Dict[str, object]]:
    """JSON-friendly view of a table (for state snapshots)."""
    return [
        {
            "tick": c.tick,
            "note": c.note_name,
            "number": c.note_number,
            "lengthMs": c.length_ms,
            "sameNotes": list(c.same_notes),
        }
        for c in table.entries
    ]
