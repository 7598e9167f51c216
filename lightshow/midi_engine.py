from __future__ import annotations

from dataclasses import dataclass
from typing import AbstractSet, Any, Dict, Iterable, List, Tuple

from lightshow.dimmer_map import DimmerTable, build_dimmer_table
from lightshow.midi_file import NOTE_OFF, NOTE_ON, MidiStream, NoteEvent
from lightshow.midi_out import CoreSink
from lightshow.tempo_map import TempoMap


# Velocity at or above which a dimmer note_on carries auto_off=1
AUTO_OFF_VELOCITY = 125


@dataclass(frozen=True)
class Timeline:
    """Tempo map and dimmer table built from one stream, published together."""

    tempo_map: TempoMap
    dimmer_table: DimmerTable


EMPTY_TIMELINE = Timeline(tempo_map=TempoMap(ticks_per_beat=0, segments=()), dimmer_table=DimmerTable())


def build_timeline(
    stream: MidiStream, dimmable_range: AbstractSet[int], disabled_notes: AbstractSet[str] = frozenset()
) -> Timeline:
    tempo_map = TempoMap.build(stream.tempo_events, stream.ticks_per_beat, stream.default_tempo_bpm)
    dimmer_table = build_dimmer_table(stream.note_events, tempo_map, dimmable_range, disabled_notes)
    return Timeline(tempo_map=tempo_map, dimmer_table=dimmer_table)


class VirtualSink(CoreSink):
    """A minimal sink capturing events for tests and demos.

    Records tuples like (type, args...). Types: 'on', 'off', 'loaded', 'end'.
    Plain note ons are ('on', name, number); dimmer note ons are
    ('on', name, number, length_ms, same_notes, auto_off).
    """

    def __init__(self) -> None:
        self.events: List[Tuple[Any, ...]] = []

    def note_on(self, name, number, length_ms=None, same_notes=None, auto_off=None) -> None:
        if length_ms is None and same_notes is None and auto_off is None:
            self.events.append(("on", name, number))
        else:
            self.events.append(("on", name, number, length_ms, tuple(same_notes or ()), auto_off))

    def note_off(self, name: str, number: int) -> None:
        self.events.append(("off", name, number))

    def stream_loaded(self) -> None:
        self.events.append(("loaded",))

    def stream_ended(self) -> None:
        self.events.append(("end",))


class Engine:
    """Turns realized stream events into outbound light signals.

    - Disabled note names are dropped before anything else.
    - Dimmable note ons are looked up in the published dimmer table by
      (tick, note number) and carry length, merged names and auto-off.
    - Note offs pass through without a table lookup.
    - Events are forwarded in arrival order; nothing is buffered.
    """

    def __init__(
        self,
        sink: CoreSink,
        disabled_notes: Iterable[str] = (),
        dimmable_range: Iterable[int] = (),
    ) -> None:
        self.sink = sink
        self.disabled_notes = frozenset(disabled_notes)
        self.dimmable_range = frozenset(int(n) for n in dimmable_range)
        self.timeline: Timeline = EMPTY_TIMELINE
        self.metrics: Dict[str, int] = {
            "msgs_note_on": 0,
            "msgs_note_off": 0,
            "dropped_disabled": 0,
            "merged_dimmer": 0,
            "missing_dimmer": 0,
        }

    # --- Public control ---
    def publish(self, timeline: Timeline) -> None:
        # Single reference swap; readers keep whichever snapshot they fetched
        self.timeline = timeline

    def on_stream_loaded(self) -> None:
        self.sink.stream_loaded()

    def on_stream_end(self) -> None:
        self.sink.stream_ended()

    def on_note_event(self, ev: NoteEvent) -> None:
        if ev.note_name in self.disabled_notes:
            self.metrics["dropped_disabled"] += 1
            return
        if ev.kind == NOTE_ON:
            self._emit_on(ev)
        elif ev.kind == NOTE_OFF:
            self.sink.note_off(ev.note_name, ev.note_number)
            self.metrics["msgs_note_off"] += 1

    def get_metrics(self) -> Dict[str, int]:
        return dict(self.metrics)

    # --- Internals ---
    def _emit_on(self, ev: NoteEvent) -> None:
        if ev.note_number not in self.dimmable_range:
            self.sink.note_on(ev.note_name, ev.note_number)
            self.metrics["msgs_note_on"] += 1
            return
        timeline = self.timeline
        cand = timeline.dimmer_table.find(ev.tick, ev.note_number)
        if cand is None:
            if timeline.dimmer_table.is_merged(ev.tick, ev.note_number):
                # Carried in another note's same_notes
                self.metrics["merged_dimmer"] += 1
                return
            self.metrics["missing_dimmer"] += 1
            print(f"[midi] warning: no dimmer entry for {ev.note_name} at tick {ev.tick}", flush=True)
            return
        auto_off = 0 if ev.velocity < AUTO_OFF_VELOCITY else 1
        self.sink.note_on(ev.note_name, ev.note_number, cand.length_ms, list(cand.same_notes), auto_off)
        self.metrics["msgs_note_on"] += 1
