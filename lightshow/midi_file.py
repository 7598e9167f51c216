from __future__ import annotations

import base64
import binascii
import io
from dataclasses import dataclass
from typing import List, Tuple, Union

import mido


NOTE_ON = "note_on"
NOTE_OFF = "note_off"
SET_TEMPO = "set_tempo"

DEFAULT_TEMPO_BPM = 120.0

# Flats for black keys, middle C (60) = C4
NOTE_NAMES = ("C", "Db", "D", "Eb", "E", "F", "Gb", "G", "Ab", "A", "Bb", "B")


class MidiLoadError(Exception):
    pass


@dataclass(frozen=True)
class NoteEvent:
    kind: str
    tick: int
    note_name: str
    note_number: int
    velocity: int


@dataclass(frozen=True)
class TempoEvent:
    tick: int
    tempo_bpm: float
    kind: str = SET_TEMPO


StreamEvent = Union[NoteEvent, TempoEvent]


@dataclass(frozen=True)
class MidiStream:
    """A parsed MIDI file reduced to what playback and correlation need.

    - `tempo_events`: tempo changes from track 0, ascending tick (never empty).
    - `note_events`: note on/off from all tracks, merged in tick order.
    - `events`: tempo + note events merged in tick order, for the player.
    """

    ticks_per_beat: int
    default_tempo_bpm: float
    tempo_events: Tuple[TempoEvent, ...]
    note_events: Tuple[NoteEvent, ...]
    events: Tuple[StreamEvent, ...]

    @property
    def last_tick(self) -> int:
        return self.events[-1].tick if self.events else 0


def note_name(note_number: int) -> str:
    n = int(note_number)
    return f"{NOTE_NAMES[n % 12]}{n // 12 - 1}"


def _tempo_events(track) -> List[TempoEvent]:
    out: List[TempoEvent] = []
    tick = 0
    for msg in track:
        tick += int(msg.time)
        if msg.type == SET_TEMPO:
            out.append(TempoEvent(tick=tick, tempo_bpm=float(mido.tempo2bpm(msg.tempo))))
    return out


def stream_from_midifile(midi: mido.MidiFile) -> MidiStream:
    ticks_per_beat = int(midi.ticks_per_beat)
    tempo_events = _tempo_events(midi.tracks[0]) if midi.tracks else []
    if not tempo_events:
        tempo_events = [TempoEvent(tick=0, tempo_bpm=DEFAULT_TEMPO_BPM)]

    note_events: List[NoteEvent] = []
    tick = 0
    for msg in mido.merge_tracks(midi.tracks):
        tick += int(msg.time)
        if msg.type not in (NOTE_ON, NOTE_OFF):
            continue
        vel = int(msg.velocity)
        # note_on with velocity 0 is a note off
        kind = NOTE_OFF if (msg.type == NOTE_OFF or vel == 0) else NOTE_ON
        note_events.append(NoteEvent(kind=kind, tick=tick, note_name=note_name(msg.note), note_number=int(msg.note), velocity=vel))

    # Stable merge: tempo changes sort ahead of notes on the same tick
    merged: List[StreamEvent] = list(tempo_events) + list(note_events)
    merged.sort(key=lambda e: (e.tick, 0 if e.kind == SET_TEMPO else 1))

    return MidiStream(
        ticks_per_beat=ticks_per_beat,
        default_tempo_bpm=DEFAULT_TEMPO_BPM,
        tempo_events=tuple(tempo_events),
        note_events=tuple(note_events),
        events=tuple(merged),
    )


def read_midi_file(path: str) -> MidiStream:
    try:
        midi = mido.MidiFile(path)
    except (OSError, EOFError, ValueError) as e:
        raise MidiLoadError(f"could not read MIDI file {path}: {e}") from e
    return stream_from_midifile(midi)


def read_midi_bytes(data: bytes) -> MidiStream:
    try:
        midi = mido.MidiFile(file=io.BytesIO(data))
    except (OSError, EOFError, ValueError) as e:
        raise MidiLoadError(f"could not parse MIDI data: {e}") from e
    return stream_from_midifile(midi)


def read_midi_data_uri(uri: str) -> MidiStream:
    """Parse a `data:<mime>;base64,<payload>` URI holding a MIDI file."""
    head, sep, payload = str(uri).partition(",")
    if not sep or not head.startswith("data:") or not head.endswith(";base64"):
        raise MidiLoadError("expected a base64 data URI")
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MidiLoadError(f"invalid base64 payload: {e}") from e
    return read_midi_bytes(data)
