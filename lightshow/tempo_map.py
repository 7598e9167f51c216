from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from lightshow.midi_file import TempoEvent


def tick_ms(ticks_per_beat: int, tempo_bpm: float) -> float:
    """Duration of one tick in milliseconds at the given tempo."""
    return 60000.0 / (float(tempo_bpm) * int(ticks_per_beat))


def _span_ms(ticks: int, tempo_bpm: float, ticks_per_beat: int) -> float:
    # Same as tick_ms() * ticks without the rounding of the per-tick value
    return 60000.0 * ticks / (float(tempo_bpm) * int(ticks_per_beat))


@dataclass(frozen=True)
class TempoSegment:
    tick: int
    tick_duration_ms: float
    start_time_ms: float
    tempo_bpm: float


@dataclass(frozen=True)
class TempoLookup:
    time_ms: float
    tick: int
    tempo_bpm: Optional[float]


NO_TEMPO = TempoLookup(time_ms=0.0, tick=0, tempo_bpm=None)


@dataclass(frozen=True)
class TempoMap:
    """Piecewise-constant tempo timeline for one loaded stream.

    Segments are ordered by tick; segment 0 starts at tick 0 and 0 ms. Each
    later segment starts where the previous one's ticks run out:
    start[i] = start[i-1] + tick_ms[i-1] * (tick[i] - tick[i-1]).
    """

    ticks_per_beat: int
    segments: Tuple[TempoSegment, ...]

    @classmethod
    def build(cls, tempo_events: Iterable[TempoEvent], ticks_per_beat: int, default_tempo_bpm: float) -> "TempoMap":
        events = sorted(tempo_events, key=lambda e: e.tick)
        if not events:
            return cls(ticks_per_beat=int(ticks_per_beat), segments=())
        if events[0].tick > 0:
            events.insert(0, TempoEvent(tick=0, tempo_bpm=float(default_tempo_bpm)))

        segments: List[TempoSegment] = []
        for ev in events:
            dur = tick_ms(ticks_per_beat, ev.tempo_bpm)
            if segments:
                prev = segments[-1]
                start = prev.start_time_ms + _span_ms(ev.tick - prev.tick, prev.tempo_bpm, ticks_per_beat)
            else:
                start = 0.0
            segments.append(TempoSegment(tick=int(ev.tick), tick_duration_ms=dur, start_time_ms=start, tempo_bpm=float(ev.tempo_bpm)))
        return cls(ticks_per_beat=int(ticks_per_beat), segments=tuple(segments))

    def _segment_at_time(self, seconds: float) -> Optional[TempoSegment]:
        ms = seconds * 1000.0
        for seg in reversed(self.segments):
            if seg.start_time_ms < ms:
                return seg
        return None

    def tick_for_time(self, seconds: float) -> int:
        seg = self._segment_at_time(seconds)
        if seg is None:
            return 0
        # (ms - start) / tick_ms, multiplied out to keep whole-tick results exact
        ticks_within = math.floor((seconds * 1000.0 - seg.start_time_ms) * seg.tempo_bpm * self.ticks_per_beat / 60000.0)
        # Land one tick early so events on the boundary tick replay on resume
        return int(ticks_within) + seg.tick - 1

    def tempo_at(self, seconds: float) -> TempoLookup:
        seg = self._segment_at_time(seconds)
        if seg is None:
            return NO_TEMPO
        return TempoLookup(time_ms=seg.start_time_ms, tick=seg.tick, tempo_bpm=seg.tempo_bpm)

    def tick_duration_at(self, tick: int) -> Optional[float]:
        """Tick duration of the latest segment starting strictly before `tick`."""
        for seg in reversed(self.segments):
            if seg.tick < tick:
                return seg.tick_duration_ms
        return None

    def time_for_tick(self, tick: int) -> float:
        """Elapsed seconds at `tick` (segment containing it, inclusive start)."""
        for seg in reversed(self.segments):
            if seg.tick <= tick:
                return (seg.start_time_ms + _span_ms(tick - seg.tick, seg.tempo_bpm, self.ticks_per_beat)) / 1000.0
        return 0.0
