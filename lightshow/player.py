from __future__ import annotations

import bisect
import threading
import time
from collections import deque
from typing import Callable, Deque, List, Optional, Tuple

from lightshow.midi_file import DEFAULT_TEMPO_BPM, SET_TEMPO, MidiStream, NoteEvent, StreamEvent
from lightshow.tempo_map import tick_ms


EventHandler = Callable[[NoteEvent], None]


class StreamPlayer:
    """Plays a loaded stream against the wall clock on a daemon thread.

    Position is kept as an anchor (tick, monotonic time) at the current tempo;
    every tempo change re-anchors. Events are handed to `on_event` in stream
    order. `stop()` rewinds to tick 0, `skip_to_tick()` halts and parks the
    position at the first event at or after the target tick.
    """

    def __init__(self, on_event: EventHandler, on_end: Optional[Callable[[], None]] = None):
        self.on_event = on_event
        self.on_end = on_end
        self._t: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._events: Tuple[StreamEvent, ...] = ()
        self._ticks: List[int] = []
        self._index = 0
        self._tick = 0
        self.ticks_per_beat = 0
        self.tempo_bpm = DEFAULT_TEMPO_BPM
        self._default_tempo_bpm = DEFAULT_TEMPO_BPM
        self._tick_ms = 0.0
        self._anchor_tick = 0.0
        self._anchor_time = 0.0
        self._jitter_ms: Deque[float] = deque(maxlen=512)

    # --- Public control ---
    def load(self, stream: MidiStream) -> None:
        self._halt()
        with self._lock:
            self._events = tuple(stream.events)
            self._ticks = [e.tick for e in self._events]
            self.ticks_per_beat = int(stream.ticks_per_beat)
            self._default_tempo_bpm = float(stream.default_tempo_bpm)
            self._rewind()
            self._jitter_ms.clear()

    def play(self) -> None:
        if self._t and self._t.is_alive():
            if not self._stop.is_set():
                return
            self._halt()
        if not self._events:
            return
        self._stop.clear()
        with self._lock:
            self._anchor_tick = float(self._tick)
            self._anchor_time = time.monotonic()
        self._t = threading.Thread(target=self._run, daemon=True)
        self._t.start()

    def stop(self) -> None:
        self._halt()
        with self._lock:
            self._rewind()

    def skip_to_tick(self, tick: int) -> None:
        self._halt()
        target = max(0, int(tick))
        with self._lock:
            if target == 0:
                self._rewind()
                return
            self._index = bisect.bisect_left(self._ticks, target)
            self._tick = target

    def set_tempo(self, bpm: float) -> None:
        b = float(bpm or 0)
        if b <= 0 or self.ticks_per_beat <= 0:
            return
        with self._lock:
            if self.is_playing():
                now = time.monotonic()
                self._anchor_tick = self._tick_at(now)
                self._anchor_time = now
            self.tempo_bpm = b
            self._tick_ms = tick_ms(self.ticks_per_beat, b)

    def is_playing(self) -> bool:
        return bool(self._t and self._t.is_alive() and not self._stop.is_set())

    @property
    def tick(self) -> int:
        return self._tick

    def get_metrics(self) -> dict:
        # Dispatch lateness p95/p99 over recent window
        with self._lock:
            samples = list(self._jitter_ms)
        return {
            "jitterMsP95": round(self._percentile(samples, 0.95), 3),
            "jitterMsP99": round(self._percentile(samples, 0.99), 3),
        }

    # --- Internals ---
    def _halt(self) -> None:
        self._stop.set()
        t = self._t
        if t and t is not threading.current_thread():
            t.join(timeout=1.0)
        self._t = None

    def _rewind(self) -> None:
        # Caller holds _lock. Ticks before the first tempo event play at the stream default
        self._index = 0
        self._tick = 0
        self.tempo_bpm = self._default_tempo_bpm
        self._tick_ms = tick_ms(self.ticks_per_beat, self.tempo_bpm) if self.ticks_per_beat > 0 else 0.0

    def _tick_at(self, now: float) -> float:
        return self._anchor_tick + (now - self._anchor_time) * 1000.0 / self._tick_ms

    def _due_time(self, tick: int) -> float:
        return self._anchor_time + (tick - self._anchor_tick) * self._tick_ms / 1000.0

    def _run(self) -> None:
        while not self._stop.is_set():
            now = time.monotonic()
            with self._lock:
                current = self._tick_at(now)
            while self._index < len(self._events) and self._events[self._index].tick <= current:
                ev = self._events[self._index]
                self._index += 1
                self._tick = ev.tick
                if ev.kind == SET_TEMPO:
                    with self._lock:
                        # Re-anchor at the change point so later ticks use the new tempo
                        self._anchor_time = self._due_time(ev.tick)
                        self._anchor_tick = float(ev.tick)
                        self.tempo_bpm = float(ev.tempo_bpm)
                        self._tick_ms = tick_ms(self.ticks_per_beat, self.tempo_bpm)
                        current = self._tick_at(now)
                    continue
                with self._lock:
                    self._jitter_ms.append(max(0.0, (now - self._due_time(ev.tick)) * 1000.0))
                try:
                    self.on_event(ev)
                except Exception as e:
                    print(f"[player] event handler error: {e}", flush=True)
                if self._stop.is_set():
                    return
            if self._index >= len(self._events):
                # End of stream: rewind like stop() before notifying
                self._stop.set()
                with self._lock:
                    self._rewind()
                if self.on_end:
                    try:
                        self.on_end()
                    except Exception as e:
                        print(f"[player] end handler error: {e}", flush=True)
                return
            with self._lock:
                wait = self._due_time(self._events[self._index].tick) - time.monotonic()
            time.sleep(min(0.002, max(0.0, wait)))

    def _percentile(self, values: List[float], pct: float) -> float:
        if not values:
            return 0.0
        xs = sorted(values)
        k = (len(xs) - 1) * pct
        f = int(k)
        c = min(f + 1, len(xs) - 1)
        if f == c:
            return xs[f]
        d0 = xs[f] * (c - k)
        d1 = xs[c] * (k - f)
        return d0 + d1
