from __future__ import annotations

import threading
from typing import Any, Callable, Dict, List, Optional

from lightshow.dimmer_map import describe
from lightshow.midi_engine import EMPTY_TIMELINE, Engine, Timeline, build_timeline
from lightshow.midi_file import MidiStream, read_midi_bytes, read_midi_data_uri, read_midi_file
from lightshow.player import StreamPlayer


END_OF_FILE = "endOfFile"

# Pause between the end of a looped stream and its restart
LOOP_DELAY_S = 0.1

IDLE = "idle"
LOADED = "loaded"
PLAYING = "playing"
STOPPED = "stopped"


class PlaybackController:
    """Owns transport state for one engine: load, play, stop, seek, loop.

    Loading builds the tempo map and dimmer table off to the side and then
    publishes them to the engine in one step. Looping is a self-rescheduling
    end-of-file observer; every stop/load bumps a generation counter so a
    pending restart from an older run never fires.
    """

    def __init__(self, engine: Engine, player_factory: Callable[..., Any] = StreamPlayer, verbose: bool = False):
        self.engine = engine
        self.player = player_factory(on_event=self.engine.on_note_event, on_end=self._on_player_end)
        self.verbose = verbose
        self.timeline: Timeline = EMPTY_TIMELINE
        self.stream: Optional[MidiStream] = None
        self.source: Optional[str] = None
        self.state = IDLE
        self.loop = False
        # play() re-enters through the loop timer while holding the lock
        self._lock = threading.RLock()
        self._callbacks: Dict[str, List[Callable[[], Any]]] = {}
        self._loop_cb: Optional[Callable[[], Any]] = None
        self._loop_timer: Optional[threading.Timer] = None
        self._generation = 0

    # --- Loading ---
    def load_stream(self, stream: MidiStream, source: str = "<stream>") -> Timeline:
        timeline = build_timeline(stream, self.engine.dimmable_range, self.engine.disabled_notes)
        with self._lock:
            self._cancel_loop()
            self.player.load(stream)
            self.stream = stream
            self.source = source
            self.timeline = timeline
            self.engine.publish(timeline)
            self.state = LOADED
        if self.verbose:
            print(
                f"[playback] loaded {source}: {len(stream.note_events)} notes, "
                f"{len(timeline.tempo_map.segments)} tempo segments, {len(timeline.dimmer_table)} dimmer entries",
                flush=True,
            )
        self.engine.on_stream_loaded()
        return timeline

    def load_file(self, path: str) -> Timeline:
        return self.load_stream(read_midi_file(path), source=path)

    def load_bytes(self, data: bytes) -> Timeline:
        return self.load_stream(read_midi_bytes(data), source="<bytes>")

    def load_data_uri(self, uri: str) -> Timeline:
        return self.load_stream(read_midi_data_uri(uri), source="<data-uri>")

    # --- Transport ---
    def play(self, loop: bool = False) -> bool:
        with self._lock:
            if self.stream is None:
                print("[playback] warning: play requested with nothing loaded", flush=True)
                return False
            self._cancel_loop()
            self.loop = bool(loop)
            if self.loop:
                generation = self._generation

                def replay_on_end():
                    self._schedule_replay(generation)

                self._loop_cb = replay_on_end
                self.on(END_OF_FILE, replay_on_end)
            self.player.play()
            self.state = PLAYING
            return True

    def stop(self) -> None:
        with self._lock:
            self._cancel_loop()
            self.loop = False
            self.player.stop()
            if self.stream is not None:
                self.state = STOPPED

    def seek(self, seconds: float) -> int:
        with self._lock:
            tempo_map = self.timeline.tempo_map
            tick = tempo_map.tick_for_time(seconds)
            tempo = tempo_map.tempo_at(seconds).tempo_bpm or 0
            if self.verbose:
                print(f"[playback] seeking midi to ticks {tick}", flush=True)
            was_playing = self.player.is_playing()
            self.player.skip_to_tick(tick)
            self.player.set_tempo(tempo)
            if was_playing:
                self.player.play()
            return tick

    def is_playing(self) -> bool:
        return self.player.is_playing()

    # --- Observers ---
    def on(self, event: str, callback: Callable[[], Any]) -> None:
        self._callbacks.setdefault(event, []).append(callback)

    def off(self, event: str, callback: Callable[[], Any]) -> None:
        cbs = self._callbacks.get(event, [])
        if callback in cbs:
            cbs.remove(callback)

    def emit(self, event: str) -> None:
        for cb in list(self._callbacks.get(event, [])):
            cb()

    # --- State ---
    def get_state(self) -> Dict[str, Any]:
        with self._lock:
            tempo_map = self.timeline.tempo_map
            tick = int(self.player.tick)
            return {
                "transport": PLAYING if self.is_playing() else self.state,
                "loop": self.loop,
                "source": self.source,
                "tick": tick,
                "positionS": round(tempo_map.time_for_tick(tick), 3),
                "tempoBpm": getattr(self.player, "tempo_bpm", None),
                "segments": [
                    {"tick": s.tick, "startTimeMs": s.start_time_ms, "tickMs": s.tick_duration_ms, "tempoBpm": s.tempo_bpm}
                    for s in tempo_map.segments
                ],
                "dimmerNotes": describe(self.timeline.dimmer_table),
                "metrics": self.engine.get_metrics(),
            }

    # --- Internals ---
    def _on_player_end(self) -> None:
        # Runs on the player thread; must not take the lock
        self.state = STOPPED
        self.engine.on_stream_end()
        self.emit(END_OF_FILE)

    def _schedule_replay(self, generation: int) -> None:
        if generation != self._generation:
            return
        timer = threading.Timer(LOOP_DELAY_S, self._replay, args=(generation,))
        timer.daemon = True
        self._loop_timer = timer
        timer.start()

    def _replay(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._loop_timer is not threading.current_thread():
                return
            self.play(loop=True)

    def _cancel_loop(self) -> None:
        self._generation += 1
        if self._loop_cb is not None:
            self.off(END_OF_FILE, self._loop_cb)
            self._loop_cb = None
        if self._loop_timer is not None:
            self._loop_timer.cancel()
            self._loop_timer = None
