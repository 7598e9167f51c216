import contextlib
import io
import unittest

from lightshow.midi_engine import EMPTY_TIMELINE, Engine, Timeline, VirtualSink, build_timeline
from lightshow.midi_file import NOTE_OFF, NOTE_ON, MidiStream, NoteEvent, TempoEvent, note_name


def on(tick, number, vel=100):
    return NoteEvent(NOTE_ON, tick, note_name(number), number, vel)


def off(tick, number):
    return NoteEvent(NOTE_OFF, tick, note_name(number), number, 0)


def make_stream(notes, tpb=1000, tempo_events=None):
    tempos = tuple(tempo_events or [TempoEvent(0, 60.0)])
    notes = tuple(notes)
    merged = sorted(list(tempos) + list(notes), key=lambda e: (e.tick, 0 if isinstance(e, TempoEvent) else 1))
    return MidiStream(ticks_per_beat=tpb, default_tempo_bpm=60.0, tempo_events=tempos, note_events=notes, events=tuple(merged))


DIMMABLE = range(60, 72)


class TestEngineSignals(unittest.TestCase):
    def _mk_engine(self, notes, disabled=()):
        sink = VirtualSink()
        eng = Engine(sink, disabled_notes=disabled, dimmable_range=DIMMABLE)
        stream = make_stream(notes)
        eng.publish(build_timeline(stream, eng.dimmable_range, eng.disabled_notes))
        return sink, eng, stream

    def _play(self, eng, stream):
        for ev in stream.note_events:
            eng.on_note_event(ev)

    def test_plain_note_on_off(self):
        sink, eng, stream = self._mk_engine([on(10, 40), off(20, 40)])
        self._play(eng, stream)
        self.assertEqual(sink.events, [("on", "E2", 40), ("off", "E2", 40)])

    def test_dimmer_note_carries_length_and_auto_off(self):
        sink, eng, stream = self._mk_engine([on(10, 60, vel=124), off(510, 60), on(600, 62, vel=125), off(700, 62)])
        self._play(eng, stream)
        self.assertEqual(
            sink.events,
            [
                ("on", "C4", 60, 500, (), 0),
                ("off", "C4", 60),
                ("on", "D4", 62, 100, (), 1),
                ("off", "D4", 62),
            ],
        )

    def test_merged_notes_emit_one_on(self):
        notes = [on(100, 60), on(100, 62), on(100, 64), off(600, 60), off(600, 62), off(600, 64)]
        sink, eng, stream = self._mk_engine(notes)
        self._play(eng, stream)
        ons = [e for e in sink.events if e[0] == "on"]
        offs = [e for e in sink.events if e[0] == "off"]
        self.assertEqual(ons, [("on", "C4", 60, 500, ("D4", "E4"), 0)])
        self.assertEqual(len(offs), 3)
        self.assertEqual(eng.get_metrics()["merged_dimmer"], 2)

    def test_disabled_note_never_emits(self):
        notes = [on(10, 60), off(20, 60), on(30, 40), off(40, 40), off(50, 41)]
        sink, eng, stream = self._mk_engine(notes, disabled={"C4", "E2", "F2"})
        self._play(eng, stream)
        self.assertEqual(sink.events, [])
        self.assertEqual(eng.get_metrics()["dropped_disabled"], 5)

    def test_disabled_note_does_not_absorb_enabled_duplicate(self):
        # C4 would sort first and swallow D4 if it took part in the merge
        notes = [on(100, 60), on(100, 62), off(600, 60), off(600, 62)]
        sink, eng, stream = self._mk_engine(notes, disabled={"C4"})
        self._play(eng, stream)
        self.assertEqual([e for e in sink.events if e[0] == "on"], [("on", "D4", 62, 500, (), 0)])
        self.assertEqual(eng.get_metrics()["merged_dimmer"], 0)

    def test_disabled_note_left_out_of_same_notes(self):
        notes = [on(100, 60), on(100, 62), off(600, 60), off(600, 62)]
        sink, eng, stream = self._mk_engine(notes, disabled={"D4"})
        self._play(eng, stream)
        self.assertEqual([e for e in sink.events if e[0] == "on"], [("on", "C4", 60, 500, (), 0)])

    def test_missing_dimmer_entry_drops_and_warns(self):
        sink, eng, stream = self._mk_engine([on(10, 60)])
        buf = io.StringIO()
        with contextlib.redirect_stdout(buf):
            self._play(eng, stream)
        self.assertEqual(sink.events, [])
        self.assertEqual(eng.get_metrics()["missing_dimmer"], 1)
        self.assertIn("warning", buf.getvalue())

    def test_note_off_passes_through_without_lookup(self):
        sink, eng, _ = self._mk_engine([])
        eng.on_note_event(off(5, 60))
        self.assertEqual(sink.events, [("off", "C4", 60)])

    def test_empty_timeline_until_published(self):
        sink = VirtualSink()
        eng = Engine(sink, dimmable_range=DIMMABLE)
        self.assertIs(eng.timeline, EMPTY_TIMELINE)
        with contextlib.redirect_stdout(io.StringIO()):
            eng.on_note_event(on(10, 60))
        self.assertEqual(sink.events, [])

    def test_publish_swaps_snapshot(self):
        sink, eng, stream = self._mk_engine([on(10, 60), off(20, 60)])
        first = eng.timeline
        other = make_stream([on(10, 60), off(40, 60)])
        eng.publish(build_timeline(other, eng.dimmable_range))
        self.assertIsNot(eng.timeline, first)
        self.assertIsInstance(eng.timeline, Timeline)
        eng.on_note_event(on(10, 60))
        self.assertEqual(sink.events, [("on", "C4", 60, 30, (), 0)])
        # The old snapshot is untouched
        self.assertEqual(first.dimmer_table.find(10, 60).length_ms, 10)

    def test_stream_lifecycle_signals(self):
        sink, eng, _ = self._mk_engine([])
        eng.on_stream_loaded()
        eng.on_stream_end()
        self.assertEqual(sink.events, [("loaded",), ("end",)])


if __name__ == "__main__":
    unittest.main()
