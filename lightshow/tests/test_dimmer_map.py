import unittest

from lightshow.dimmer_map import build_dimmer_table, describe
from lightshow.midi_file import NOTE_OFF, NOTE_ON, NoteEvent, TempoEvent, note_name
from lightshow.tempo_map import TempoMap


def on(tick, number, vel=100):
    return NoteEvent(NOTE_ON, tick, note_name(number), number, vel)


def off(tick, number):
    return NoteEvent(NOTE_OFF, tick, note_name(number), number, 0)


# 60 BPM at 1000 ticks per beat => exactly 1 ms per tick
ONE_MS_MAP = TempoMap.build([TempoEvent(0, 60.0)], 1000, 60.0)
DIMMABLE = frozenset(range(60, 72))


class TestDimmerMap(unittest.TestCase):
    def test_single_pair_length(self):
        table = build_dimmer_table([on(10, 60), off(510, 60)], ONE_MS_MAP, DIMMABLE)
        self.assertEqual(len(table), 1)
        c = table.entries[0]
        self.assertEqual((c.tick, c.note_name, c.note_number, c.length_ms), (10, "C4", 60, 500))
        self.assertEqual(c.same_notes, ())
        self.assertFalse(c.cancelled)

    def test_length_is_floored(self):
        # 120 BPM at 480 tpb => 1.04167 ms per tick; 100 ticks => 104.17 ms
        tm = TempoMap.build([TempoEvent(0, 120.0)], 480, 120.0)
        table = build_dimmer_table([on(10, 60), off(110, 60)], tm, DIMMABLE)
        self.assertEqual(table.entries[0].length_ms, 104)

    def test_non_dimmable_notes_ignored(self):
        table = build_dimmer_table([on(10, 40), off(20, 40), on(10, 80), off(30, 80)], ONE_MS_MAP, DIMMABLE)
        self.assertEqual(len(table), 0)

    def test_overlapping_ons_pair_with_most_recent(self):
        table = build_dimmer_table([on(10, 60), on(20, 60), off(30, 60)], ONE_MS_MAP, DIMMABLE)
        self.assertEqual([(c.tick, c.length_ms) for c in table.entries], [(20, 10)])
        self.assertIsNone(table.find(10, 60))

    def test_second_off_closes_earlier_on(self):
        table = build_dimmer_table([on(10, 60), on(20, 60), off(30, 60), off(50, 60)], ONE_MS_MAP, DIMMABLE)
        self.assertEqual([(c.tick, c.length_ms) for c in table.entries], [(10, 40), (20, 10)])

    def test_unmatched_off_dropped(self):
        table = build_dimmer_table([off(5, 61), on(10, 60), off(20, 60)], ONE_MS_MAP, DIMMABLE)
        self.assertEqual([c.note_number for c in table.entries], [60])

    def test_pairing_is_per_note_name(self):
        table = build_dimmer_table([on(10, 60), on(10, 62), off(20, 60), off(40, 62)], ONE_MS_MAP, DIMMABLE)
        self.assertEqual([(c.note_name, c.length_ms) for c in table.entries], [("C4", 10), ("D4", 30)])

    def test_simultaneous_equal_notes_merge(self):
        events = [on(100, 64), on(100, 60), on(100, 62), off(600, 60), off(600, 62), off(600, 64)]
        table = build_dimmer_table(events, ONE_MS_MAP, DIMMABLE)
        self.assertEqual(len(table), 1)
        c = table.entries[0]
        # Lowest note number is the survivor
        self.assertEqual((c.note_name, c.tick, c.length_ms), ("C4", 100, 500))
        self.assertEqual(c.same_notes, ("D4", "E4"))
        self.assertTrue(table.is_merged(100, 62))
        self.assertTrue(table.is_merged(100, 64))
        self.assertFalse(table.is_merged(100, 60))

    def test_disabled_notes_skip_correlation(self):
        events = [on(100, 60), on(100, 62), off(600, 60), off(600, 62)]
        table = build_dimmer_table(events, ONE_MS_MAP, DIMMABLE, disabled_notes=frozenset({"C4"}))
        self.assertEqual([(c.note_name, c.same_notes) for c in table.entries], [("D4", ())])
        self.assertIsNone(table.find(100, 60))
        self.assertFalse(table.is_merged(100, 62))

    def test_different_lengths_do_not_merge(self):
        events = [on(100, 60), on(100, 62), off(300, 60), off(600, 62)]
        table = build_dimmer_table(events, ONE_MS_MAP, DIMMABLE)
        self.assertEqual([(c.note_name, c.length_ms, c.same_notes) for c in table.entries], [("C4", 200, ()), ("D4", 500, ())])

    def test_sorted_by_tick_length_number(self):
        events = [on(200, 61), on(100, 65), on(100, 63), off(300, 61), off(400, 63), off(200, 65)]
        table = build_dimmer_table(events, ONE_MS_MAP, DIMMABLE)
        self.assertEqual([(c.tick, c.length_ms, c.note_number) for c in table.entries], [(100, 100, 65), (100, 300, 63), (200, 100, 61)])

    def test_note_at_tick_zero_has_no_length(self):
        # No tempo segment starts strictly before tick 0
        table = build_dimmer_table([on(0, 60), off(100, 60), on(10, 62), off(110, 62)], ONE_MS_MAP, DIMMABLE)
        self.assertEqual([(c.tick, c.length_ms) for c in table.entries], [(0, None), (10, 100)])

    def test_length_uses_tempo_before_note_start(self):
        tm = TempoMap.build([TempoEvent(0, 60.0), TempoEvent(100, 30.0)], 1000, 60.0)
        table = build_dimmer_table([on(50, 60), off(150, 60), on(150, 62), off(250, 62)], tm, DIMMABLE)
        self.assertEqual([(c.note_number, c.length_ms) for c in table.entries], [(60, 100), (62, 200)])

    def test_find_by_tick_and_number(self):
        table = build_dimmer_table([on(10, 60), off(20, 60), on(30, 60), off(45, 60)], ONE_MS_MAP, DIMMABLE)
        self.assertEqual(table.find(30, 60).length_ms, 15)
        self.assertIsNone(table.find(30, 61))

    def test_rebuild_is_identical(self):
        events = [on(100, 64), on(100, 60), on(100, 62), off(600, 60), off(600, 62), off(600, 64), on(700, 66), off(900, 66)]
        a = build_dimmer_table(events, ONE_MS_MAP, DIMMABLE)
        b = build_dimmer_table(events, ONE_MS_MAP, DIMMABLE)
        self.assertEqual(a, b)
        self.assertEqual(describe(a), describe(b))

    def test_describe(self):
        table = build_dimmer_table([on(100, 60), on(100, 61), off(200, 60), off(200, 61)], ONE_MS_MAP, DIMMABLE)
        self.assertEqual(describe(table), [{"tick": 100, "note": "C4", "number": 60, "lengthMs": 100, "sameNotes": ["Db4"]}])


if __name__ == "__main__":
    unittest.main()
