from __future__ import annotations

import argparse
import signal
import sys
import threading
import time
from typing import Optional

from lightshow.config import LightshowConfig, ValidationError, load_config
from lightshow.midi_engine import Engine
from lightshow.midi_file import MidiLoadError
from lightshow.midi_out import PrintSink
from lightshow.playback import END_OF_FILE, PlaybackController


def run(midi_path: str, config: LightshowConfig, seek: Optional[float] = None, loop: bool = False, print_metrics: bool = False, verbose: bool = False) -> int:
    sink = PrintSink()
    eng = Engine(sink, disabled_notes=config.disabled_notes, dimmable_range=config.dimmable_range)
    ctl = PlaybackController(eng, verbose=verbose)
    try:
        ctl.load_file(midi_path)
    except MidiLoadError as e:
        print(f"[midi] {e}", file=sys.stderr)
        return 2

    done = threading.Event()
    if not loop:
        ctl.on(END_OF_FILE, done.set)

    def metrics_printer():
        while not done.is_set():
            m = eng.get_metrics()
            j = ctl.player.get_metrics()
            print(
                f"[metrics] note_on={m.get('msgs_note_on', 0)} note_off={m.get('msgs_note_off', 0)} "
                f"merged={m.get('merged_dimmer', 0)} missing={m.get('missing_dimmer', 0)} "
                f"jitter_p95={j.get('jitterMsP95', 0)}ms"
            )
            time.sleep(1.0)

    def shutdown(*_):
        ctl.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    if seek is not None:
        tick = ctl.seek(seek)
        print(f"[playback] start at {seek:.3f}s (tick {tick})")
    ctl.play(loop=loop)
    if print_metrics:
        threading.Thread(target=metrics_printer, daemon=True).start()
    # Wait until the stream ends or until interrupted
    done.wait()
    return 0


def main():
    ap = argparse.ArgumentParser(description="Play a MIDI file and print the light signals it produces")
    ap.add_argument("midi", help="Path to MIDI file")
    ap.add_argument("--config", help="Config JSON with disabledNotes / dimmableRange")
    ap.add_argument("--seek", type=float, help="Start offset in seconds")
    ap.add_argument("--loop", action="store_true", help="Loop until interrupted")
    ap.add_argument("--metrics", action="store_true", help="Print runtime metrics once per second")
    ap.add_argument("--verbose", "-v", action="store_true")
    args = ap.parse_args()

    config = LightshowConfig()
    if args.config:
        try:
            config = load_config(args.config)
        except ValidationError as e:
            print(f"[config] invalid {args.config}: {e}", file=sys.stderr)
            sys.exit(1)
        except (OSError, ValueError) as e:
            print(f"[config] failed to read {args.config}: {e}", file=sys.stderr)
            sys.exit(2)

    sys.exit(run(args.midi, config, seek=args.seek, loop=args.loop, print_metrics=args.metrics, verbose=args.verbose))


if __name__ == "__main__":
    main()
