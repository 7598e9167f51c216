from __future__ import annotations

import argparse
import asyncio
import os
import signal
import sys

from lightshow.config import DEFAULT_CONFIG_PATH, LightshowConfig, ValidationError, load_config
from lightshow.midi_engine import Engine
from lightshow.midi_file import MidiLoadError
from lightshow.midi_out import FanoutSink, PrintSink
from lightshow.playback import PlaybackController
from lightshow.ws_server import WebSocketSink, serve_ws


"""Lightshow WS server.

Loads a config (disabled notes, dimmable range), optionally a MIDI file, and
republishes light signals to WebSocket subscribers. Transport commands
(play/stop/seek/load) arrive over the same socket.
"""


def build_controller(config: LightshowConfig, sink, verbose: bool = False) -> PlaybackController:
    engine = Engine(sink, disabled_notes=config.disabled_notes, dimmable_range=config.dimmable_range)
    return PlaybackController(engine, verbose=verbose)


def _read_config(path: str) -> LightshowConfig:
    if not os.path.exists(path):
        print(f"[config] {path} not found; no disabled or dimmable notes", flush=True)
        return LightshowConfig()
    return load_config(path)


def main(argv=None) -> int:
    ap = argparse.ArgumentParser(description="Lightshow WS server (MIDI-driven light signals)")
    ap.add_argument("midi", nargs="?", help="MIDI file to load at startup")
    ap.add_argument("--config", default=DEFAULT_CONFIG_PATH, help=f"Config JSON (default: {DEFAULT_CONFIG_PATH})")
    ap.add_argument("--play", action="store_true", help="Start playback right after loading")
    ap.add_argument("--loop", action="store_true", help="Loop playback")
    ap.add_argument("--ws-host", default="127.0.0.1")
    ap.add_argument("--ws-port", type=int, default=8765)
    ap.add_argument("--echo", action="store_true", help="Also print every signal to stdout")
    ap.add_argument("--verbose", "-v", action="store_true")
    args = ap.parse_args(argv)

    try:
        config = _read_config(args.config)
    except ValidationError as e:
        print(f"[config] invalid {args.config}:", file=sys.stderr)
        for err in e.errors:
            print(f" - {err}", file=sys.stderr)
        return 1
    except (OSError, ValueError) as e:
        print(f"[config] failed to read {args.config}: {e}", file=sys.stderr)
        return 2

    ws_sink = WebSocketSink()
    sink = FanoutSink(ws_sink, PrintSink()) if args.echo else ws_sink
    controller = build_controller(config, sink, verbose=args.verbose)

    if args.midi:
        try:
            controller.load_file(args.midi)
        except MidiLoadError as e:
            print(f"[midi] {e}", file=sys.stderr)
            return 2
        if args.play:
            controller.play(loop=args.loop)

    def shutdown(*_):
        try:
            controller.stop()
        except Exception:
            pass
        print("[ws] shutting down")
        os._exit(0)

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    try:
        asyncio.run(serve_ws(controller, ws_sink, args.ws_host, args.ws_port))
    except KeyboardInterrupt:
        shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
