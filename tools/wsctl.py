from __future__ import annotations

import argparse
import asyncio
import base64
import json


async def run(url: str, cmd: str, args: argparse.Namespace):
    import websockets  # type: ignore

    async with websockets.connect(url) as ws:
        # Drain hello + initial state
        for _ in range(2):
            await ws.recv()
        if cmd == "play":
            await ws.send(json.dumps({"type": "play", "loop": bool(args.loop)}))
        elif cmd == "stop":
            await ws.send(json.dumps({"type": "stop"}))
        elif cmd == "seek":
            await ws.send(json.dumps({"type": "seek", "seconds": float(args.seconds)}))
        elif cmd == "load":
            if args.upload:
                with open(args.path, "rb") as f:
                    uri = "data:audio/midi;base64," + base64.b64encode(f.read()).decode("ascii")
                await ws.send(json.dumps({"type": "load", "dataUri": uri}))
            else:
                await ws.send(json.dumps({"type": "load", "path": args.path}))
        elif cmd == "state":
            await ws.send(json.dumps({"type": "getState"}))
        # Print next few messages (ack/error, state, broadcasts)
        for _ in range(args.count):
            try:
                msg = await asyncio.wait_for(ws.recv(), timeout=2.0)
                print(msg)
            except asyncio.TimeoutError:
                break


def main():
    ap = argparse.ArgumentParser(description="Simple WS controller for the lightshow server")
    ap.add_argument("--url", default="ws://127.0.0.1:8765")
    ap.add_argument("--count", type=int, default=3, help="Messages to print after the command")
    sub = ap.add_subparsers(dest="cmd", required=True)
    p_play = sub.add_parser("play"); p_play.add_argument("--loop", action="store_true")
    sub.add_parser("stop")
    p_seek = sub.add_parser("seek"); p_seek.add_argument("seconds")
    p_load = sub.add_parser("load"); p_load.add_argument("path"); p_load.add_argument("--upload", action="store_true", help="Send file contents as a data URI")
    sub.add_parser("state")
    args = ap.parse_args()
    asyncio.run(run(args.url, args.cmd, args))


if __name__ == "__main__":
    main()
