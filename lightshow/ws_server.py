from __future__ import annotations

import asyncio
import json
import math
import time
from typing import Any, Dict, Optional, Set

from lightshow.midi_file import MidiLoadError
from lightshow.midi_out import CoreSink
from lightshow.playback import PlaybackController


def _frame(kind: str, payload: Any = None, req_id: Any = None) -> str:
    obj: Dict[str, Any] = {"type": kind, "ts": time.time()}
    if req_id is not None:
        obj["id"] = req_id
    if payload is not None:
        obj["payload"] = payload
    return json.dumps(obj)


class WebSocketSink(CoreSink):
    """Republishes outbound signals to every connected WS client.

    Signals arrive on the player thread; frames are handed to the server's
    asyncio loop with run_coroutine_threadsafe. Before a loop is attached
    (or after it closes) signals are dropped.
    """

    def __init__(self) -> None:
        self.clients: Set[Any] = set()
        self.loop: Optional[asyncio.AbstractEventLoop] = None

    def attach(self, loop: asyncio.AbstractEventLoop) -> None:
        self.loop = loop

    async def broadcast(self, msg: str) -> None:
        if not self.clients:
            return
        await asyncio.gather(*[c.send(msg) for c in list(self.clients)], return_exceptions=True)

    def _publish(self, kind: str, payload: Any = None) -> None:
        loop = self.loop
        if loop is None or loop.is_closed():
            return
        asyncio.run_coroutine_threadsafe(self.broadcast(_frame(kind, payload)), loop)

    def note_on(self, name, number, length_ms=None, same_notes=None, auto_off=None) -> None:
        payload: Dict[str, Any] = {"name": name, "number": int(number)}
        if length_ms is not None or same_notes is not None or auto_off is not None:
            payload["length"] = length_ms
            payload["sameNotes"] = list(same_notes or [])
            payload["autoOff"] = auto_off
        self._publish("noteOn", payload)

    def note_off(self, name: str, number: int) -> None:
        self._publish("noteOff", {"name": name, "number": int(number)})

    def stream_loaded(self) -> None:
        self._publish("midiFileLoaded")

    def stream_ended(self) -> None:
        self._publish("midiFileEnd")


def _handle_command(controller: PlaybackController, obj: Dict[str, Any]) -> Dict[str, Any]:
    """Apply one transport command; returns the ack/error payload."""
    t = obj.get("type")
    if t == "play":
        if not controller.play(loop=bool(obj.get("loop", False))):
            return {"ok": False, "error": "not_loaded"}
        return {"ok": True}
    if t == "stop":
        controller.stop()
        return {"ok": True}
    if t == "seek":
        try:
            seconds = float(obj.get("seconds"))
        except (TypeError, ValueError):
            return {"ok": False, "error": "invalid_seconds"}
        if not math.isfinite(seconds):
            return {"ok": False, "error": "invalid_seconds"}
        return {"ok": True, "tick": controller.seek(seconds)}
    if t == "load":
        try:
            if isinstance(obj.get("dataUri"), str):
                controller.load_data_uri(obj["dataUri"])
            elif isinstance(obj.get("path"), str):
                controller.load_file(obj["path"])
            else:
                return {"ok": False, "error": "invalid_source"}
        except MidiLoadError as e:
            return {"ok": False, "error": "load_failed", "details": str(e)}
        return {"ok": True, "source": controller.source}
    return {"ok": False, "error": "unknown_command", "details": str(t)}


async def serve_ws(controller: PlaybackController, sink: WebSocketSink, host: str, port: int):
    try:
        import websockets  # type: ignore
    except ImportError:
        print("[ws] websockets not installed; cannot start lightshow WS")
        return

    sink.attach(asyncio.get_running_loop())

    async def handler(ws, *maybe_path):
        try:
            ra = getattr(ws, "remote_address", None)
            print(f"[ws] client connected: {ra}", flush=True)
        except Exception:
            pass
        sink.clients.add(ws)
        await ws.send(_frame("hello", {"protocol": 1}))
        await ws.send(_frame("state", controller.get_state()))
        try:
            async for message in ws:
                try:
                    obj = json.loads(message)
                except ValueError:
                    continue
                if not isinstance(obj, dict):
                    continue
                t = obj.get("type")
                req_id = obj.get("id")
                if t == "ping":
                    await ws.send(_frame("pong", req_id=req_id))
                    continue
                if t == "getState":
                    await ws.send(_frame("state", controller.get_state(), req_id=req_id))
                    continue
                res = _handle_command(controller, obj)
                if not res.get("ok"):
                    print(f"[ws] {t} failed: {res}", flush=True)
                await ws.send(_frame("ack" if res.get("ok") else "error", res, req_id=req_id))
                await ws.send(_frame("state", controller.get_state()))
        finally:
            sink.clients.discard(ws)

    async with websockets.serve(handler, host, port):
        print(f"[ws] lightshow listening on ws://{host}:{port}", flush=True)
        await asyncio.Future()
