from __future__ import annotations

from typing import Optional, Sequence


class CoreSink:
    """Abstract sink interface used by Engine."""

    def note_on(
        self,
        name: str,
        number: int,
        length_ms: Optional[int] = None,
        same_notes: Optional[Sequence[str]] = None,
        auto_off: Optional[int] = None,
    ) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def note_off(self, name: str, number: int) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def stream_loaded(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def stream_ended(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class PrintSink(CoreSink):
    """Writes every outbound signal as one tagged console line."""

    def __init__(self, tag: str = "signal"):
        self.tag = tag

    def note_on(self, name, number, length_ms=None, same_notes=None, auto_off=None) -> None:
        if length_ms is None and same_notes is None and auto_off is None:
            print(f"[{self.tag}] on  {name} ({number})", flush=True)
            return
        same = ",".join(same_notes or [])
        print(f"[{self.tag}] on  {name} ({number}) length={length_ms}ms same=[{same}] autoOff={auto_off}", flush=True)

    def note_off(self, name: str, number: int) -> None:
        print(f"[{self.tag}] off {name} ({number})", flush=True)

    def stream_loaded(self) -> None:
        print(f"[{self.tag}] midi file loaded", flush=True)

    def stream_ended(self) -> None:
        print(f"[{self.tag}] midi file end", flush=True)


class FanoutSink(CoreSink):
    """Forward each signal to several sinks in order."""

    def __init__(self, *sinks: CoreSink):
        self.sinks = list(sinks)

    def note_on(self, name, number, length_ms=None, same_notes=None, auto_off=None) -> None:
        for s in self.sinks:
            s.note_on(name, number, length_ms, same_notes, auto_off)

    def note_off(self, name: str, number: int) -> None:
        for s in self.sinks:
            s.note_off(name, number)

    def stream_loaded(self) -> None:
        for s in self.sinks:
            s.stream_loaded()

    def stream_ended(self) -> None:
        for s in self.sinks:
            s.stream_ended()
