from __future__ import annotations

import argparse
import json
import re
import sys
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List


DEFAULT_CONFIG_PATH = "lightshow.json"

NOTE_NAME_RE = re.compile(r"^[A-G]b?-?\d$")
RANGE_RE = re.compile(r"^\s*(\d+)\s*-\s*(\d+)\s*$")


class ValidationError(Exception):
    def __init__(self, errors: List[str]):
        super().__init__("; ".join(errors))
        self.errors = list(errors)


@dataclass(frozen=True)
class LightshowConfig:
    disabled_notes: FrozenSet[str] = frozenset()
    dimmable_range: FrozenSet[int] = frozenset()


def _err(errors: List[str], path: str, msg: str) -> None:
    errors.append(f"{path}: {msg}")


def _valid_number(n: Any) -> bool:
    return isinstance(n, int) and not isinstance(n, bool) and 0 <= n <= 127


def validate_config(cfg: Dict[str, Any]) -> List[str]:
    """Check a lightshow config object.

    Returns a list of human-readable errors with JSON-pointer-like paths.

    - `disabledNotes`: optional array of note names, flats for black keys
      and middle C = C4 (e.g. "Db4", "C-1").
    - `dimmableRange`: optional array whose items are note numbers 0..127,
      "lo-hi" strings or {"from": lo, "to": hi} objects (inclusive).
    """
    errors: List[str] = []
    if not isinstance(cfg, dict):
        _err(errors, "/", "must be object")
        return errors

    disabled = cfg.get("disabledNotes", [])
    if not isinstance(disabled, list):
        _err(errors, "/disabledNotes", "must be array if present")
    else:
        for i, name in enumerate(disabled):
            path = f"/disabledNotes[{i}]"
            if not isinstance(name, str):
                _err(errors, path, "required string")
            elif "#" in name:
                _err(errors, path, "use flat names for black keys (e.g. 'Db4')")
            elif not NOTE_NAME_RE.match(name):
                _err(errors, path, "note name like 'C4' or 'Bb3' required")

    dim = cfg.get("dimmableRange", [])
    if not isinstance(dim, list):
        _err(errors, "/dimmableRange", "must be array if present")
    else:
        for i, item in enumerate(dim):
            path = f"/dimmableRange[{i}]"
            if isinstance(item, str):
                m = RANGE_RE.match(item)
                if not m:
                    _err(errors, path, "range string 'lo-hi' required")
                    continue
                lo, hi = int(m.group(1)), int(m.group(2))
            elif isinstance(item, dict):
                lo, hi = item.get("from"), item.get("to")
                if not _valid_number(lo):
                    _err(errors, path + "/from", "integer 0..127 required")
                    continue
                if not _valid_number(hi):
                    _err(errors, path + "/to", "integer 0..127 required")
                    continue
            elif _valid_number(item):
                continue
            else:
                _err(errors, path, "note number 0..127, 'lo-hi' or {from,to} required")
                continue
            if not (_valid_number(lo) and _valid_number(hi)):
                _err(errors, path, "bounds must be within 0..127")
            elif lo > hi:
                _err(errors, path, "lower bound above upper bound")

    return errors


def parse_note_range(items: List[Any]) -> FrozenSet[int]:
    """Expand validated `dimmableRange` items into a set of note numbers."""
    out = set()
    for item in items:
        if isinstance(item, str):
            m = RANGE_RE.match(item)
            if m:
                out.update(range(int(m.group(1)), int(m.group(2)) + 1))
        elif isinstance(item, dict):
            out.update(range(int(item["from"]), int(item["to"]) + 1))
        else:
            out.add(int(item))
    return frozenset(out)


def config_from_dict(cfg: Dict[str, Any]) -> LightshowConfig:
    errors = validate_config(cfg)
    if errors:
        raise ValidationError(errors)
    return LightshowConfig(
        disabled_notes=frozenset(cfg.get("disabledNotes", [])),
        dimmable_range=parse_note_range(cfg.get("dimmableRange", [])),
    )


def load_config(path: str) -> LightshowConfig:
    with open(path, "r", encoding="utf-8") as f:
        return config_from_dict(json.load(f))


def main(argv: List[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Validate a lightshow config JSON")
    ap.add_argument("path", nargs="?", default=DEFAULT_CONFIG_PATH, help="Path to config JSON file")
    args = ap.parse_args(argv)

    try:
        with open(args.path, "r", encoding="utf-8") as f:
            cfg = json.load(f)
    except (OSError, ValueError) as e:
        print(f"error: failed to read {args.path}: {e}", file=sys.stderr)
        return 2

    errors = validate_config(cfg)
    if errors:
        print(f"invalid {args.path}:")
        for e in errors:
            print(f" - {e}")
        return 1

    conf = config_from_dict(cfg)
    print(f"ok: {len(conf.disabled_notes)} disabled notes, {len(conf.dimmable_range)} dimmable note numbers")
    return 0


if __name__ == "__main__":
    sys.exit(main())
