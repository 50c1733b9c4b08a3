"""
formatter.py — Renders lifecycle states and transition records to terminal, JSON or CSV.
"""

import csv
import io
import json
import os
import sys
from dataclasses import asdict
from typing import Optional

from .display import get_state_display
from .models import AssetState, TransitionRecord

W = 68  # output width

# ---------------------------------------------------------------------------
# ANSI color control
# ---------------------------------------------------------------------------


def _use_color() -> bool:
    """Return True if stdout is a TTY and color has not been disabled.

    Respects NO_COLOR env var (https://no-color.org) and checks sys.stdout.isatty().
    Can be overridden by calling disable_color().
    """
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("FORCE_COLOR"):
        return True
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


_color_enabled: Optional[bool] = None  # None = auto-detect


def disable_color() -> None:
    """Force-disable color output (called when --no-color flag is set)."""
    global _color_enabled
    _color_enabled = False


def _color_active() -> bool:
    if _color_enabled is not None:
        return _color_enabled
    return _use_color()


# ---------------------------------------------------------------------------
# ANSI code helpers -- return empty string when color is off
# ---------------------------------------------------------------------------

# Display colour names (core/display.py) -> nearest ANSI foreground.
ANSI_COLORS = {
    "blue": "\033[94m",
    "purple": "\033[95m",
    "yellow": "\033[93m",
    "green": "\033[92m",
    "orange": "\033[33m",
    "cyan": "\033[96m",
    "red": "\033[91m",
    "gray": "\033[90m",
    "black": "\033[2m",
}


def _reset() -> str:
    return "\033[0m" if _color_active() else ""


def _bold() -> str:
    return "\033[1m" if _color_active() else ""


def _dim() -> str:
    return "\033[2m" if _color_active() else ""


def _state_color(state: str) -> str:
    return ANSI_COLORS.get(get_state_display(state).color, "") if _color_active() else ""


def _state(state: str) -> str:
    """Render a state label in its display colour."""
    return f"{_state_color(state)}{get_state_display(state).label}{_reset()}"


# ---------------------------------------------------------------------------
# Layout helpers
# ---------------------------------------------------------------------------


def _bar(char: str = "═") -> str:
    return char * W


def _section(title: str) -> str:
    bold = _bold()
    reset = _reset()
    return f"\n  {bold}{title}{reset}\n  {'─' * (W - 2)}"


# ---------------------------------------------------------------------------
# Terminal renderers
# ---------------------------------------------------------------------------


def print_states(graph: dict[AssetState, list[AssetState]], counts: Optional[dict[str, int]] = None) -> None:
    """Print every lifecycle state with its allowed next states (and asset counts if given)."""
    bold = _bold()
    reset = _reset()

    print(f"\n{bold}{_bar()}{reset}")
    print(f"  {bold}ASSET LIFECYCLE — {len(graph)} states{reset}")
    print(f"{bold}{_bar()}{reset}")

    for state, targets in graph.items():
        label = get_state_display(state).label
        pad = " " * max(0, 12 - len(label))
        count = f"  ({counts.get(state.value, 0)})" if counts is not None else ""
        nexts = ", ".join(_state(t.value) for t in targets) if targets else f"{_dim()}terminal{reset}"
        print(f"  {_state(state.value)}{pad}{count:<8} → {nexts}")

    print(f"\n{_bar()}\n")


def print_history(asset_id: str, records: list[TransitionRecord]) -> None:
    """Print an asset's lifecycle timeline, newest first."""
    print(_section(f"LIFECYCLE HISTORY — {asset_id}"))
    if not records:
        print("    No transitions recorded.")
        print()
        return
    dim = _dim()
    reset = _reset()
    for r in records:
        print(f"    {r.timestamp[:19].replace('T', ' ')}  {_state(r.from_state)} → {_state(r.to_state)}")
        print(f"    {dim}by {r.performed_by}{reset}")
        if r.reason:
            print(f"    {r.reason}")
        print()


def print_sweep(records: list[TransitionRecord], threshold_days: int, dry_run: bool = False) -> None:
    """Print the outcome of a Lost -> Disposed sweep."""
    verb = "would be disposed" if dry_run else "disposed"
    print(_section(f"LOST ESCALATION — threshold {threshold_days} days"))
    if not records:
        print("    No Lost assets are due for disposal.")
    for r in records:
        print(f"    {r.asset_id:<16} {verb}  {_dim()}{r.reason or ''}{_reset()}")
    print()


# ---------------------------------------------------------------------------
# JSON export
# ---------------------------------------------------------------------------


def to_json(records: list[TransitionRecord]) -> str:
    return json.dumps([asdict(r) for r in records], indent=2)


# ---------------------------------------------------------------------------
# CSV export
# ---------------------------------------------------------------------------

_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")


def _sanitize_csv_cell(value: str) -> str:
    """Neutralise spreadsheet formula injection (CWE-1236).

    Cells starting with =, +, -, @, a tab or a carriage return are prefixed
    with a tab so spreadsheet applications read them as text. Empty strings
    pass through unchanged.
    """
    if value and value.startswith(_FORMULA_PREFIXES):
        return "\t" + value
    return value


def to_csv(records: list[TransitionRecord]) -> str:
    """Render transition records as CSV.

    Columns: id, asset_id, from_state, to_state, timestamp, performed_by, reason
    performed_by and reason are user-supplied free text and are sanitised.
    """
    headers = ["id", "asset_id", "from_state", "to_state", "timestamp", "performed_by", "reason"]

    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(headers)

    for r in records:
        writer.writerow(
            [
                r.id if r.id is not None else "",
                r.asset_id,
                r.from_state,
                r.to_state,
                r.timestamp,
                _sanitize_csv_cell(r.performed_by),
                _sanitize_csv_cell(r.reason or ""),
            ]
        )

    return buf.getvalue()
