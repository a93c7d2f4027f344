"""CLI dashboard — prints bridge status and signals to the console."""

from typing import Optional

from signalforge.market.store import QuoteStore
from signalforge.strategy.models import SignalResult


def print_status(status: dict, store: Optional[QuoteStore] = None) -> str:
    """Format and print the bridge status.

    Args:
        status: Dict returned by ``BridgeService.get_status()``.
        store: When given, instrument and discovery counts are included.

    Returns:
        The formatted string (also printed to stdout).
    """
    state = status.get("status", "unknown")
    last_error = status.get("last_error") or "none"
    activity = status.get("activity_log", [])
    frames = status.get("recent_frames", [])

    lines = [
        "──────────────── SignalForge Bridge ───────────────",
        f"  State:           {state}",
        f"  Last Error:      {last_error}",
        f"  Recent Frames:   {len(frames)}",
    ]
    if store is not None:
        lines.append(f"  Instruments:     {len(store.get_instruments())}")
        lines.append(f"  Discovered:      {len(store.get_discovered_symbols())}")
    if activity:
        lines.append(f"  Last Activity:   [{activity[0]['level']}] {activity[0]['msg']}")
    lines.append("──────────────────────────────────────────────────")
    output = "\n".join(lines)
    print(output)
    return output


def print_signal(result: SignalResult) -> str:
    """Format and print a scorer result with its component breakdown."""
    lines = [
        f"──────────────── Signal {result.instrument} {result.expiry} ────────────────",
        f"  Side:            {result.side}",
        f"  Confidence:      {result.confidence}%",
        f"  Score:           {result.score:.1f}",
        f"  Data Source:     {result.data_source} ({result.timeframe_used})",
        f"  Entry:           {result.entry_hint}",
    ]
    for comp in result.components:
        lines.append(f"    {comp.key:<12} {comp.score:+6.1f}  {comp.notes}")
    for reason in result.rationale:
        lines.append(f"  - {reason}")
    lines.append("──────────────────────────────────────────────────")
    output = "\n".join(lines)
    print(output)
    return output
