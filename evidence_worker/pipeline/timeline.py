import json
import logging
from typing import List, Optional

from ..models import FrameLabel, FrameSample, GapSeverity, Timeline, TimelineEntry
from .util import format_duration, format_timecode

logger = logging.getLogger("evidence_worker")


SLOW_GAP_SEC = 5.0
VERY_SLOW_GAP_SEC = 10.0
RULE = "-" * 60


def gap_severity(gap: float) -> GapSeverity:
    if gap > VERY_SLOW_GAP_SEC:
        return GapSeverity.VERY_SLOW
    if gap > SLOW_GAP_SEC:
        return GapSeverity.SLOW
    return GapSeverity.NONE


def build_timeline(frames: List[FrameSample], duration: float) -> Timeline:
    """
    Build the timeline view of the frames that will be sent to inference.

    Gaps are measured between consecutive frames and rounded to 0.1s.
    """
    entries = []
    total_gap = 0.0
    slow = very_slow = frozen = 0

    for position, frame in enumerate(frames, start=1):
        gap = None
        severity = GapSeverity.NONE
        if position > 1:
            raw_gap = frame.timestamp - frames[position - 2].timestamp
            total_gap += raw_gap
            gap = round(raw_gap, 1)
            severity = gap_severity(raw_gap)
            if severity == GapSeverity.VERY_SLOW:
                very_slow += 1
            elif severity == GapSeverity.SLOW:
                slow += 1
        if frame.frozen_duration:
            frozen += 1
        entries.append(TimelineEntry(position=position, frame=frame, gap=gap, severity=severity))

    average_gap = round(total_gap / (len(frames) - 1), 1) if len(frames) > 1 else 0.0

    return Timeline(
        entries=entries,
        duration=duration,
        average_gap=average_gap,
        slow_count=slow,
        very_slow_count=very_slow,
        frozen_count=frozen
    )


def render_entry(entry: TimelineEntry) -> str:
    """Render one timeline line"""
    frame = entry.frame
    line = f"Frame {entry.position} [{format_timecode(frame.timestamp)}]"

    if entry.gap is None:
        line += " test start"
    else:
        line += f" +{entry.gap}s"
        if entry.severity == GapSeverity.VERY_SLOW:
            line += " ⚠️ VERY SLOW (possible freeze/long load)"
        elif entry.severity == GapSeverity.SLOW:
            line += " ⚠️ SLOW"

    if frame.label != FrameLabel.NORMAL:
        line += f" [{frame.label.value.upper()}]"

    if frame.frozen_duration:
        line += f" ❄️ FROZEN for {frame.frozen_duration}s"

    return line


def render_timeline(
    timeline: Timeline,
    duplicates_removed: int = 0,
    dark_removed: int = 0,
    freeze_events: Optional[int] = None
) -> str:
    """Render the timeline transcript and its timing summary"""
    frozen = timeline.frozen_count if freeze_events is None else freeze_events

    lines = ["FRAME TIMELINE WITH TIMING DATA:", RULE]
    lines.extend(render_entry(entry) for entry in timeline.entries)
    lines.append(RULE)

    lines.append("")
    lines.append("TIMING SUMMARY:")
    lines.append(f"  Total test duration: {format_duration(timeline.duration)}")
    lines.append(f"  Unique screen changes: {timeline.unique_screens}")
    lines.append(f"  Average time per screen: {timeline.average_gap}s")
    lines.append(f"  Slow transitions (>{SLOW_GAP_SEC:.0f}s): {timeline.slow_count}")
    lines.append(f"  Very slow / possible freezes (>{VERY_SLOW_GAP_SEC:.0f}s): {timeline.very_slow_count}")
    if frozen:
        lines.append(f"  Frozen screen events: {frozen}")
    if dark_removed:
        lines.append(f"  Black screens detected: {dark_removed} (removed from analysis)")
    if duplicates_removed:
        lines.append(f"  Duplicate frames removed: {duplicates_removed}")

    alerts = performance_alerts(timeline.very_slow_count, frozen)
    if alerts:
        lines.append("")
        lines.append(alerts)

    return "\n".join(lines)


def performance_alerts(very_slow: int, freezes: int) -> str:
    alerts = []
    if very_slow > 0:
        alerts.append(
            "PERFORMANCE ALERT: App has very slow transitions (>10s). Check for:\n"
            "  - Heavy API calls blocking UI\n"
            "  - Large images loading\n"
            "  - Database queries on main thread\n"
            "  - Memory leaks causing slowdown"
        )
    if freezes > 1:
        alerts.append("FREEZE ALERT: App appeared to freeze multiple times.")
    return "\n".join(alerts)


def summarize_device_stats(raw: Optional[str]) -> str:
    """
    Turn the device telemetry blob into readable lines.

    Non-JSON telemetry is passed through unchanged.
    """
    if not raw or not str(raw).strip():
        return "Not available"

    try:
        stats = json.loads(raw) if isinstance(raw, str) else raw
    except (TypeError, ValueError):
        return str(raw)

    if not isinstance(stats, dict):
        return str(raw)

    def value(key: str) -> str:
        v = stats.get(key)
        return "N/A" if v is None or v == "" else str(v)

    crash = stats.get("crashDetected")
    crash_text = f"YES - {value('crashInfo')}" if crash else "No"

    return "\n".join([
        f"Battery: {value('batteryStart')}% -> {value('batteryEnd')}% ({value('batteryDrain')}% drain)",
        f"Network: {value('networkType')} ({value('networkSpeed')})",
        f"Device: {value('deviceModel')}",
        f"Android: {value('androidVersion')}",
        f"Screen: {value('screenResolution')}",
        f"Duration: {value('testDuration')} seconds",
        f"Location: {value('city')}, {value('state')}",
        f"Crash Detected: {crash_text}",
    ])
