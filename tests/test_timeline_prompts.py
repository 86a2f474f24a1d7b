"""Tests for the timeline transcript, telemetry summary and prompts."""

import json

import pytest

from evidence_worker.models import FrameLabel, FrameSample, GapSeverity
from evidence_worker.pipeline.prompts import (
    INTERNAL_VERDICT_DELIMITER,
    NO_FRAMES_EXTRACTED,
    build_text_only_prompt,
    build_visual_prompt,
)
from evidence_worker.pipeline.timeline import (
    build_timeline,
    gap_severity,
    render_timeline,
    summarize_device_stats,
)
from evidence_worker.pipeline.util import format_duration, format_timecode


def _frames(timestamps):
    return [FrameSample(index=i, timestamp=t, path=f"f{i}.jpg") for i, t in enumerate(timestamps)]


@pytest.mark.parametrize(
    "gap,expected",
    [(1.0, GapSeverity.NONE), (5.0, GapSeverity.NONE), (5.1, GapSeverity.SLOW),
     (10.0, GapSeverity.SLOW), (10.5, GapSeverity.VERY_SLOW)],
)
def test_gap_severity(gap, expected):
    assert gap_severity(gap) == expected


def test_timecodes():
    assert format_timecode(0.6) == "0:01"
    assert format_timecode(75.2) == "1:15"
    assert format_timecode(59.7) == "1:00"
    assert format_duration(12) == "0m 12s"
    assert format_duration(130.5) == "2m 11s"


def test_build_timeline_aggregates():
    frames = _frames([1.0, 3.04, 9.5, 21.5])
    frames[1].frozen_duration = 4

    timeline = build_timeline(frames, duration=24.0)

    assert timeline.unique_screens == 4
    gaps = [entry.gap for entry in timeline.entries]
    assert gaps == [None, 2.0, 6.5, 12.0]
    assert [e.severity for e in timeline.entries] == [
        GapSeverity.NONE, GapSeverity.NONE, GapSeverity.SLOW, GapSeverity.VERY_SLOW
    ]
    assert timeline.slow_count == 1
    assert timeline.very_slow_count == 1
    assert timeline.frozen_count == 1
    assert timeline.average_gap == pytest.approx(6.8)


def test_render_timeline_lines():
    frames = _frames([1.0, 3.0, 15.0])
    frames[0].frozen_duration = 7
    frames[2].label = FrameLabel.WHITE_SCREEN

    text = render_timeline(build_timeline(frames, 16.0), duplicates_removed=5, dark_removed=2, freeze_events=1)
    lines = text.splitlines()

    assert lines[0] == "FRAME TIMELINE WITH TIMING DATA:"
    assert "Frame 1 [0:01] test start ❄️ FROZEN for 7s" in lines
    assert "Frame 2 [0:03] +2.0s" in lines
    assert "Frame 3 [0:15] +12.0s ⚠️ VERY SLOW (possible freeze/long load) [WHITE_SCREEN]" in lines
    assert "TIMING SUMMARY:" in lines
    assert "  Duplicate frames removed: 5" in lines
    assert "  Black screens detected: 2 (removed from analysis)" in lines
    assert any(line.startswith("PERFORMANCE ALERT") for line in lines)


def test_device_stats_summary():
    raw = json.dumps({
        "batteryStart": 90, "batteryEnd": 82, "batteryDrain": 8,
        "networkType": "wifi", "deviceModel": "Pixel 7", "crashDetected": True,
        "crashInfo": "NullPointerException",
    })
    summary = summarize_device_stats(raw)

    assert "Battery: 90% -> 82% (8% drain)" in summary
    assert "Device: Pixel 7" in summary
    assert "Android: N/A" in summary
    assert "Crash Detected: YES - NullPointerException" in summary


def test_device_stats_fallbacks():
    assert summarize_device_stats(None) == "Not available"
    assert summarize_device_stats("   ") == "Not available"
    assert summarize_device_stats("battery low") == "battery low"


def test_visual_prompt_contents():
    timeline = build_timeline(_frames([1.0, 4.0]), 12.0)
    prompt = build_visual_prompt(
        timeline,
        bug_description="Spinner never stops",
        device_stats=None,
        test_instructions="Open the cart",
        app_name="ShopFast",
        duplicates_removed=3,
    )

    assert "2 UNIQUE screenshots" in prompt
    assert "0m 12s" in prompt
    assert "FRAME TIMELINE WITH TIMING DATA:" in prompt
    assert "Spinner never stops" in prompt
    assert "Open the cart" in prompt
    assert "APP UNDER TEST: ShopFast" in prompt
    assert "Steps to Reproduce" in prompt
    assert "Root-Cause Hypothesis" in prompt
    assert INTERNAL_VERDICT_DELIMITER in prompt
    assert "VISUAL EVIDENCE IS UNAVAILABLE" not in prompt


def test_text_only_prompt_contents():
    prompt = build_text_only_prompt(45.0, bug_description="App crashes on login")

    assert "VISUAL EVIDENCE IS UNAVAILABLE" in prompt
    assert NO_FRAMES_EXTRACTED in prompt
    assert "App crashes on login" in prompt
    assert "Not provided" in prompt
    assert "FRAME TIMELINE" not in prompt
    assert INTERNAL_VERDICT_DELIMITER in prompt
    assert '"VERDICT: approve"' in prompt
