"""
Inference prompts for recording analysis.

Two variants share the same report structure: the visual prompt that
accompanies the frame images, and a text-only prompt used when no frame
could be extracted. Both end with the internal verdict section, which
starts with INTERNAL_VERDICT_DELIMITER (also used by the report parser).
"""

from typing import Optional

from ..models import Timeline
from .timeline import render_timeline, summarize_device_stats
from .util import format_duration


INTERNAL_VERDICT_DELIMITER = "=====INTERNAL_ADMIN_VERDICT====="

# why the text-only prompt is used
NO_FRAMES_EXTRACTED = "no frames could be extracted from the recording"
ALL_FRAMES_DARK = "every extracted frame was black or too dark to show the screen"


REPORT_SECTIONS = """## 🔍 App Overview
What app is this? What screens/features are visible?

## 📱 User Flow (with timestamps)
What did the tester do? Step by step, referencing frame numbers and timestamps.

## 🐛 Bugs Found
List every issue (UI, visual, error screens, crashes, stuck loading, accessibility).
For each bug, reference the FRAME NUMBER and TIMESTAMP.

## 🔁 Steps to Reproduce
Numbered steps a developer can follow to reproduce the main issue.

## 🧠 Root-Cause Hypothesis
The most likely technical cause of the main issue and what evidence supports it.

## ⏱️ Performance Analysis
Which transitions are too slow (>3s concerning, >5s bad, >10s critical)?
Did the app freeze? Rate: FAST / ACCEPTABLE / SLOW / VERY SLOW / FREEZING.

## 🔋 Battery & Resource Assessment
Battery drain rate, whether it is normal for this type of app, network impact.

## 🎯 Overall Severity Rating
Rate: CRITICAL / HIGH / MEDIUM / LOW. Consider both bugs AND performance.

## 💡 Top 5 Fixes (Prioritized)
What should the developer fix first? Be specific."""


VERDICT_INSTRUCTIONS = f"""After the report, ALWAYS output this exact line on its own:
{INTERNAL_VERDICT_DELIMITER}
Then write "VERDICT: approve" or "VERDICT: reject" followed by 2-3 sentences explaining
whether this recording is genuine, relevant evidence for the reported bug and the app test instructions.
This section is for platform moderators only and must not be referenced in the report above."""


def _context_block(
    bug_description: Optional[str],
    device_stats: Optional[str],
    test_instructions: Optional[str],
    app_name: Optional[str]
) -> str:
    parts = []
    if app_name:
        parts.append(f"APP UNDER TEST: {app_name}")
    parts.append(f"APP TESTING INSTRUCTIONS:\n{test_instructions or 'Not provided'}")
    parts.append(f"TESTER'S REPORT:\n{bug_description or 'No description'}")
    parts.append(f"DEVICE STATS:\n{summarize_device_stats(device_stats)}")
    return "\n\n".join(parts)


def build_visual_prompt(
    timeline: Timeline,
    bug_description: Optional[str] = None,
    device_stats: Optional[str] = None,
    test_instructions: Optional[str] = None,
    app_name: Optional[str] = None,
    duplicates_removed: int = 0,
    dark_removed: int = 0,
    freeze_events: Optional[int] = None
) -> str:
    """Prompt sent together with the unique frame images"""
    duration = format_duration(timeline.duration)
    transcript = render_timeline(timeline, duplicates_removed, dark_removed, freeze_events)

    return f"""You are a senior QA testing expert and performance analyst. Analyze this mobile app test session.

These are {timeline.unique_screens} UNIQUE screenshots extracted from a {duration} screen recording, attached in timeline order.
Each frame represents a DIFFERENT screen state. Duplicate and frozen frames have been removed.

{transcript}

{_context_block(bug_description, device_stats, test_instructions, app_name)}

Please analyze and provide a DETAILED report:

{REPORT_SECTIONS}

Reference frame numbers, timestamps, and exact timing data.

{VERDICT_INSTRUCTIONS}"""


def build_text_only_prompt(
    duration: float,
    bug_description: Optional[str] = None,
    device_stats: Optional[str] = None,
    test_instructions: Optional[str] = None,
    app_name: Optional[str] = None,
    reason: str = NO_FRAMES_EXTRACTED
) -> str:
    """Prompt used when the recording yielded no frames worth sending"""
    return f"""You are a senior QA testing expert. A tester recorded a {format_duration(duration)} mobile app test session.

VISUAL EVIDENCE IS UNAVAILABLE: {reason}.
Base your reasoning only on the tester's report, the testing instructions and the device telemetry below,
and say explicitly where a conclusion would need the recording to confirm it.

{_context_block(bug_description, device_stats, test_instructions, app_name)}

Please provide a structured report:

{REPORT_SECTIONS}

Note in the report that no usable frames were available and the analysis is based on metadata only.

{VERDICT_INSTRUCTIONS}"""
