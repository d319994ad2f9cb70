from __future__ import annotations

import pytest

from pzp_agent.messages import format_time, output_display_name, status_name, text, to_percent


@pytest.mark.parametrize(
    "seconds, expected",
    [(0, "0s"), (59, "59s"), (75, "1m 15s"), (3661, "1h 1m 1s"), (7200, "2h 0s")],
)
def test_format_time(seconds: float, expected: str) -> None:
    assert format_time(seconds) == expected


def test_output_display_name_strips_job_prefix() -> None:
    assert output_display_name("abc", "abc - clip.mp4") == "clip.mp4"
    assert output_display_name("abc", "clip.mp4") == "clip.mp4"
    assert output_display_name("abc", "abc") == "abc"


def test_status_and_percent_helpers() -> None:
    assert status_name("mixing_audio") == "Mixing Audio"
    assert status_name("teleporting") == "Unknown"
    assert to_percent(0.4567) == "45.67%"
    assert text("request_received", "run-1").startswith("Request ｢run-1｣")
