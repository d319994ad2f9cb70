"""User-facing message catalogue and small formatting helpers."""

from __future__ import annotations

from typing import Final, Mapping

MESSAGES: Final[Mapping[str, str]] = {
    "respack_set": "Resource pack set: {0}",
    "chart_file_added": "Chart file added: {0}",
    "existing_request": "There is an active request in progress.",
    "start_instructions": (
        "You are initiating a new PhiZone Player Agent (PZPA) request. "
        "Currently, PZPA can assist you with chart rendering.\n"
        "First, please send chart files (a ZIP chart archive, or chart, audio and "
        "illustration files individually).\n"
        'To use a custom resource pack, send the "respack" command and upload one '
        "resource pack ZIP.\n"
        'Use the "config" command to modify the agent configuration.\n'
        'Once everything is ready, send the "submit" command to submit the request.'
    ),
    "send_chart_files": "Please send chart files.",
    "start_first": 'Please send the "start" command first.',
    "send_respack_file": "Please send a PhiZone/Phira format resource pack file.",
    "need_chart_files": "Please send at least one chart file.",
    "request_summary": "PhiZone Player Agent Request Summary\n\nChart files: {0}\n\nResource pack: {1}\n\n{2}",
    "default_respack": "Default resource pack",
    "request_submitted": (
        "Successfully submitted request ｢{0}｣\nQueue size: {1}\n"
        "Queue time: at least {2}\nRequest user: {3}"
    ),
    "no_active_request": "No active request currently.",
    "progress_in_progress": "Request ID: ｢{0}｣\nRequest status: {1}{2}{3}\nRequest user: {4}",
    "progress_queued": "Request ID: ｢{0}｣\nRequest status: Queued\nRequest user: {1}",
    "current_progress": "Current progress: {0}",
    "current_eta": "Current ETA: {0}",
    "cancel_success": "Successfully requested cancellation of ｢{0}｣",
    "cancel_failed": "Failed to cancel request: {0}",
    "history_empty": "Request history is empty.",
    "no_results": "No results on this page.",
    "history_header": "Request history (page {0} of {1}):",
    "no_output": "No results",
    "config_instructions": (
        'Please use "config property [value]" to modify your agent configuration. '
        "For example:\nconfig Resolution 1620x1080\nconfig VideoBitrate 12000\n"
        "config FC/APIndicator - toggles the indicator"
    ),
    "boolean_toggled": 'Changed "{0}" value to: {1}',
    "value_set": 'Set "{0}" value to: {1}',
    "current_value": 'Current "{0}" value: {1}',
    "request_received": (
        "Request ｢{0}｣ is being processed! We will notify you once it ends.\n"
        'You can also check the request progress with the "progress" command.'
    ),
    "request_completed": (
        "PhiZone Player Agent request completed\nRequest ID: ｢{0}｣\n"
        "Request status: {1}\nRequest user: {2}\nRequest results:\n{3}\n"
        "We will send the above files to the chat. Please wait a moment."
    ),
    "request_ended": (
        "PhiZone Player Agent request ended\nRequest ID: ｢{0}｣\n"
        "Request status: {1}\nRequest user: {2}"
    ),
    "generic_failure": "Something went wrong while handling your request. Please try again later.",
}

STATUS_NAMES: Final[Mapping[str, str]] = {
    "queued": "Queued",
    "initializing": "Initializing",
    "downloading_assets": "Downloading Assets",
    "starting": "Starting",
    "rendering": "Rendering",
    "mixing_audio": "Mixing Audio",
    "combining_streams": "Combining Streams",
    "uploading_artifact": "Uploading Artifact",
    "downloading_artifact": "Downloading Artifact",
    "uploading_to_oss": "Uploading to OSS",
    "completed": "Completed",
    "failed": "Failed",
    "cancelled": "Cancelled",
}


def text(key: str, *args: object) -> str:
    return MESSAGES[key].format(*args)


def status_name(status: str) -> str:
    return STATUS_NAMES.get(status, "Unknown")


def format_time(seconds: float) -> str:
    """Format a duration as ``1h 2m 3s``, omitting empty leading units."""

    total = max(0, int(round(seconds)))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    parts.append(f"{secs}s")
    return " ".join(parts)


def to_percent(value: float) -> str:
    return f"{value:.2%}"


def output_display_name(job_id: str, name: str) -> str:
    """Strip the ``<job_id> - `` style prefix the job service adds to artifacts."""

    prefix_length = len(job_id) + 3
    if job_id and name.startswith(job_id) and len(name) > prefix_length:
        return name[prefix_length:]
    return name


__all__ = [
    "MESSAGES",
    "STATUS_NAMES",
    "format_time",
    "output_display_name",
    "status_name",
    "text",
    "to_percent",
]
