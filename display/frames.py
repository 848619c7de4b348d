"""
display.frames – builders for the device's frames-array payload.

Wire format:  {"frames": [{"text": "...", "icon": "i1234"}, ...]}
"""

from __future__ import annotations

from typing import Any

MAX_TEXT_LENGTH = 50
ELLIPSIS = "..."

# Practical per-request ceiling on the device.
FRAME_LIMIT = 15

ICON_INFO = "i3313"


def truncate_text(text: str, max_length: int = MAX_TEXT_LENGTH) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - len(ELLIPSIS)] + ELLIPSIS


def create_frame(text: str, icon: str | None = None) -> dict[str, Any]:
    frame: dict[str, Any] = {"text": truncate_text(text)}
    if icon:
        frame["icon"] = icon
    return frame


def create_response(frames: list[dict[str, Any]]) -> dict[str, Any]:
    return {"frames": frames}


def message_response(text: str, icon: str = ICON_INFO) -> dict[str, Any]:
    """Single-frame payload used for diagnostics and placeholders."""
    return create_response([create_frame(text, icon)])
