"""Tray icon rendering from the published engine state."""

from PIL import Image, ImageDraw, ImageFont

from codex_tracker.models import EngineState, UsageSnapshot

COLOR_UNKNOWN = "#cbd5e1"


def color_for(used_percent: float | None) -> str:
    """Light pastel colors for icon background so black text is readable."""
    if used_percent is None:
        return COLOR_UNKNOWN
    if used_percent >= 80:
        return "#fca5a5"  # light red / pink
    if used_percent >= 50:
        return "#fde047"  # light yellow
    return "#86efac"  # light green


def icon_percents(snapshot: UsageSnapshot | None) -> tuple[float | None, float | None]:
    """(top, bottom) halves: short/long session window, or requests/tokens."""
    if snapshot is None:
        return None, None
    if snapshot.is_session:
        return snapshot.primary_used_percent, snapshot.secondary_used_percent
    return snapshot.requests_used_percent, snapshot.tokens_used_percent


def _load_font(size: int) -> ImageFont.ImageFont:
    for name in ("DejaVuSans-Bold.ttf", "arialbd.ttf", "arial.ttf"):
        try:
            return ImageFont.truetype(name, size)
        except OSError:
            continue
    return ImageFont.load_default()


def create_split_icon(
    top: float | None = None,
    bottom: float | None = None,
    size: int = 128,
) -> Image.Image:
    """Square icon split into two halves, each colored by its usage percent."""
    img = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    draw = ImageDraw.Draw(img)
    r = 6
    half = size // 2

    color_top = color_for(top)
    color_bot = color_for(bottom)

    draw.rounded_rectangle([0, 0, size - 1, half], radius=r, fill=color_top)
    draw.rectangle([0, half - r, size - 1, half], fill=color_top)
    draw.rounded_rectangle([0, half, size - 1, size - 1], radius=r, fill=color_bot)
    draw.rectangle([0, half, size - 1, half + r], fill=color_bot)
    draw.line([(2, half), (size - 3, half)], fill="#00000066", width=1)

    font = _load_font(size * 3 // 8)
    for value, y_center in [(top, half // 2), (bottom, half + half // 2)]:
        text = "?" if value is None else f"{value:.0f}"
        bbox = draw.textbbox((0, 0), text, font=font)
        tw = bbox[2] - bbox[0]
        th = bbox[3] - bbox[1]
        tx = (size - tw) // 2 - bbox[0]
        ty = y_center - th // 2 - bbox[1]
        draw.text((tx, ty), text, fill="#000000", font=font)

    return img


def _window_label(minutes: int | None, default: str) -> str:
    if not minutes:
        return default
    if minutes % 1440 == 0:
        return f"{minutes // 1440}d"
    if minutes % 60 == 0:
        return f"{minutes // 60}h"
    return f"{minutes}m"


def tooltip_for(state: EngineState) -> str:
    """One or two lines summarizing the state for the tray tooltip."""
    snapshot = state.snapshot
    if state.error_text:
        summary = state.error_text
    elif snapshot is None:
        summary = state.status_text
    elif snapshot.is_session:
        parts = []
        for label, pct in (
            (_window_label(snapshot.primary_window_minutes, "Session"), snapshot.primary_used_percent),
            (_window_label(snapshot.secondary_window_minutes, "Weekly"), snapshot.secondary_used_percent),
        ):
            if pct is not None:
                parts.append(f"{label} {pct:.0f}%")
        summary = "  |  ".join(parts) or state.status_text
    else:
        parts = []
        if snapshot.requests_used_percent is not None:
            parts.append(f"Requests {snapshot.requests_used_percent:.0f}%")
        if snapshot.tokens_used_percent is not None:
            parts.append(f"Tokens {snapshot.tokens_used_percent:.0f}% {state.burn_trend.symbol}")
        summary = "  |  ".join(parts) or state.status_text
    return f"Codex: {summary}"
