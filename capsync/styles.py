"""
Caption style resolution.

`resolve_style` is the single source of truth for caption appearance. The
burn-in renderer reads it through `to_force_style` / `accent_bar_filter`, and
the live preview through `to_display_properties`. Both translations scale
from the same ASS script height so sizes and margins agree at any resolution.
"""

import logging
from typing import Any, Dict, Optional, Union

from .models import CaptionStyle, StyleParameters

logger = logging.getLogger(__name__)

# libass lays out SRT input on a 384x288 script canvas
ASS_SCRIPT_HEIGHT = 288

DEFAULT_STYLE = CaptionStyle.BOTTOM_CENTERED

_STYLES: Dict[CaptionStyle, StyleParameters] = {
    CaptionStyle.BOTTOM_CENTERED: StyleParameters(
        style=CaptionStyle.BOTTOM_CENTERED,
        font_family="Noto Sans",
        font_size=24,
        primary_color="#FFFFFF",
        outline_color="#000000",
        shadow_color="#000000",
        outline_width=2,
        shadow_depth=2,
        box_color="#000000",
        box_opacity=0.7,
        anchor="bottom",
        margin_v=60,
    ),
    CaptionStyle.TOP_BAR: StyleParameters(
        style=CaptionStyle.TOP_BAR,
        font_family="Noto Sans",
        font_size=24,
        primary_color="#FFFFFF",
        outline_color="#000000",
        shadow_color="#000000",
        outline_width=2,
        shadow_depth=2,
        box_color="#000000",
        box_opacity=0.8,
        anchor="top",
        margin_v=50,
        accent_color="#00FF00",
        accent_thickness=4,
    ),
    CaptionStyle.KARAOKE: StyleParameters(
        style=CaptionStyle.KARAOKE,
        font_family="Noto Sans",
        font_size=28,
        primary_color="#B3B3B3",  # words not reached yet
        outline_color="#000000",
        shadow_color="#000000",
        outline_width=3,
        shadow_depth=2,
        box_color="#000000",
        box_opacity=0.6,
        anchor="bottom",
        margin_v=50,
        highlight_color="#FFD700",
        progressive_highlight=True,
    ),
}


def resolve_style(style_id: Optional[Union[str, CaptionStyle]] = None) -> StyleParameters:
    """Maps a style identifier to its parameters. Unknown or missing ids fall back to bottom-centered."""
    if isinstance(style_id, CaptionStyle):
        return _STYLES[style_id]
    try:
        style = CaptionStyle(str(style_id).strip().lower()) if style_id else DEFAULT_STYLE
    except ValueError:
        logger.warning(f"Unknown caption style '{style_id}', using '{DEFAULT_STYLE.value}'")
        style = DEFAULT_STYLE
    return _STYLES[style]


def _rgb(hex_color: str):
    value = hex_color.lstrip("#")
    if len(value) != 6:
        raise ValueError(f"Expected #RRGGBB color, got {hex_color!r}")
    return int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16)


def ass_color(hex_color: str, opacity: float = 1.0) -> str:
    """Converts #RRGGBB plus opacity to ASS &HAABBGGRR (alpha 00 is opaque)."""
    r, g, b = _rgb(hex_color)
    alpha = round((1.0 - max(0.0, min(1.0, opacity))) * 255)
    return f"&H{alpha:02X}{b:02X}{g:02X}{r:02X}"


def css_rgba(hex_color: str, opacity: float = 1.0) -> str:
    r, g, b = _rgb(hex_color)
    return f"rgba({r}, {g}, {b}, {opacity:g})"


def to_force_style(params: StyleParameters) -> str:
    """ASS override string for the ffmpeg `subtitles` filter's force_style option."""
    fields = [
        ("FontName", params.font_family),
        ("FontSize", params.font_size),
        ("PrimaryColour", ass_color(params.primary_color)),
        ("OutlineColour", ass_color(params.outline_color)),
        # BorderStyle 4 (libass) draws an opaque box in BackColour behind the text
        ("BackColour", ass_color(params.box_color, params.box_opacity)),
        ("BorderStyle", 4 if params.box_opacity > 0 else 1),
        ("Outline", params.outline_width),
        ("Shadow", params.shadow_depth),
        ("Alignment", 8 if params.anchor == "top" else 2),
        ("MarginV", params.margin_v),
    ]
    return ",".join(f"{key}={value}" for key, value in fields)


def accent_bar_filter(params: StyleParameters) -> Optional[Dict[str, Any]]:
    """
    drawbox arguments for the full-width accent bar above top-anchored captions,
    or None when the style has no accent.
    """
    if not params.accent_color or params.accent_thickness <= 0:
        return None
    top = max(params.margin_v - params.accent_thickness, 0)
    return {
        "x": 0,
        "y": f"ih*{top}/{ASS_SCRIPT_HEIGHT}",
        "w": "iw",
        "h": f"ih*{params.accent_thickness}/{ASS_SCRIPT_HEIGHT}",
        "color": "0x" + params.accent_color.lstrip("#").upper(),
        "t": "fill",
    }


def to_display_properties(params: StyleParameters, video_height: int = 1080) -> Dict[str, Any]:
    """
    CSS-style properties for the live preview overlay at `video_height` pixels.

    `accentBar` (when present) is a separate full-width element, matching the
    drawbox the renderer adds. `highlightColor` is set for progressive styles.
    """
    scale = video_height / ASS_SCRIPT_HEIGHT
    props: Dict[str, Any] = {
        "position": "absolute",
        "left": "50%",
        "transform": "translateX(-50%)",
        "textAlign": "center",
        "fontFamily": f"'{params.font_family}', sans-serif",
        "fontSize": f"{round(params.font_size * scale)}px",
        "color": params.primary_color,
        "WebkitTextStroke": f"{round(params.outline_width * scale)}px {params.outline_color}",
        "textShadow": f"{round(params.shadow_depth * scale)}px {round(params.shadow_depth * scale)}px 0 {params.shadow_color}",
        "backgroundColor": css_rgba(params.box_color, params.box_opacity),
        params.anchor: f"{round(params.margin_v * scale)}px",
    }
    accent = accent_bar_filter(params)
    if accent:
        props["accentBar"] = {
            "position": "absolute",
            "left": 0,
            "width": "100%",
            "top": f"{round(max(params.margin_v - params.accent_thickness, 0) * scale)}px",
            "height": f"{round(params.accent_thickness * scale)}px",
            "backgroundColor": params.accent_color,
        }
    if params.progressive_highlight:
        props["highlightColor"] = params.highlight_color
    return props
