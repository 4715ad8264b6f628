"""Colors and default layer styles."""

from __future__ import annotations

import random
from dataclasses import dataclass, replace

_NAMED_COLORS = {
    "black": "#000000",
    "white": "#ffffff",
    "red": "#ff0000",
    "green": "#008000",
    "blue": "#0000ff",
    "yellow": "#ffff00",
    "orange": "#ffa500",
}


@dataclass(frozen=True)
class Color:
    """RGBA color with float channels in [0, 1]."""

    red: float
    green: float
    blue: float
    alpha: float = 1.0

    @classmethod
    def from_css(cls, css: str, alpha: float = 1.0) -> Color:
        """Parse a named color, ``#rgb`` or ``#rrggbb``.

        Raises:
            ValueError: If the string is not a recognized color.
        """
        value = _NAMED_COLORS.get(css.strip().lower(), css.strip())
        if not value.startswith("#"):
            raise ValueError(f"Unrecognized color: {css}")
        hex_digits = value[1:]
        if len(hex_digits) == 3:
            hex_digits = "".join(c * 2 for c in hex_digits)
        if len(hex_digits) != 6:
            raise ValueError(f"Unrecognized color: {css}")
        r, g, b = (int(hex_digits[i:i + 2], 16) / 255.0 for i in (0, 2, 4))
        return cls(r, g, b, alpha)

    def to_css(self) -> str:
        """``#rrggbb`` when opaque, ``rgba(r,g,b,a)`` otherwise."""
        r, g, b = (round(c * 255) for c in (self.red, self.green, self.blue))
        if self.alpha >= 1.0:
            return f"#{r:02x}{g:02x}{b:02x}"
        return f"rgba({r},{g},{b},{self.alpha:g})"

    def with_alpha(self, alpha: float) -> Color:
        return replace(self, alpha=alpha)

    def to_dict(self) -> dict:
        return {"red": self.red, "green": self.green, "blue": self.blue, "alpha": self.alpha}


@dataclass(frozen=True)
class Palette:
    """Per-channel bounds for generated colors."""

    minimum_red: float = 0.0
    minimum_green: float = 0.0
    minimum_blue: float = 0.0
    maximum_red: float = 1.0
    maximum_green: float = 1.0
    maximum_blue: float = 1.0
    alpha: float = 1.0


POINT_PALETTE = Palette(0.6, 0.6, 0.6, 1.0, 1.0, 1.0)


def color_from_seed(palette: Palette, seed: str | bytes | int) -> Color:
    """Deterministic color within ``palette`` for a seed (usually a layer name).

    String and byte seeds are reduced to the sum of their code points, so
    the same name always yields the same color. No shared generator state
    is touched.
    """
    if isinstance(seed, str):
        seed = sum(ord(ch) for ch in seed)
    elif isinstance(seed, bytes):
        seed = sum(seed)
    rng = random.Random(seed)
    return Color(
        red=rng.uniform(palette.minimum_red, palette.maximum_red),
        green=rng.uniform(palette.minimum_green, palette.maximum_green),
        blue=rng.uniform(palette.minimum_blue, palette.maximum_blue),
        alpha=palette.alpha,
    )


@dataclass
class LineStyle:
    color: Color
    width: float = 2.0


@dataclass
class PointStyle:
    color: Color
    size: float = 10.0


@dataclass
class PolygonStyle:
    color: Color
    fill_color: Color
    fill: bool = False  # off by default, filled polygons are expensive to draw


@dataclass
class LayerStyle:
    line: LineStyle
    point: PointStyle
    polygon: PolygonStyle


def default_style(name: str) -> LayerStyle:
    """Blue lines and outlines, a point color seeded by the layer name."""
    line_color = Color.from_css("blue")
    return LayerStyle(
        line=LineStyle(color=line_color, width=2.0),
        point=PointStyle(color=color_from_seed(POINT_PALETTE, name), size=10.0),
        polygon=PolygonStyle(
            color=line_color,
            fill_color=line_color.with_alpha(0.75),
            fill=False,
        ),
    )
