"""Drawing-primitive SVG renderer used when the canvas backend is unavailable"""
import math
from typing import List, Tuple
from xml.sax.saxutils import escape, quoteattr

from talent_insights.models import ChartSpec

FONT = "Arial, sans-serif"

THEMES = {
    "light": {"text": "#1F2937", "grid": "#E5E7EB", "background": "#ffffff"},
    "dark": {"text": "#F3F4F6", "grid": "#374151", "background": "#1F2937"},
}

PALETTE = ["#4F46E5", "#06B6D4", "#10B981", "#F59E0B", "#EF4444", "#8B5CF6", "#6B7280", "#EC4899"]


def format_value(value: float) -> str:
    """Compact tick/label text: 1.2M, 3.4K, 950"""
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return "n/a"
    if abs(value) >= 1_000_000:
        return f"{value / 1_000_000:.1f}M"
    if abs(value) >= 1_000:
        return f"{value / 1_000:.1f}K"
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{value:,.2f}"


def _finite(value: float) -> float:
    return 0.0 if value is None or not math.isfinite(value) else float(value)


def _solid(color) -> str:
    """Drop the alpha suffix from #RRGGBBAA; pick the first of a list"""
    if isinstance(color, list):
        color = color[0] if color else PALETTE[0]
    if isinstance(color, str) and color.startswith("#") and len(color) == 9:
        return color[:7]
    return color or PALETTE[0]


def _opacity(color) -> float:
    if isinstance(color, str) and color.startswith("#") and len(color) == 9:
        return round(int(color[7:], 16) / 255, 2)
    return 1.0


class SvgChartRenderer:
    """Builds a self-contained SVG document from a ChartSpec"""

    def __init__(self, width: int = 800, height: int = 600):
        self.width = width
        self.height = height
        self.margin_left = 80
        self.margin_right = 30
        self.margin_top = 90
        self.margin_bottom = 90

    def render(self, spec: ChartSpec) -> str:
        colors = THEMES.get(spec.options.theme, THEMES["light"])
        parts = [
            f'<svg xmlns="http://www.w3.org/2000/svg" width="{self.width}" height="{self.height}" '
            f'viewBox="0 0 {self.width} {self.height}">',
            f'<rect width="100%" height="100%" fill="{colors["background"]}"/>',
        ]
        if spec.options.title:
            parts.append(self._text(self.width / 2, 36, spec.options.title, colors["text"],
                                    size=20, anchor="middle", weight="bold"))

        if spec.type in ("pie", "doughnut"):
            parts.extend(self._circular(spec, colors))
        else:
            parts.extend(self._cartesian(spec, colors))

        parts.append("</svg>")
        return "\n".join(parts)

    @staticmethod
    def _text(x, y, content, color, size=12, anchor="start", weight="normal", rotate=None) -> str:
        transform = f' transform="rotate({rotate} {x:.1f} {y:.1f})"' if rotate is not None else ""
        return (
            f'<text x="{x:.1f}" y="{y:.1f}" font-family="{FONT}" font-size="{size}" '
            f'font-weight="{weight}" text-anchor="{anchor}" fill="{color}"{transform}>'
            f'{escape(str(content))}</text>'
        )

    def _legend(self, entries: List[Tuple[str, str]], colors) -> List[str]:
        parts = []
        x = self.margin_left
        y = 62
        for label, color in entries:
            parts.append(f'<rect x="{x:.1f}" y="{y - 10:.1f}" width="12" height="12" fill="{color}"/>')
            parts.append(self._text(x + 18, y, label, colors["text"], size=12))
            x += 30 + 7 * len(str(label))
        return parts

    def _plot_area(self):
        left = self.margin_left
        top = self.margin_top
        width = self.width - self.margin_left - self.margin_right
        height = self.height - self.margin_top - self.margin_bottom
        return left, top, width, height

    def _cartesian(self, spec: ChartSpec, colors) -> List[str]:
        parts = []
        left, top, width, height = self._plot_area()
        bottom = top + height

        values = [_finite(v) for ds in spec.datasets for v in ds.data]
        max_value = max(values + [0.0])
        min_value = min(values + [0.0])
        if max_value == min_value:
            max_value = min_value + 1.0
        span = max_value - min_value

        def y_for(value: float) -> float:
            return bottom - (_finite(value) - min_value) / span * height

        # y axis ticks and grid
        for step in range(6):
            tick = min_value + span * step / 5
            y = y_for(tick)
            if spec.options.grid.display:
                parts.append(f'<line x1="{left}" y1="{y:.1f}" x2="{left + width}" y2="{y:.1f}" '
                             f'stroke="{colors["grid"]}" stroke-width="1"/>')
            parts.append(self._text(left - 8, y + 4, format_value(tick), colors["text"],
                                    size=11, anchor="end"))

        parts.append(f'<line x1="{left}" y1="{top}" x2="{left}" y2="{bottom}" stroke="{colors["text"]}"/>')
        parts.append(f'<line x1="{left}" y1="{bottom}" x2="{left + width}" y2="{bottom}" stroke="{colors["text"]}"/>')

        count = max(len(spec.labels), max((len(ds.data) for ds in spec.datasets), default=0), 1)
        slot = width / count

        def x_for(index: int) -> float:
            return left + slot * index + slot / 2

        rotate = -45 if count > 6 else None
        for index, label in enumerate(spec.labels):
            parts.append(self._text(x_for(index), bottom + 18, label, colors["text"], size=11,
                                    anchor="end" if rotate else "middle", rotate=rotate))

        series_count = len(spec.datasets)
        legend_entries = []
        for series_index, dataset in enumerate(spec.datasets):
            stroke = _solid(dataset.border_color or PALETTE[series_index % len(PALETTE)])
            fill_color = dataset.background_color or stroke
            legend_entries.append((dataset.label, stroke))

            if spec.type == "bar":
                bar_width = slot * 0.8 / series_count
                for index, value in enumerate(dataset.data):
                    x = left + slot * index + slot * 0.1 + bar_width * series_index
                    y = y_for(max(_finite(value), min_value))
                    base = y_for(max(min_value, 0.0))
                    parts.append(
                        f'<rect x="{x:.1f}" y="{min(y, base):.1f}" width="{bar_width:.1f}" '
                        f'height="{abs(base - y):.1f}" fill="{_solid(fill_color)}" '
                        f'fill-opacity="{_opacity(fill_color)}" stroke="{stroke}" '
                        f'stroke-width="{dataset.border_width}"/>'
                    )
            else:
                points = [(x_for(i), y_for(v)) for i, v in enumerate(dataset.data)]
                if spec.type == "area" or dataset.fill:
                    polygon = [(points[0][0], bottom)] + points + [(points[-1][0], bottom)]
                    parts.append(
                        f'<polygon points="{self._points(polygon)}" fill="{_solid(fill_color)}" '
                        f'fill-opacity="{max(_opacity(fill_color), 0.2)}" stroke="none"/>'
                    )
                if spec.type != "scatter" and dataset.show_line:
                    parts.append(f'<polyline points="{self._points(points)}" fill="none" '
                                 f'stroke="{stroke}" stroke-width="{dataset.border_width}"/>')
                radius = dataset.point_radius or (4 if spec.type == "scatter" else 0)
                for x, y in points:
                    if radius:
                        parts.append(f'<circle cx="{x:.1f}" cy="{y:.1f}" r="{radius}" fill="{stroke}"/>')

        if spec.options.legend.display:
            parts.extend(self._legend(legend_entries, colors))
        return parts

    @staticmethod
    def _points(points) -> str:
        return " ".join(f"{x:.1f},{y:.1f}" for x, y in points)

    def _circular(self, spec: ChartSpec, colors) -> List[str]:
        parts = []
        dataset = spec.datasets[0]
        values = [max(_finite(v), 0.0) for v in dataset.data]
        total = sum(values)
        palette = dataset.background_color if isinstance(dataset.background_color, list) else PALETTE

        left, top, width, height = self._plot_area()
        cx = left + width / 2
        cy = top + height / 2
        radius = min(width, height) / 2 - 10
        inner = radius * 0.55 if spec.type == "doughnut" else 0.0

        legend_entries = []
        angle = -math.pi / 2
        for index, (label, value) in enumerate(zip(spec.labels, values)):
            color = _solid(palette[index % len(palette)])
            legend_entries.append((label, color))
            if total <= 0 or value <= 0:
                continue
            sweep = value / total * 2 * math.pi
            parts.append(self._slice(cx, cy, radius, inner, angle, sweep, color, colors["background"]))
            mid = angle + sweep / 2
            label_radius = (radius + inner) / 2 if inner else radius * 0.65
            parts.append(self._text(cx + label_radius * math.cos(mid), cy + label_radius * math.sin(mid) + 4,
                                    f"{value / total * 100:.1f}%", "#ffffff", size=12, anchor="middle"))
            angle += sweep

        if total <= 0:
            parts.append(self._text(cx, cy, "No positive values to display", colors["text"],
                                    size=14, anchor="middle"))
        if spec.options.legend.display:
            parts.extend(self._legend(legend_entries, colors))
        return parts

    @staticmethod
    def _slice(cx, cy, radius, inner, start, sweep, color, stroke) -> str:
        # full circle needs two arcs
        if sweep >= 2 * math.pi - 1e-9:
            ring = (f'<circle cx="{cx:.1f}" cy="{cy:.1f}" r="{radius:.1f}" fill="{color}"/>')
            if inner:
                ring += f'<circle cx="{cx:.1f}" cy="{cy:.1f}" r="{inner:.1f}" fill="{stroke}"/>'
            return ring
        end = start + sweep
        large = 1 if sweep > math.pi else 0
        x1, y1 = cx + radius * math.cos(start), cy + radius * math.sin(start)
        x2, y2 = cx + radius * math.cos(end), cy + radius * math.sin(end)
        if inner:
            ix1, iy1 = cx + inner * math.cos(end), cy + inner * math.sin(end)
            ix2, iy2 = cx + inner * math.cos(start), cy + inner * math.sin(start)
            path = (f"M {x1:.1f} {y1:.1f} A {radius:.1f} {radius:.1f} 0 {large} 1 {x2:.1f} {y2:.1f} "
                    f"L {ix1:.1f} {iy1:.1f} A {inner:.1f} {inner:.1f} 0 {large} 0 {ix2:.1f} {iy2:.1f} Z")
        else:
            path = (f"M {cx:.1f} {cy:.1f} L {x1:.1f} {y1:.1f} "
                    f"A {radius:.1f} {radius:.1f} 0 {large} 1 {x2:.1f} {y2:.1f} Z")
        return f'<path d={quoteattr(path)} fill="{color}" stroke="{stroke}" stroke-width="2"/>'
