"""Chart rendering with an ordered list of backends: canvas PNG, then SVG"""
import asyncio
import base64
import io
import logging
import sys
from typing import List, Optional

import numpy as np
import matplotlib
matplotlib.use('Agg')
from matplotlib.backends.backend_agg import FigureCanvasAgg
from matplotlib.figure import Figure
from matplotlib.ticker import FuncFormatter
import seaborn as sns

from talent_insights.config import ChartSettings
from talent_insights.exceptions import ChartRenderError
from talent_insights.models import ChartSpec, RenderedChart
from talent_insights.svg_renderer import THEMES, SvgChartRenderer, format_value

logger = logging.getLogger(__name__)

READY = "ready"
UNAVAILABLE = "unavailable"


def is_server_context() -> bool:
    """False in browser-hosted interpreters, where no bitmap canvas exists"""
    return sys.platform not in ("emscripten", "wasi")


class CanvasBackend:
    """matplotlib Agg backend producing PNG bitmaps"""
    name = "canvas"
    media_type = "image/png"

    def __init__(self, settings: ChartSettings):
        self.settings = settings

    def availability(self) -> str:
        """Return "ready" or "unavailable"; checked again on every render"""
        if not is_server_context():
            logger.info("Not in a server context, canvas unavailable")
            return UNAVAILABLE
        try:
            FigureCanvasAgg(Figure(figsize=(1, 1), dpi=10))
        except Exception as e:
            logger.warning(f"Canvas backend failed to initialize: {str(e)}")
            return UNAVAILABLE
        return READY

    def render(self, spec: ChartSpec) -> str:
        theme = THEMES.get(spec.options.theme, THEMES["light"])
        dpi = self.settings.dpi
        fig = Figure(figsize=(self.settings.width / dpi, self.settings.height / dpi),
                     dpi=dpi, facecolor=theme["background"])
        FigureCanvasAgg(fig)
        ax = fig.add_subplot(111)
        ax.set_facecolor(theme["background"])

        if spec.is_circular:
            self._create_pie_chart(spec, ax)
        elif spec.type == "scatter":
            self._create_scatter_chart(spec, ax)
        elif spec.type in ("line", "area"):
            self._create_line_chart(spec, ax)
        else:
            self._create_bar_chart(spec, ax)

        self._apply_theme(spec, ax, theme)
        if spec.options.title:
            ax.set_title(spec.options.title, pad=20, fontsize=16, fontweight='bold', color=theme["text"])

        buffer = io.BytesIO()
        fig.tight_layout()
        fig.savefig(buffer, format="png", facecolor=theme["background"])
        return base64.b64encode(buffer.getvalue()).decode("ascii")

    def _palette(self, count: int) -> List:
        return sns.color_palette(self.settings.colors, max(count, 1))

    def _create_bar_chart(self, spec: ChartSpec, ax):
        positions = np.arange(len(spec.labels))
        width = 0.8 / len(spec.datasets)
        palette = self._palette(len(spec.datasets))
        for index, dataset in enumerate(spec.datasets):
            color = dataset.background_color if isinstance(dataset.background_color, str) else palette[index]
            ax.bar(positions + index * width - 0.4 + width / 2, dataset.data, width,
                   color=color, edgecolor=dataset.border_color or palette[index],
                   linewidth=dataset.border_width, label=dataset.label)
        ax.set_xticks(positions)
        ax.set_xticklabels(spec.labels, rotation=45 if len(spec.labels) > 6 else 0,
                           ha='right' if len(spec.labels) > 6 else 'center')

    def _create_line_chart(self, spec: ChartSpec, ax):
        positions = np.arange(len(spec.labels))
        palette = self._palette(len(spec.datasets))
        for index, dataset in enumerate(spec.datasets):
            color = dataset.border_color or palette[index]
            ax.plot(positions, dataset.data, color=color, linewidth=max(dataset.border_width - 1, 1),
                    marker='o' if dataset.point_radius else None, markersize=dataset.point_radius + 2,
                    label=dataset.label)
            if dataset.fill or spec.type == "area":
                ax.fill_between(positions, dataset.data, color=color, alpha=0.2)
        ax.set_xticks(positions)
        ax.set_xticklabels(spec.labels, rotation=45 if len(spec.labels) > 6 else 0,
                           ha='right' if len(spec.labels) > 6 else 'center')

    def _create_scatter_chart(self, spec: ChartSpec, ax):
        palette = self._palette(len(spec.datasets))
        for index, dataset in enumerate(spec.datasets):
            x_values = _numeric_axis(spec.labels, len(dataset.data))
            ax.scatter(x_values, dataset.data, alpha=0.7, s=(dataset.point_radius or 4) * 12,
                       color=dataset.border_color or palette[index], label=dataset.label)

    def _create_pie_chart(self, spec: ChartSpec, ax):
        dataset = spec.datasets[0]
        colors = dataset.background_color if isinstance(dataset.background_color, list) else None
        wedgeprops = {"width": 0.45} if spec.type == "doughnut" else None
        ax.pie(dataset.data, labels=spec.labels, colors=colors, autopct='%1.1f%%',
               startangle=90, counterclock=False, wedgeprops=wedgeprops)
        ax.axis('equal')

    def _apply_theme(self, spec: ChartSpec, ax, theme):
        if not spec.is_circular:
            ax.yaxis.set_major_formatter(FuncFormatter(lambda value, _: format_value(value)))
            ax.tick_params(colors=theme["text"])
            for spine in ax.spines.values():
                spine.set_color(theme["grid"])
            sns.despine(ax=ax)
            if spec.options.grid.display:
                ax.grid(True, color=theme["grid"], alpha=0.8)
                ax.set_axisbelow(True)
            else:
                ax.grid(False)
        else:
            for text in ax.texts:
                text.set_color(theme["text"])

        if spec.options.legend.display:
            location = _legend_location(spec.options.legend.position)
            if spec.is_circular:
                legend = ax.legend(spec.labels, loc=location, frameon=False)
            else:
                legend = ax.legend(loc=location, frameon=False)
            for text in legend.get_texts():
                text.set_color(theme["text"])


class SvgBackend:
    """Deterministic vector fallback; always available"""
    name = "svg"
    media_type = "image/svg+xml"

    def __init__(self, settings: ChartSettings):
        self.renderer = SvgChartRenderer(settings.width, settings.height)

    def availability(self) -> str:
        return READY

    def render(self, spec: ChartSpec) -> str:
        document = self.renderer.render(spec)
        return base64.b64encode(document.encode("utf-8")).decode("ascii")


def _numeric_axis(labels: List[str], count: int) -> List[float]:
    try:
        values = [float(label) for label in labels]
    except (TypeError, ValueError):
        return list(range(count))
    return values if len(values) == count else list(range(count))


def _legend_location(position: str) -> str:
    return {"top": "upper center", "bottom": "lower center",
            "left": "center left", "right": "center right"}.get(position, "best")


class ChartRenderer:
    """Tries each backend in order until one produces an image"""

    def __init__(self, settings: Optional[ChartSettings] = None, backends: Optional[List] = None):
        self.settings = settings or ChartSettings()
        self.backends = backends if backends is not None else [
            CanvasBackend(self.settings),
            SvgBackend(self.settings),
        ]

    async def render(self, spec: ChartSpec) -> RenderedChart:
        """Render a chart spec to a base64 image payload

        Raises:
            ChartSpecError: If labels and datasets disagree in length
            ChartRenderError: If every backend fails
        """
        spec.validate_lengths()

        failures = []
        for backend in self.backends:
            if backend.availability() != READY:
                failures.append(f"{backend.name}: unavailable")
                continue
            try:
                payload = await asyncio.to_thread(backend.render, spec)
            except Exception as e:
                logger.warning(f"{backend.name} chart rendering failed, trying next backend: {str(e)}")
                failures.append(f"{backend.name}: {e}")
                continue
            logger.info(f"Chart rendered with {backend.name} backend")
            return RenderedChart(payload=payload, media_type=backend.media_type, backend=backend.name)

        raise ChartRenderError("All chart renderers failed", failures)
