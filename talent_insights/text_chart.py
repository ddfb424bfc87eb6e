"""Plain-text bar chart, the last resort when no image can be produced"""
import math
from typing import List

from talent_insights.models import ChartSpec

BAR_WIDTH = 20
LABEL_WIDTH = 15


def _format_number(value: float) -> str:
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{value:,.2f}"


def render_text_chart(spec: ChartSpec) -> str:
    """Render the first dataset as rows of filled/unfilled block characters"""
    title = spec.options.title or "Data Chart"
    lines: List[str] = [f"📊 **{title}** ({spec.type})", ""]

    if spec.labels and spec.datasets:
        values = [0.0 if v is None or math.isnan(v) else v for v in spec.datasets[0].data]
        max_value = max(values, default=0.0)

        lines.append("```")
        for label, value in zip(spec.labels, values):
            ratio = value / max_value if max_value > 0 else 0.0
            filled = max(0, min(BAR_WIDTH, round(ratio * BAR_WIDTH)))
            bar = "█" * filled + "░" * (BAR_WIDTH - filled)
            lines.append(f"{str(label).ljust(LABEL_WIDTH)} │{bar}│ {_format_number(value)}")
        lines.append("```")

    if len(spec.datasets) > 1:
        lines.append("")
        lines.append("**Datasets:**")
        for dataset in spec.datasets:
            lines.append(f"• {dataset.label}: {len(dataset.data)} data points")

    return "\n".join(lines) + "\n"
