"""Map query results onto a backend-independent ChartSpec"""
import logging
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from talent_insights.exceptions import ChartMappingError
from talent_insights.models import (
    ChartDataset, ChartSpec, ChartSpecOptions, GridOptions, LegendOptions, QueryPlan
)

logger = logging.getLogger(__name__)

PRIMARY_COLOR = "#4F46E5"

CATEGORICAL_PALETTE = [
    "#4F46E5", "#06B6D4", "#10B981", "#F59E0B",
    "#EF4444", "#8B5CF6", "#6B7280", "#EC4899",
]

SERIES_PALETTE = ["#4F46E5", "#06B6D4", "#10B981", "#F59E0B"]


def to_numbers(series: pd.Series, integer: bool = False) -> List[float]:
    """Parse a column as numbers; unparseable cells become NaN"""
    numbers = pd.to_numeric(series, errors="coerce").astype(float)
    if integer:
        numbers = np.trunc(numbers)
    return numbers.tolist()


def to_labels(series: pd.Series, prefix: str = "") -> List[str]:
    return [f"{prefix}{value}" for value in series.tolist()]


def humanize_column(name: str) -> str:
    return str(name).replace("_", " ").upper()


def default_dataset(label: str, data: List[float], graph_type: str) -> ChartDataset:
    """Single-series dataset with the default styling for a chart type"""
    if graph_type == "bar":
        return ChartDataset(label=label, data=data, background_color=PRIMARY_COLOR + "80",
                            border_color=PRIMARY_COLOR, border_width=1)
    if graph_type in ("line", "area"):
        return ChartDataset(label=label, data=data, background_color=PRIMARY_COLOR + "20",
                            border_color=PRIMARY_COLOR, border_width=3,
                            fill=graph_type == "area", tension=0.4, point_radius=4)
    if graph_type == "scatter":
        return ChartDataset(label=label, data=data, background_color=PRIMARY_COLOR,
                            border_color=PRIMARY_COLOR, point_radius=4, show_line=False)
    return ChartDataset(label=label, data=data, background_color=list(CATEGORICAL_PALETTE))


class CircularStrategy:
    """pie/doughnut: first column labels, second column values"""

    def map_rows(self, df: pd.DataFrame, plan: QueryPlan) -> ChartSpec:
        if len(df.columns) < 2:
            raise ChartMappingError("Dynamic query results could not be mapped to graph data.")
        labels = to_labels(df.iloc[:, 0])
        values = to_numbers(df.iloc[:, 1])
        dataset = ChartDataset(
            label=plan.metric,
            data=values,
            background_color=list(CATEGORICAL_PALETTE),
        )
        return ChartSpec(type=plan.graph_type, labels=labels, datasets=[dataset])


class SingleSeriesStrategy:
    """Canonical column mappings first, then first/second column"""

    # (entity_type, metric) -> (label column, value column, label prefix)
    CANONICAL_COLUMNS = {
        ("sport", "follower_count"): ("sport", "follower_count", ""),
        ("influencer", "follower_count"): ("username", "follower_count", "@"),
    }

    def map_rows(self, df: pd.DataFrame, plan: QueryPlan) -> ChartSpec:
        labels, values = self._canonical(df, plan) or self._generic(df)
        dataset = default_dataset(humanize_column(plan.metric), values, plan.graph_type)
        return ChartSpec(type=plan.graph_type, labels=labels, datasets=[dataset])

    def _canonical(self, df: pd.DataFrame, plan: QueryPlan):
        mapping = self.CANONICAL_COLUMNS.get((plan.entity_type, plan.metric))
        if mapping is None:
            return None
        label_col, value_col, prefix = mapping
        if label_col not in df.columns or value_col not in df.columns:
            logger.warning(
                f"Expected columns {label_col}/{value_col} missing, using generic mapping"
            )
            return None
        return to_labels(df[label_col], prefix), to_numbers(df[value_col], integer=True)

    def _generic(self, df: pd.DataFrame):
        if len(df.columns) < 2:
            raise ChartMappingError("Dynamic query results could not be mapped to graph data.")
        return to_labels(df.iloc[:, 0]), to_numbers(df.iloc[:, 1])


class LineStrategy(SingleSeriesStrategy):
    """Trend lines get one dataset per value column"""

    def map_rows(self, df: pd.DataFrame, plan: QueryPlan) -> ChartSpec:
        if plan.comparison != "trend":
            return super().map_rows(df, plan)
        if len(df.columns) < 2:
            raise ChartMappingError("Dynamic query results could not be mapped to graph data.")

        datasets = []
        for index, column in enumerate(df.columns[1:]):
            color = SERIES_PALETTE[index % len(SERIES_PALETTE)]
            datasets.append(ChartDataset(
                label=humanize_column(column),
                data=to_numbers(df[column]),
                border_color=color,
                background_color=color + "20",
                border_width=3,
                fill=plan.graph_type == "area",
                tension=0.4,
                point_radius=4,
            ))
        return ChartSpec(type=plan.graph_type, labels=to_labels(df.iloc[:, 0]), datasets=datasets)


class ChartDataMapper:
    """Turns a query result into a ChartSpec using a per-chart-type strategy"""

    def __init__(self, strategies: Optional[Dict[str, object]] = None):
        circular = CircularStrategy()
        single = SingleSeriesStrategy()
        self.strategies = strategies or {
            "pie": circular,
            "doughnut": circular,
            "line": LineStrategy(),
            "bar": single,
            "area": single,
            "scatter": single,
        }

    def map(self, result: pd.DataFrame, plan: QueryPlan) -> ChartSpec:
        """Map rows to a chart spec

        Args:
            result: Query result; first column is the label axis
            plan: The query plan the result was produced for

        Returns:
            ChartSpec. Labels are empty when the result has no rows.

        Raises:
            ChartMappingError: If a non-empty result has too few columns
        """
        options = self._options(plan)
        if len(result) == 0:
            logger.info("Query returned no rows")
            return ChartSpec(type=plan.graph_type, options=options)

        logger.info(
            f"Mapping {len(result)} rows for entity_type={plan.entity_type} "
            f"metric={plan.metric} chart_type={plan.graph_type}"
        )
        spec = self.strategies[plan.graph_type].map_rows(result, plan)
        return spec.model_copy(update={"options": options})

    def _options(self, plan: QueryPlan) -> ChartSpecOptions:
        hints = plan.chart_options
        return ChartSpecOptions(
            title=plan.title_suggestion,
            theme=hints.theme or "light",
            legend=LegendOptions(
                display=True if hints.show_legend is None else hints.show_legend,
                position="top",
            ),
            grid=GridOptions(display=True if hints.show_grid is None else hints.show_grid),
            responsive=True,
            animation=False,
        )
