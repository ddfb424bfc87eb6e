"""Pydantic models for query plans, chart specs and chat payloads"""
from typing import Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from talent_insights.exceptions import ChartSpecError

GraphType = Literal["bar", "line", "pie", "doughnut", "area", "scatter"]
Theme = Literal["light", "dark"]

CIRCULAR_CHART_TYPES = ("pie", "doughnut")


class QueryFilter(BaseModel):
    """Optional narrowing extracted from the user message"""
    model_config = ConfigDict(frozen=True)

    influencer: Optional[str] = None
    keyword: Optional[str] = None
    limit: Optional[int] = Field(
        default=None,
        description="Top-N limit when the user asks for one"
    )

    @field_validator("limit", mode="before")
    @classmethod
    def _parse_limit(cls, value):
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return int(value)
        text = str(value).strip()
        return int(text) if text.isdigit() else None


class ChartOptionsHint(BaseModel):
    """Presentation hints requested alongside a graph"""
    model_config = ConfigDict(frozen=True)

    theme: Optional[Theme] = None
    show_legend: Optional[bool] = None
    show_grid: Optional[bool] = None

    @field_validator("theme", "show_legend", "show_grid", mode="wrap")
    @classmethod
    def _unknown_means_unset(cls, value, handler):
        try:
            return handler(value)
        except ValidationError:
            return None


class QueryPlan(BaseModel):
    """Structured intent extracted from a chat message"""
    model_config = ConfigDict(frozen=True)

    intent: Literal["graph_request", "other"] = Field(
        description="graph_request when the user asks for a chart, otherwise other"
    )
    graph_type: GraphType = "bar"
    entity_type: Literal["sport", "influencer", "post", "other"] = "other"
    metric: str = "other"
    comparison: Literal["comparison", "trend", "distribution", "correlation", "none"] = "none"
    time_period: Literal["weekly", "monthly", "all_time", "none"] = "none"
    group_by: Optional[str] = None
    filter: Optional[QueryFilter] = None
    title_suggestion: str = "Generated Graph"
    chart_options: ChartOptionsHint = Field(default_factory=ChartOptionsHint)

    @field_validator("graph_type", "entity_type", "metric", "comparison", "time_period",
                     "group_by", "filter", "title_suggestion", "chart_options", mode="wrap")
    @classmethod
    def _invalid_means_default(cls, value, handler, info):
        """Null or unrecognised hints fall back to the field default; only intent is strict"""
        default = cls.model_fields[info.field_name].get_default(call_default_factory=True)
        if value is None:
            return default
        try:
            return handler(value)
        except ValidationError:
            return default

    @classmethod
    def other(cls) -> "QueryPlan":
        """Plan used whenever classification is ambiguous"""
        return cls(intent="other")

    @property
    def is_graph_request(self) -> bool:
        return self.intent == "graph_request"


class ChartDataset(BaseModel):
    """One data series plus its styling"""
    label: str
    data: List[float]
    background_color: Optional[Union[str, List[str]]] = None
    border_color: Optional[str] = None
    border_width: int = 1
    fill: bool = False
    tension: float = 0.0
    point_radius: int = 0
    show_line: bool = True


class LegendOptions(BaseModel):
    display: bool = True
    position: Literal["top", "bottom", "left", "right"] = "top"


class GridOptions(BaseModel):
    display: bool = True


class ChartSpecOptions(BaseModel):
    title: Optional[str] = None
    theme: Theme = "light"
    legend: LegendOptions = Field(default_factory=LegendOptions)
    grid: GridOptions = Field(default_factory=GridOptions)
    responsive: bool = True
    animation: bool = False


class ChartSpec(BaseModel):
    """Backend-independent chart description shared by mapper and renderer"""
    type: GraphType
    labels: List[str] = Field(default_factory=list)
    datasets: List[ChartDataset] = Field(default_factory=list)
    options: ChartSpecOptions = Field(default_factory=ChartSpecOptions)

    @property
    def is_empty(self) -> bool:
        return len(self.labels) == 0

    @property
    def is_circular(self) -> bool:
        return self.type in CIRCULAR_CHART_TYPES

    def validate_lengths(self) -> None:
        """Raise ChartSpecError if this chart cannot be rendered safely"""
        errors = []
        if not self.datasets:
            errors.append("At least one dataset is required")
        if self.type != "scatter" and not self.labels:
            errors.append("Labels are required and cannot be empty")
        for index, dataset in enumerate(self.datasets):
            if not dataset.data:
                errors.append(f"Dataset {index} data cannot be empty")
            elif self.type != "scatter" and len(dataset.data) != len(self.labels):
                errors.append(f"Dataset {index} data length must match labels length")
        if errors:
            raise ChartSpecError(f"Invalid chart data: {', '.join(errors)}")


class RenderedChart(BaseModel):
    """Encoded chart image, consumed immediately by the response"""
    payload: str
    media_type: str
    backend: str


class ChatMessage(BaseModel):
    role: str
    content: str = ""

    @field_validator("content", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return "" if value is None else value


class ChatRequest(BaseModel):
    """Inbound body of the chat endpoint"""
    messages: List[ChatMessage]

    @property
    def last_message(self) -> str:
        return self.messages[-1].content if self.messages else ""


class ChatResponse(BaseModel):
    """Final response model for API/CLI"""
    model_config = ConfigDict(populate_by_name=True)

    content: str
    metadata: Optional[Dict[str, Any]] = Field(default=None, alias="_metadata")

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
