"""Exception hierarchy for the chat analytics pipeline"""
from typing import List, Optional


class PipelineError(Exception):
    """Base error for a failed pipeline stage"""
    stage = "pipeline"

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class SynthesisError(PipelineError):
    """The SQL generation model call failed"""
    stage = "synthesize"


class QueryRejectedError(PipelineError):
    """Generated SQL did not pass the read-only check"""
    stage = "validate"


class QueryExecutionError(PipelineError):
    """The read-only store raised while running a query"""
    stage = "execute"


class UnknownQueryError(PipelineError):
    """A named query is not in the allow-list"""
    stage = "execute"


class ChartMappingError(PipelineError):
    """Result rows could not be turned into chart data"""
    stage = "map_chart"


class ChartSpecError(PipelineError):
    """A chart spec breaks the labels/datasets length contract"""
    stage = "render_chart"


class ChartRenderError(PipelineError):
    """Every renderer tier failed"""
    stage = "render_chart"

    def __init__(self, message: str, failures: Optional[List[str]] = None):
        self.failures = failures or []
        super().__init__(message, details={"failures": self.failures})
