"""Flow Analyst — recursive, memoized step-by-step execution tracing of methods."""

from src.agents.flow_analyst.agent import FlowAnalystAgent
from src.agents.flow_analyst.analyzer import FlowAnalyzer
from src.agents.flow_analyst.models import FlowAnalysisConfig, FlowAnalysisResult, MethodAnalysis, MethodKey

__all__ = [
    "FlowAnalystAgent",
    "FlowAnalyzer",
    "FlowAnalysisConfig",
    "FlowAnalysisResult",
    "MethodAnalysis",
    "MethodKey",
]
