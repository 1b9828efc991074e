from agents.analyst import TradeStudyAnalyst, fallback_analysis
from agents.base import (
    AgentStep,
    Alternative,
    AnalysisGoal,
    Criterion,
    PublishTargets,
    ResearchDepth,
    ResearchFinding,
    ScoredAlternative,
    StepStatus,
    TradeStudy,
    TradeStudyAnalysis,
    TradeStudyStatus,
    extract_json,
    retry_structured_output,
    validate_output,
)

__all__ = [
    "TradeStudyAnalyst",
    "fallback_analysis",
    "AgentStep",
    "Alternative",
    "AnalysisGoal",
    "Criterion",
    "PublishTargets",
    "ResearchDepth",
    "ResearchFinding",
    "ScoredAlternative",
    "StepStatus",
    "TradeStudy",
    "TradeStudyAnalysis",
    "TradeStudyStatus",
    "extract_json",
    "retry_structured_output",
    "validate_output",
]
