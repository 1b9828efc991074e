from orchestrator.agent import (
    AgentGoal,
    AgentRequest,
    AgentResult,
    ResearchParams,
    ResearchTradeStudyAgent,
    TradeStudyAgent,
)
from orchestrator.export import ExportCoordinator
from orchestrator.generator import (
    GenerationInput,
    GenerationResult,
    TradeStudyGenerator,
    compute_weighted_total,
    normalize_weights,
    select_winner,
)

__all__ = [
    "AgentGoal",
    "AgentRequest",
    "AgentResult",
    "ResearchParams",
    "TradeStudyAgent",
    "ResearchTradeStudyAgent",
    "ExportCoordinator",
    "GenerationInput",
    "GenerationResult",
    "TradeStudyGenerator",
    "compute_weighted_total",
    "normalize_weights",
    "select_winner",
]
