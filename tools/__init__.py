from tools.registry import ToolRegistry, ToolSpec, build_default_registry
from tools.research import ResearchPipeline
from tools.trade_study_tools import TradeStudyTools
from tools.web_content import WebContentFetcher
from tools.web_search import WebSearchTool

__all__ = [
    "ToolRegistry",
    "ToolSpec",
    "build_default_registry",
    "ResearchPipeline",
    "TradeStudyTools",
    "WebContentFetcher",
    "WebSearchTool",
]
