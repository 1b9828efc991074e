from config.settings import LLMProvider, Settings, settings

__all__ = ["LLMProvider", "Settings", "settings"]
