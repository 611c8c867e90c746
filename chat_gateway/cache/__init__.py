from .context_window import ContextWindowStore

__all__ = ["ContextWindowStore"]
