from .models import DEFAULT_ANALYSIS_MODEL, get_openai_model

__all__ = [
    "DEFAULT_ANALYSIS_MODEL",
    "get_openai_model",
]
