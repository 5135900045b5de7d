import os

from dotenv import load_dotenv
from langchain_openai import ChatOpenAI

load_dotenv()

DEFAULT_ANALYSIS_MODEL = "gpt-5.2-2025-12-11"


# ─── Oracle Model Factory ────────────────────────────────


def get_openai_model(model_name: str | None = None, max_retries: int = 2) -> ChatOpenAI:
    """Streaming chat model that answers method analysis prompts.

    ``OPENAI_BASE_URL`` points it at any OpenAI-compatible endpoint.
    """
    return ChatOpenAI(
        model=model_name or os.getenv("DEFAULT_MODEL", DEFAULT_ANALYSIS_MODEL),
        api_key=os.getenv("OPENAI_API_KEY"),
        base_url=os.getenv("OPENAI_BASE_URL") or None,
        max_retries=max_retries,
        streaming=True,
    )
