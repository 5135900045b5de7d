"""Flow Analyst configuration."""

import os

from pydantic import Field

from src.shared.config import BaseAgentSettings
from src.shared.llms import DEFAULT_ANALYSIS_MODEL


class FlowAnalystSettings(BaseAgentSettings):
    """Settings specific to the Flow Analyst."""

    agent_name: str = "flow_analyst"
    host: str = "0.0.0.0"
    port: int = 8005

    workspace_root: str = "."
    analysis_model: str = os.getenv("DEFAULT_MODEL", DEFAULT_ANALYSIS_MODEL)

    # Recursion limits
    max_depth: int = 5
    max_total_methods: int = 15
    per_call_timeout_s: float = 60.0
    max_suggestions: int = 5

    # Session tier cache
    enable_cache: bool = True
    cache_ttl_s: float = 300.0
    cache_max_entries: int = Field(default=100, ge=1)

    # Durable tier cache (relative paths resolve against workspace_root)
    enable_persistent_cache: bool = True
    persistent_cache_path: str = ".flow-analysis/flow-analysis-cache.json"
    persistent_retention_days: int = 30
    persistent_max_entries: int = Field(default=1000, ge=1)

    class Config(BaseAgentSettings.Config):
        env_prefix = "FLOW_ANALYST_"
