"""
conductor - turn coordination for streaming, tool-using LLM agents
"""

import warnings
from importlib.metadata import PackageNotFoundError, version

# litellm warns on every call for models missing from its pricing table.
warnings.filterwarnings(
    "ignore",
    message="Cost calculation failed.*",
    category=UserWarning,
)

try:
    __version__ = version("conductor-agent")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"
__logo__ = "🎼"
