"""Local LLM agent runtime: orchestration loop, retrieval, tools and vector store supervision."""

__version__ = "1.0.0"
