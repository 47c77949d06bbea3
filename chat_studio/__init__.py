"""Chat Studio: a local chat client for self-hosted LLM inference servers."""

__version__ = "0.1.0"
