"""liteagent - a tool-using chat agent with a human authorization gate."""

__version__ = "0.1.0"
