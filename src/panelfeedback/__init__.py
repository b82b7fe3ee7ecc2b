"""Panel Feedback: human-in-the-loop bridge between an MCP stdio client and an IDE panel."""

__version__ = "2.0.0"
