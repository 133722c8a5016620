"""
Headless Auth - OAuth device flow bridge between headless MCP clients and GitHub.
"""

__version__ = "0.1.0"
