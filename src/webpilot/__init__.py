"""webpilot: a browser automation gateway exposing Playwright as JSON-RPC tools."""

__version__ = "0.1.0"
