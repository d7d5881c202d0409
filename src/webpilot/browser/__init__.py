"""Browser engine, session registry and page actions behind the gateway tools."""
