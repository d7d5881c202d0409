"""JSON-RPC gateway: envelope decoding, dispatch, and the stdio/HTTP transports."""
