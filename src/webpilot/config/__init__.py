from .gateway_config import (
    CredentialConfig,
    EngineConfig,
    GatewayConfig,
    HostRule,
    HttpConfig,
    SessionConfig,
    TimeoutConfig,
    load_gateway_config,
)

__all__ = [
    "CredentialConfig",
    "EngineConfig",
    "GatewayConfig",
    "HostRule",
    "HttpConfig",
    "SessionConfig",
    "TimeoutConfig",
    "load_gateway_config",
]
