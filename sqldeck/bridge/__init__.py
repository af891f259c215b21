"""Language intelligence bridge to the external advisory process."""

from .lsp import LspClient
from .payload import BridgePayload, build_payload, schema_description
from .process import BridgeState, BridgeStatus, LanguageBridge

__all__ = [
    "BridgePayload",
    "BridgeState",
    "BridgeStatus",
    "LanguageBridge",
    "LspClient",
    "build_payload",
    "schema_description",
]
