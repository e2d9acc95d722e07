# Cosimo MCP Server
#
# Modular package structure:
# - config.py: Settings (pydantic-settings) and key-derivation constants
# - logging.py: structlog configuration
# - utils.py: Error types, canonical JSON, clock and id helpers
# - models.py: Pydantic models for entities, tool arguments and identities
# - crypto.py: Envelope cipher and passphrase verifier
# - codec.py: Stored blob <-> Graph decoding and encoding
# - graph.py: Graph mutation functions
# - store.py: Blob and account stores
# - auth.py: Identity resolution and encryption enablement
# - tools.py: Tool catalog and ToolDispatcher
# - protocol.py: JSON-RPC method table and stdio line transport
# - sessions.py: Session registry for the SSE transport
# - web.py: Starlette application
# - main.py: Entry points
