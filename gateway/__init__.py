"""
Caching HTTP/JSON-RPC gateway for cryptocurrency daemon nodes.

Submodules are imported explicitly (``gateway.service``, ``gateway.api``);
this package does not re-export them so that low-level packages such as
``error_handling`` can import ``gateway.exceptions`` without pulling in the
whole gateway.
"""
