"""MCP servers for the notifier.

The control server exposes the monitor lifecycle (start, stop, status) over
Model Context Protocol, on stdio by default or streamable HTTP with ``--http``.
Logging goes to stderr because stdout carries the MCP JSON-RPC stream.
"""
