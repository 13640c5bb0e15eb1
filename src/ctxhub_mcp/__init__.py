"""Capability protocol core.

Backend connectors (adapters) behind one envelope protocol, a connection store
with ownership checks, and a context aggregator that renders a multi-service
context document for LLM input.
"""
