"""Shared plumbing: errors, correlation ids, telemetry, tool instrumentation, HTTP."""
