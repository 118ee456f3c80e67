"""
Infrastructure layer: shared cache transport, in-memory fallback, cache
facade and metrics.
"""
