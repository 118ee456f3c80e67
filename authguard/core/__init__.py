"""
Core layer: configuration, logging, exceptions, interfaces and resilience
primitives shared by every other authguard layer.
"""
