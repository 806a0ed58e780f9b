"""
Shared Utilities
================

Common helpers used across the engine.

Modules:
- introspection: Bindable capability, property assignment and method invocation
"""
