"""
Core Engine
===========

Core modules for turning markup event streams into object graphs.

Modules:
- rules: pattern registry, rule abstraction, rule variants and declarative loading
- engine: the Digester stack machine, its stacks and namespace scopes
- xml: lxml event source and property substitution
- errors: exception taxonomy
"""
