"""
Execution Engine
================

Components:
- digester: the Digester stack machine
- stack: array-backed stack
- namespaces: namespace prefix scopes
"""
