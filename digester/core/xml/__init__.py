"""
XML Integration
===============

Upstream collaborators of the engine.

Components:
- source: lxml iterparse driver producing engine events
- properties: ${name} substitution hook
"""
