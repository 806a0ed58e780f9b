"""
xml-digester
============

Rule-driven construction of object graphs from XML event streams.

A registry binds element path patterns to rules; the Digester engine walks
the document events, fires the matched rules at each open and close, and
returns the root of the object graph the rules built.

This package provides:
- Pattern registry with exact and wildcard matching
- Stock rules for object creation, property binding, linking and method calls
- The Digester stack machine fed by an lxml event source
- Declarative rule definitions in JSON or YAML
"""

__version__ = "1.0.0"
__author__ = "xml-digester Team"
