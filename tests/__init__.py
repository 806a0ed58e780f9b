"""
Test Suite
==========

Test suite matching the digester/ package structure.

Test Categories:
- unit: Unit tests for individual components
- utils: Shared assertions, sample documents and mock rules
"""
