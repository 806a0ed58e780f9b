"""
Data Models
===========

Pydantic models for run results and document locations.

Models:
- schemas: ParseResult, DocumentLocation, DigesterState
"""
