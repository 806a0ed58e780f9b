"""
Configuration Management
========================

Environment-based configuration using Pydantic Settings.

Components:
- settings: Engine defaults and environment configuration
- logging: Structured logging configuration
"""
