"""
Rules
=====

Components:
- base: Rule hooks and RuleSet bundles
- registry: pattern registry with exact and wildcard matching
- actions: stock rule variants
- loader: YAML/JSON rule definitions
"""
