"""
Observability module for the conversation intelligence core.

Provides structured logging with per-analysis correlation ids.
"""
