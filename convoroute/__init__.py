"""
convoroute - quota-aware LLM dispatch for conversational turns.

This package routes a user's chat turn to one of several weighted LLM
providers, assembles a token-budgeted conversation context, narrows it and
picks a model through auxiliary "agent" calls, enforces per-user usage and
spending quotas, and retries transient provider failures.
"""

__version__ = "0.1.0"
