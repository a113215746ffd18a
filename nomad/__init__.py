"""Conversational multi-city trip planner."""
