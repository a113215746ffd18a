"""Parsing, classification, generation and modification agents."""
