"""Shared utilities: the LLM boundary and wire-format base model."""
