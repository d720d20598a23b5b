"""Refract: reflective prompts and themes for personal writing."""

__version__ = "0.1.0"
