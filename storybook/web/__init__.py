"""
HTTP surface of the storybook generator.
"""

from .app import create_app, main

__all__ = ["create_app", "main"]
