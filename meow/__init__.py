"""Meow - a streaming, tool-using chat agent for the terminal."""

__version__ = "0.1.0"

from meow.config import Config

__all__ = ["Config", "__version__"]
