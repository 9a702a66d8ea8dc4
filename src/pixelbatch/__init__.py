"""pixelbatch: server-side batch image generation scheduler."""

__version__ = "0.1.0"
