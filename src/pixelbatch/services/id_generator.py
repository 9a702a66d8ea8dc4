"""Prefixed random ids for jobs, images and callbacks."""

import uuid

BATCH_PREFIX = "batch_"
IMAGE_PREFIX = "img_"
CALLBACK_PREFIX = "cb_"


def generate_id(prefix: str) -> str:
    """Return ``prefix`` followed by 16 hex chars of a random UUID, e.g. ``batch_a1b2c3d4e5f6a7b8``."""
    return f"{prefix}{uuid.uuid4().hex[:16]}"
