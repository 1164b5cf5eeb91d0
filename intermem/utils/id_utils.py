"""
Prefix-tagged identifier generation.
"""

import uuid

INTERACTION_PREFIX = 'int'
MEMORY_PREFIX = 'mem'
DOCUMENT_PREFIX = 'doc'


def generate_id(prefix: str) -> str:
    """Generate a collision-resistant identifier of the form ``<prefix>_<32 hex chars>``."""
    return f'{prefix}_{uuid.uuid4().hex}'


def generate_interaction_id() -> str:
    return generate_id(INTERACTION_PREFIX)


def generate_memory_id() -> str:
    return generate_id(MEMORY_PREFIX)


def has_prefix(identifier: str, prefix: str) -> bool:
    """Check whether an identifier carries the given prefix tag."""
    return bool(identifier) and identifier.startswith(f'{prefix}_') and len(identifier) > len(prefix) + 1
