"""
Column name inference for untagged record attributes.
"""
import re

_ACRONYM_WORD = re.compile(r'([A-Z]+)([A-Z][a-z])')
_LOWER_UPPER = re.compile(r'([a-z\d])([A-Z])')


def to_underscore(name: str) -> str:
    """Convert a camel-case identifier to snake_case.

    Acronym runs stay together, so `JobID` becomes `job_id` and `ONETwo`
    becomes `one_two`.
    """
    name = _ACRONYM_WORD.sub(r'\1_\2', name)
    name = _LOWER_UPPER.sub(r'\1_\2', name)
    return name.replace('-', '_').lower()
