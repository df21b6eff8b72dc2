"""Shared Pydantic types and validators for reuse across models.

Centralises identifier constraints, range-clamped floats and tag
normalisation so every model speaks the same language.
"""

from __future__ import annotations

import re
from typing import Annotated, Any

from pydantic import AfterValidator, BeforeValidator, Field

# ---------------------------------------------------------------------------
# Tag normalisation
# ---------------------------------------------------------------------------

_TAG_PATTERN = re.compile(r"^[A-Z][A-Z0-9_]{0,63}$")


def normalize_tag(v: Any) -> str:
    """Upper-case and validate a type tag.

    * ``"supports"`` → ``"SUPPORTS"``
    * ``" related-to "`` → ``"RELATED_TO"``
    * ``"9lives"`` → ``ValueError``
    """
    if not isinstance(v, str):
        raise ValueError(f"type tag must be a string, got {type(v).__name__}")
    tag = v.strip().upper().replace("-", "_").replace(" ", "_")
    if not _TAG_PATTERN.fullmatch(tag):
        raise ValueError(f"invalid type tag: {v!r}")
    return tag


TypeTag = Annotated[str, BeforeValidator(normalize_tag)]
"""Caller-definable enumeration tag (memory type, relationship type)."""


# ---------------------------------------------------------------------------
# Numeric types
# ---------------------------------------------------------------------------

UnitFloat = Annotated[float, Field(ge=0.0, le=1.0)]
"""Float in [0.0, 1.0]: importance scores, thresholds."""

Strength = Annotated[float, Field(gt=0.0, le=1.0, allow_inf_nan=False)]
"""Edge strength in (0.0, 1.0]."""

SignedUnitFloat = Annotated[float, Field(ge=-1.0, le=1.0, allow_inf_nan=False)]
"""Float in [-1.0, 1.0]: outcome scores, propagated credit."""

NonNegativeInt = Annotated[int, Field(ge=0)]
"""Integer ≥ 0: counts, versions."""


# ---------------------------------------------------------------------------
# String constraints
# ---------------------------------------------------------------------------


def _strip_required(v: str) -> str:
    if not v.strip():
        raise ValueError("must not be empty or whitespace")
    return v


Identifier = Annotated[str, Field(min_length=1)]
"""Opaque non-empty identifier (memory, relationship, access event)."""

Scope = Annotated[str, Field(min_length=1), AfterValidator(_strip_required)]
"""Tenant / organisation boundary."""

Content = Annotated[str, Field(min_length=1), AfterValidator(_strip_required)]
"""Non-blank memory content."""
