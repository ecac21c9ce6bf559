"""Budget configuration and run statistics.

Limits are resolved once from an override map. Every key accepts only a
finite positive number (floored to an int); anything else silently falls
back to the compiled default, because the host environment that supplies
overrides is not under our control.

Usage:
    from probe_budget.core.budget.config import get_budget_context

    context = get_budget_context()
    context.limits.max_chars  # 6000 unless overridden

Overrides come either from an explicit configure_budget() call or, when none
was made before first access, from the PROBE_BUDGET environment variable
holding an inline YAML/JSON mapping, e.g. PROBE_BUDGET='{MAX_CHARS: 4000}'.
"""

from __future__ import annotations

import logging
import math
import os
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from probe_budget.core.budget.formatter import utf16_len

logger = logging.getLogger(__name__)

__all__ = [
    "BUDGET_ENV_VAR",
    "BudgetContext",
    "BudgetLimits",
    "BudgetSource",
    "RunStats",
    "configure_budget",
    "get_budget_context",
    "get_budget_info",
]

BUDGET_ENV_VAR = "PROBE_BUDGET"

BudgetSource = Literal["default", "override"]


def _utc_timestamp() -> str:
    """Return current UTC time as ISO-8601 with millisecond precision."""
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _pick_budget_number(candidate: Any, fallback: int) -> int:
    """Accept a finite positive number floored to int, else return fallback."""
    if isinstance(candidate, bool) or not isinstance(candidate, (int, float)):
        return fallback
    if isinstance(candidate, float) and not math.isfinite(candidate):
        return fallback
    if candidate <= 0:
        return fallback
    floored = math.floor(candidate)
    # 0 < x < 1 floors to 0, which no limit can honor
    if floored < 1:
        return fallback
    return floored


class BudgetLimits(BaseModel):
    """Effective numeric limits for one budget context.

    Field aliases are the override-map keys (MAX_CHARS, ...). Values that
    fail the positivity check are replaced by the field default instead of
    raising a ValidationError.

    Attributes:
        max_chars: Output size ceiling in UTF-16 code units.
        value_max_chars: Per-value clip length (dataAttrs, kv values, text).
        max_nodes: Structural node budget and root cap.
        max_screenshots: Screenshot cap for capture collaborators.
        clip_max_width: Screenshot clip width for capture collaborators.
        clip_max_height: Screenshot clip height for capture collaborators.
        max_depth: First depth cap tried by the depth-fold stage.

    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    max_chars: int = Field(default=6000, alias="MAX_CHARS")
    value_max_chars: int = Field(default=200, alias="VALUE_MAX_CHARS")
    max_nodes: int = Field(default=200, alias="MAX_NODES")
    max_screenshots: int = Field(default=5, alias="MAX_SCREENSHOTS")
    clip_max_width: int = Field(default=800, alias="CLIP_MAX_WIDTH")
    clip_max_height: int = Field(default=800, alias="CLIP_MAX_HEIGHT")
    max_depth: int = Field(default=12, alias="MAX_DEPTH")

    @field_validator("*", mode="before")
    @classmethod
    def fallback_to_default(cls, v: Any, info: ValidationInfo) -> int:
        """Replace unusable values with the field default."""
        field_name = info.field_name or ""
        default = cls.model_fields[field_name].default
        picked = _pick_budget_number(v, -1)
        if picked == -1:
            logger.debug("Ignoring budget override %s=%r, using %d", field_name, v, default)
            return default
        return picked

    @classmethod
    def from_overrides(cls, overrides: Any) -> BudgetLimits:
        """Build limits from an arbitrary override value.

        Args:
            overrides: Mapping of override keys, or anything else (ignored).

        Returns:
            BudgetLimits with defaults for every unusable entry.

        """
        if not isinstance(overrides, Mapping):
            return cls()
        # Only string keys can name a field
        cleaned = {k: v for k, v in overrides.items() if isinstance(k, str)}
        return cls.model_validate(cleaned)

    def to_dict(self) -> dict[str, int]:
        """Return limits keyed by their override names."""
        return self.model_dump(by_alias=True)


@dataclass(frozen=True)
class RunStats:
    """Statistics of the most recent pipeline call.

    Attributes:
        api: Name of the entry point that produced the output.
        char_count: Output length in UTF-16 code units.
        truncated: Whether any value, line or output was clipped.
        omitted: Whether any node, root or line was omitted.
        timestamp: ISO-8601 UTC time the call finished.

    """

    api: str
    char_count: int
    truncated: bool
    omitted: bool
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire shape used by budget info."""
        return {
            "api": self.api,
            "charCount": self.char_count,
            "truncated": self.truncated,
            "omitted": self.omitted,
            "timestamp": self.timestamp,
        }


class BudgetContext:
    """Limits, provenance and last-run statistics for one engine instance.

    Pass an explicitly constructed context to the pipeline entry points to
    embed several independently configured engines in one process; omit it
    to use the lazily created process-wide context.
    """

    def __init__(self, overrides: Mapping[str, Any] | None = None) -> None:
        """Resolve limits from the override map.

        Args:
            overrides: Optional override map (MAX_CHARS, ...).

        """
        self.limits = BudgetLimits.from_overrides(overrides)
        has_keys = isinstance(overrides, Mapping) and len(overrides) > 0
        self.source: BudgetSource = "override" if has_keys else "default"
        self.effective_at = _utc_timestamp()
        self._last_run_stats: RunStats | None = None

    @property
    def last_run_stats(self) -> RunStats | None:
        """Statistics of the most recent call, or None before the first."""
        return self._last_run_stats

    def record_run_from_output(self, api: str, output: str) -> RunStats:
        """Record stats derived from the markers present in an output string."""
        return self.record_run_from_flags(
            api,
            char_count=utf16_len(output),
            truncated="TRUNCATED" in output,
            omitted="OMITTED_" in output,
        )

    def record_run_from_flags(
        self,
        api: str,
        *,
        char_count: int,
        truncated: bool,
        omitted: bool,
    ) -> RunStats:
        """Overwrite last-run stats with explicit flags."""
        stats = RunStats(
            api=api,
            char_count=char_count,
            truncated=truncated,
            omitted=omitted,
            timestamp=_utc_timestamp(),
        )
        self._last_run_stats = stats
        return stats

    def info(self) -> dict[str, Any]:
        """Return effective limits, provenance and last-run stats."""
        return {
            "budget": self.limits.to_dict(),
            "source": self.source,
            "effectiveAt": self.effective_at,
            "lastRunStats": (
                self._last_run_stats.to_dict() if self._last_run_stats is not None else None
            ),
        }


# Process-wide context, created lazily on first read
_budget_context: BudgetContext | None = None


def _read_env_overrides() -> dict[str, Any]:
    """Parse the PROBE_BUDGET environment variable as an override map."""
    raw = os.environ.get(BUDGET_ENV_VAR)
    if not raw:
        return {}
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        logger.warning("Ignoring malformed %s value: %s", BUDGET_ENV_VAR, e)
        return {}
    if not isinstance(parsed, dict):
        logger.warning(
            "Ignoring %s: expected a mapping, got %s", BUDGET_ENV_VAR, type(parsed).__name__
        )
        return {}
    return parsed


def configure_budget(overrides: Mapping[str, Any] | None = None) -> BudgetContext:
    """Install a process-wide context built from explicit overrides.

    Args:
        overrides: Override map, or None for compiled defaults.

    Returns:
        The newly installed context.

    """
    global _budget_context
    _budget_context = BudgetContext(overrides)
    logger.debug("Budget configured (%s): %s", _budget_context.source, _budget_context.limits)
    return _budget_context


def get_budget_context() -> BudgetContext:
    """Return the process-wide context, creating it on first access."""
    global _budget_context
    if _budget_context is None:
        _budget_context = BudgetContext(_read_env_overrides())
    return _budget_context


def get_budget_info(context: BudgetContext | None = None) -> dict[str, Any]:
    """Return diagnostics for the given or process-wide context."""
    return (context or get_budget_context()).info()


def _reset_budget_context() -> None:
    """Drop the process-wide context (for tests)."""
    global _budget_context
    _budget_context = None
