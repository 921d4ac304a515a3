"""
Comparison Settings

Caller-supplied options for one comparison run:
- precision_level: 1 (strict) .. 7 (permissive)
- min_area_percent: minimum region size as percent of the analysis area

Settings are validated on construction; invalid values are programming errors
and raise InvalidSettingsError at the boundary.
"""

from dataclasses import dataclass

MIN_PRECISION = 1
MAX_PRECISION = 7
DEFAULT_PRECISION = 4
DEFAULT_MIN_AREA_PERCENT = 5.0


class InvalidSettingsError(ValueError):
    """Raised when comparison settings are out of range."""


@dataclass(frozen=True)
class Settings:
    """Immutable per-run comparison settings."""

    precision_level: int = DEFAULT_PRECISION
    min_area_percent: float = DEFAULT_MIN_AREA_PERCENT

    def __post_init__(self):
        if isinstance(self.precision_level, bool) or not isinstance(self.precision_level, int):
            raise InvalidSettingsError(
                f"precision_level must be an integer, got {self.precision_level!r}"
            )

        if not MIN_PRECISION <= self.precision_level <= MAX_PRECISION:
            raise InvalidSettingsError(
                f"precision_level must be in [{MIN_PRECISION}, {MAX_PRECISION}], "
                f"got {self.precision_level}"
            )

        if isinstance(self.min_area_percent, bool) or not isinstance(self.min_area_percent, (int, float)):
            raise InvalidSettingsError(
                f"min_area_percent must be a number, got {self.min_area_percent!r}"
            )

        if not 0.0 <= self.min_area_percent <= 100.0:
            raise InvalidSettingsError(
                f"min_area_percent must be in [0, 100], got {self.min_area_percent}"
            )
