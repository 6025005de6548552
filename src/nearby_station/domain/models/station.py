"""Station domain model."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Line:
    """A line serving a station."""

    short_name: str
    localized_name: str | None = None


@dataclass(frozen=True)
class Station:
    """Represents a public transport station returned by the station directory."""

    name: str
    name_localized: str | None = None
    lines: tuple[Line, ...] = field(default_factory=tuple)
