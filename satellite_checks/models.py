from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from functools import total_ordering
from typing import Any


@total_ordering
class Status(Enum):
    """
    Check status, ranked by how definite the answer is.

    OK < WARNING < CRITICAL < UNKNOWN: a CRITICAL answer from a satellite is
    still preferred over a satellite that could not answer at all.
    The value doubles as the plugin exit code.
    """

    OK = 0
    WARNING = 1
    CRITICAL = 2
    UNKNOWN = 3

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Status):
            return NotImplemented
        return self.value < other.value

    @property
    def exit_code(self) -> int:
        return int(self.value)

    @classmethod
    def parse(cls, value: Any) -> "Status":
        if isinstance(value, Status):
            return value
        if isinstance(value, bool):
            return cls.UNKNOWN
        if isinstance(value, int):
            for s in cls:
                if s.value == value:
                    return s
            return cls.UNKNOWN
        if isinstance(value, str):
            text = value.strip().upper()
            if text.isdigit():
                return cls.parse(int(text))
            return cls.__members__.get(text, cls.UNKNOWN)
        return cls.UNKNOWN


class Strategy(str, Enum):
    FAILOVER = "failover"
    ROTATE = "rotate"
    MULTIPLE = "multiple"


@dataclass(frozen=True)
class Location:
    hostname: str
    ipaddr: str
    authkey: str | None = None
    last: bool = False

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"hostname": self.hostname, "ipaddr": self.ipaddr, "last": bool(self.last)}
        if self.authkey:
            out["authkey"] = self.authkey
        return out

    @classmethod
    def from_dict(cls, raw: Any) -> "Location | None":
        if not isinstance(raw, dict):
            return None
        hostname = str(raw.get("hostname") or "").strip()
        ipaddr = str(raw.get("ipaddr") or "").strip()
        if not hostname or not ipaddr:
            return None
        authkey = raw.get("authkey")
        return cls(
            hostname=hostname,
            ipaddr=ipaddr,
            authkey=str(authkey) if authkey else None,
            last=bool(raw.get("last")),
        )


@dataclass(frozen=True)
class LocationResult:
    status: Status
    message: str
    hostname: str
    stats: dict[str, Any] | None = None
    debug: Any = None
    tags: list[str] = field(default_factory=list)

    @classmethod
    def unknown(cls, hostname: str, message: str) -> "LocationResult":
        return cls(status=Status.UNKNOWN, message=message, hostname=hostname)

    @classmethod
    def from_payload(cls, payload: Any, *, hostname: str) -> "LocationResult":
        """
        Build a result from the `data` member of a satellite response.
        Missing hostname/tags are stamped with defaults.
        """
        if not isinstance(payload, dict):
            return cls.unknown(hostname, f"{hostname}: satellite returned no result data")

        stats = payload.get("stats")
        tags = payload.get("tags")
        if isinstance(tags, str):
            tags = [t for t in tags.split(",") if t]
        return cls(
            status=Status.parse(payload.get("status")),
            message=str(payload.get("message") or ""),
            hostname=str(payload.get("hostname") or hostname),
            stats=stats if isinstance(stats, dict) else None,
            debug=payload.get("debug"),
            tags=[str(t) for t in tags] if isinstance(tags, list) else [],
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "status": self.status.name,
            "message": self.message,
            "hostname": self.hostname,
            "tags": list(self.tags),
        }
        if self.stats is not None:
            out["stats"] = self.stats
        if self.debug is not None:
            out["debug"] = self.debug
        return out


@dataclass(frozen=True)
class Verdict:
    status: Status
    message: str
    stats: dict[str, Any] | None = None
    debug: list[dict[str, Any]] | dict[str, Any] | None = None
    result: list[LocationResult] | None = None

    def normalized(self) -> "Verdict":
        return replace(self, status=Status.parse(self.status))

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"status": Status.parse(self.status).name, "message": self.message}
        if self.stats:
            out["stats"] = self.stats
        if self.debug:
            out["debug"] = dict(self.debug) if isinstance(self.debug, dict) else list(self.debug)
        if self.result:
            out["result"] = [r.to_dict() for r in self.result]
        return out


@dataclass(frozen=True)
class RotationState:
    """Ordered locations of one service plus the `last` marker of the previous rotate run."""

    service: str
    locations: tuple[Location, ...] = ()

    def last_index(self) -> int | None:
        for idx, loc in enumerate(self.locations):
            if loc.last:
                return idx
        return None

    def with_last(self, hostname: str | None) -> "RotationState":
        return replace(
            self,
            locations=tuple(replace(loc, last=(hostname is not None and loc.hostname == hostname)) for loc in self.locations),
        )
