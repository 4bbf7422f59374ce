"""Job descriptors and the immutable registry loaded at startup.

Descriptor file format (JSON)::

    {"jobs": [
        {"name": "syncProviderDetails", "interval": "1m", "runOnStartup": true},
        {"name": "syncIPTVProviderTitles", "interval": "6h", "runOnStartup": true,
         "delay": "30s", "postExecute": ["syncTitleDetails"],
         "conflicts": ["cleanupUnwantedProviderTitles"]}
    ]}
"""

import json
import logging
from dataclasses import dataclass, field

from durations import format_duration, parse_duration
from error_handler import ConfigurationError

logger = logging.getLogger(__name__)

_KNOWN_KEYS = {
    "name", "description", "interval", "delay", "timeout",
    "runOnStartup", "postExecute", "conflicts",
}


@dataclass(frozen=True)
class JobDescriptor:
    """Static configuration of one job. Durations are in seconds."""

    name: str
    description: str = ""
    interval: float | None = None
    run_on_startup: bool = False
    delay: float | None = None
    timeout: float | None = None
    post_execute: tuple[str, ...] = ()
    conflicts: frozenset[str] = field(default_factory=frozenset)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "interval": format_duration(self.interval) if self.interval is not None else None,
            "runOnStartup": self.run_on_startup,
            "delay": format_duration(self.delay) if self.delay is not None else None,
            "timeout": format_duration(self.timeout) if self.timeout is not None else None,
            "postExecute": list(self.post_execute),
            "conflicts": sorted(self.conflicts),
        }


def _parse_descriptor(raw) -> JobDescriptor:
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Job descriptor must be an object, got {type(raw).__name__}")
    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ConfigurationError("Job descriptor is missing a name", context={"descriptor": raw})

    unknown = set(raw) - _KNOWN_KEYS
    if unknown:
        logger.warning("Job %s: ignoring unknown descriptor keys %s", name, sorted(unknown))

    def duration(key):
        value = raw.get(key)
        if value is None:
            return None
        return parse_duration(value, field=f"{name}.{key}")

    interval = duration("interval")
    delay = duration("delay")
    timeout = duration("timeout")

    if interval is not None and interval <= 0:
        raise ConfigurationError(f"Job {name}: interval must be positive")
    if timeout is not None and timeout <= 0:
        raise ConfigurationError(f"Job {name}: timeout must be positive")
    if delay is not None and interval is not None and delay > interval:
        raise ConfigurationError(
            f"Job {name}: delay ({format_duration(delay)}) exceeds interval "
            f"({format_duration(interval)})",
            context={"job": name},
        )

    post_execute = raw.get("postExecute") or []
    conflicts = raw.get("conflicts") or []
    for key, value in (("postExecute", post_execute), ("conflicts", conflicts)):
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ConfigurationError(f"Job {name}: {key} must be a list of job names")
    if name in conflicts:
        raise ConfigurationError(f"Job {name} cannot conflict with itself")

    run_on_startup = raw.get("runOnStartup", False)
    if not isinstance(run_on_startup, bool):
        raise ConfigurationError(f"Job {name}: runOnStartup must be a boolean")

    return JobDescriptor(
        name=name,
        description=raw.get("description") or "",
        interval=interval,
        run_on_startup=run_on_startup,
        delay=delay,
        timeout=timeout,
        post_execute=tuple(post_execute),
        conflicts=frozenset(conflicts),
    )


class JobRegistry:
    """Read-only name -> JobDescriptor mapping with cross-reference checks."""

    def __init__(self, descriptors):
        self._jobs: dict[str, JobDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.name in self._jobs:
                raise ConfigurationError(f"Duplicate job name: {descriptor.name}")
            self._jobs[descriptor.name] = descriptor

        for descriptor in self._jobs.values():
            for ref in (*descriptor.post_execute, *descriptor.conflicts):
                if ref not in self._jobs:
                    raise ConfigurationError(
                        f"Job {descriptor.name} references unknown job {ref}",
                        context={"job": descriptor.name, "reference": ref},
                    )

    @classmethod
    def from_dict(cls, data) -> "JobRegistry":
        jobs = data.get("jobs") if isinstance(data, dict) else data
        if not isinstance(jobs, list):
            raise ConfigurationError("Job descriptor file must contain a 'jobs' list")
        return cls(_parse_descriptor(raw) for raw in jobs)

    @classmethod
    def from_file(cls, path: str) -> "JobRegistry":
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except OSError as e:
            raise ConfigurationError(f"Cannot read job descriptor file {path}: {e}") from e
        except ValueError as e:
            raise ConfigurationError(f"Invalid JSON in job descriptor file {path}: {e}") from e
        registry = cls.from_dict(data)
        logger.info("Loaded %d job descriptors from %s", len(registry), path)
        return registry

    def get(self, name: str) -> JobDescriptor | None:
        return self._jobs.get(name)

    def names(self) -> list[str]:
        return list(self._jobs)

    def __contains__(self, name) -> bool:
        return name in self._jobs

    def __iter__(self):
        return iter(self._jobs.values())

    def __len__(self) -> int:
        return len(self._jobs)
