# jobledger/config.py

import os
from dataclasses import dataclass, field

# --- Base paths ---
# Project root can be overridden if needed (e.g. for tests or deployment)
BASE_DIR = os.path.abspath(os.getenv("JOBLEDGER_BASE_DIR", os.path.join(os.path.dirname(__file__), "..")))

PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))


@dataclass(frozen=True)
class JobsConfig:
    """Filesystem and runtime configuration for the launcher.

    Values can be overridden via environment variables:
    - JOBLEDGER_DB_PATH
    - JOBLEDGER_REGDIR
    - JOBLEDGER_TEMPLATE
    - JOBLEDGER_LOG_LEVEL
    """

    db_path: str = field(
        default_factory=lambda: os.getenv(
            "JOBLEDGER_DB_PATH", os.path.join(BASE_DIR, "jobs", "jdb.csv")
        )
    )
    regdir: str = field(
        default_factory=lambda: os.getenv(
            "JOBLEDGER_REGDIR", os.path.join(BASE_DIR, "jobs", "registries")
        )
    )
    template: str = field(
        default_factory=lambda: os.getenv(
            "JOBLEDGER_TEMPLATE", os.path.join(PACKAGE_DIR, "templates", "slurm.tmpl")
        )
    )
    log_level: str = field(default_factory=lambda: os.getenv("JOBLEDGER_LOG_LEVEL", "INFO"))


@dataclass(frozen=True)
class ResourceDefaults:
    """Default batch resources, overridden per launch via ``resources``."""

    walltime: str = "01:00:00"
    ncpus: int = 1
    memory: str = "4G"
    partition: str = "cpu"

    def merged(self, overrides: dict | None) -> dict:
        out = {
            "walltime": self.walltime,
            "ncpus": self.ncpus,
            "memory": self.memory,
            "partition": self.partition,
        }
        out.update(overrides or {})
        return out


JOBS = JobsConfig()
RESOURCES = ResourceDefaults()


def get_config() -> JobsConfig:
    """Return a fresh config so environment changes made after import are honored."""
    return JobsConfig()
