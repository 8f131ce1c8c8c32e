"""
Runtime settings and engine wiring.

Every path defaults to the JSON files bundled in ``estimator/data``; the
environment variables below point the engine at other data sets.

    ESTIMATOR_DATA_DIR      directory holding the three files below
    ESTIMATOR_DEFINITIONS   calculator definitions (JSON array)
    ESTIMATOR_REGIONS       regional modifiers
    ESTIMATOR_PRICING       base pricing table
    ESTIMATOR_LOG_LEVEL     log level for the CLI (default WARNING)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Tuple

from .engine import EstimationEngine
from .pricing import PricingResolver, load_pricing
from .regions import load_regions
from .registry import CalculatorRegistry, LoadReport, load_definitions_file


logger = logging.getLogger(__name__)

PACKAGE_DATA_DIR = Path(__file__).parent / "data"

DEFINITIONS_FILE = "calculators.json"
REGIONS_FILE = "regions.json"
PRICING_FILE = "pricing_base.json"


@dataclass(frozen=True)
class Settings:
    data_dir: Path = PACKAGE_DATA_DIR
    definitions_path: Optional[Path] = None
    regions_path: Optional[Path] = None
    pricing_path: Optional[Path] = None
    log_level: str = "WARNING"

    @property
    def definitions_file(self) -> Path:
        return self.definitions_path or self.data_dir / DEFINITIONS_FILE

    @property
    def regions_file(self) -> Path:
        return self.regions_path or self.data_dir / REGIONS_FILE

    @property
    def pricing_file(self) -> Path:
        return self.pricing_path or self.data_dir / PRICING_FILE

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ

        def _path(name: str) -> Optional[Path]:
            value = env.get(name, "").strip()
            return Path(value) if value else None

        return cls(
            data_dir=_path("ESTIMATOR_DATA_DIR") or PACKAGE_DATA_DIR,
            definitions_path=_path("ESTIMATOR_DEFINITIONS"),
            regions_path=_path("ESTIMATOR_REGIONS"),
            pricing_path=_path("ESTIMATOR_PRICING"),
            log_level=env.get("ESTIMATOR_LOG_LEVEL", "WARNING").strip() or "WARNING",
        )


def build_engine_with_report(settings: Optional[Settings] = None) -> Tuple[EstimationEngine, LoadReport]:
    """
    Load pricing, regions and calculator definitions and wire an engine.

    Raises:
        OSError / ValueError: if a data file is missing or malformed
    """
    settings = settings or Settings()
    table = load_pricing(settings.pricing_file)
    regions = load_regions(settings.regions_file)
    registry = CalculatorRegistry()
    report = registry.load(load_definitions_file(settings.definitions_file))
    logger.info(
        "Loaded %d calculator(s), %d rejected, %d region(s)",
        len(report.registered), len(report.rejected), len(regions),
    )
    return EstimationEngine(registry, PricingResolver(table, regions)), report


def build_engine(settings: Optional[Settings] = None) -> EstimationEngine:
    return build_engine_with_report(settings)[0]
