"""
Circular CCU sampler.
"""

from .models import RunSummary, SamplerConfig, SchedulerState
from .scheduler import CircularScheduler
from .scraper import CcuScraper, RobloxPageScraper

__all__ = [
    "CcuScraper",
    "CircularScheduler",
    "RobloxPageScraper",
    "RunSummary",
    "SamplerConfig",
    "SchedulerState",
]
