"""Budgeted directory size probing with a shallow fallback."""

import logging
import threading
from typing import Callable, Optional

from pydantic import BaseModel, Field

from spelunk.errors import Inaccessible, NotFound, ProbeTimeout
from spelunk.models import SizeCertainty
from spelunk.primitives import scan_directory_size, shallow_size

logger = logging.getLogger(__name__)

# Interactive listings give each directory this long before estimating
DEFAULT_BUDGET = 1.0

SizeScanner = Callable[..., int]


class SizeProbeResult(BaseModel):
    """Outcome of probing one directory."""

    size_bytes: int = Field(..., ge=0)
    certainty: SizeCertainty = SizeCertainty.DEFINITE
    error: Optional[str] = None


def estimate(path: str) -> SizeProbeResult:
    """
    Shallow estimate: only files directly inside ``path``.

    Deeply nested directories are under-reported; that is the price of
    answering instantly. Floored at 1 byte so the entry still sorts and
    renders.
    """
    return SizeProbeResult(
        size_bytes=max(shallow_size(path), 1),
        certainty=SizeCertainty.ESTIMATED,
    )


def probe(
    path: str,
    budget: float | None = DEFAULT_BUDGET,
    cancel_event: threading.Event | None = None,
    scan: SizeScanner = scan_directory_size,
) -> SizeProbeResult:
    """
    Measure a directory within a wall-clock budget.

    Args:
        path: Directory to measure
        budget: Seconds allowed for the recursive measurement (None = unbounded)
        cancel_event: Shared event that aborts the measurement when set
        scan: Recursive size primitive (injectable for tests)

    Returns:
        SizeProbeResult; DEFINITE when measured in time, ESTIMATED after a
        timeout or cancellation, size 0 with ``error`` when unreadable.
        Never raises.
    """
    try:
        size = scan(path, cancel_event=cancel_event, timeout=budget)
    except ProbeTimeout as e:
        logger.debug("Probe of %s timed out (%s), estimating", path, e)
        return estimate(path)
    except NotFound:
        logger.debug("Probe target vanished: %s", path)
        return SizeProbeResult(size_bytes=0, error="Not found")
    except (Inaccessible, OSError) as e:
        logger.debug("Probe of %s failed: %s", path, e)
        return SizeProbeResult(size_bytes=0, error=str(e) or "Inaccessible")

    if size == 0:
        # du rounds tiny trees to zero blocks; keep them visible
        return estimate(path)
    return SizeProbeResult(size_bytes=size)
