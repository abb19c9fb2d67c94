"""Convert raw step output into uniform metric records."""

import logging
import math
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, FrozenSet, List, Optional

from ..utils.metrics import MetricKind, MetricRecord, RawMetrics


TRUE_WORDS = frozenset({"on", "yes", "true"})
FALSE_WORDS = frozenset({"off", "no", "false"})


@dataclass(frozen=True)
class MetricContext:
    """Identity stamped onto every record of one pipeline invocation."""

    endpoint: str
    tags: Dict[str, str]
    timestamp: int
    step: int
    ignore: FrozenSet[str] = field(default_factory=frozenset)


def coerce_number(value: Any) -> Optional[float]:
    """
    Coerce a MySQL value to float.

    Args:
        value: int, float, Decimal, bool, str or bytes as returned by the driver

    Returns:
        float, or None if the value is NULL or not numeric
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8", errors="replace")

    text = str(value).strip()
    if not text:
        return None
    lowered = text.lower()
    if lowered in TRUE_WORDS:
        return 1.0
    if lowered in FALSE_WORDS:
        return 0.0

    try:
        return float(int(text))
    except (ValueError, OverflowError):
        pass
    try:
        number = Decimal(text)
    except InvalidOperation:
        return None
    if not number.is_finite():
        return None
    result = float(number)
    # Beyond float range
    if math.isinf(result):
        return None
    return result


class MetricAssembler:
    """Builds `<category>.<field>` records tagged with target identity and role."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger.getChild(self.__class__.__name__)

    def build(self, raw: RawMetrics, context: MetricContext) -> List[MetricRecord]:
        """
        Convert one step's raw values.

        Args:
            raw: Step output
            context: Per-invocation endpoint, tags and timestamp

        Returns:
            List[MetricRecord]: One record per numeric value; unparseable
            values are dropped and reported in a single warning
        """
        records = []
        dropped = []

        for field_name, raw_value in raw.values.items():
            name = f"{raw.category}.{field_name.lower()}"
            if name in context.ignore:
                continue

            value = coerce_number(raw_value)
            if value is None:
                dropped.append(name)
                continue

            records.append(MetricRecord(
                name=name,
                value=value,
                tags=dict(context.tags),
                timestamp=context.timestamp,
                kind=MetricKind.COUNTER if raw.is_counter(field_name) else MetricKind.GAUGE,
                endpoint=context.endpoint,
                step=context.step,
            ))

        if dropped:
            self.logger.warning(
                f"Dropped {len(dropped)} non-numeric {raw.category} value(s) for {context.endpoint}",
                extra={"dropped": dropped[:50]}
            )

        return records
