"""
Aggregation engine.

Pure, re-entrant functions over normalized ``Record`` sequences:

1. filter by inclusive ISO date range plus equality/substring/range filters
2. bucket by calendar day, gap-filling every day of the requested range
3. group by one or more dimensions, in encounter order
4. derive rates strictly from accumulated totals (zero denominator -> 0)
5. rank with a stable sort
6. round monetary figures once, when a result is rendered

No function keeps state between calls.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import (Any, Callable, Dict, Iterable, Iterator, List, Mapping,
                    Optional, Sequence, Set, Tuple, Union)

from .records import Record, UNKNOWN


@dataclass(frozen=True)
class RateSpec:
    """A ratio metric computed as ``numerator / denominator * scale``."""
    name: str
    numerator: str
    denominator: str
    scale: float = 1.0
    precision: int = 2


@dataclass(frozen=True)
class Equals:
    """Case-insensitive equality on a record field."""
    field: str
    value: Any

    def matches(self, record: Record) -> bool:
        actual = record.value(self.field)
        if actual is None:
            return False
        return str(actual).strip().lower() == str(self.value).strip().lower()


@dataclass(frozen=True)
class Contains:
    """Case-insensitive substring match on a record field."""
    field: str
    value: str

    def matches(self, record: Record) -> bool:
        actual = record.value(self.field)
        if actual is None:
            return False
        return self.value.lower() in str(actual).lower()


@dataclass(frozen=True)
class Range:
    """Inclusive numeric bounds on a record field; either bound may be open."""
    field: str
    minimum: Optional[float] = None
    maximum: Optional[float] = None

    def matches(self, record: Record) -> bool:
        actual = record.value(self.field)
        if not isinstance(actual, (int, float)):
            return False
        if self.minimum is not None and actual < self.minimum:
            return False
        if self.maximum is not None and actual > self.maximum:
            return False
        return True


Filter = Union[Equals, Contains, Range]


def _rounded(value: Any, precision: int = 2) -> Any:
    if isinstance(value, float):
        return round_number(value, precision)
    return value


@dataclass
class TimeBucket:
    """Accumulated metrics for one calendar day."""
    date: str
    metrics: Dict[str, float] = field(default_factory=dict)
    count: int = 0
    rates: Dict[str, float] = field(default_factory=dict)
    distinct: Dict[str, Set[str]] = field(default_factory=dict, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"date": self.date, "count": self.count}
        result.update({name: _rounded(value) for name, value in self.metrics.items()})
        result.update({name: len(values) for name, values in self.distinct.items()})
        result.update(self.rates)
        return result


@dataclass
class DimensionGroup:
    """Accumulated metrics for one combination of dimension values."""
    dimension_names: Tuple[str, ...]
    key: Tuple[str, ...]
    totals: Dict[str, float] = field(default_factory=dict)
    count: int = 0
    derived_rates: Dict[str, float] = field(default_factory=dict)
    distinct: Dict[str, Set[str]] = field(default_factory=dict, repr=False)

    @property
    def dimension_key(self) -> Union[str, Tuple[str, ...]]:
        return self.key[0] if len(self.key) == 1 else self.key

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = dict(zip(self.dimension_names, self.key))
        result["count"] = self.count
        result.update({name: _rounded(value) for name, value in self.totals.items()})
        result.update({name: len(values) for name, values in self.distinct.items()})
        result.update(self.derived_rates)
        return result


# Dates

def parse_day(value: Union[str, date]) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(value)


def iter_dates(start_date: Union[str, date], end_date: Union[str, date]) -> Iterator[str]:
    """Every calendar day in [start_date, end_date], ascending."""
    current = parse_day(start_date)
    end = parse_day(end_date)
    while current <= end:
        yield current.isoformat()
        current += timedelta(days=1)


# Filtering

def in_date_range(record: Record, start_date: Optional[str], end_date: Optional[str]) -> bool:
    if start_date is None and end_date is None:
        return True
    if not record.date:
        return False
    if start_date is not None and record.date < start_date:
        return False
    if end_date is not None and record.date > end_date:
        return False
    return True


def filter_records(records: Iterable[Record],
                   start_date: Optional[str] = None,
                   end_date: Optional[str] = None,
                   filters: Sequence[Filter] = ()) -> List[Record]:
    """Records within the inclusive date range that match every filter."""
    return [
        record for record in records
        if in_date_range(record, start_date, end_date)
        and all(f.matches(record) for f in filters)
    ]


# Accumulation

def ratio(numerator: float, denominator: float, scale: float = 1.0) -> float:
    """``numerator / denominator * scale``; 0 when the denominator is 0."""
    if not denominator:
        return 0.0
    return numerator / denominator * scale


def derive_rates(totals: Mapping[str, float], rate_specs: Sequence[RateSpec]) -> Dict[str, float]:
    """Compute each rate from accumulated totals."""
    return {
        spec.name: round_number(
            ratio(totals.get(spec.numerator, 0), totals.get(spec.denominator, 0), spec.scale),
            spec.precision,
        )
        for spec in rate_specs
    }


def _accumulate(target: Dict[str, float],
                distinct: Dict[str, Set[str]],
                record: Record,
                metrics: Sequence[str],
                distinct_fields: Mapping[str, str]):
    for name in metrics:
        target[name] = target.get(name, 0) + record.metric(name)
    for name, source in distinct_fields.items():
        value = record.value(source)
        if value is not None and value != "":
            distinct.setdefault(name, set()).add(str(value))


def summarize(records: Iterable[Record],
              metrics: Sequence[str],
              rates: Sequence[RateSpec] = (),
              distinct: Optional[Mapping[str, str]] = None) -> DimensionGroup:
    """Overall totals as a single group with an empty key."""
    distinct = distinct or {}
    group = DimensionGroup(
        dimension_names=(),
        key=(),
        totals={name: 0 for name in metrics},
        distinct={name: set() for name in distinct},
    )
    for record in records:
        group.count += 1
        _accumulate(group.totals, group.distinct, record, metrics, distinct)
    group.derived_rates = derive_rates(_with_count(group.totals, group.count), rates)
    return group


def bucket_by_date(records: Iterable[Record],
                   start_date: str,
                   end_date: str,
                   metrics: Sequence[str],
                   rates: Sequence[RateSpec] = (),
                   distinct: Optional[Mapping[str, str]] = None) -> List[TimeBucket]:
    """One bucket per day of the range, zero-filled, ascending by date.

    Records dated outside the range are ignored.
    """
    distinct = distinct or {}
    buckets: Dict[str, TimeBucket] = {
        day: TimeBucket(
            date=day,
            metrics={name: 0 for name in metrics},
            distinct={name: set() for name in distinct},
        )
        for day in iter_dates(start_date, end_date)
    }

    for record in records:
        bucket = buckets.get(record.date)
        if bucket is None:
            continue
        bucket.count += 1
        _accumulate(bucket.metrics, bucket.distinct, record, metrics, distinct)

    for bucket in buckets.values():
        bucket.rates = derive_rates(_with_count(bucket.metrics, bucket.count), rates)

    return list(buckets.values())


def group_by_dimension(records: Iterable[Record],
                       dimensions: Sequence[str],
                       metrics: Sequence[str],
                       rates: Sequence[RateSpec] = (),
                       distinct: Optional[Mapping[str, str]] = None) -> List[DimensionGroup]:
    """Group records by dimension values, in first-encounter order.

    A missing dimension value lands in the ``"unknown"`` group. The record
    count is available to rate specs as ``"count"``.
    """
    distinct = distinct or {}
    names = tuple(dimensions)
    groups: Dict[Tuple[str, ...], DimensionGroup] = {}

    for record in records:
        key = tuple(record.dimensions.get(name) or UNKNOWN for name in names)
        group = groups.get(key)
        if group is None:
            group = DimensionGroup(
                dimension_names=names,
                key=key,
                totals={name: 0 for name in metrics},
                distinct={name: set() for name in distinct},
            )
            groups[key] = group
        group.count += 1
        _accumulate(group.totals, group.distinct, record, metrics, distinct)

    for group in groups.values():
        group.derived_rates = derive_rates(_with_count(group.totals, group.count), rates)

    return list(groups.values())


def merge_buckets(*series: Sequence[TimeBucket], rates: Sequence[RateSpec] = ()) -> List[TimeBucket]:
    """Merge bucket series by date, summing metrics and counts."""
    merged: Dict[str, TimeBucket] = {}
    for buckets in series:
        for bucket in buckets:
            target = merged.get(bucket.date)
            if target is None:
                target = TimeBucket(date=bucket.date)
                merged[bucket.date] = target
            target.count += bucket.count
            for name, value in bucket.metrics.items():
                target.metrics[name] = target.metrics.get(name, 0) + value
            for name, values in bucket.distinct.items():
                target.distinct.setdefault(name, set()).update(values)

    result = [merged[day] for day in sorted(merged)]
    for bucket in result:
        bucket.rates = derive_rates(_with_count(bucket.metrics, bucket.count), rates)
    return result


def _with_count(totals: Mapping[str, float], count: int) -> Dict[str, float]:
    combined = {"count": count}
    combined.update(totals)
    return combined


# Ranking and rounding

def rank(items: Iterable[Any],
         key: Union[str, Callable[[Any], Any]],
         descending: bool = True,
         limit: Optional[int] = None) -> List[Any]:
    """Stable sort; ties keep their encounter order.

    ``key`` is a callable, or a name looked up on dicts, on group totals
    or as an attribute.
    """
    key_fn = key if callable(key) else _key_getter(key)
    ranked = sorted(items, key=key_fn, reverse=descending)
    return ranked if limit is None else ranked[:limit]


def _key_getter(name: str) -> Callable[[Any], Any]:
    def getter(item: Any) -> Any:
        if isinstance(item, Mapping):
            return item.get(name, 0)
        if isinstance(item, DimensionGroup):
            if name == "count":
                return item.count
            if name in item.totals:
                return item.totals[name]
            return item.derived_rates.get(name, 0)
        return getattr(item, name)
    return getter


def round_number(value: float, precision: int = 2) -> float:
    """Round half away from zero at ``precision`` decimal places."""
    quantum = Decimal(1).scaleb(-precision)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def round_money(value: float) -> float:
    return round_number(value, 2)
