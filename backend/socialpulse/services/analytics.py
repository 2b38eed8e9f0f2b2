"""
Chart-ready transformations of raw metric samples.

Everything here is pure and total: malformed payloads and unparsable dates
degrade to 0 / exclusion instead of raising, so one bad sample can never
blank a chart.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Literal, Protocol, Sequence

from socialpulse.services.analytics_store import DateRange

Trend = Literal["up", "down", "stable"]
GroupBy = Literal["day", "week", "month"]

ENGAGEMENT_TARGET = 5.0
POST_METRICS = ("likes", "comments", "shares", "saves")


class SampleLike(Protocol):
    """Anything shaped like a stored analytics sample."""
    metric_type: str
    metric_name: str
    metric_value: Any
    media_id: str | None
    date_collected: date | str


@dataclass
class ChartDataPoint:
    date: str
    value: float
    target: float | None = None
    label: str | None = None
    metadata: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"date": self.date, "value": self.value}
        if self.target is not None:
            data["target"] = self.target
        if self.label is not None:
            data["label"] = self.label
        if self.metadata is not None:
            data["metadata"] = self.metadata
        return data


@dataclass
class GrowthRate:
    rate: float
    trend: Trend
    formatted: str


@dataclass
class MetricsSummary:
    current: float
    previous: float
    change: float
    change_percent: float
    trend: Trend
    formatted: str


@dataclass
class PostSummary:
    media_id: str
    date: str
    likes: float = 0
    comments: float = 0
    shares: float = 0
    saves: float = 0
    total_engagement: float = 0
    engagement_rate: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return dict(self.__dict__)


# ── helpers ──────────────────────────────────────────────────

def _number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value)
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def extract_numeric_value(metric_value: Any) -> float:
    """Numeric value of a payload: a bare number, or its ``value``/``count`` field."""
    direct = _number(metric_value)
    if direct is not None:
        return direct
    if isinstance(metric_value, dict):
        for key in ("value", "count"):
            number = _number(metric_value.get(key))
            if number:
                return number
    return 0.0


def _as_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return None


def _chart_label(day: date) -> str:
    return f"{day.strftime('%b')} {day.day}"


def _round2(value: float) -> float:
    rounded = round(value, 2)
    return 0.0 if rounded == 0 else rounded


def _format_percent(rate: float) -> str:
    text = f"{rate:.2f}".rstrip("0").rstrip(".")
    sign = "+" if rate > 0 else ""
    return f"{sign}{text}%"


def _payload(metric_value: Any) -> dict[str, Any]:
    return dict(metric_value) if isinstance(metric_value, dict) else {"value": extract_numeric_value(metric_value)}


# ── transformations ──────────────────────────────────────────

def to_time_series(samples: Iterable[SampleLike], metric_name: str, date_range: DateRange) -> list[ChartDataPoint]:
    """One point per matching sample inside the window, oldest first."""
    matching: list[tuple[date, SampleLike]] = []
    for sample in samples:
        if sample.metric_name != metric_name:
            continue
        day = _as_date(sample.date_collected)
        if day is None or day not in date_range:
            continue
        matching.append((day, sample))
    matching.sort(key=lambda item: item[0])
    return [
        ChartDataPoint(
            date=day.isoformat(),
            value=extract_numeric_value(sample.metric_value),
            label=_chart_label(day),
            metadata=_payload(sample.metric_value),
        )
        for day, sample in matching
    ]


def engagement_rate(
    likes: Sequence[ChartDataPoint],
    comments: Sequence[ChartDataPoint],
    follower_count: float,
) -> list[ChartDataPoint]:
    """Per-index (likes + comments) / followers * 100, rounded to 2 decimals."""
    if not likes or not follower_count:
        return []
    points = []
    for index, like in enumerate(likes):
        comment_value = comments[index].value if index < len(comments) else 0
        total = like.value + comment_value
        points.append(
            ChartDataPoint(
                date=like.date,
                value=_round2(total / follower_count * 100),
                target=ENGAGEMENT_TARGET,
                label=like.label,
                metadata={
                    "likes": like.value,
                    "comments": comment_value,
                    "total_engagement": total,
                    "followers": follower_count,
                },
            )
        )
    return points


def growth_rate(current: float, previous: float) -> GrowthRate:
    if previous == 0:
        if current > 0:
            return GrowthRate(rate=100, trend="up", formatted="+100%")
        return GrowthRate(rate=0, trend="stable", formatted="0%")

    rate = (current - previous) / previous * 100
    if abs(rate) < 1:
        trend: Trend = "stable"
    else:
        trend = "up" if rate > 0 else "down"
    rounded = _round2(rate)
    return GrowthRate(rate=rounded, trend=trend, formatted=_format_percent(rounded))


def metrics_summary(points: Sequence[ChartDataPoint], comparison_period_days: int = 7) -> MetricsSummary:
    """Compare the latest point with the one ``comparison_period_days`` points earlier."""
    if not points:
        return MetricsSummary(current=0, previous=0, change=0, change_percent=0, trend="stable", formatted="0%")

    ordered = sorted(points, key=lambda point: point.date)
    current = ordered[-1].value
    previous = ordered[max(0, len(ordered) - comparison_period_days - 1)].value
    change = current - previous
    change_percent = change / previous * 100 if previous > 0 else 0.0

    trend: Trend = "stable"
    if abs(change_percent) > 1:
        trend = "up" if change_percent > 0 else "down"
    rounded = _round2(change_percent)
    return MetricsSummary(
        current=current,
        previous=previous,
        change=change,
        change_percent=rounded,
        trend=trend,
        formatted=_format_percent(rounded),
    )


def _bucket_key(day: date, group_by: str) -> tuple[str, date]:
    if group_by == "week":
        start = day - timedelta(days=day.weekday())
        return start.isoformat(), start
    if group_by == "month":
        return f"{day.year:04d}-{day.month:02d}", day.replace(day=1)
    return day.isoformat(), day


def aggregate_by_period(samples: Iterable[SampleLike], group_by: GroupBy = "day") -> list[ChartDataPoint]:
    """Mean value per calendar day, ISO week (Monday start) or year-month."""
    buckets: dict[str, list[float]] = {}
    starts: dict[str, date] = {}
    for sample in samples:
        day = _as_date(sample.date_collected)
        if day is None:
            continue
        key, start = _bucket_key(day, group_by)
        buckets.setdefault(key, []).append(extract_numeric_value(sample.metric_value))
        starts[key] = start

    points = []
    for key in sorted(buckets):
        values = buckets[key]
        start = starts[key]
        label = start.strftime("%b %Y") if group_by == "month" else _chart_label(start)
        points.append(
            ChartDataPoint(
                date=key,
                value=sum(values) / len(values),
                label=label,
                metadata={"samples": len(values)},
            )
        )
    return points


def aggregate_media_metrics(
    samples: Iterable[SampleLike],
    metric_names: Sequence[str],
    group_by: GroupBy = "day",
) -> dict[str, list[ChartDataPoint]]:
    media = [sample for sample in samples if sample.metric_type == "media"]
    return {
        name: aggregate_by_period([sample for sample in media if sample.metric_name == name], group_by)
        for name in metric_names
    }


def top_posts(samples: Iterable[SampleLike], limit: int = 10, follower_count: float | None = None) -> list[PostSummary]:
    """Media ranked by likes + comments + shares + saves."""
    if limit <= 0:
        return []
    posts: dict[str, PostSummary] = {}
    for sample in samples:
        if sample.metric_type != "media" or not sample.media_id:
            continue
        post = posts.get(sample.media_id)
        if post is None:
            day = _as_date(sample.date_collected)
            post = PostSummary(media_id=sample.media_id, date=day.isoformat() if day else "")
            posts[sample.media_id] = post
        if sample.metric_name in POST_METRICS:
            setattr(post, sample.metric_name, extract_numeric_value(sample.metric_value))

    for post in posts.values():
        post.total_engagement = post.likes + post.comments + post.shares + post.saves
        if follower_count:
            post.engagement_rate = _round2(post.total_engagement / follower_count * 100)

    ranked = sorted(posts.values(), key=lambda post: post.total_engagement, reverse=True)
    return ranked[:limit]


def format_metric_value(value: float, metric_type: str | None = None) -> str:
    """Compact display form: 1.2K, 1.5M, or a percentage for engagement."""
    if metric_type in ("engagement", "engagement_rate"):
        return f"{value:g}%"
    if value >= 1_000_000:
        return f"{value / 1_000_000:.1f}M"
    if value >= 1_000:
        return f"{value / 1_000:.1f}K"
    return f"{value:g}"


# ── dashboard payload ────────────────────────────────────────

PROFILE_SERIES = {
    "followers": "follower_count",
    "reach": "reach",
    "views": "views",
    "profile_views": "profile_views",
}
MEDIA_SERIES = {name: name for name in POST_METRICS}


def _series(samples: Sequence[SampleLike], metric_name: str, metric_type: str) -> list[ChartDataPoint]:
    # samples arrive already windowed by the store query
    chosen = [sample for sample in samples if sample.metric_type == metric_type]
    return aggregate_by_period(
        [sample for sample in chosen if sample.metric_name == metric_name],
        "day",
    )


def build_chart_payload(samples: Sequence[SampleLike], account_metadata: dict[str, Any] | None) -> dict[str, Any]:
    """Shape samples into the payload the dashboard charts consume."""
    metadata = account_metadata or {}
    followers = _number(metadata.get("followers_count")) or 0.0

    profile_metrics = {
        key: [point.to_dict() for point in _series(samples, name, "profile")]
        for key, name in PROFILE_SERIES.items()
    }
    likes = _series(samples, "likes", "media")
    comments = _series(samples, "comments", "media")
    media_metrics = {
        key: [point.to_dict() for point in _series(samples, name, "media")]
        for key, name in MEDIA_SERIES.items()
    }

    rates = engagement_rate(likes, comments, followers)
    average_rate = _round2(sum(point.value for point in rates) / len(rates)) if rates else 0.0

    return {
        "profile_metrics": profile_metrics,
        "media_metrics": media_metrics,
        "engagement": [point.to_dict() for point in rates],
        "current_stats": {
            "followers": int(followers),
            "following": int(_number(metadata.get("follows_count")) or 0),
            "posts": int(_number(metadata.get("media_count")) or 0),
            "engagement_rate": average_rate,
        },
    }
