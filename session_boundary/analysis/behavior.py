"""
Statistical analysis of browsing behavior.

Every analysis is computed from a bounded event history on demand. Time
windows are measured against the timestamp of the newest event analyzed, not
the wall clock, so results are reproducible for recorded streams.
"""

import logging
from collections import Counter, defaultdict
from collections.abc import Sequence
from datetime import datetime
from typing import Any

import numpy as np

from session_boundary.detection.domains import (
    UNKNOWN_DOMAIN,
    DomainCategorizer,
    DomainClassifier,
    extract_domain,
    root_domain,
)
from session_boundary.models.events import BrowsingEvent, EventType

logger = logging.getLogger(__name__)

MINUTE_MS = 60_000
GAP_BUCKETS = (
    ("0-1s", 0, 1_000),
    ("1-5s", 1_000, 5_000),
    ("5-30s", 5_000, 30_000),
    ("30s-5m", 30_000, 300_000),
    ("5m-30m", 300_000, 1_800_000),
    ("30m+", 1_800_000, float("inf")),
)
BURST_MIN_EVENTS = 5
BURST_WINDOW_MS = MINUTE_MS
BURST_MIN_DURATION_MS = 30_000
DEEP_WORK_MS = 20 * MINUTE_MS
MULTITASK_SWITCH_MS = 30_000
MAX_FOCUS_MS = 30 * MINUTE_MS


def _pattern(kind: str, confidence: float, description: str) -> dict:
    return {"type": kind, "confidence": confidence, "description": description}


def _coefficient_of_variation(values: Sequence[float]) -> float:
    arr = np.asarray(values, dtype=float)
    mean = arr.mean()
    return float(arr.std() / mean) if mean > 0 else float("inf")


class BehaviorAnalyzer:
    """Bounded event history with on-demand behavioral analyses."""

    def __init__(self, max_history_size: int = 10_000, classifier: DomainCategorizer | None = None):
        self.max_history_size = max_history_size
        self.categorize = classifier or DomainClassifier()
        self.event_history: list[BrowsingEvent] = []
        self.metrics: dict | None = None
        self.patterns: dict[str, dict] = {}
        self.last_analysis: float = 0.0

    def add_event(self, event: BrowsingEvent):
        """Append an event; trims to 80% of the cap on overflow."""
        self.event_history.append(event)
        if len(self.event_history) > self.max_history_size:
            self.event_history = self.event_history[-int(self.max_history_size * 0.8):]

    def get_recent_events(self, limit: int = 50) -> list[BrowsingEvent]:
        return self.event_history[-limit:]

    def _domain(self, url: str) -> str:
        return extract_domain(url) or UNKNOWN_DOMAIN

    def analyze_time_gaps(self, events: Sequence[BrowsingEvent] | None = None) -> dict:
        """
        Distribution and trend of gaps between consecutive events.

        Returns:
            Dictionary with gaps, average_gap, median_gap, gap_distribution
            (bucket label -> count) and pattern
        """
        events = self.event_history if events is None else events
        gaps = [b.timestamp - a.timestamp for a, b in zip(events, events[1:])]
        gaps = [g for g in gaps if g > 0]
        if not gaps:
            description = "Insufficient data for analysis" if len(events) < 2 else "No valid gaps found"
            return {
                "gaps": [],
                "average_gap": 0.0,
                "median_gap": 0.0,
                "gap_distribution": {},
                "pattern": _pattern("random", 0.0, description),
            }

        distribution = {}
        for label, low, high in GAP_BUCKETS:
            count = sum(1 for g in gaps if low <= g < high)
            if count:
                distribution[label] = count

        return {
            "gaps": gaps,
            "average_gap": float(np.mean(gaps)),
            "median_gap": float(sorted(gaps)[len(gaps) // 2]),
            "gap_distribution": distribution,
            "pattern": self._gap_pattern(gaps),
        }

    def _gap_pattern(self, gaps: list[float]) -> dict:
        if len(gaps) < 3:
            return _pattern("random", 0.0, "Insufficient data for pattern analysis")

        coefficient = _coefficient_of_variation(gaps)
        if coefficient < 0.3:
            mean_seconds = round(float(np.mean(gaps)) / 1000)
            return _pattern(
                "consistent", max(0.0, 1 - coefficient), f"Consistent gaps averaging {mean_seconds}s"
            )

        steps = np.diff(gaps)
        increasing = float((steps > 0).sum()) / len(steps)
        decreasing = float((steps < 0).sum()) / len(steps)
        if increasing > 0.7:
            return _pattern("increasing", increasing, "Gaps are increasing over time (possible fatigue)")
        if decreasing > 0.7:
            return _pattern("decreasing", decreasing, "Gaps are decreasing over time (increasing focus)")
        return _pattern("random", 0.5, "No clear pattern in time gaps")

    def _change_significance(self, source: str, target: str) -> float:
        if source == target:
            return 0.0
        if self.categorize(source) != self.categorize(target):
            return 0.8
        if root_domain(source) == root_domain(target):
            return 0.2
        return 0.5

    def analyze_domain_changes(self, events: Sequence[BrowsingEvent] | None = None) -> dict:
        """
        Sequence of domain switches and the browsing style they suggest.

        Returns:
            Dictionary with changes, change_frequency (per hour),
            category_transitions (from -> to -> count) and pattern
        """
        events = self.event_history if events is None else events
        changes = []
        transitions: dict[str, Counter] = defaultdict(Counter)
        previous_domain = previous_category = None

        for event in events:
            if not event.url:
                continue
            domain = self._domain(event.url)
            category = self.categorize(domain)
            if previous_domain and domain != previous_domain:
                changes.append(
                    {
                        "from": previous_domain,
                        "to": domain,
                        "timestamp": event.timestamp,
                        "category": category,
                        "significance": self._change_significance(previous_domain, domain),
                    }
                )
                if previous_category:
                    transitions[previous_category][category] += 1
            previous_domain, previous_category = domain, category

        duration = events[-1].timestamp - events[0].timestamp if len(events) > 1 else 0
        return {
            "changes": changes,
            "change_frequency": len(changes) / duration * 3_600_000 if duration > 0 else 0.0,
            "category_transitions": {k: dict(v) for k, v in transitions.items()},
            "pattern": self._domain_change_pattern(changes),
        }

    def _domain_change_pattern(self, changes: list[dict]) -> dict:
        if len(changes) < 3:
            return _pattern("random", 0.0, "Insufficient domain changes for analysis")

        unique = {c["from"] for c in changes} | {c["to"] for c in changes}
        diversity = len(unique) / len(changes)
        category_changes = sum(
            1 for c in changes if self.categorize(c["from"]) != self.categorize(c["to"])
        )
        category_ratio = category_changes / len(changes)

        targets = [c["to"] for c in changes]
        returns = sum(1 for i in range(2, len(targets)) if targets[i] in targets[:i])
        return_ratio = returns / len(changes)

        if diversity < 0.3 and category_ratio < 0.2:
            return _pattern("focused", 1 - diversity, "Focused browsing within similar domains")
        if category_ratio > 0.6 and return_ratio < 0.2:
            return _pattern(
                "exploratory", category_ratio, "Exploratory browsing across different categories"
            )
        if category_ratio > 0.4 and return_ratio > 0.3:
            return _pattern(
                "task_switching",
                (category_ratio + return_ratio) / 2,
                "Task switching with returns to previous contexts",
            )
        return _pattern("random", 0.5, "Mixed browsing pattern without clear structure")

    def analyze_activity_bursts(self, events: Sequence[BrowsingEvent] | None = None) -> dict:
        """
        Find sustained periods of at least BURST_MIN_EVENTS events per minute.

        Returns:
            Dictionary with bursts, burst_frequency (per hour),
            average_burst_duration, quiet_periods and pattern
        """
        events = self.event_history if events is None else events
        empty = {
            "bursts": [],
            "burst_frequency": 0.0,
            "average_burst_duration": 0.0,
            "quiet_periods": [],
            "pattern": {"type": "random", "confidence": 0.0},
        }
        if len(events) < 10:
            return empty

        timestamps = np.array([e.timestamp for e in events], dtype=float)
        bursts = []
        current: dict | None = None

        for index, start in enumerate(timestamps):
            in_window = int(((timestamps >= start) & (timestamps < start + BURST_WINDOW_MS)).sum())
            intensity = in_window / BURST_MIN_EVENTS
            if in_window >= BURST_MIN_EVENTS:
                if current is None:
                    current = {
                        "start": float(start),
                        "end": float(start),
                        "event_count": in_window,
                        "intensity": intensity,
                        "trigger_event": events[index].id,
                    }
                else:
                    current["end"] = float(start)
                    current["event_count"] += in_window
                    current["intensity"] = max(current["intensity"], intensity)
            elif current is not None and start - current["end"] > BURST_WINDOW_MS:
                if current["end"] - current["start"] >= BURST_MIN_DURATION_MS:
                    bursts.append(current)
                current = None

        if current is not None and current["end"] - current["start"] >= BURST_MIN_DURATION_MS:
            bursts.append(current)

        total = float(timestamps[-1] - timestamps[0])
        quiet_periods = [
            {"start": a["end"], "end": b["start"], "duration": b["start"] - a["end"]}
            for a, b in zip(bursts, bursts[1:])
        ]
        return {
            "bursts": bursts,
            "burst_frequency": len(bursts) / total * 3_600_000 if total > 0 else 0.0,
            "average_burst_duration": (
                float(np.mean([b["end"] - b["start"] for b in bursts])) if bursts else 0.0
            ),
            "quiet_periods": quiet_periods,
            "pattern": self._burst_pattern(bursts),
        }

    @staticmethod
    def _burst_pattern(bursts: list[dict]) -> dict:
        if len(bursts) < 2:
            return {"type": "random", "confidence": 0.0}

        intervals = [b["start"] - a["end"] for a, b in zip(bursts, bursts[1:])]
        coefficient = _coefficient_of_variation(intervals)
        if coefficient < 0.4:
            return {"type": "regular", "confidence": 1 - coefficient}

        intensity_variance = float(np.var([b["intensity"] for b in bursts]))
        if intensity_variance > 1:
            return {"type": "task_driven", "confidence": min(intensity_variance / 2, 1.0)}
        return {"type": "irregular", "confidence": 0.6}

    def analyze_focus_patterns(self, events: Sequence[BrowsingEvent] | None = None) -> dict:
        """
        Focus time between tab activations, deep work and multitasking episodes.

        Deep work is an uninterrupted stretch over 20 minutes; multitasking is a
        run of sub-30s switches lasting over a minute.
        """
        events = self.event_history if events is None else events
        activations = [e.timestamp for e in events if e.type == EventType.TAB_ACTIVATED]
        if len(activations) < 2:
            return {
                "average_focus_time": 0.0,
                "distraction_frequency": 0.0,
                "deep_work_sessions": [],
                "multitasking_sessions": [],
            }

        intervals = [b - a for a, b in zip(activations, activations[1:])]
        focus_times = [t for t in intervals if 0 < t < MAX_FOCUS_MS]
        duration = events[-1].timestamp - events[0].timestamp

        deep_work = []
        multitasking = []
        i = 1
        while i < len(activations):
            gap = activations[i] - activations[i - 1]
            if gap > DEEP_WORK_MS:
                deep_work.append(
                    {"start": activations[i - 1], "end": activations[i], "duration": gap}
                )
            elif gap < MULTITASK_SWITCH_MS:
                start, end = activations[i - 1], activations[i]
                j = i + 1
                while j < len(activations) and activations[j] - activations[j - 1] < MULTITASK_SWITCH_MS:
                    end = activations[j]
                    j += 1
                if end - start > MINUTE_MS:
                    multitasking.append({"start": start, "end": end, "duration": end - start})
                    i = j
                    continue
            i += 1

        return {
            "average_focus_time": float(np.mean(focus_times)) if focus_times else 0.0,
            "distraction_frequency": len(activations) / duration * MINUTE_MS if duration > 0 else 0.0,
            "deep_work_sessions": deep_work,
            "multitasking_sessions": multitasking,
        }

    def calculate_behavior_metrics(self, events: Sequence[BrowsingEvent] | None = None) -> dict:
        """
        Aggregate behavior metrics over the history.

        Returns:
            Dictionary of temporal, navigation, tab, focus and domain metrics
        """
        events = self.event_history if events is None else events
        if not events:
            return self._empty_metrics()

        duration = events[-1].timestamp - events[0].timestamp if len(events) > 1 else 0

        hours: Counter[int] = Counter()
        for event in events:
            try:
                hours[datetime.fromtimestamp(event.timestamp / 1000).hour] += 1
            except (OverflowError, OSError, ValueError):
                continue

        navigation = [e for e in events if e.type.is_navigation]
        focus = self.analyze_focus_patterns(events)
        domain_changes = self.analyze_domain_changes(events)

        metrics = {
            "average_session_duration": duration,
            "average_idle_time": self._average_idle_time(events),
            "peak_activity_hours": [hour for hour, _ in hours.most_common(3)],
            "activity_distribution": dict(hours),
            "average_navigation_gap": self.analyze_time_gaps(navigation)["average_gap"],
            "navigation_velocity": len(navigation) / duration * MINUTE_MS if duration > 0 else 0.0,
            "domain_switch_frequency": domain_changes["change_frequency"],
            "back_navigation_ratio": self._back_navigation_ratio(navigation),
            "average_tabs_per_session": self._average_tabs_per_session(events),
            "max_concurrent_tabs": self._max_concurrent_tabs(events),
            "tab_creation_patterns": self._tab_creation_patterns(events),
            "tab_close_patterns": {
                "user_close": sum(1 for e in events if e.type == EventType.TAB_REMOVED)
            },
            "average_focus_time": focus["average_focus_time"],
            "distraction_frequency": focus["distraction_frequency"],
            "deep_work_sessions": focus["deep_work_sessions"],
            "multitasking_sessions": focus["multitasking_sessions"],
            "domain_categories": self._category_time(events),
            "domain_transitions": domain_changes["category_transitions"],
            "domain_affinity": self._domain_affinity(events),
        }
        self.metrics = metrics
        self.last_analysis = events[-1].timestamp
        return metrics

    @staticmethod
    def _empty_metrics() -> dict:
        return {
            "average_session_duration": 0,
            "average_idle_time": 0.0,
            "peak_activity_hours": [],
            "activity_distribution": {},
            "average_navigation_gap": 0.0,
            "navigation_velocity": 0.0,
            "domain_switch_frequency": 0.0,
            "back_navigation_ratio": 0.0,
            "average_tabs_per_session": 0.0,
            "max_concurrent_tabs": 0,
            "tab_creation_patterns": {},
            "tab_close_patterns": {},
            "average_focus_time": 0.0,
            "distraction_frequency": 0.0,
            "deep_work_sessions": [],
            "multitasking_sessions": [],
            "domain_categories": {},
            "domain_transitions": {},
            "domain_affinity": {},
        }

    @staticmethod
    def _average_idle_time(events: Sequence[BrowsingEvent]) -> float:
        starts = [e.timestamp for e in events if e.type == EventType.IDLE_START]
        if not starts:
            return 0.0
        ends = [e.timestamp for e in events if e.type == EventType.IDLE_END]
        total = 0.0
        for start in starts:
            end = next((t for t in ends if t > start), None)
            if end is not None:
                total += end - start
        return total / len(starts)

    @staticmethod
    def _back_navigation_ratio(navigation: Sequence[BrowsingEvent]) -> float:
        if not navigation:
            return 0.0
        back = sum(1 for e in navigation if e.metadata.get("transition_type") == "auto_bookmark")
        return back / len(navigation)

    @staticmethod
    def _average_tabs_per_session(events: Sequence[BrowsingEvent]) -> float:
        sessions = sum(1 for e in events if e.type == EventType.SESSION_STARTED)
        created = sum(1 for e in events if e.type == EventType.TAB_CREATED)
        return created / sessions if sessions else 0.0

    @staticmethod
    def _max_concurrent_tabs(events: Sequence[BrowsingEvent]) -> int:
        current = peak = 0
        for event in events:
            if event.type == EventType.TAB_CREATED:
                current += 1
                peak = max(peak, current)
            elif event.type == EventType.TAB_REMOVED:
                current = max(0, current - 1)
        return peak

    @staticmethod
    def _tab_creation_patterns(events: Sequence[BrowsingEvent]) -> dict[str, int]:
        patterns: Counter[str] = Counter()
        for event in events:
            if event.type == EventType.TAB_CREATED:
                opened_from_link = "opener_tab_id" in event.metadata
                patterns["link_click" if opened_from_link else "user_initiated"] += 1
        return dict(patterns)

    def _category_time(self, events: Sequence[BrowsingEvent]) -> dict[str, float]:
        totals: Counter[str] = Counter()
        last_category, last_timestamp = None, None
        for event in events:
            if not event.url:
                continue
            if last_category is not None:
                totals[last_category] += event.timestamp - last_timestamp
            last_category = self.categorize(self._domain(event.url))
            last_timestamp = event.timestamp
        return dict(totals)

    def _domain_affinity(self, events: Sequence[BrowsingEvent]) -> dict[str, float]:
        """Blend of visit frequency and share of visits in the last 24 hours."""
        url_events = [e for e in events if e.url]
        if not url_events:
            return {}
        now = events[-1].timestamp
        visits: Counter[str] = Counter()
        recent: Counter[str] = Counter()
        for event in url_events:
            domain = self._domain(event.url)
            visits[domain] += 1
            if now - event.timestamp < 24 * 3_600_000:
                recent[domain] += 1
        return {
            domain: (recent[domain] / count + min(count / 10, 1.0)) / 2
            for domain, count in visits.items()
        }

    def detect_boundary_patterns(self, recent_events: Sequence[BrowsingEvent]) -> list[dict]:
        """
        Run the ad hoc boundary-indicating pattern detectors.

        Detected patterns are also remembered (frequency counted by id) and
        returned by get_detected_patterns().
        """
        if not recent_events:
            return []
        now = recent_events[-1].timestamp
        detectors = (
            self._idle_to_activity,
            self._domain_category_switch,
            self._tab_burst,
            self._velocity_change,
            self._window_management,
        )
        found = [p for p in (detect(recent_events, now) for detect in detectors) if p]

        for pattern in found:
            known = self.patterns.get(pattern["id"])
            if known:
                pattern["frequency"] = known["frequency"] + 1
            self.patterns[pattern["id"]] = pattern
        return found

    @staticmethod
    def _behavior_pattern(
        pattern_id: str, name: str, description: str, body: list, confidence: float, now: float, predictive: bool = True
    ) -> dict[str, Any]:
        return {
            "id": pattern_id,
            "name": name,
            "description": description,
            "pattern": body,
            "confidence": max(0.0, min(1.0, confidence)),
            "frequency": 1,
            "last_seen": now,
            "predictive": predictive,
        }

    def _idle_to_activity(self, events: Sequence[BrowsingEvent], now: float) -> dict | None:
        if len(events) < 5:
            return None
        recent = [e for e in events if now - e.timestamp < 10 * MINUTE_MS]
        if len(recent) < 3:
            return None
        first = recent[0].timestamp
        older = [e for e in events if first - 30 * MINUTE_MS < e.timestamp < first - 5 * MINUTE_MS]
        if len(older) > 2 and len(recent) > len(older) * 2:
            return self._behavior_pattern(
                "idle_to_activity",
                "Idle to Activity Transition",
                "Activity burst after quiet period",
                [len(older), len(recent)],
                (len(recent) / len(older)) / 3,
                now,
            )
        return None

    def _domain_category_switch(self, events: Sequence[BrowsingEvent], now: float) -> dict | None:
        urls = [e.url for e in events if e.url and now - e.timestamp < 5 * MINUTE_MS][-5:]
        if len(urls) < 2:
            return None
        categories = list(dict.fromkeys(self.categorize(self._domain(u)) for u in urls))
        if len(categories) >= 3:
            return self._behavior_pattern(
                "domain_category_switch",
                "Domain Category Switch",
                "Rapid switching between domain categories",
                categories,
                len(categories) / 5,
                now,
            )
        return None

    def _tab_burst(self, events: Sequence[BrowsingEvent], now: float) -> dict | None:
        created = [
            e for e in events if e.type == EventType.TAB_CREATED and now - e.timestamp < 2 * MINUTE_MS
        ]
        if len(created) < 3:
            return None
        burst_start = created[0].timestamp
        earlier = [e.timestamp for e in events if e.timestamp < burst_start]
        quiet = burst_start - max(earlier) if earlier else 0
        if quiet > 5 * MINUTE_MS:
            return self._behavior_pattern(
                "tab_burst",
                "Tab Creation Burst",
                "Multiple tabs created after quiet period",
                [quiet, len(created)],
                len(created) / 5,
                now,
            )
        return None

    @staticmethod
    def _velocity(events: Sequence[BrowsingEvent], start: float, end: float) -> float:
        count = sum(1 for e in events if start <= e.timestamp < end)
        return count / (end - start) * MINUTE_MS if end > start else 0.0

    def _velocity_change(self, events: Sequence[BrowsingEvent], now: float) -> dict | None:
        if len(events) < 20:
            return None
        # Inclusive of the newest event
        recent = self._velocity(events, now - 5 * MINUTE_MS, now + 1)
        previous = self._velocity(events, now - 15 * MINUTE_MS, now - 5 * MINUTE_MS)
        if previous <= 0 or recent <= 0:
            return None
        ratio = recent / previous
        if ratio > 2 or ratio < 0.5:
            return self._behavior_pattern(
                "velocity_change",
                "Navigation Velocity Change",
                "Activity acceleration" if ratio > 2 else "Activity deceleration",
                [previous, recent],
                abs(float(np.log2(ratio))) / 2,
                now,
                predictive=False,
            )
        return None

    def _window_management(self, events: Sequence[BrowsingEvent], now: float) -> dict | None:
        window_events = [e for e in events if e.type.is_window and now - e.timestamp < 2 * MINUTE_MS]
        if len(window_events) < 2:
            return None
        lifecycle = {EventType.WINDOW_CREATED, EventType.WINDOW_REMOVED}
        if any(e.type in lifecycle for e in window_events):
            return self._behavior_pattern(
                "window_management",
                "Window Management Activity",
                "Recent window creation or removal",
                [e.type.value for e in window_events],
                0.7,
                now,
            )
        return None

    def get_current_metrics(self) -> dict | None:
        return self.metrics

    def get_detected_patterns(self) -> list[dict]:
        return list(self.patterns.values())

    def clear_history(self):
        """Drop events, cached metrics and detected patterns."""
        self.event_history = []
        self.metrics = None
        self.patterns.clear()
        self.last_analysis = 0.0
        logger.debug("Behavior history cleared")

    def export_analysis_data(self) -> dict:
        latest = self.event_history[-1].timestamp if self.event_history else 0.0
        return {
            "event_history": [e.to_dict() for e in self.event_history[-100:]],
            "metrics": self.metrics,
            "patterns": self.get_detected_patterns(),
            "last_analysis": self.last_analysis,
            "stats": {
                "total_events": len(self.event_history),
                "analysis_age": latest - self.last_analysis if self.last_analysis else None,
            },
        }
