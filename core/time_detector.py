"""
time_detector.py
-----------------
Time-of-transaction anomaly detection.

Four independent analyses fill one TimePatternSet (each owns its own
fields, so no analysis can overwrite another's signal):

    1. Basic: clock/calendar booleans and amount × time correlations.
       Needs no history.
    2. Behavioral: hour-of-day / day-of-week frequency tables built from
       history. Needs >= 5 rows.
    3. Velocity: activity in the trailing 60 minutes. Needs >= 3 rows.
    4. Seasonal: month-end, payday windows, weekend share, holidays.

The sub-score is a sum of fixed per-signal weights capped at 50, so time
signals alone can never push a transfer past half the scale.

Alerts are a separate, ordered list for the most salient signals
(late night, overnight, high value off hours, rapid succession, burst).
They do not feed the numeric score.
"""

import numpy as np
import pandas as pd
from datetime import datetime
from typing import Any, Dict, Iterable

from core.models import (
    AlertKind, PatternAlert, ReasonKind, RiskReason, TimeAnalysisResult, TimePatternSet,
)
from core.history import (
    check_timezone_consistency, coerce_amount, coerce_timestamp, epoch_seconds,
    history_frame, prepare_history,
)
from config.config_loader import get_time_detection_config


SOURCE = "time"

WEEKDAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


class TimeAnomalyDetector:
    """
    Stateless time-pattern detector.

    Usage:
        detector = TimeAnomalyDetector()
        result = detector.detect_patterns(user_id, timestamp, amount, history)
    """

    def __init__(self, config: Dict[str, Any] | None = None):
        self.config = config if config is not None else get_time_detection_config()
        self.min_behavioral = int(self.config["min_behavioral_transactions"])
        self.min_velocity = int(self.config["min_velocity_transactions"])
        self.high_value_amount = float(self.config["high_value_amount"])
        self.medium_value_amount = float(self.config["medium_value_amount"])
        self.weekend_high_amount = float(self.config["weekend_high_amount"])
        self.velocity_window_seconds = float(self.config["velocity_window_minutes"]) * 60
        self.rapid_gap_seconds = float(self.config["rapid_gap_minutes"]) * 60
        self.deviation_threshold = float(self.config["deviation_threshold"])
        self.score_cap = int(self.config["score_cap"])
        self.max_confidence = float(self.config["max_confidence"])
        self.unusual_minutes = set(self.config["unusual_minutes"])
        self.holidays = {(int(m), int(d)) for m, d in self.config["holidays"]}
        self.weights = self.config["weights"]

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def detect_patterns(
        self, user_id: str, timestamp: Any, amount: Any, history: Iterable[Any]
    ) -> TimeAnalysisResult:
        """
        Runs all four analyses for one transaction.

        Args:
            user_id: Requesting user. Carried for tracing only.
            timestamp: Transaction instant (datetime or parseable string).
            amount: Transaction amount.
            history: The user's past transactions.

        Returns:
            TimeAnalysisResult with patterns, capped risk score, alerts and confidence.
        """
        timestamp = coerce_timestamp(timestamp)
        amount = coerce_amount(amount)
        transactions = prepare_history(history)
        check_timezone_consistency([timestamp] + [tx.timestamp for tx in transactions])

        frame = history_frame(transactions)
        patterns = TimePatternSet()

        self._analyze_basic(patterns, timestamp, amount)
        self._analyze_behavioral(patterns, timestamp, amount, frame)
        self._analyze_velocity(patterns, timestamp, frame)
        self._analyze_seasonal(patterns, timestamp, frame)

        factors = self._score_factors(patterns, timestamp, amount)
        risk_score = min(int(sum(f.points for f in factors)), self.score_cap)

        if patterns.insufficient_data:
            factors.append(RiskReason(
                ReasonKind.INSUFFICIENT_TIME_HISTORY, SOURCE,
                params={"available": len(transactions), "required": self.min_behavioral},
            ))

        return TimeAnalysisResult(
            patterns=patterns,
            risk_score=risk_score,
            alerts=self._build_alerts(patterns, amount),
            confidence=self._confidence(len(transactions), patterns),
            factors=factors,
        )

    # -------------------------------------------------------------------------
    # INTERNAL: ANALYSES
    # -------------------------------------------------------------------------

    def _analyze_basic(self, patterns: TimePatternSet, timestamp: datetime, amount: float) -> None:
        hour = timestamp.hour
        minute = timestamp.minute
        weekday = timestamp.weekday()

        patterns.late_night = 0 <= hour <= 5
        patterns.early_morning = 4 <= hour <= 7
        patterns.overnight = hour >= 22 or hour <= 3
        patterns.weekend = weekday >= 5
        patterns.business_hours = weekday < 5 and 9 <= hour <= 17
        patterns.lunch_hours = 12 <= hour <= 14
        patterns.dinner_hours = 18 <= hour <= 21

        patterns.high_value_off_hours = amount > self.high_value_amount and (hour < 9 or hour > 17)
        patterns.medium_value_late = (
            self.medium_value_amount < amount <= self.high_value_amount and (hour >= 20 or hour <= 6)
        )
        patterns.small_value_overnight = amount <= self.medium_value_amount and (hour >= 22 or hour <= 4)

        patterns.round_hour = minute == 0
        patterns.quarter_hour = minute % 15 == 0
        patterns.unusual_minute = minute in self.unusual_minutes

    def _analyze_behavioral(
        self, patterns: TimePatternSet, timestamp: datetime, amount: float, frame: pd.DataFrame
    ) -> None:
        """
        Compares the current hour/weekday bucket with a uniform expectation:
            deviation = |observed - expected| / expected
        """
        n = len(frame)
        if n < self.min_behavioral:
            patterns.behavioral_insufficient_data = True
            return

        hourly = frame["hour"].value_counts()
        daily = frame["weekday"].value_counts()

        hour_count = int(hourly.get(timestamp.hour, 0))
        day_count = int(daily.get(timestamp.weekday(), 0))
        expected_hourly = n / 24
        expected_daily = n / 7

        patterns.hourly_deviation = round(abs(hour_count - expected_hourly) / expected_hourly, 4)
        patterns.daily_deviation = round(abs(day_count - expected_daily) / expected_daily, 4)
        patterns.first_time_hour = hour_count == 0
        patterns.first_time_day = day_count == 0

        # Share of the clock/week the user actually uses
        patterns.consistency_score = round((len(hourly) / 24 + len(daily) / 7) / 2, 4)

        # Interquartile amount band and Tukey fences for the current amount
        amounts = np.sort(frame["amount"].to_numpy(dtype=float))
        q1 = float(amounts[int(n * 0.25)])
        q3 = float(amounts[int(n * 0.75)])
        iqr = q3 - q1
        patterns.typical_amount_min = q1
        patterns.typical_amount_max = q3
        patterns.amount_outlier = amount < q1 - 1.5 * iqr or amount > q3 + 1.5 * iqr

    def _analyze_velocity(self, patterns: TimePatternSet, timestamp: datetime, frame: pd.DataFrame) -> None:
        if len(frame) < self.min_velocity:
            patterns.velocity_insufficient_data = True
            return

        now = epoch_seconds(timestamp)
        elapsed = now - frame["epoch_seconds"]
        in_window = (elapsed > 0) & (elapsed <= self.velocity_window_seconds)

        # Newest first, so consecutive gaps are positive
        recent = np.sort(frame.loc[in_window, "epoch_seconds"].to_numpy(dtype=float))[::-1]
        count = len(recent)
        gaps = recent[:-1] - recent[1:] if count >= 2 else np.array([])
        rapid_pairs = int(np.sum(gaps <= self.rapid_gap_seconds))

        patterns.transactions_last_hour = count
        patterns.rapid_pairs = rapid_pairs
        patterns.rapid_succession = count >= 3
        patterns.burst_activity = rapid_pairs >= 2
        patterns.average_interval_seconds = float(np.mean(gaps)) if len(gaps) else None
        patterns.velocity_risk = self._velocity_risk(count, rapid_pairs)

    @staticmethod
    def _velocity_risk(count: int, rapid_pairs: int) -> int:
        risk = 0
        if count >= 5:
            risk += 15
        if count >= 10:
            risk += 10
        if rapid_pairs >= 3:
            risk += 20
        return min(risk, 35)

    def _analyze_seasonal(self, patterns: TimePatternSet, timestamp: datetime, frame: pd.DataFrame) -> None:
        day = timestamp.day
        patterns.month_end_activity = day >= 25
        patterns.payday_period = 1 <= day <= 5 or 10 <= day <= 12
        patterns.holiday_period = (timestamp.month, day) in self.holidays

        n = len(frame)
        if n == 0:
            return

        # Does this calendar month usually run hotter/colder than average?
        monthly = frame["month"].value_counts()
        avg_activity = n / 12
        current = int(monthly.get(timestamp.month, 0))
        patterns.seasonal_month = abs(current - avg_activity) / avg_activity > 0.5

        weekend_ratio = float((frame["weekday"] >= 5).mean())
        patterns.weekend_spending_pattern = weekend_ratio > 0.4
        patterns.weekday_spending_pattern = (1 - weekend_ratio) > 0.7

    # -------------------------------------------------------------------------
    # INTERNAL: SCORING, ALERTS, CONFIDENCE
    # -------------------------------------------------------------------------

    def _score_factors(self, patterns: TimePatternSet, timestamp: datetime, amount: float) -> list[RiskReason]:
        w = self.weights
        hour = timestamp.hour
        clock = {"hour": hour, "minute": timestamp.minute}
        weekday = {"weekday": WEEKDAY_NAMES[timestamp.weekday()]}

        checks = [
            (patterns.late_night, ReasonKind.LATE_NIGHT, "late_night", clock),
            (patterns.overnight, ReasonKind.OVERNIGHT, "overnight", clock),
            (patterns.early_morning, ReasonKind.EARLY_MORNING, "early_morning", clock),
            (
                patterns.weekend and amount > self.weekend_high_amount,
                ReasonKind.WEEKEND_HIGH_AMOUNT, "weekend_high_amount", {**weekday, "amount": amount},
            ),
            (patterns.high_value_off_hours, ReasonKind.HIGH_VALUE_OFF_HOURS, "high_value_off_hours",
             {"amount": amount, "hour": hour}),
            (patterns.medium_value_late, ReasonKind.MEDIUM_VALUE_LATE, "medium_value_late",
             {"amount": amount, "hour": hour}),
            (patterns.first_time_hour, ReasonKind.FIRST_TIME_HOUR, "first_time_hour", {"hour": hour}),
            (patterns.first_time_day, ReasonKind.FIRST_TIME_DAY, "first_time_day", weekday),
            (patterns.hourly_deviation > self.deviation_threshold, ReasonKind.HOURLY_DEVIATION,
             "hourly_deviation", {"hour": hour, "deviation": patterns.hourly_deviation}),
            (patterns.daily_deviation > self.deviation_threshold, ReasonKind.DAILY_DEVIATION,
             "daily_deviation", {**weekday, "deviation": patterns.daily_deviation}),
            (patterns.rapid_succession, ReasonKind.RAPID_SUCCESSION, "rapid_succession",
             {"count": patterns.transactions_last_hour}),
            (patterns.burst_activity, ReasonKind.BURST_ACTIVITY, "burst_activity",
             {"rapid_pairs": patterns.rapid_pairs}),
            (patterns.unusual_minute, ReasonKind.UNUSUAL_MINUTE, "unusual_minute", clock),
            (patterns.round_hour, ReasonKind.ROUND_HOUR, "round_hour", clock),
        ]

        return [
            RiskReason(kind, SOURCE, float(w[weight_key]), params)
            for fired, kind, weight_key, params in checks
            if fired
        ]

    @staticmethod
    def _build_alerts(patterns: TimePatternSet, amount: float) -> list[PatternAlert]:
        alerts = []
        if patterns.late_night:
            alerts.append(PatternAlert(AlertKind.LATE_NIGHT, "WARNING", "MEDIUM"))
        if patterns.overnight:
            alerts.append(PatternAlert(AlertKind.OVERNIGHT, "ALERT", "HIGH"))
        if patterns.high_value_off_hours:
            alerts.append(PatternAlert(AlertKind.HIGH_VALUE_OFF_HOURS, "ALERT", "HIGH", {"amount": amount}))
        if patterns.rapid_succession:
            alerts.append(PatternAlert(
                AlertKind.RAPID_SUCCESSION, "WARNING", "MEDIUM", {"count": patterns.transactions_last_hour}
            ))
        if patterns.burst_activity:
            alerts.append(PatternAlert(AlertKind.BURST_ACTIVITY, "ALERT", "HIGH", {"rapid_pairs": patterns.rapid_pairs}))
        return alerts

    def _confidence(self, history_length: int, patterns: TimePatternSet) -> float:
        confidence = 0.5
        if history_length >= 50:
            confidence += 0.3
        elif history_length >= 20:
            confidence += 0.2
        elif history_length >= 10:
            confidence += 0.1

        if patterns.insufficient_data:
            confidence *= 0.5

        return round(min(confidence, self.max_confidence), 4)
