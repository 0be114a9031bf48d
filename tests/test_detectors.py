"""
test_detectors.py
------------------
Unit tests for input preparation and the three anomaly detectors.

Run from the project root:
    python -m pytest tests/test_detectors.py -v

Tests are organized by layer:
    - History / input coercion
    - Amount detector
    - Time detector
    - Recipient profiler
"""

import sys
import os
import math
import pytest
import pandas as pd
from datetime import datetime, timedelta, timezone

# Ensure the project root is on the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from config.config_loader import reset_config
from core.errors import InvalidInputError
from core.models import AdviceKind, AlertKind, ReasonKind, Transaction
from core.history import coerce_amount, coerce_timestamp, history_frame, prepare_history, to_transaction
from core.amount_detector import AmountAnomalyDetector
from core.time_detector import TimeAnomalyDetector
from core.recipient_profiler import RecipientProfiler


# Tuesday, mid-afternoon, minute that triggers no clock signal
NOW = datetime(2024, 3, 12, 14, 7)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture(autouse=True)
def reset_config_cache():
    """Clears config cache before each test for isolation."""
    reset_config()
    yield
    reset_config()


def _daily_history(
    amounts,
    start: datetime = datetime(2024, 2, 20, 14, 7),
    payee_id: str = "shop@upi",
    payee_name: str = "Corner Shop",
    step: timedelta = timedelta(days=1),
) -> list:
    """Helper: one transaction per step, same payee, same wall-clock time."""
    return [
        Transaction(amount=a, timestamp=start + i * step, payee_id=payee_id, payee_name=payee_name)
        for i, a in enumerate(amounts)
    ]


def _kinds(factors) -> list:
    return [f.kind for f in factors]


# =============================================================================
# HISTORY / INPUT TESTS
# =============================================================================

class TestHistory:
    def test_amount_string_is_parsed(self):
        assert coerce_amount("1500.50") == 1500.5

    @pytest.mark.parametrize("bad", [0, -5, "abc", None, float("nan"), float("inf"), True])
    def test_bad_amounts_rejected(self, bad):
        with pytest.raises(InvalidInputError) as exc:
            coerce_amount(bad)
        assert exc.value.code == "INVALID_INPUT"
        assert exc.value.field == "amount"

    def test_invalid_input_is_a_value_error(self):
        with pytest.raises(ValueError):
            coerce_amount(-1)

    def test_timestamp_string_is_parsed(self):
        assert coerce_timestamp("2024-03-12T14:07:00") == NOW

    def test_unparseable_timestamp_rejected(self):
        with pytest.raises(InvalidInputError):
            coerce_timestamp("not a date")

    @pytest.mark.parametrize("missing", [pd.NaT, float("nan"), pd.NA, None])
    def test_missing_timestamp_rejected(self, missing):
        with pytest.raises(InvalidInputError) as exc:
            coerce_timestamp(missing)
        assert exc.value.field == "timestamp"

    @pytest.mark.parametrize("missing", [float("nan"), pd.NA, pd.NaT, "   "])
    def test_missing_payee_id_rejected(self, missing):
        with pytest.raises(InvalidInputError) as exc:
            to_transaction({"amount": 500, "timestamp": NOW, "payee_id": missing})
        assert exc.value.field == "payee_id"

    def test_literal_nan_payee_string_is_kept(self):
        assert to_transaction({"amount": 500, "timestamp": NOW, "payee_id": "nan"}).payee_id == "nan"

    def test_camel_case_mapping_accepted(self):
        tx = to_transaction({
            "amount": 250, "createdAt": "2024-03-12 14:07", "payeeId": "a@upi", "payeeName": "A",
        })
        assert tx == Transaction(250.0, NOW, "a@upi", "A")

    def test_missing_payee_reports_field_path(self):
        with pytest.raises(InvalidInputError) as exc:
            prepare_history([{"amount": 10, "timestamp": NOW, "payee_id": "a"}, {"amount": 10, "timestamp": NOW}])
        assert exc.value.field == "history[1].payee_id"

    def test_history_sorted_oldest_first(self):
        rows = _daily_history([1, 2, 3])
        prepared = prepare_history(list(reversed(rows)))
        assert [tx.amount for tx in prepared] == [1.0, 2.0, 3.0]

    def test_history_string_rejected(self):
        with pytest.raises(InvalidInputError):
            prepare_history("not a list")

    def test_mixed_timezones_rejected(self):
        rows = [
            Transaction(10, NOW, "a"),
            Transaction(10, NOW.replace(tzinfo=timezone.utc), "a"),
        ]
        with pytest.raises(InvalidInputError):
            prepare_history(rows)

    def test_history_frame_columns(self):
        frame = history_frame(prepare_history(_daily_history([100, 200])))
        assert list(frame["hour"]) == [14, 14]
        assert list(frame["position"]) == [0, 1]
        assert history_frame([]).empty


# =============================================================================
# AMOUNT DETECTOR TESTS
# =============================================================================

class TestAmountDetector:
    def test_insufficient_history_never_anomalous(self):
        result = AmountAnomalyDetector().detect_anomaly(1_000_000, _daily_history([1000] * 9))
        assert result.is_anomalous is False
        assert result.insufficient_data is True
        assert result.confidence == 0.0
        assert result.risk_score == 0
        assert result.reason.kind == ReasonKind.INSUFFICIENT_AMOUNT_HISTORY
        assert result.reason.params == {"available": 9, "required": 10}

    def test_profile_statistics(self):
        profile = AmountAnomalyDetector().analyze_patterns(_daily_history([900, 1100] * 10))
        assert profile.has_enough_data
        assert profile.average_amount == pytest.approx(1000)
        assert profile.standard_deviation == pytest.approx(100)
        assert profile.typical_min == pytest.approx(800)
        assert profile.typical_max == pytest.approx(1200)
        assert profile.confidence == pytest.approx(0.36)

    def test_median_even_count_is_midpoint(self):
        profile = AmountAnomalyDetector().analyze_patterns(_daily_history(list(range(1, 11))))
        assert profile.median_amount == 5.5

    def test_typical_min_floored_at_zero(self):
        profile = AmountAnomalyDetector().analyze_patterns(_daily_history([10] * 9 + [5000]))
        assert profile.typical_min == 0.0

    def test_mean_is_never_an_outlier(self):
        result = AmountAnomalyDetector().detect_anomaly(1000, _daily_history([900, 1100] * 10))
        assert result.is_anomalous is False
        assert result.deviation == 0
        assert result.reason.kind == ReasonKind.AMOUNT_WITHIN_RANGE
        assert result.risk_score == 0

    def test_six_sigma_always_anomalous(self):
        result = AmountAnomalyDetector().detect_anomaly(1600, _daily_history([900, 1100] * 10))
        assert result.is_anomalous is True
        assert result.deviation == pytest.approx(6)
        assert result.reason.kind == ReasonKind.AMOUNT_SIGMA_DEVIATION
        # 30 (>3σ) + 10 (above typical max, ratio 1.33)
        assert result.risk_score == 40

    def test_multiple_of_mean_fires_under_large_sigma(self):
        history = _daily_history([10] * 19 + [10000])
        result = AmountAnomalyDetector().detect_anomaly(3000, history)
        assert result.deviation < 3
        assert result.is_anomalous is True
        assert result.reason.kind == ReasonKind.AMOUNT_MULTIPLE_OF_AVERAGE
        assert result.risk_score == 25

    def test_multiple_rule_overrides_sigma_reason(self):
        result = AmountAnomalyDetector().detect_anomaly(20000, _daily_history([900, 1100] * 10))
        assert result.reason.kind == ReasonKind.AMOUNT_MULTIPLE_OF_AVERAGE
        # 30 + 25 + 40
        assert result.risk_score == 95

    def test_zero_variance_history(self):
        detector = AmountAnomalyDetector()
        history = _daily_history([1000] * 10)
        same = detector.detect_anomaly(1000, history)
        assert same.is_anomalous is False
        assert same.deviation == 0

        different = detector.detect_anomaly(1001, history)
        assert different.is_anomalous is True
        assert math.isinf(different.deviation)

    def test_suspicious_low_amount(self):
        result = AmountAnomalyDetector().detect_anomaly(500, _daily_history([900, 1100] * 10))
        assert result.is_anomalous is True
        assert ReasonKind.AMOUNT_UNUSUALLY_LOW in _kinds(result.factors)

    def test_risk_score_clamped(self):
        result = AmountAnomalyDetector().detect_anomaly(1_000_000, _daily_history([900, 1100] * 10))
        assert result.risk_score <= 100

    def test_recommendations(self):
        detector = AmountAnomalyDetector()
        result = detector.detect_anomaly(20000, _daily_history([900, 1100] * 10))
        kinds = [a.kind for a in detector.recommendations(result)]
        assert kinds[0] == AdviceKind.VERIFY_AMOUNT
        assert AdviceKind.ENABLE_TRANSACTION_LIMITS in kinds
        assert AdviceKind.TYPICAL_AMOUNT_HINT in kinds

        normal = detector.detect_anomaly(1000, _daily_history([900, 1100] * 10))
        assert detector.recommendations(normal) == []

    def test_injected_config(self):
        detector = AmountAnomalyDetector({
            "min_transactions": 3, "sigma_outlier": 3.0, "low_outlier_sigma": 2.0,
            "typical_range_sigmas": 2.0, "mean_multiplier_ceiling": 5.0, "full_confidence_sample": 50,
        })
        assert detector.analyze_patterns(_daily_history([100, 200, 300])).has_enough_data


# =============================================================================
# TIME DETECTOR TESTS
# =============================================================================

class TestTimeDetector:
    def test_quiet_afternoon_scores_zero(self):
        result = TimeAnomalyDetector().detect_patterns("u1", NOW, 500, [])
        assert result.risk_score == 0
        assert result.is_unusual is False
        assert result.patterns.business_hours is True
        assert result.patterns.lunch_hours is True
        assert result.alerts == []

    def test_empty_history_marks_insufficient(self):
        result = TimeAnomalyDetector().detect_patterns("u1", NOW, 500, [])
        assert result.patterns.behavioral_insufficient_data
        assert result.patterns.velocity_insufficient_data
        assert result.confidence == 0.25
        insufficient = [f for f in result.factors if f.kind == ReasonKind.INSUFFICIENT_TIME_HISTORY]
        assert len(insufficient) == 1
        assert insufficient[0].points == 0

    def test_late_night_signals_and_alerts(self):
        result = TimeAnomalyDetector().detect_patterns("u1", datetime(2024, 3, 12, 2, 30), 500, [])
        assert result.patterns.late_night
        assert result.patterns.overnight
        assert not result.patterns.early_morning
        assert result.patterns.small_value_overnight
        assert result.risk_score == 45
        assert [a.kind for a in result.alerts] == [AlertKind.LATE_NIGHT, AlertKind.OVERNIGHT]
        assert result.alerts[1].alert_type == "ALERT"
        assert result.alerts[1].severity == "HIGH"

    def test_score_capped_at_fifty(self):
        result = TimeAnomalyDetector().detect_patterns("u1", datetime(2024, 3, 16, 2, 0), 60000, [])
        assert result.patterns.high_value_off_hours
        assert result.patterns.round_hour
        assert result.risk_score == 50

    def test_unusual_minute(self):
        result = TimeAnomalyDetector().detect_patterns("u1", datetime(2024, 3, 12, 14, 33), 500, [])
        assert result.patterns.unusual_minute
        assert result.risk_score == 15

    def test_medium_value_late(self):
        result = TimeAnomalyDetector().detect_patterns("u1", datetime(2024, 3, 12, 20, 15), 20000, [])
        assert result.patterns.medium_value_late
        assert ReasonKind.MEDIUM_VALUE_LATE in _kinds(result.factors)

    def test_weekend_high_amount(self):
        saturday = datetime(2024, 3, 16, 14, 7)
        result = TimeAnomalyDetector().detect_patterns("u1", saturday, 25000, [])
        assert result.patterns.weekend
        assert ReasonKind.WEEKEND_HIGH_AMOUNT in _kinds(result.factors)

    def test_first_time_hour(self):
        history = _daily_history([1000] * 10)
        result = TimeAnomalyDetector().detect_patterns("u1", datetime(2024, 3, 12, 10, 7), 1000, history)
        assert not result.patterns.behavioral_insufficient_data
        assert result.patterns.first_time_hour
        assert ReasonKind.FIRST_TIME_HOUR in _kinds(result.factors)

    def test_iqr_amount_outlier(self):
        history = _daily_history([900, 1000, 1100, 1050] * 5)
        detector = TimeAnomalyDetector()
        assert detector.detect_patterns("u1", NOW, 50000, history).patterns.amount_outlier
        assert not detector.detect_patterns("u1", NOW, 1000, history).patterns.amount_outlier

    def test_velocity_burst(self):
        history = [
            Transaction(1000, NOW - timedelta(minutes=m), "shop@upi") for m in (10, 7, 4)
        ]
        result = TimeAnomalyDetector().detect_patterns("u1", NOW, 1000, history)
        patterns = result.patterns
        assert patterns.transactions_last_hour == 3
        assert patterns.rapid_pairs == 2
        assert patterns.rapid_succession
        assert patterns.burst_activity
        assert patterns.average_interval_seconds == 180
        kinds = [a.kind for a in result.alerts]
        assert kinds == [AlertKind.RAPID_SUCCESSION, AlertKind.BURST_ACTIVITY]

    def test_velocity_window_bounds(self):
        history = [
            Transaction(1000, NOW, "a"),                              # same instant: excluded
            Transaction(1000, NOW - timedelta(minutes=30), "a"),
            Transaction(1000, NOW - timedelta(minutes=60), "a"),      # boundary: included
            Transaction(1000, NOW - timedelta(minutes=61), "a"),
        ]
        result = TimeAnomalyDetector().detect_patterns("u1", NOW, 1000, history)
        assert result.patterns.transactions_last_hour == 2
        assert not result.patterns.rapid_succession

    def test_seasonal_flags(self):
        detector = TimeAnomalyDetector()
        assert detector.detect_patterns("u1", datetime(2024, 8, 15, 14, 7), 500, []).patterns.holiday_period
        assert detector.detect_patterns("u1", datetime(2024, 12, 25, 14, 7), 500, []).patterns.holiday_period
        march = detector.detect_patterns("u1", datetime(2024, 3, 28, 14, 7), 500, []).patterns
        assert march.month_end_activity
        assert not march.holiday_period
        assert detector.detect_patterns("u1", datetime(2024, 3, 11, 14, 7), 500, []).patterns.payday_period

    def test_weekday_spending_pattern(self):
        history = _daily_history([1000] * 5, start=datetime(2024, 3, 4, 14, 7))  # Mon–Fri
        result = TimeAnomalyDetector().detect_patterns("u1", NOW, 1000, history)
        assert result.patterns.weekday_spending_pattern
        assert not result.patterns.weekend_spending_pattern

    def test_confidence_grows_with_history(self):
        detector = TimeAnomalyDetector()
        history = _daily_history([1000] * 20)
        assert detector.detect_patterns("u1", NOW, 1000, history).confidence == pytest.approx(0.7)


# =============================================================================
# RECIPIENT PROFILER TESTS
# =============================================================================

class TestRecipientProfiler:
    def test_profiles_per_payee(self):
        history = _daily_history([1000] * 6) + _daily_history([300], payee_id="once@upi", payee_name="Once")
        profiles = RecipientProfiler().build_profiles(history)
        assert set(profiles) == {"shop@upi", "once@upi"}

        shop = profiles["shop@upi"]
        assert shop.transaction_count == 6
        assert shop.total_amount == 6000
        assert shop.average_amount == 1000
        assert shop.category == "regular_medium"
        assert shop.is_frequent_payee
        assert shop.first_transaction == datetime(2024, 2, 20, 14, 7)
        assert shop.last_transaction == datetime(2024, 2, 25, 14, 7)

        once = profiles["once@upi"]
        assert once.category == "one_time"
        assert not once.is_frequent_payee

    def test_empty_history_gives_no_profiles(self):
        assert RecipientProfiler().build_profiles([]) == {}

    def test_frequency_and_regularity(self):
        history = _daily_history([1000] * 3, step=timedelta(days=10))
        freq = RecipientProfiler().build_profiles(history)["shop@upi"].frequency
        assert freq.transactions_per_month == pytest.approx(4.5)
        assert freq.average_days_between == pytest.approx(10)
        assert freq.regularity_score == pytest.approx(1.0)

    def test_typical_hours(self):
        history = _daily_history([1000] * 10) + [Transaction(1000, datetime(2024, 3, 11, 15, 0), "shop@upi")]
        profile = RecipientProfiler().build_profiles(history)["shop@upi"]
        assert profile.typical_hours == [14]

    def test_payee_risk_recent_burst_anchored_at_as_of(self):
        last = datetime(2024, 3, 12, 12, 0)
        history = [Transaction(1000, last - timedelta(hours=h), "a@upi") for h in (0, 1, 2)]
        profiler = RecipientProfiler()
        assert profiler.build_profiles(history)["a@upi"].risk_score == 15
        later = profiler.build_profiles(history, as_of=last + timedelta(days=2))
        assert later["a@upi"].risk_score == 0

    def test_new_payee_with_history(self):
        profiler = RecipientProfiler()
        profiles = profiler.build_profiles(_daily_history([1000] * 10))
        result = profiler.detect_anomaly("new@upi", "New Person", 500, profiles, NOW)
        assert result.is_new_payee
        assert result.is_anomalous
        assert result.confidence == 1.0
        assert result.risk_score == 25
        assert result.reason.kind == ReasonKind.NEW_PAYEE

    def test_new_payee_high_amount(self):
        profiler = RecipientProfiler()
        profiles = profiler.build_profiles(_daily_history([1000] * 10))
        result = profiler.detect_anomaly("new@upi", "New Person", 20000, profiles, NOW)
        assert result.risk_score == 45
        assert ReasonKind.HIGH_AMOUNT_UNFAMILIAR_PAYEE in _kinds(result.factors)

    def test_new_payee_without_history(self):
        result = RecipientProfiler().detect_anomaly("new@upi", "New Person", 500, {}, NOW)
        assert result.is_new_payee
        assert result.is_anomalous is False
        assert result.insufficient_data is True
        assert result.confidence == 1.0
        assert result.risk_score == 25

    def test_known_payee_insufficient_history(self):
        profiler = RecipientProfiler()
        profiles = profiler.build_profiles(_daily_history([1000] * 3))
        result = profiler.detect_anomaly("shop@upi", "Corner Shop", 50000, profiles, NOW)
        assert result.insufficient_data
        assert result.is_anomalous is False
        assert result.confidence == 0.0
        assert result.risk_score == 0
        assert result.reason.kind == ReasonKind.INSUFFICIENT_RECIPIENT_HISTORY

    def test_known_frequent_payee_usual_amount(self):
        profiler = RecipientProfiler()
        profiles = profiler.build_profiles(_daily_history([1000] * 10))
        result = profiler.detect_anomaly("shop@upi", "Corner Shop", 1000, profiles, NOW)
        assert not result.is_anomalous
        assert result.reason.kind == ReasonKind.KNOWN_PAYEE
        assert result.confidence == 0.8
        assert result.risk_score == 0

    def test_amount_deviation_for_payee(self):
        profiler = RecipientProfiler()
        profiles = profiler.build_profiles(_daily_history([1000] * 10))
        result = profiler.detect_anomaly("shop@upi", "Corner Shop", 4500, profiles, NOW)
        assert result.is_anomalous
        assert result.deviation == pytest.approx(3.5)
        assert result.reason.kind == ReasonKind.PAYEE_AMOUNT_DEVIATION
        assert result.risk_score == 20

    def test_amount_above_payee_max(self):
        profiler = RecipientProfiler()
        profiles = profiler.build_profiles(_daily_history([800, 1200] * 5))
        result = profiler.detect_anomaly("shop@upi", "Corner Shop", 2000, profiles, NOW)
        assert result.is_anomalous
        assert result.reason.kind == ReasonKind.PAYEE_AMOUNT_ABOVE_MAX
        assert result.risk_score == 0

    def test_unusual_hour_appended_to_reason(self):
        profiler = RecipientProfiler()
        profiles = profiler.build_profiles(_daily_history([1000] * 10))
        result = profiler.detect_anomaly("shop@upi", "Corner Shop", 1000, profiles, datetime(2024, 3, 12, 3, 7))
        assert result.is_anomalous
        assert result.reason.kind == ReasonKind.KNOWN_PAYEE
        assert result.reason.params["unusual_hour"] == 3
        assert ReasonKind.PAYEE_UNUSUAL_HOUR in _kinds(result.factors)

    def test_rare_payee(self):
        history = _daily_history([1000] * 20) + _daily_history([1000], payee_id="rare@upi", payee_name="Rare")
        profiler = RecipientProfiler()
        profiles = profiler.build_profiles(history)
        assert profiles["rare@upi"].risk_score == 10

        usual = profiler.detect_anomaly("rare@upi", "Rare", 1000, profiles, NOW)
        assert usual.is_rare_payee
        assert usual.reason.kind == ReasonKind.RARE_PAYEE
        assert usual.risk_score == 15

        large = profiler.detect_anomaly("rare@upi", "Rare", 15000, profiles, NOW)
        # rare 15 + deviation 20 + high amount to unfamiliar payee 20
        assert large.risk_score == 55

    def test_matching_uses_payee_id_not_name(self):
        profiler = RecipientProfiler()
        profiles = profiler.build_profiles(_daily_history([1000] * 10))
        result = profiler.detect_anomaly("other@upi", "Corner Shop", 1000, profiles, NOW)
        assert result.is_new_payee

    def test_recommendations_for_new_payee(self):
        profiler = RecipientProfiler()
        result = profiler.detect_anomaly("new@upi", "", 500, {}, NOW)
        kinds = [a.kind for a in profiler.recommendations(result)]
        assert kinds == [
            AdviceKind.VERIFY_RECIPIENT_IDENTITY,
            AdviceKind.DOUBLE_CHECK_NEW_PAYEE,
            AdviceKind.CONFIRM_PAYMENT_EXPECTED,
        ]


# =============================================================================
# ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    pytest.main([__file__, "-v"])
