"""
decision_monitor.py
--------------------
Drift monitoring over replayed risk assessments.

Three monitoring dimensions:
    1. Escalation rate: share of assessments that were not APPROVE,
       comparison window vs baseline window.
    2. Score distribution: has the risk_score distribution shifted?
    3. Block rate: absolute share of BLOCK decisions in the comparison window.

Methods:
    - KS test (Kolmogorov-Smirnov): distributional shift in risk scores
      between the baseline window and the comparison window.
    - PSI (Population Stability Index): <0.1 stable, 0.1–0.25 minor shift,
      >0.25 major shift.

Windows are anchored at the latest assessment timestamp (or an explicit
`as_of`), so a replay of historical data is monitored over its own period.
All thresholds and window sizes come from config.yaml.
"""

import logging
import numpy as np
import pandas as pd
from dataclasses import dataclass, field
from scipy import stats
from typing import Any, Dict, List

from config.config_loader import get_drift_monitoring_config

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = {"timestamp", "risk_score", "decision"}


@dataclass
class DriftAlert:
    """A single drift detection alert."""
    alert_type: str                  # "ESCALATION_RATE" | "SCORE_DISTRIBUTION" | "BLOCK_RATE"
    severity: str                    # "INFO" | "WARNING" | "CRITICAL"
    metric_name: str                 # e.g. "escalation_rate_ratio", "ks_p_value", "psi"
    metric_value: float
    threshold: float
    message: str
    detected_at: str = ""            # ISO timestamp of the window anchor


@dataclass
class DriftReport:
    """Full drift monitoring report, one per run."""
    run_timestamp: str
    baseline_window: str
    comparison_window: str
    alerts: List[DriftAlert] = field(default_factory=list)
    summary: dict = field(default_factory=dict)


class DecisionMonitor:
    """
    Monitors replay output for decision and score drift.

    Usage:
        monitor = DecisionMonitor()
        report = monitor.run(assessments_df)
    """

    def __init__(self, config: Dict[str, Any] | None = None):
        self.config = config if config is not None else get_drift_monitoring_config()
        self.ks_alpha = self.config["ks_alpha"]
        self.psi_minor = self.config["psi_minor"]
        self.psi_major = self.config["psi_major"]
        self.baseline_days = self.config["baseline_days"]
        self.comparison_days = self.config["comparison_days"]
        self.min_baseline_samples = self.config["min_baseline_samples"]
        self.min_comparison_samples = self.config["min_comparison_samples"]
        self.block_rate_warning = self.config["block_rate_warning"]
        self.block_rate_critical = self.config["block_rate_critical"]

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def run(self, assessments_df: pd.DataFrame, as_of: Any | None = None) -> DriftReport:
        """
        Run full drift monitoring suite.

        Args:
            assessments_df: Output of RiskReplayPipeline.run(). Must have
                columns timestamp, risk_score, decision.
            as_of: End of the comparison window. Defaults to the latest
                assessment timestamp.

        Returns:
            DriftReport with all alerts and summary metrics.
        """
        missing = REQUIRED_COLUMNS - set(assessments_df.columns)
        if missing:
            raise ValueError(f"Missing required columns: {sorted(missing)}")

        df = assessments_df.copy()
        df["timestamp"] = pd.to_datetime(df["timestamp"])

        if df.empty:
            return DriftReport(run_timestamp="", baseline_window="", comparison_window="",
                               summary=self._summarize([], 0, 0))

        anchor = pd.Timestamp(as_of) if as_of is not None else df["timestamp"].max()
        comparison_start = anchor - pd.Timedelta(days=self.comparison_days)
        baseline_start = comparison_start - pd.Timedelta(days=self.baseline_days)

        baseline = df[(df["timestamp"] >= baseline_start) & (df["timestamp"] < comparison_start)]
        comparison = df[(df["timestamp"] >= comparison_start) & (df["timestamp"] <= anchor)]

        alerts: List[DriftAlert] = []

        # --- 1. Escalation rate drift ---
        alerts.extend(self._check_escalation_drift(baseline, comparison, anchor))

        # --- 2. Score distribution drift ---
        alerts.extend(self._check_score_drift(baseline, comparison, anchor))

        # --- 3. Block rate ---
        alerts.extend(self._check_block_rate(comparison, anchor))

        logger.info(
            f"Drift monitor: baseline={len(baseline):,} rows, comparison={len(comparison):,} rows, "
            f"alerts={len(alerts)}."
        )

        return DriftReport(
            run_timestamp=anchor.isoformat(),
            baseline_window=f"{baseline_start.date()} to {comparison_start.date()}",
            comparison_window=f"{comparison_start.date()} to {anchor.date()}",
            alerts=alerts,
            summary=self._summarize(alerts, len(baseline), len(comparison)),
        )

    # -------------------------------------------------------------------------
    # INTERNAL: ESCALATION RATE DRIFT
    # -------------------------------------------------------------------------

    def _check_escalation_drift(
        self, baseline: pd.DataFrame, comparison: pd.DataFrame, anchor: pd.Timestamp
    ) -> List[DriftAlert]:
        """
        Flags a >50% change (either direction) in the non-APPROVE share.
        Rates rather than counts, so window lengths don't matter.
        """
        if len(baseline) < self.min_baseline_samples or len(comparison) < self.min_comparison_samples:
            return []

        baseline_rate = float((baseline["decision"] != "APPROVE").mean())
        comparison_rate = float((comparison["decision"] != "APPROVE").mean())

        if baseline_rate == 0:
            if comparison_rate == 0:
                return []
            ratio = float("inf")
        else:
            ratio = comparison_rate / baseline_rate

        if not (ratio > 1.5 or ratio < 0.5):
            return []

        severity = "CRITICAL" if (ratio > 2.0 or ratio < 0.33) else "WARNING"
        return [DriftAlert(
            alert_type="ESCALATION_RATE",
            severity=severity,
            metric_name="escalation_rate_ratio",
            metric_value=round(ratio, 3),
            threshold=1.5 if ratio > 1 else 0.5,
            message=(
                f"Escalation rate changed from {baseline_rate:.1%} to {comparison_rate:.1%} "
                f"(ratio {ratio:.2f})."
            ),
            detected_at=anchor.isoformat(),
        )]

    # -------------------------------------------------------------------------
    # INTERNAL: SCORE DISTRIBUTION DRIFT
    # -------------------------------------------------------------------------

    def _check_score_drift(
        self, baseline: pd.DataFrame, comparison: pd.DataFrame, anchor: pd.Timestamp
    ) -> List[DriftAlert]:
        """KS test + PSI on risk_score between baseline and comparison windows."""
        alerts = []
        baseline_scores = baseline["risk_score"].to_numpy(dtype=float)
        comparison_scores = comparison["risk_score"].to_numpy(dtype=float)

        if len(baseline_scores) < self.min_baseline_samples or len(comparison_scores) < self.min_comparison_samples:
            return alerts

        # --- KS Test ---
        ks_stat, ks_pvalue = stats.ks_2samp(baseline_scores, comparison_scores)
        if ks_pvalue < self.ks_alpha:
            alerts.append(DriftAlert(
                alert_type="SCORE_DISTRIBUTION",
                severity="WARNING",
                metric_name="ks_p_value",
                metric_value=round(float(ks_pvalue), 4),
                threshold=self.ks_alpha,
                message=f"Risk score distribution shift. KS statistic={ks_stat:.3f}, p-value={ks_pvalue:.4f}.",
                detected_at=anchor.isoformat(),
            ))

        # --- PSI ---
        psi = compute_psi(baseline_scores, comparison_scores)
        if psi > self.psi_minor:
            severity = "CRITICAL" if psi > self.psi_major else "WARNING"
            alerts.append(DriftAlert(
                alert_type="SCORE_DISTRIBUTION",
                severity=severity,
                metric_name="psi",
                metric_value=round(psi, 4),
                threshold=self.psi_major if severity == "CRITICAL" else self.psi_minor,
                message=f"PSI={psi:.3f} on risk scores ({'major' if severity == 'CRITICAL' else 'minor'} shift).",
                detected_at=anchor.isoformat(),
            ))

        return alerts

    # -------------------------------------------------------------------------
    # INTERNAL: BLOCK RATE
    # -------------------------------------------------------------------------

    def _check_block_rate(self, comparison: pd.DataFrame, anchor: pd.Timestamp) -> List[DriftAlert]:
        if len(comparison) < self.min_comparison_samples:
            return []

        block_rate = float((comparison["decision"] == "BLOCK").mean())
        if block_rate >= self.block_rate_critical:
            severity, threshold = "CRITICAL", self.block_rate_critical
        elif block_rate >= self.block_rate_warning:
            severity, threshold = "WARNING", self.block_rate_warning
        else:
            return []

        return [DriftAlert(
            alert_type="BLOCK_RATE",
            severity=severity,
            metric_name="block_rate",
            metric_value=round(block_rate, 4),
            threshold=threshold,
            message=f"{block_rate:.1%} of assessments in the comparison window were blocked.",
            detected_at=anchor.isoformat(),
        )]

    @staticmethod
    def _summarize(alerts: List[DriftAlert], baseline_count: int, comparison_count: int) -> dict:
        return {
            "baseline_assessments": baseline_count,
            "comparison_assessments": comparison_count,
            "total_alerts": len(alerts),
            "critical_alerts": sum(1 for a in alerts if a.severity == "CRITICAL"),
            "warning_alerts": sum(1 for a in alerts if a.severity == "WARNING"),
            "info_alerts": sum(1 for a in alerts if a.severity == "INFO"),
        }


# -----------------------------------------------------------------------------
# PSI CALCULATION
# -----------------------------------------------------------------------------

def compute_psi(baseline: np.ndarray, comparison: np.ndarray, n_bins: int = 10) -> float:
    """
    Population Stability Index between two samples.

    PSI = Σ (P_actual - P_expected) * ln(P_actual / P_expected)

    Bin edges come from baseline percentiles. Returns 0.0 when the baseline
    has too little variation to form at least two bins.
    """
    bin_edges = np.unique(np.percentile(baseline, np.linspace(0, 100, n_bins + 1)))
    if len(bin_edges) < 3:
        return 0.0

    # Comparison values outside the baseline range land in the edge bins
    clipped = np.clip(comparison, bin_edges[0], bin_edges[-1])
    baseline_counts, _ = np.histogram(baseline, bins=bin_edges)
    comparison_counts, _ = np.histogram(clipped, bins=bin_edges)

    eps = 1e-6
    baseline_freq = (baseline_counts + eps) / (baseline_counts.sum() + eps * len(baseline_counts))
    comparison_freq = (comparison_counts + eps) / (comparison_counts.sum() + eps * len(comparison_counts))

    return float(np.sum((comparison_freq - baseline_freq) * np.log(comparison_freq / baseline_freq)))
