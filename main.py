"""
main.py
--------
Entry point for the Transfer Risk Engine batch replay.

Reads a transactions export, scores every transaction against the same
user's earlier transactions, and writes the assessments to the outputs/
folder.

Usage (from the project root):
    python main.py --input path/to/transactions.csv

    # With optional arguments:
    python main.py --input tx.csv --blacklist blacklist.csv --whitelist whitelist.csv
    python main.py --input tx.csv --lookback 90
    python main.py --input tx.csv --min-decision WARN
    python main.py --input tx.csv --run-drift-monitor
"""

import sys
import os
import argparse
import logging
import pandas as pd
from datetime import datetime

# Ensure project root is on path (for runs from any working directory)
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, PROJECT_ROOT)

from pipeline import RiskReplayPipeline
from core.errors import AssessmentError
from core.models import Decision
from core.payee_lists import PayeeListLookup
from monitoring.decision_monitor import DecisionMonitor


# =============================================================================
# LOGGING SETUP
# =============================================================================

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("main")


# =============================================================================
# ARGUMENT PARSING
# =============================================================================

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Transfer Risk Engine: replay transactions through fraud risk scoring."
    )
    parser.add_argument(
        "--input", type=str, required=True,
        help="Path to input transactions CSV (user_id, timestamp, amount, payee_id, payee_name)."
    )
    parser.add_argument(
        "--blacklist", type=str, default=None,
        help="Optional blacklist CSV with vpa and/or phone_number columns."
    )
    parser.add_argument(
        "--whitelist", type=str, default=None,
        help="Optional whitelist CSV with vpa and/or phone_number columns."
    )
    parser.add_argument(
        "--lookback", type=int, default=None,
        help="History lookback window in days. Defaults to config value (180)."
    )
    parser.add_argument(
        "--min-decision", type=str, default="APPROVE",
        choices=[d.value for d in Decision],
        help="Minimum decision to include in output. Default: APPROVE (everything)."
    )
    parser.add_argument(
        "--output-dir", type=str, default=None,
        help="Output directory. Defaults to outputs/ in project root."
    )
    parser.add_argument(
        "--run-drift-monitor", action="store_true", default=False,
        help="Also run decision drift monitoring and output a drift report."
    )
    return parser.parse_args(argv)


# =============================================================================
# MAIN
# =============================================================================

def main(argv: list[str] | None = None):
    args = parse_args(argv)

    # --- Resolve paths ---
    output_dir = args.output_dir or os.path.join(PROJECT_ROOT, "outputs")
    os.makedirs(output_dir, exist_ok=True)

    # --- Load inputs ---
    for label, path in (("Input", args.input), ("Blacklist", args.blacklist), ("Whitelist", args.whitelist)):
        if path and not os.path.exists(path):
            logger.error(f"{label} file not found: {path}")
            sys.exit(1)

    logger.info(f"Loading transactions from: {args.input}")
    transactions = pd.read_csv(args.input, dtype={"user_id": str, "payee_id": str, "payee_name": str})
    logger.info(f"Loaded {len(transactions):,} transactions, {transactions['user_id'].nunique():,} users.")

    blacklist = PayeeListLookup.from_csv(args.blacklist, list_type="blacklist") if args.blacklist else None
    whitelist = PayeeListLookup.from_csv(args.whitelist, list_type="whitelist") if args.whitelist else None

    # --- Run replay ---
    pipeline = RiskReplayPipeline(
        lookback_days=args.lookback, blacklist_lookup=blacklist, whitelist_lookup=whitelist
    )
    try:
        assessments = pipeline.run(transactions)
    except AssessmentError as e:
        logger.error(f"Replay aborted: [{e.code}] {e.message} (field={e.field})")
        sys.exit(2)

    # --- Apply decision filter ---
    min_severity = Decision(args.min_decision).severity
    filtered = assessments[
        assessments["decision"].map(lambda d: Decision(d).severity) >= min_severity
    ].copy()
    logger.info(
        f"After filtering (>= {args.min_decision}): {len(filtered):,} assessments. "
        f"Filtered out: {len(assessments) - len(filtered):,}."
    )

    # --- Output: Assessments ---
    run_stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    assessments_path = os.path.join(output_dir, f"assessments_{run_stamp}.csv")
    filtered.to_csv(assessments_path, index=False)
    logger.info(f"Assessments saved to: {assessments_path}")

    # --- Print summary ---
    _print_summary(assessments)

    # --- Optional: Drift Monitoring ---
    if args.run_drift_monitor:
        logger.info("Running decision drift monitor...")
        report = DecisionMonitor().run(assessments)

        logger.info(f"Drift Report: {report.summary}")
        for alert in report.alerts:
            level = {"CRITICAL": logging.ERROR, "WARNING": logging.WARNING}.get(alert.severity, logging.INFO)
            logger.log(level, f"[{alert.alert_type}] {alert.severity}: {alert.message}")

        if report.alerts:
            drift_path = os.path.join(output_dir, f"drift_report_{run_stamp}.csv")
            drift_rows = [
                {
                    "alert_type": a.alert_type,
                    "severity": a.severity,
                    "metric_name": a.metric_name,
                    "metric_value": a.metric_value,
                    "threshold": a.threshold,
                    "message": a.message,
                    "detected_at": a.detected_at,
                }
                for a in report.alerts
            ]
            pd.DataFrame(drift_rows).to_csv(drift_path, index=False)
            logger.info(f"Drift report saved to: {drift_path}")
        else:
            logger.info("No drift alerts detected.")


def _print_summary(df: pd.DataFrame):
    """Prints a clean summary table to the console."""
    if df.empty:
        print("\n  No assessments to display.\n")
        return

    print("\n" + "=" * 80)
    print("  TRANSFER RISK SUMMARY")
    print("=" * 80)

    print("\n  Decisions:")
    print("  " + "-" * 60)
    for decision in Decision:
        subset = df[df["decision"] == decision.value]
        pct = len(subset) / len(df) * 100
        avg_score = subset["risk_score"].mean() if not subset.empty else 0
        print(f"    {decision.value:10s}  {len(subset):>6,}  ({pct:5.1f}%)  avg score {avg_score:5.1f}")

    overrides = df["list_override"].dropna()
    if not overrides.empty:
        print("\n  List overrides:")
        print("  " + "-" * 60)
        for name, count in overrides.value_counts().items():
            print(f"    {name:10s}  {count:>6,}")

    flagged_users = df.loc[df["decision"] != Decision.APPROVE.value, "user_id"].nunique()
    print(f"\n  Users with at least one non-APPROVE decision: {flagged_users:,}")
    print("=" * 80 + "\n")


if __name__ == "__main__":
    main()
