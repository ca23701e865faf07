"""
reporting.py — Helper utilities for rendering pipeline results as Markdown.
Pure string builders; callers decide where the text goes.
"""
from typing import Any, List

from .cleaning import CleaningReport
from .comparator import ComparisonResult, summarize_insights
from .conflicts import ConflictResult
from .trainer import ModelResult


def md_table(headers: List[str], rows: List[List[Any]]) -> str:
    """Build a Markdown table from headers and row data."""
    lines = []
    lines.append("| " + " | ".join(str(h) for h in headers) + " |")
    lines.append("| " + " | ".join("---" for _ in headers) + " |")
    for row in rows:
        lines.append("| " + " | ".join(str(c) for c in row) + " |")
    return "\n".join(lines)


def md_section(title: str, body: str, level: int = 2) -> str:
    """Return a Markdown section with heading."""
    prefix = "#" * level
    return f"{prefix} {title}\n\n{body}\n"


def cleaning_report_md(report: CleaningReport) -> str:
    counters = [
        ["Raw events", f"{report.raw_event_count:,}"],
        ["Duplicates removed", f"{report.duplicates_removed:,}"],
        ["Timestamps normalized", f"{report.timestamps_normalized:,}"],
        ["Quarantined (pre-install / post-horizon)",
         f"{report.pre_install_quarantined:,} / {report.post_horizon_quarantined:,}"],
        ["Invalid events dropped", f"{report.invalid_events_dropped:,}"],
        ["Players (with / without consent)",
         f"{report.total_players:,} ({report.players_with_consent:,} / {report.players_without_consent:,})"],
        ["Transactions (refunds)", f"{report.total_txn:,} ({report.refund_count:,})"],
        ["Gross / refund / net revenue",
         f"${report.gross_revenue:,.2f} / ${report.refund_amount:,.2f} / ${report.net_revenue:,.2f}"],
        ["Null user_id / event_name / event_time / session_id",
         f"{report.null_user_ids} / {report.null_event_names} / {report.null_timestamps} / {report.missing_session_ids}"],
        ["Events per day (mean ± std)", f"{report.avg_events_per_day:,.1f} ± {report.std_events_per_day:,.1f}"],
    ]
    body = md_table(["Check", "Value"], counters)
    if report.volume_anomalies:
        body += "\n\n" + md_table(
            ["Date", "Events", "z", "Direction"],
            [[a["date"], a["count"], a["z_score"], a["direction"]] for a in report.volume_anomalies],
        )
    return md_section("Data Cleaning", body)


def model_result_md(result: ModelResult) -> str:
    summary = md_table(
        ["Metric", "Value"],
        [
            ["Model", f"{result.model_type} ({result.track} track, target {result.target}, log={result.log_transform})"],
            ["Train / test rows", f"{result.train_size:,} / {result.test_size:,}"],
            ["MAE", f"{result.mae:.3f}"],
            ["RMSE", f"{result.rmse:.3f}"],
            ["R²", f"{result.r2:.3f}"],
            ["Top-decile lift", f"{result.top_decile_lift:.2f}x"],
            ["Top-decile capture", f"{result.top_decile_capture:.1%}"],
        ],
    )
    deciles = md_table(
        ["Decile", "Users", "Avg predicted", "Avg actual", "Lift", "Revenue share"],
        [[d.decile, d.users, f"{d.avg_predicted:.2f}", f"{d.avg_actual:.2f}", f"{d.lift:.2f}",
          f"{d.revenue_share:.1%}"] for d in result.decile_table],
    )
    drivers = md_table(["Feature", "Importance"],
                       [[f, f"{v:.4f}"] for f, v in result.feature_importance[:10]])
    return (md_section("Model Evaluation", summary)
            + "\n" + md_section("Decile Table", deciles, level=3)
            + "\n" + md_section("Top pLTV Drivers", drivers, level=3))


def comparison_md(result: ComparisonResult) -> str:
    rows = [[m.strategy_label, m.k, f"{m.k_pct}%", f"{m.recall:.3f}", f"{m.lift_vs_random:.2f}x",
             f"{m.lift_vs_reference:.2f}x", f"{m.cum_value_captured:.1%}"] for m in result.metrics]
    table = md_table(["Strategy", "K", "K %", "Recall", "Lift vs random", "Lift vs ref", "Value captured"], rows)
    insights = summarize_insights(result)
    bullets = "\n".join(f"- **{kind}**: {text}" for kind, text in insights.bullets)
    return md_section("Strategy Comparison", f"{insights.summary}\n\n{table}\n\n{bullets}".rstrip())


def conflict_report_md(result: ConflictResult) -> str:
    body = (f"Conflict rate **{result.conflict_rate}%** ({result.severity}) over "
            f"{result.total_samples:,} samples, k={result.k}; {result.boundary_count:,} in the boundary zone.")
    if result.conflict_pairs:
        body += "\n\n" + md_table(
            ["User", "Label", "Neighbour", "Neighbour label", "Distance"],
            [[p.user_id, p.label, p.neighbor_id, p.neighbor_label, p.distance] for p in result.conflict_pairs[:10]],
        )
    return md_section(f"Label Conflicts: {result.target_key}", body)
