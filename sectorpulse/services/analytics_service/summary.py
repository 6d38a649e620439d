"""Executive summary prompt built from dashboard data.

The prompt carries live participation counts and the guarded cached
distributions. Slices the k-anonymity guard suppressed are dropped before
the prompt is assembled, so the model never sees a distribution with fewer
than k contributors.
"""
import logging
from typing import Any, Dict, List, Mapping

from sectorpulse.shared.models import Sector

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a senior industry analyst writing an executive summary of a quarterly industry survey. Write in a professional but accessible style. Use markdown formatting with headings, bullet points, and bold text where appropriate. Structure the summary as follows:

1. **Participation Overview**: total responses, sector representation, size band distribution and data quality
2. **Sector-by-Sector Analysis**: key findings, trends and noteworthy patterns for each sector with sufficient data
3. **Cross-Sector Themes**: common themes, divergences and contrasts between sectors
4. **Key Takeaways & Outlook**: the most important insights and any forward-looking observations

Keep the tone analytical and data-driven. Reference specific numbers and percentages. If data is limited for certain sectors, note this. Do not fabricate data; only discuss what is provided."""


def sector_label(value: str) -> str:
    try:
        return Sector(value).label
    except ValueError:
        return value


def describe_filters(filters: Mapping[str, Any]) -> str:
    parts = []
    if filters.get("year"):
        parts.append(f"Year: {filters['year']}")
    if filters.get("quarter"):
        parts.append(f"Quarter: Q{filters['quarter']}")
    if filters.get("sector"):
        parts.append(f"Sector: {sector_label(filters['sector'])}")
    if filters.get("size_band"):
        parts.append(f"Size band: {filters['size_band']}")
    return ", ".join(parts) if parts else "No filters (all data)"


def distribution_lines(item: Mapping[str, Any]) -> List[str]:
    """Bullet lines for one guarded slice, largest share first.

    Percentage-split slices report their average share per option; other
    slices report each count with its share of respondents.
    """
    if "averages" in item:
        averages = sorted(item["averages"].items(), key=lambda kv: kv[1], reverse=True)
        return [f"  - {key}: {value:.1f}% average share" for key, value in averages]

    response_count = item["response_count"]
    lines = []
    for key, count in sorted(item["data"].items(), key=lambda kv: kv[1], reverse=True):
        pct = count / response_count * 100 if response_count > 0 else 0.0
        lines.append(f"  - {key}: {count:g} ({pct:.1f}%)")
    return lines


def _bullets(lines: List[str], empty: str) -> str:
    return "\n".join(lines) if lines else f"  {empty}"


def build_summary_prompt(dashboard: Mapping[str, Any]) -> str:
    """User prompt for the executive summary.

    Args:
        dashboard: Output of ``AnalyticsHandler.get_dashboard``

    Returns:
        Markdown prompt with participation statistics and every
        unsuppressed distribution grouped by sector
    """
    by_sector = sorted(dashboard["by_sector"].items(), key=lambda kv: kv[1], reverse=True)
    by_size = sorted(
        dashboard["size_band_distribution"].items(), key=lambda kv: kv[1], reverse=True
    )

    visible = [item for item in dashboard["aggregations"] if not item["suppressed"]]
    grouped: Dict[str, List[Mapping[str, Any]]] = {}
    for item in visible:
        grouped.setdefault(item["dimensions"].get("sector") or "unknown", []).append(item)

    sections = []
    for sector, items in grouped.items():
        lines = [f"\n### {sector_label(sector)}"]
        for item in items:
            question = item["dimensions"].get("question_text") or item["cache_key"]
            lines.append(f"\n**{question}** ({item['response_count']} responses)")
            lines.extend(distribution_lines(item))
        sections.append("\n".join(lines))

    logger.info(
        "SUMMARY_PROMPT_BUILT",
        extra={
            "slices_included": len(visible),
            "slices_suppressed": len(dashboard["aggregations"]) - len(visible),
        }
    )

    sector_lines = [f"  - {sector_label(name)}: {count} responses" for name, count in by_sector]
    size_lines = [f"  - {band} employees: {count} responses" for band, count in by_size]
    trend_lines = [
        f"  - {point['year']} Q{point['quarter']}: {point['count']} responses"
        for point in dashboard["quarterly_trend"]
    ]

    return "\n".join([
        "Please write an executive summary for the quarterly industry survey "
        "based on the following data.",
        "",
        f"**Filters Applied:** {describe_filters(dashboard['filters'])}",
        "",
        "## Participation Statistics",
        f"- **Total Responses:** {dashboard['total_submissions']}",
        "",
        "### By Sector",
        _bullets(sector_lines, "No sector data available."),
        "",
        "### By Business Size",
        _bullets(size_lines, "No size data available."),
        "",
        "### Quarterly Trend",
        _bullets(trend_lines, "No trend data available."),
        "",
        "## Survey Response Data (Aggregated)",
        "".join(sections) or "No aggregated data available.",
    ])
