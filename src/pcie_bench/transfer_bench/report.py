from __future__ import annotations

from mdutils.mdutils import MdUtils  # type: ignore[import-untyped]

from .config import CONTENTION_RETENTION_THRESHOLD, ROUND_TRIP_ASYMMETRY_THRESHOLD, SYMMETRY_TOLERANCE
from .interfaces import LOW_BANDWIDTH_HINTS, REALISTIC_MIN_PCT, analyze_bandwidth
from .model import BandwidthSummary

SUMMARY_HEADER: tuple[str, ...] = ("Test", "H2D (GiB/s)", "D2H (GiB/s)", "Total (GiB/s)")


def _format_float(v: float) -> str:
    return f"{v:.2f}"


def _safe_ratio(num: float, den: float) -> float | None:
    if den == 0:
        return None
    return num / den


def summary_rows(summary: BandwidthSummary) -> list[tuple[str, float, float, float]]:
    return [
        ("Unidirectional", summary.h2d, summary.d2h, summary.h2d + summary.d2h),
        ("Bidirectional", summary.bidir_h2d, summary.bidir_d2h, summary.bidir_h2d + summary.bidir_d2h),
        ("Round-trip", summary.round_trip, summary.round_trip, 2 * summary.round_trip),
    ]


def generate_summary_table(summary: BandwidthSummary) -> str:
    """Markdown table with one row per transfer pattern."""
    cells: list[str] = list(SUMMARY_HEADER)
    for name, h2d, d2h, total in summary_rows(summary):
        cells += [name, _format_float(h2d), _format_float(d2h), _format_float(total)]

    md = MdUtils(file_name="summary")
    md.new_table(columns=len(SUMMARY_HEADER), rows=len(cells) // len(SUMMARY_HEADER), text=cells, text_align="right")
    return md.file_data_text.strip()


def symmetry_verdict(h2d: float, d2h: float) -> str:
    ratio = _safe_ratio(h2d, d2h)
    if ratio is None:
        return "D2H measured 0 GiB/s, symmetry cannot be assessed"
    if 1 - SYMMETRY_TOLERANCE <= ratio <= 1 + SYMMETRY_TOLERANCE:
        return f"Symmetric: H2D/D2H = {ratio:.2f} (within +/-{SYMMETRY_TOLERANCE:.0%})"
    faster = "H2D" if ratio > 1 else "D2H"
    return f"Asymmetric: H2D/D2H = {ratio:.2f}, {faster} is faster"


def contention_drop_pct(uni: float, bidir: float) -> float | None:
    retention = _safe_ratio(bidir, uni)
    if retention is None:
        return None
    return (1 - retention) * 100.0


def contention_verdict(direction: str, uni: float, bidir: float) -> str:
    drop = contention_drop_pct(uni, bidir)
    if drop is None:
        return f"{direction}: unidirectional measured 0 GiB/s, contention cannot be assessed"
    retained = 100.0 - drop
    line = f"{direction}: bidirectional keeps {retained:.1f}% of unidirectional ({drop:.1f}% drop)"
    if retained / 100.0 < CONTENTION_RETENTION_THRESHOLD:
        return line + ", heavy contention (link behaves half-duplex)"
    return line + ", link sustains concurrent transfers"


def round_trip_asymmetry_ratio(h2d: float, d2h: float) -> float | None:
    return _safe_ratio(max(h2d, d2h), min(h2d, d2h))


def generate_analysis(summary: BandwidthSummary) -> str:
    lines: list[str] = []
    lines.append(f"- {symmetry_verdict(summary.h2d, summary.d2h)}")
    lines.append(f"- {contention_verdict('H2D', summary.h2d, summary.bidir_h2d)}")
    lines.append(f"- {contention_verdict('D2H', summary.d2h, summary.bidir_d2h)}")

    uni_mean = (summary.h2d + summary.d2h) / 2
    overhead = _safe_ratio(summary.round_trip, uni_mean)
    if overhead is not None:
        lines.append(f"- Round-trip per direction is {overhead * 100:.1f}% of the unidirectional mean")

    ratio = round_trip_asymmetry_ratio(summary.h2d, summary.d2h)
    if ratio is not None and ratio > ROUND_TRIP_ASYMMETRY_THRESHOLD:
        lines.append(
            f"- Warning: directions differ by {ratio:.2f}x (> {ROUND_TRIP_ASYMMETRY_THRESHOLD}x); "
            "the round-trip split hides this asymmetry"
        )
    lines.append("- Note: round-trip reports each direction as half the combined rate and cannot show asymmetry")

    match = analyze_bandwidth(uni_mean)
    lines.append("")
    lines.append(f"Likely link: {match.interface.name} ({match.interface.description})")
    lines.append(f"  Theoretical : {match.interface.gb_per_s:.2f} GB/s")
    lines.append(f"  Measured    : {match.measured_gb_per_s:.2f} GB/s (mean of unidirectional H2D/D2H)")
    lines.append(f"  Efficiency  : {match.percent_of_theoretical:.1f}%")
    lines.append(f"  Verdict     : {match.verdict}")
    for name, gib in (("Upload", summary.h2d), ("Download", summary.d2h)):
        per_dir = analyze_bandwidth(gib)
        lines.append(
            f"  {name:<12}: {per_dir.measured_gb_per_s:.2f} GB/s "
            f"({per_dir.percent_of_theoretical:.1f}% of {per_dir.interface.name})"
        )
    if match.percent_of_theoretical < REALISTIC_MIN_PCT:
        for hint in LOW_BANDWIDTH_HINTS:
            lines.append(f"    * {hint}")
    return "\n".join(lines)


def generate_report(summary: BandwidthSummary) -> str:
    rule = "=" * 70
    lines: list[str] = [rule, "Summary", rule, generate_summary_table(summary), "", rule, "Analysis", rule]
    lines.append(generate_analysis(summary))
    lines.append(rule)
    return "\n".join(lines)
