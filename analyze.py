"""
OEE Analysis Report
===================
Runs the OEE engine on one machine snapshot and writes an Excel workbook
(summary, loss tree, leverage, economics, sensitivity, assumption ledger,
validation) plus a console summary.

Usage:
  python analyze.py input.json
  python analyze.py input.json --downtime events.xlsx
  python analyze.py input.json --economics econ.json --thresholds strict
  python analyze.py input.json --json result.json --output report.xlsx
"""

import dataclasses
import json
import logging
import os
import sys
from datetime import datetime, timedelta

import pandas as pd

from assumptions import ThresholdConfiguration
from engine import analyze, analyze_with_economics
from ledger import format_duration
from leverage import leverage_frame
from parse_inputs import load_downtime_events, load_economic_parameters, load_oee_input, with_downtimes
from sensitivity import quick_sensitivity_analysis

SHEET_ORDER = [
    "Summary", "Loss Tree", "Leverage", "Economics", "Sensitivity",
    "Assumption Ledger", "Validation",
]

PCT_METRICS = {"availability", "performance", "quality", "oee", "teep", "utilization",
               "scrap_rate", "rework_rate"}


# ---------------------------------------------------------------------------
# Report frames
# ---------------------------------------------------------------------------
def _metric_row(name, metric):
    if metric is None:
        return {"Metric": name, "Value": "n/a", "Score %": None, "Confidence": "", "Formula": ""}
    if name in PCT_METRICS:
        value, score = f"{metric.value * 100:.1f}%", round(metric.value * 100, 1)
    else:
        value, score = format_duration(timedelta(seconds=metric.value)), None
    return {
        "Metric": name,
        "Value": value,
        "Score %": score,
        "Confidence": metric.confidence.label,
        "Formula": ", ".join(f"{k}={v:g}" for k, v in metric.formula_params.items()),
    }


def build_summary(result, oee_input):
    rows = [{"Metric": "Machine", "Value": oee_input.machine.machine_id, "Score %": None,
             "Confidence": "", "Formula": ""},
            {"Metric": "Window", "Value": f"{oee_input.window.start:%Y-%m-%d %H:%M} to "
                                          f"{oee_input.window.end:%Y-%m-%d %H:%M}",
             "Score %": None, "Confidence": "", "Formula": ""},
            {"Metric": "Valid", "Value": "yes" if result.validation.is_valid else "NO (fatal issues)",
             "Score %": None, "Confidence": "", "Formula": ""}]
    for name, metric in result.core_metrics.as_dict().items():
        rows.append(_metric_row(name, metric))
    for name, metric in result.extended_metrics.as_dict().items():
        rows.append(_metric_row(name, metric))
    return pd.DataFrame(rows)


def build_loss_tree_frame(result):
    df = result.loss_tree.to_frame()
    df["category"] = ["    " * d + c for d, c in zip(df["depth"], df["category"])]
    df["pct_of_planned"] = (df["pct_of_planned"] * 100).round(1)
    df["pct_of_parent"] = (df["pct_of_parent"] * 100).round(1)
    return df.drop(columns=["depth", "duration_seconds"]).rename(columns={
        "category": "Loss", "duration_hours": "Hours", "pct_of_planned": "% of Planned",
        "pct_of_parent": "% of Parent", "source": "Source",
    })


def build_validation_frame(result):
    rows = [i.to_record() for i in result.validation.issues]
    df = pd.DataFrame(rows, columns=["code", "severity", "message_key", "field", "params"])
    df["params"] = df["params"].apply(lambda p: json.dumps(p, default=str))
    return df


def build_report(result, oee_input):
    """All report sheets as DataFrames, keyed by sheet name."""
    results = {
        "Summary": build_summary(result, oee_input),
        "Loss Tree": build_loss_tree_frame(result),
        "Leverage": leverage_frame(result.leverage),
        "Sensitivity": quick_sensitivity_analysis(oee_input, result.core_metrics).to_frame(),
        "Assumption Ledger": result.ledger.to_frame(),
        "Validation": build_validation_frame(result),
    }
    if result.economic_analysis is not None:
        results["Economics"] = result.economic_analysis.to_frame()
    return results


# ---------------------------------------------------------------------------
# Excel output
# ---------------------------------------------------------------------------
def write_excel(results, output_path):
    print(f"Writing: {output_path}")

    with pd.ExcelWriter(output_path, engine="xlsxwriter") as writer:
        workbook = writer.book

        header_fmt = workbook.add_format({
            "bold": True, "bg_color": "#1B2A4A", "font_color": "white",
            "border": 1, "text_wrap": True, "valign": "vcenter", "font_size": 11
        })
        title_fmt = workbook.add_format({"bold": True, "font_size": 14, "font_color": "#1B2A4A"})
        subtitle_fmt = workbook.add_format({"italic": True, "font_size": 10, "font_color": "#666666"})

        for sheet_name in SHEET_ORDER:
            if sheet_name not in results:
                continue

            df = results[sheet_name]
            df.to_excel(writer, sheet_name=sheet_name, startrow=2, index=False)
            ws = writer.sheets[sheet_name]

            ws.write(0, 0, sheet_name, title_fmt)
            ws.write(1, 0, f"Generated {datetime.now().strftime('%Y-%m-%d %H:%M')}", subtitle_fmt)

            for col_num, col_name in enumerate(df.columns):
                ws.write(2, col_num, col_name, header_fmt)

            # Auto-width
            for col_num, col_name in enumerate(df.columns):
                max_len = max(
                    df[col_name].map(lambda v: len(str(v))).max() if len(df) > 0 else 0,
                    len(str(col_name))
                )
                ws.set_column(col_num, col_num, min(max_len + 4, 60))

            # Green is good for scores, red is bad for losses
            if "Score %" in df.columns:
                col_idx = list(df.columns).index("Score %")
                ws.conditional_format(3, col_idx, 3 + len(df), col_idx, {
                    "type": "3_color_scale",
                    "min_color": "#F8696B", "mid_color": "#FFEB84", "max_color": "#63BE7B",
                })
            for loss_col in ["% of Planned", "oee_points"]:
                if loss_col in df.columns:
                    col_idx = list(df.columns).index(loss_col)
                    ws.conditional_format(3, col_idx, 3 + len(df), col_idx, {
                        "type": "3_color_scale",
                        "min_color": "#63BE7B", "mid_color": "#FFEB84", "max_color": "#F8696B",
                    })

        writer.sheets["Summary"].activate()

    print(f"Done! Open: {output_path}")


# ---------------------------------------------------------------------------
# Console summary
# ---------------------------------------------------------------------------
def _print_summary(result, output_path):
    core = result.core_metrics
    print("\n" + "=" * 60)
    print("QUICK SUMMARY")
    print("=" * 60)
    for name, metric in core.as_dict().items():
        print(f"  {name.title()}: {metric.value * 100:.1f}%  [{metric.confidence.label} confidence]")
    teep = result.extended_metrics.teep
    if teep is not None:
        print(f"  TEEP: {teep.value * 100:.1f}%")

    stats = result.ledger.source_statistics
    print(f"\n  Inputs: {stats.explicit_count} explicit, {stats.inferred_count} inferred, "
          f"{stats.default_count} default")

    if not result.validation.is_valid:
        print("\n  !! FATAL VALIDATION ISSUES: results are not trustworthy")
    for issue in result.validation.issues:
        if issue.severity.value != "info":
            print(f"    [{issue.severity.value}] {issue.code}")

    print("\nLEVERAGE:")
    for impact in result.leverage:
        print(f"  {impact.category_key}: +{impact.oee_opportunity_points:.1f} OEE pts, "
              f"+{impact.throughput_gain_units:,} units")

    if result.economic_analysis is not None:
        total = result.economic_analysis.total_impact
        print(f"\nECONOMIC IMPACT: {total.low_estimate:,.0f} / {total.central_estimate:,.0f} / "
              f"{total.high_estimate:,.0f} {total.currency} (low / central / high)")

    print(f"\nFull analysis: {output_path}")


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------
def main(argv=None):
    args = sys.argv[1:] if argv is None else list(argv)
    input_file = None
    options = {}

    i = 0
    while i < len(args):
        if args[i] in ("--downtime", "--economics", "--thresholds", "--json", "--output") \
                and i + 1 < len(args):
            options[args[i][2:]] = args[i + 1]
            i += 2
        elif args[i] == "--verbose":
            options["verbose"] = True
            i += 1
        elif not args[i].startswith("-"):
            input_file = args[i]
            i += 1
        else:
            i += 1

    logging.basicConfig(level=logging.DEBUG if options.get("verbose") else logging.WARNING,
                        format="%(levelname)s %(name)s: %(message)s")

    if input_file is None:
        print("Usage: python analyze.py input.json [--downtime events.xlsx] "
              "[--economics econ.json] [--thresholds strict] [--json out.json]")
        sys.exit(1)

    input_file = os.path.abspath(input_file)
    if not os.path.exists(input_file):
        print(f"Error: input file not found: {input_file}")
        sys.exit(1)

    oee_input = load_oee_input(input_file)

    if "downtime" in options:
        downtime_file = os.path.abspath(options["downtime"])
        if os.path.exists(downtime_file):
            oee_input = with_downtimes(oee_input, load_downtime_events(downtime_file))
        else:
            print(f"Warning: Downtime file not found: {downtime_file}")

    if "thresholds" in options:
        oee_input = dataclasses.replace(
            oee_input, thresholds=ThresholdConfiguration.preset(options["thresholds"]))

    if "economics" in options:
        params = load_economic_parameters(os.path.abspath(options["economics"]))
        result = analyze_with_economics(oee_input, params)
    else:
        result = analyze(oee_input)

    results = build_report(result, oee_input)

    output_path = options.get("output")
    if output_path is None:
        basename = os.path.splitext(os.path.basename(input_file))[0]
        timestamp = datetime.now().strftime("%Y%m%d_%H%M")
        output_path = os.path.join(os.path.dirname(input_file),
                                   f"{basename}_OEE_ANALYSIS_{timestamp}.xlsx")
    write_excel(results, output_path)

    if "json" in options:
        with open(options["json"], "w", encoding="utf-8") as f:
            json.dump(result.to_dict(), f, indent=2, default=str)
        print(f"JSON result: {options['json']}")

    _print_summary(result, output_path)
    return result


if __name__ == "__main__":
    main()
