from __future__ import annotations

import argparse
from pathlib import Path

import pandas as pd
import plotly.express as px


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Visualize procurement simulator CSV logs with Plotly.")
    p.add_argument("--log", type=str, required=True, help="Path to procurement_orders_*.csv")
    p.add_argument("--outdir", type=str, default="data/logs", help="Directory to write HTML plots")
    return p.parse_args()


def load_log(log_path: Path) -> pd.DataFrame:
    df = pd.read_csv(log_path)
    df["outcome"] = df["stockout"].map({0: "delivered", 1: "stockout"})
    df["cache"] = df["cache_hit"].map({0: "miss", 1: "hit"})
    return df


def summarize(df: pd.DataFrame) -> pd.DataFrame:
    """Per-product totals over delivered requests."""
    delivered = df[df["stockout"] == 0]
    return (
        delivered.groupby("product_id")
        .agg(
            orders=("order_id", "count"),
            units=("quantity", "sum"),
            spend=("total_price", "sum"),
            avg_score=("overall_score", "mean"),
            avg_path_length=("path_length", "mean"),
        )
        .reset_index()
    )


def main() -> None:
    args = parse_args()
    log_path = Path(args.log)
    outdir = Path(args.outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    df = load_log(log_path)
    df_del = df[df["stockout"] == 0].copy()

    # Price distribution per product
    fig_price = px.histogram(
        df_del,
        x="total_price",
        color="product_id",
        nbins=30,
        title="Path total price distribution (delivered requests only)",
    )
    price_out = outdir / f"{log_path.stem}_price_hist.html"
    fig_price.write_html(price_out)

    # Optimizer latency over time
    fig_latency = px.scatter(
        df,
        x="created_time",
        y="latency_ms",
        color="cache",
        title="Optimizer latency vs request time (colored by cache hit)",
    )
    latency_out = outdir / f"{log_path.stem}_latency_timeseries.html"
    fig_latency.write_html(latency_out)

    # Score vs path length
    fig_score = px.scatter(
        df_del,
        x="path_length",
        y="overall_score",
        color="supplier_id",
        title="Overall score vs path length (colored by supplier)",
    )
    score_out = outdir / f"{log_path.stem}_score_vs_length.html"
    fig_score.write_html(score_out)

    # Outcomes per product
    fig_outcome = px.histogram(
        df,
        x="product_id",
        color="outcome",
        barmode="group",
        title="Delivered vs stockout requests per product",
    )
    outcome_out = outdir / f"{log_path.stem}_outcomes.html"
    fig_outcome.write_html(outcome_out)

    print(summarize(df).to_string(index=False))
    print(f"wrote={price_out}")
    print(f"wrote={latency_out}")
    print(f"wrote={score_out}")
    print(f"wrote={outcome_out}")


if __name__ == "__main__":
    main()
