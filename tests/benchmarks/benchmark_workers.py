#!/usr/bin/env python3
"""Manual benchmark: compare crop analysis speed across scoring worker counts."""

from __future__ import annotations

import argparse
import statistics
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import smartcrop.cropper as cropper
from smartcrop.cropper import Configuration

DEFAULT_WORKERS = [1, 2, 4, 8]
IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".tif", ".tiff", ".bmp"}


@dataclass
class RunMetrics:
    workers: int
    run_index: int
    duration_sec: float
    images_count: int
    candidates_count: int

    @property
    def ms_per_image(self) -> float:
        if self.images_count == 0:
            return 0.0
        return self.duration_sec * 1000.0 / self.images_count

    @property
    def candidates_per_sec(self) -> float:
        if self.duration_sec <= 0:
            return 0.0
        return self.candidates_count / self.duration_sec


def _collect_images(src: Path) -> list[Path]:
    if src.is_file():
        return [src]
    return sorted(p for p in src.iterdir() if p.suffix.lower() in IMAGE_EXTENSIONS)


def _run_once(*, images: list, config: Configuration, workers: int) -> tuple[float, int, list]:
    t0 = time.perf_counter()
    tops = []
    candidates_count = 0
    for image in images:
        result = cropper.smart_crop(image, config, workers=workers)
        candidates_count += len(result.crops)
        tops.append(result.top_crop.rect)
    return time.perf_counter() - t0, candidates_count, tops


def _benchmark_workers(
    *, workers: int, images: list, config: Configuration, runs: int
) -> tuple[list[RunMetrics], list]:
    metrics: list[RunMetrics] = []
    tops: list = []
    for run_idx in range(1, runs + 1):
        duration, candidates_count, tops = _run_once(images=images, config=config, workers=workers)
        metrics.append(
            RunMetrics(
                workers=workers,
                run_index=run_idx,
                duration_sec=duration,
                images_count=len(images),
                candidates_count=candidates_count,
            )
        )
    return metrics, tops


def _avg(values: list[float]) -> float:
    return statistics.fmean(values) if values else 0.0


def _write_report(
    *,
    report_path: Path,
    src: Path,
    images_count: int,
    runs: int,
    config: Configuration,
    all_metrics: list[RunMetrics],
    consistent: bool,
) -> None:
    ts = datetime.now().isoformat(timespec="seconds")

    grouped: dict[int, list[RunMetrics]] = {}
    for metric in all_metrics:
        grouped.setdefault(metric.workers, []).append(metric)

    summary_rows: list[tuple[int, float, float, float]] = []
    for workers, metrics in grouped.items():
        summary_rows.append(
            (
                workers,
                _avg([m.ms_per_image for m in metrics]),
                _avg([m.candidates_per_sec for m in metrics]),
                _avg([m.duration_sec for m in metrics]),
            )
        )
    summary_rows.sort(key=lambda row: row[0])

    baseline_ms = summary_rows[0][1] if summary_rows else 0.0

    lines: list[str] = []
    lines.append("# Crop Scoring Worker Benchmark Report")
    lines.append("")
    lines.append(f"- Generated: `{ts}`")
    lines.append(f"- Input: `{src}`")
    lines.append(f"- Images per run: `{images_count}`")
    lines.append(f"- Runs per worker count: `{runs}`")
    lines.append(f"- Target: `{config.width}x{config.height}`")
    lines.append(f"- Prescale: `{config.prescale}`")
    lines.append(f"- Step / score down-sample: `{config.step}` / `{config.score_down_sample}`")
    lines.append(f"- Same top crop for every worker count: `{consistent}`")
    lines.append("")
    lines.append("## Summary")
    lines.append("")
    lines.append("| Workers | Avg ms/img | Avg candidates/s | Avg duration (s) | Speedup vs first |")
    lines.append("|---:|---:|---:|---:|---:|")
    for workers, ms_img, cand_sec, duration in summary_rows:
        speedup = (baseline_ms / ms_img) if ms_img > 0 else 0.0
        lines.append(
            f"| {workers} | {ms_img:.1f} | {cand_sec:.0f} | {duration:.2f} | {speedup:.2f}x |"
        )

    lines.append("")
    lines.append("## Per-run Details")
    lines.append("")
    lines.append("| Workers | Run | Duration (s) | ms/img | Candidates/s |")
    lines.append("|---:|---:|---:|---:|---:|")
    for workers, metrics in grouped.items():
        for m in sorted(metrics, key=lambda x: x.run_index):
            lines.append(
                f"| {workers} | {m.run_index} | {m.duration_sec:.2f} | {m.ms_per_image:.1f} | {m.candidates_per_sec:.0f} |"
            )

    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Manual benchmark to compare crop scoring speed across worker counts.",
    )
    parser.add_argument(
        "--input",
        required=True,
        help="Image file or folder of images.",
    )
    parser.add_argument(
        "--runs",
        type=int,
        default=3,
        help="Number of timed runs per worker count (default: 3).",
    )
    parser.add_argument(
        "--workers",
        type=int,
        nargs="+",
        default=DEFAULT_WORKERS,
        help="Worker counts to compare (space-separated). Default: 1 2 4 8",
    )
    parser.add_argument("--width", type=int, default=100, help="Target width (default: 100).")
    parser.add_argument("--height", type=int, default=100, help="Target height (default: 100).")
    parser.add_argument(
        "--no-prescale",
        action="store_true",
        help="Analyse at full resolution, which makes scoring dominate the run time.",
    )
    parser.add_argument(
        "--report",
        default="docs/worker-benchmark-report.md",
        help="Output Markdown report path (default: docs/worker-benchmark-report.md).",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    src = Path(args.input).expanduser().resolve()
    report_path = Path(args.report).expanduser().resolve()
    if not src.exists():
        raise SystemExit(f"Input not found: {src}")
    if args.runs < 1:
        raise SystemExit("--runs must be >= 1")
    if not args.workers or min(args.workers) < 1:
        raise SystemExit("--workers values must be >= 1")

    paths = _collect_images(src)
    if not paths:
        raise SystemExit("No images found to benchmark.")
    print(f"📐 Loading {len(paths)} image(s) from: {src}")
    images = [cropper.load_image(p) for p in paths]

    config = cropper.configuration_from_env(
        search_dir=src if src.is_dir() else src.parent,
        width=args.width,
        height=args.height,
        prescale=not args.no_prescale,
    )

    print(f"🧪 Benchmarking worker counts {args.workers}, {args.runs} run(s) each")
    all_metrics: list[RunMetrics] = []
    reference_tops = None
    consistent = True
    for idx, workers in enumerate(args.workers, start=1):
        print(f"➡️  {idx}/{len(args.workers)}: workers={workers}")
        metrics, tops = _benchmark_workers(
            workers=workers, images=images, config=config, runs=args.runs
        )
        all_metrics.extend(metrics)
        if reference_tops is None:
            reference_tops = tops
        elif tops != reference_tops:
            consistent = False
            print(f"  ⚠️  Top crops differ from workers={args.workers[0]}")

    _write_report(
        report_path=report_path,
        src=src,
        images_count=len(images),
        runs=args.runs,
        config=config,
        all_metrics=all_metrics,
        consistent=consistent,
    )
    print(f"📝 Report written: {report_path}")


if __name__ == "__main__":
    main()
