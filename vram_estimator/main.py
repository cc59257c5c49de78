"""CLI entry point for the GPU VRAM estimator."""

import argparse
import json
import logging
import sys
import time
from dataclasses import asdict
from pathlib import Path

from vram_estimator.catalog import Catalog, load_catalog
from vram_estimator.config import MAX_MULTI_GPU
from vram_estimator.cost import PROVIDERS, analyze_cost
from vram_estimator.errors import EstimationError, FormatBreakingChange
from vram_estimator.exporters.json_export import export_catalog, export_result
from vram_estimator.formulas import format_memory_size
from vram_estimator.presets import (
    PRESET_CATEGORIES,
    get_preset,
    load_presets,
    presets_by_category,
    presets_by_mode,
    search_presets,
)
from vram_estimator.service import handle_recommendation, handle_request
from vram_estimator.sources.dbgpu_source import GPU_ID_TO_DBGPU_KEY, fetch_gpu_specs
from vram_estimator.sources.gpuhunt_source import fetch_cloud_prices
from vram_estimator.sources.huggingface import MODEL_ID_TO_HF_ID, fetch_models

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_DELAY = 5  # seconds


def _print_json(data) -> None:
    print(json.dumps(data, indent=2))


def _read_payload(source: str) -> dict:
    text = sys.stdin.read() if source == "-" else Path(source).read_text()
    return json.loads(text)


# ---------------------------------------------------------------------------
# Subcommands; each returns the process exit code
# ---------------------------------------------------------------------------


def cmd_estimate(args, catalog: Catalog) -> int:
    try:
        payload = _read_payload(args.file)
    except (OSError, json.JSONDecodeError) as e:
        logger.error("Could not read request %s: %s", args.file, e)
        return 2

    if isinstance(payload, dict) and (args.advise or args.target_gpu):
        payload = {**payload, "advise": {"targetGpu": args.target_gpu} if args.target_gpu else True}

    response = handle_request(payload, catalog)
    if args.output:
        export_result(response, args.output)
    _print_json(response)
    return 0 if response["status"] == "ok" else 1


def cmd_recommend(args, catalog: Catalog) -> int:
    payload = {
        "requiredVram": args.vram,
        "budget": args.budget,
        "useCase": args.use_case,
        "multiGpu": args.multi_gpu,
        "maxGpus": args.max_gpus,
    }
    response = handle_recommendation(payload, catalog)
    if response["status"] == "ok" and args.top:
        response["result"] = response["result"][: args.top]
    _print_json(response)
    return 0 if response["status"] == "ok" else 1


def cmd_models(args, catalog: Catalog) -> int:
    for category, models in catalog.models_by_category().items():
        if args.category and category != args.category:
            continue
        print(f"{category}:")
        for m in models:
            print(f"  {m.id:<24} {m.params_b:>7.2f}B  {m.architecture:<12} {m.name}")
    return 0


def cmd_gpus(args, catalog: Catalog) -> int:
    for price_range, gpus in catalog.gpus_by_price_range().items():
        print(f"{price_range}:")
        for g in gpus:
            cloud = f"${g.cloud_price_usd_per_hour:.2f}/h" if g.cloud_price_usd_per_hour else "-"
            print(
                f"  {g.id:<14} {format_memory_size(g.memory_gb):>9}  "
                f"${g.price_usd:>9,.0f}  {cloud:>9}  {g.name}"
            )
    return 0


def cmd_presets(args, catalog: Catalog) -> int:
    presets = load_presets()

    if args.run:
        try:
            preset = get_preset(presets, args.run)
        except EstimationError as e:
            _print_json({"status": "error", "error": e.to_dict()})
            return 1
        response = handle_request(preset.request, catalog)
        _print_json(response)
        return 0 if response["status"] == "ok" else 1

    selected = list(presets)
    if args.mode:
        selected = presets_by_mode(selected, args.mode)
    if args.category:
        selected = presets_by_category(selected, args.category)
    if args.search:
        selected = search_presets(selected, args.search)

    for p in selected:
        print(f"  {p.id:<28} {p.mode:<11} {p.category:<13} {p.name}")
    return 0


def cmd_cost(args, catalog: Catalog) -> int:
    try:
        analysis = analyze_cost(catalog.get_gpu(args.gpu), args.hours, args.provider)
    except EstimationError as e:
        _print_json({"status": "error", "error": e.to_dict()})
        return 1
    _print_json({"status": "ok", "result": asdict(analysis)})
    return 0


def run_refresh(catalog: Catalog, *, include_models: bool = True) -> tuple[Catalog, dict[str, dict]]:
    """Refresh GPU prices and specs (and optionally models) from upstream sources."""
    logger.info("=== GPU Prices ===")
    prices, price_source = fetch_cloud_prices()

    logger.info("=== GPU Specs ===")
    specs = fetch_gpu_specs([g.id for g in catalog.gpus if g.id in GPU_ID_TO_DBGPU_KEY])

    catalog = catalog.with_gpu_updates(cloud_prices=prices, specs=specs)
    sources = {"gpu_prices": price_source}

    if include_models:
        logger.info("=== Models ===")
        known = {m.id for m in catalog.models}
        names = {m.id: m.name for m in catalog.models}
        model_map = {k: v for k, v in MODEL_ID_TO_HF_ID.items() if k in known}
        catalog = catalog.with_models(fetch_models(model_map, names=names))
        sources["models"] = {"service_name": "huggingface", "service_url": "https://huggingface.co"}

    return catalog, sources


def cmd_refresh(args, catalog: Catalog) -> int:
    for attempt in range(1, MAX_RETRIES + 1):
        try:
            refreshed, sources = run_refresh(catalog, include_models=not args.skip_models)
            paths = export_catalog(refreshed, args.output_dir, sources=sources)
            for name, path in paths.items():
                logger.info("Exported %s -> %s", name, path)
            logger.info("Refresh complete!")
            return 0

        except FormatBreakingChange as e:
            # Format breaks won't fix themselves, so don't retry
            logger.error("Breaking format change detected: %s", e)
            return 1

        except Exception as e:
            if attempt < MAX_RETRIES:
                logger.warning(
                    "Attempt %d/%d failed: %s. Retrying in %ds...",
                    attempt,
                    MAX_RETRIES,
                    e,
                    RETRY_DELAY,
                )
                time.sleep(RETRY_DELAY)
            else:
                logger.exception("Refresh failed after %d attempts", MAX_RETRIES)
                return 1
    return 1


def cmd_export(args, catalog: Catalog) -> int:
    paths = export_catalog(catalog, args.output_dir)
    for name, path in paths.items():
        logger.info("Exported %s -> %s", name, path)
    return 0


COMMANDS = {
    "estimate": cmd_estimate,
    "recommend": cmd_recommend,
    "models": cmd_models,
    "gpus": cmd_gpus,
    "presets": cmd_presets,
    "cost": cmd_cost,
    "refresh": cmd_refresh,
    "export": cmd_export,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Estimate GPU memory for ML workloads and pick GPUs")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="WARNING",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Directory holding models.json and gpus.json (default: bundled catalog)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("estimate", help="Estimate memory for a JSON request")
    p.add_argument("file", help="Request JSON file, or - for stdin")
    p.add_argument("--output", type=Path, help="Also write the response to this file")
    p.add_argument("--advise", action="store_true", help="Add optimization suggestions")
    p.add_argument("--target-gpu", help="Catalog GPU id to advise against (implies --advise)")

    p = sub.add_parser("recommend", help="Rank GPUs for a memory requirement")
    p.add_argument("--vram", type=float, required=True, help="Required memory in GB")
    p.add_argument("--budget", type=float, default=None, help="Maximum total price in USD")
    p.add_argument("--use-case", choices=["inference", "training", "development"], default="inference")
    p.add_argument("--multi-gpu", action="store_true")
    p.add_argument("--max-gpus", type=int, default=MAX_MULTI_GPU)
    p.add_argument("--top", type=int, default=5, help="Show only the best N (0 for all)")

    p = sub.add_parser("models", help="List catalog models by size")
    p.add_argument("--category", choices=["small", "medium", "large", "xlarge"])

    sub.add_parser("gpus", help="List catalog GPUs by price range")

    p = sub.add_parser("presets", help="List or run ready-made workload requests")
    p.add_argument("--mode", help="Only presets for this mode (training, inference, ...)")
    p.add_argument("--category", choices=PRESET_CATEGORIES)
    p.add_argument("--search", help="Match name, description or tags")
    p.add_argument("--run", metavar="ID", help="Estimate memory for this preset")

    p = sub.add_parser("cost", help="Cost of running a GPU for some hours")
    p.add_argument("--gpu", required=True, help="Catalog GPU id")
    p.add_argument("--hours", type=float, required=True)
    p.add_argument("--provider", choices=PROVIDERS, default="local")

    p = sub.add_parser("refresh", help="Refresh catalog data from upstream sources and export it")
    p.add_argument("--skip-models", action="store_true", help="Only refresh GPU data")
    p.add_argument("--output-dir", type=Path, default=None)

    p = sub.add_parser("export", help="Export the catalog to JSON")
    p.add_argument("--output-dir", type=Path, default=None)

    return parser


def main(argv: list[str] | None = None):
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        catalog = load_catalog(args.data_dir)
    except RuntimeError as e:
        logger.error("%s", e)
        sys.exit(1)

    code = COMMANDS[args.command](args, catalog)
    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()
