import argparse
import json
import logging
import os
import time
import traceback
from datetime import datetime

import matplotlib
matplotlib.use("Agg")
import requests

from src.config import (
    DEFAULT_CENSUS_FILE,
    DEFAULT_FALLBACK_POLICY,
    DEFAULT_METADATA_FILE,
    DEFAULT_OPTIMIZER,
    DEFAULT_SURVEY_FILE,
    DEFAULT_TIE_POLICY,
    NTFY_URL,
    OUTPUT_DIR,
)
from src.data.dataset import MRPDataset
from src.data.loaders import load_census, load_census_metadata
from src.evaluation.diagnostics import describe_survey
from src.models.multilevel_logit import fit_party_models
from src.models.party_model import FALLBACK_POLICIES, load_models, save_models
from src.processing.electoral_systems import TIE_POLICIES
from src.processing.poststratification import ON_ERROR_POLICIES, run_poststratification
from src.processing.report_outputs import build_district_table, print_report, seat_totals, write_outputs
from src.visualization.plots import (
    plot_district_support_heatmap,
    plot_fixed_effects,
    plot_seat_totals,
    plot_survey_composition,
    plot_winner_map,
)

logger = logging.getLogger(__name__)

MODELS_FILE = "party_models.json"
CONFIG_FILE = "config.json"


def _resolve_output_dir(args) -> str:
    """Timestamped run directory under the default output dir, or the user's directory as given."""
    if args.output_dir == OUTPUT_DIR:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        output_dir = os.path.join(OUTPUT_DIR, f"mrp_run_{timestamp}")
        print(f"No specific output directory provided. Creating timestamped directory: {output_dir}")
    else:
        output_dir = args.output_dir
    os.makedirs(output_dir, exist_ok=True)
    return output_dir


def fit_model(args, output_dir=None):
    """Fit the party models and save them with the run configuration."""
    output_dir = output_dir or _resolve_output_dir(args)
    dataset = MRPDataset.from_files(args.survey, args.census, args.metadata)

    models = fit_party_models(dataset.respondents, dataset.parties, optimizer=args.optimizer)
    save_models(models, os.path.join(output_dir, MODELS_FILE))

    config_to_save = {
        "survey": args.survey,
        "census": args.census,
        "metadata": args.metadata,
        "optimizer": args.optimizer,
        "fallback_policy": args.fallback_policy,
        "tie_policy": args.tie_policy,
        "parties": dataset.party_labels,
        "fitted_at": datetime.now().isoformat(),
    }
    with open(os.path.join(output_dir, CONFIG_FILE), "w") as f:
        json.dump(config_to_save, f, indent=2)

    stats = describe_survey(dataset.respondents, dataset.parties)
    print("\n=== Survey support (raw) ===")
    print(stats["party_support"].to_string())
    print(stats["district_coverage"].to_string(index=False))
    print(f"\nModels saved to {output_dir}")
    return dataset, models, output_dir


def _saved_run_output_dir(args) -> str:
    """Outputs of a saved run go next to its models unless --output-dir is given."""
    if args.output_dir == OUTPUT_DIR:
        return args.load_dir
    os.makedirs(args.output_dir, exist_ok=True)
    return args.output_dir


def predict(args, models=None, output_dir=None):
    """Poststratify saved (or freshly fitted) models against the census."""
    if models is None:
        models = load_models(os.path.join(args.load_dir, MODELS_FILE))
    output_dir = output_dir or _saved_run_output_dir(args)
    census = load_census(args.census)
    metadata = load_census_metadata(args.metadata)

    result = run_poststratification(
        census,
        metadata,
        models,
        fallback_policy=args.fallback_policy,
        tie_policy=args.tie_policy,
        on_error=args.on_error,
    )
    write_outputs(result, models, output_dir, metadata)
    print_report(result, models)
    return result, metadata


def visualize(args, result, models, metadata, output_dir, respondents=None):
    viz_dir = os.path.join(output_dir, "visualizations")
    table = build_district_table(result, metadata)
    plot_seat_totals(seat_totals(result), viz_dir)
    if not table.empty:
        plot_district_support_heatmap(table, viz_dir)
    plot_fixed_effects(models, viz_dir)
    if respondents is not None:
        plot_survey_composition(respondents, viz_dir)
    if args.boundaries:
        plot_winner_map(table, args.boundaries, viz_dir, boundary_code_column=args.boundary_code_column)


def run_full(args):
    output_dir = _resolve_output_dir(args)
    dataset, models, _ = fit_model(args, output_dir)
    result, metadata = predict(args, models=models, output_dir=output_dir)
    if not args.skip_plots:
        visualize(args, result, models, metadata, output_dir, dataset.respondents)


def main(args=None):
    parser = argparse.ArgumentParser(
        description="Multilevel regression with poststratification for the 2019 Canadian federal election"
    )
    parser.add_argument(
        "--mode",
        choices=["fit", "predict", "viz", "full"],
        default="full",
        help="fit: fit and save party models; predict: poststratify saved models; "
             "viz: predict and plot saved models; full: everything",
    )
    parser.add_argument("--survey", default=DEFAULT_SURVEY_FILE, help="Survey extract (CSV or parquet)")
    parser.add_argument("--census", default=DEFAULT_CENSUS_FILE, help="Census profile by federal electoral district")
    parser.add_argument("--metadata", default=DEFAULT_METADATA_FILE, help="Census geo starting-row listing")
    parser.add_argument("--output-dir", default=OUTPUT_DIR, help="Directory for the run outputs (predict/viz default to --load-dir)")
    parser.add_argument("--load-dir", help="Run directory with saved models (predict/viz modes)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--notify", action="store_true", help="Send a ntfy notification when the run ends")

    model_group = parser.add_argument_group("Model Parameters")
    model_group.add_argument(
        "--optimizer", default=DEFAULT_OPTIMIZER, help="scipy.optimize method for the Laplace posterior mode"
    )

    ps_group = parser.add_argument_group("Poststratification Parameters")
    ps_group.add_argument(
        "--fallback-policy", choices=FALLBACK_POLICIES, default=DEFAULT_FALLBACK_POLICY,
        help="Intercept used for districts without respondents",
    )
    ps_group.add_argument(
        "--tie-policy", choices=TIE_POLICIES, default=DEFAULT_TIE_POLICY,
        help="precedence: award tied districts by party order; raise: fail the district",
    )
    ps_group.add_argument(
        "--on-error", choices=ON_ERROR_POLICIES, default="raise",
        help="raise: abort on the first failing district; collect: report failures and continue",
    )

    viz_group = parser.add_argument_group("Visualization Parameters")
    viz_group.add_argument("--skip-plots", action="store_true", help="Do not produce plots in full mode")
    viz_group.add_argument("--boundaries", help="Riding boundary file for the winner map (optional)")
    viz_group.add_argument("--boundary-code-column", default="FEDUID", help="Riding code column in the boundary file")

    args = parser.parse_args(args)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
    )

    if args.mode in ["predict", "viz"] and not args.load_dir:
        parser.error(f"--load-dir is required for {args.mode} mode")
    if args.load_dir and not os.path.isdir(args.load_dir):
        parser.error(f"--load-dir path '{args.load_dir}' does not exist or is not a directory.")

    start_main_time = time.time()
    try:
        if args.mode == "fit":
            fit_model(args)
        elif args.mode == "predict":
            predict(args)
        elif args.mode == "viz":
            models = load_models(os.path.join(args.load_dir, MODELS_FILE))
            output_dir = _saved_run_output_dir(args)
            result, metadata = predict(args, models=models, output_dir=output_dir)
            visualize(args, result, models, metadata, output_dir)
        elif args.mode == "full":
            run_full(args)

        end_main_time = time.time()
        print(f"\n'{args.mode}' mode finished in {end_main_time - start_main_time:.2f} seconds.")

        if args.notify:
            try:
                requests.post(NTFY_URL, data=f"MRP {args.mode} completed successfully".encode(encoding='utf-8'))
            except requests.RequestException as notify_err:
                logger.warning(f"Failed to send success notification: {notify_err}")

        return 0

    except Exception as e:
        end_main_time = time.time()
        print(f"\nError during '{args.mode}' mode after {end_main_time - start_main_time:.2f} seconds: {e}")
        if args.debug:
            traceback.print_exc()

        if args.notify:
            try:
                requests.post(NTFY_URL, data=f"Error in MRP {args.mode} mode: {e}".encode(encoding='utf-8'))
            except requests.RequestException as notify_err:
                logger.warning(f"Failed to send error notification: {notify_err}")

        return 1


if __name__ == "__main__":
    import sys
    sys.exit(main())
