import json
import os

from src.main import MODELS_FILE, main
from src.models.party_model import save_models
from tests.conftest import make_census, make_model, make_raw_metadata


def _write_inputs(tmp_path, party_labels):
    census, lines = make_census([{}, {}])
    census_path = tmp_path / "census.csv"
    metadata_path = tmp_path / "geo.csv"
    census.to_csv(census_path, index=False, encoding="latin-1")
    make_raw_metadata(["1", "35001", "35002"], [2, lines[0], lines[1]]).to_csv(
        metadata_path, index=False, encoding="latin-1"
    )

    run_dir = tmp_path / "run"
    run_dir.mkdir()
    models = {
        party: make_model(party, intercept=-1.0 if party == "Bloc" else -2.0, random_intercepts={"35001": 0.2})
        for party in party_labels
    }
    save_models(models, str(run_dir / MODELS_FILE))
    return str(census_path), str(metadata_path), str(run_dir)


def test_predict_mode_writes_outputs(tmp_path, party_labels):
    census_path, metadata_path, run_dir = _write_inputs(tmp_path, party_labels)

    exit_code = main(["--mode", "predict", "--load-dir", run_dir, "--census", census_path, "--metadata", metadata_path])

    assert exit_code == 0
    with open(os.path.join(run_dir, "seat_totals.json")) as f:
        seats = json.load(f)
    assert seats["seats"]["Bloc"] == 2
    assert seats["districts"] == 2
    assert os.path.exists(os.path.join(run_dir, "district_results.csv"))


def test_predict_mode_reports_failure(tmp_path, party_labels):
    census_path, metadata_path, run_dir = _write_inputs(tmp_path, party_labels)

    exit_code = main(
        [
            "--mode", "predict", "--load-dir", run_dir, "--census", census_path,
            "--metadata", metadata_path, "--fallback-policy", "refuse",
        ]
    )

    # 35002 has no respondents and the refuse policy aborts the run
    assert exit_code == 1


def test_predict_mode_honours_output_dir(tmp_path, party_labels):
    census_path, metadata_path, run_dir = _write_inputs(tmp_path, party_labels)
    out_dir = tmp_path / "elsewhere"

    exit_code = main(
        [
            "--mode", "predict", "--load-dir", run_dir, "--census", census_path,
            "--metadata", metadata_path, "--output-dir", str(out_dir),
        ]
    )

    assert exit_code == 0
    assert (out_dir / "seat_totals.json").exists()
    assert not os.path.exists(os.path.join(run_dir, "seat_totals.json"))


def _write_survey(tmp_path, raw_survey):
    survey_path = tmp_path / "survey.csv"
    raw_survey.to_csv(survey_path, index=False)
    return str(survey_path)


def test_fit_mode_saves_models(tmp_path, party_labels, raw_survey):
    census_path, metadata_path, _ = _write_inputs(tmp_path, party_labels)
    out_dir = tmp_path / "fitted"

    exit_code = main(
        [
            "--mode", "fit", "--survey", _write_survey(tmp_path, raw_survey), "--census", census_path,
            "--metadata", metadata_path, "--output-dir", str(out_dir),
        ]
    )

    assert exit_code == 0
    with open(out_dir / MODELS_FILE) as f:
        saved = json.load(f)
    assert [entry["party"] for entry in saved] == party_labels
    with open(out_dir / "config.json") as f:
        assert json.load(f)["parties"] == party_labels


def test_full_mode_end_to_end(tmp_path, party_labels, raw_survey):
    census_path, metadata_path, _ = _write_inputs(tmp_path, party_labels)
    out_dir = tmp_path / "full"

    exit_code = main(
        [
            "--mode", "full", "--skip-plots", "--survey", _write_survey(tmp_path, raw_survey),
            "--census", census_path, "--metadata", metadata_path, "--output-dir", str(out_dir),
        ]
    )

    assert exit_code == 0
    assert (out_dir / MODELS_FILE).exists()
    with open(out_dir / "seat_totals.json") as f:
        seats = json.load(f)
    assert seats["districts"] == 2
    assert sum(seats["seats"].values()) == 2
    assert not (out_dir / "visualizations").exists()
