from __future__ import annotations

import pickle
import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from jobledger.config import get_config
from jobledger.jobs.errors import SubmissionFault
from jobledger.jobs.launch import launch
from jobledger.jobs.params import expand_reps
from jobledger.jobs.slurm import SlurmAdapter, SubmissionError, parse_sbatch_output
from jobledger.jobs.store import JobDatabase


def scaled(x, scale=1):
    return x * scale


def _fake_sbatch(first_id: int = 777):
    counter = {"next": first_id}

    def run(cmd, capture_output, text, timeout):
        out = f"{counter['next']};cluster\n"
        counter["next"] += 1
        return subprocess.CompletedProcess(cmd, 0, stdout=out, stderr="")

    return run


@pytest.fixture
def registry(tmp_path: Path):
    return SlurmAdapter(python="/usr/bin/python3").create_registry(tmp_path / "reg001", Path(get_config().template))


def test_create_registry_lays_out_directories(registry, tmp_path: Path) -> None:
    assert registry.name == "reg001"
    assert (tmp_path / "reg001" / "jobs").is_dir()
    assert (tmp_path / "reg001" / "logs").is_dir()
    assert (tmp_path / "reg001" / "template.tmpl").read_text(encoding="utf-8").startswith("#!/bin/bash")


def test_create_registry_refuses_existing_directory(registry, tmp_path: Path) -> None:
    with pytest.raises(FileExistsError):
        SlurmAdapter().create_registry(tmp_path / "reg001")


def test_map_call_pickles_one_payload_per_row(registry) -> None:
    jobs = SlurmAdapter().map_call(registry, scaled, expand_reps({"x": [1, 2]}), {"scale": 3})

    assert jobs.call == "scaled"
    assert [j.bjobid for j in jobs.jobs] == [1, 2]
    with (registry.path / "jobs" / "2.pkl").open("rb") as f:
        payload = pickle.load(f)
    assert payload["fn"] is scaled
    assert payload["kwargs"] == {"x": 2, "scale": 3}
    assert (registry.path / "registry.json").exists()


def test_render_script_fills_resources_and_defaults(registry) -> None:
    script = SlurmAdapter(python="/usr/bin/python3").render_script(registry, 1, {"walltime": "02:00:00", "ncpus": 4})

    assert "#SBATCH --job-name=reg001-1" in script
    assert "#SBATCH --time=02:00:00" in script
    assert "#SBATCH --cpus-per-task=4" in script
    assert "#SBATCH --mem=4G" in script
    assert f"#SBATCH --output={registry.path / 'logs' / '1.log'}" in script
    assert "/usr/bin/python3 -m jobledger.jobs.worker" in script
    assert "$" not in script


def test_submit_parses_scheduler_ids(registry) -> None:
    adapter = SlurmAdapter()
    jobs = adapter.map_call(registry, scaled, expand_reps({"x": [1, 2]}))

    with patch("jobledger.jobs.slurm.subprocess.run", side_effect=_fake_sbatch()) as run:
        submitted = adapter.submit(jobs, {"memory": "1G"})

    assert [(j.bjobid, j.sjobid) for j in submitted.jobs] == [(1, "777"), (2, "778")]
    first_cmd = run.call_args_list[0].args[0]
    assert first_cmd[:2] == ["sbatch", "--parsable"]
    assert (registry.path / "jobs" / "1.sh").exists()


def test_submit_raises_on_sbatch_failure(registry) -> None:
    adapter = SlurmAdapter()
    jobs = adapter.map_call(registry, scaled, expand_reps({"x": [1]}))
    failed = subprocess.CompletedProcess(["sbatch"], 1, stdout="", stderr="invalid partition")

    with patch("jobledger.jobs.slurm.subprocess.run", return_value=failed):
        with pytest.raises(SubmissionError, match="invalid partition"):
            adapter.submit(jobs)


@pytest.mark.parametrize("out, expected", [("123\n", "123"), ("456;mycluster\n", "456"), ("Submitted\n789\n", "789")])
def test_parse_sbatch_output(out: str, expected: str) -> None:
    assert parse_sbatch_output(out) == expected


def test_parse_sbatch_output_rejects_garbage() -> None:
    with pytest.raises(SubmissionError):
        parse_sbatch_output("sbatch: error\n")


def test_launch_through_slurm_adapter(tmp_path: Path) -> None:
    db_path = tmp_path / "jdb.csv"
    regdir = tmp_path / "regs"

    with patch("jobledger.jobs.slurm.subprocess.run", side_effect=_fake_sbatch(1000)):
        jobids = launch(scaled, reps={"x": [1, 2]}, regdir=regdir, db=JobDatabase(db_path), adapter=SlurmAdapter())

    df = JobDatabase(db_path).frame
    assert jobids == [1, 2]
    assert df["sjobid"].tolist() == ["1000", "1001"]
    assert df["registry"].tolist() == ["reg001", "reg001"]
    assert (regdir / "reg001" / "jobs" / "1.pkl").exists()


def test_launch_wraps_sbatch_failure(tmp_path: Path) -> None:
    db_path = tmp_path / "jdb.csv"
    failed = subprocess.CompletedProcess(["sbatch"], 1, stdout="", stderr="down")

    with patch("jobledger.jobs.slurm.subprocess.run", return_value=failed):
        with pytest.raises(SubmissionFault):
            launch(scaled, reps=[1], argname="x", regdir=tmp_path / "regs", db=JobDatabase(db_path), adapter=SlurmAdapter())
    assert not db_path.exists()
