import json

from dialectic_worker.__main__ import main
from dialectic_worker.executor import contribution_store


def test_submit_then_drain_queue(tmp_path, capsys):
    root = str(tmp_path / "cli-storage")
    seed_file = tmp_path / "seed.md"
    seed_file.write_text("Plan a migration to Postgres.", encoding="utf-8")

    assert main([
        "--storage-root", root, "submit",
        "--project", "proj-cli", "--session", "cli-session-1", "--stage", "thesis",
        "--model", "dummy-echo-v1", "--seed-file", str(seed_file),
    ]) == 0
    [plan_id] = capsys.readouterr().out.split()

    assert main(["--storage-root", root, "run", "--once", "--concurrency", "1"]) == 0
    assert "Processed 2 job run(s), 0 failed" in capsys.readouterr().out

    assert main(["--storage-root", root, "status", plan_id]) == 0
    status = json.loads(capsys.readouterr().out)
    assert status["status"] == "completed"
    assert status["payload"]["stageSlug"] == "thesis"
    assert [child["status"] for child in status["children"]] == ["completed"]

    [row] = contribution_store.list_contributions("cli-session-1")
    assert row["storage_path"] == "proj-cli/session_cli-sess/iteration_1/1_thesis/dummy-echo_0_thesis.md"
    assert row["content"].startswith("Echo from echo-v1:")
    assert (tmp_path / "cli-storage" / row["storage_path"]).exists()


def test_submit_unknown_model_exits_with_contract_error(tmp_path):
    assert main([
        "--storage-root", str(tmp_path), "submit",
        "--project", "p", "--session", "s", "--stage", "thesis",
        "--model", "openai-gpt-99", "--seed", "x",
    ]) == 2


def test_status_of_unknown_job(tmp_path, capsys):
    assert main(["--storage-root", str(tmp_path), "status", "job-missing"]) == 1
    assert "Job not found" in capsys.readouterr().err


def test_list_models_from_catalog(tmp_path, capsys):
    assert main(["--storage-root", str(tmp_path), "list-models", "dummy"]) == 0
    assert "dummy-echo-v1\tDummy Echo" in capsys.readouterr().out
