"""End-to-end runs of the worker against the dummy adapter and a temp database."""

import json

import pytest

from conftest import provider_failure
from dialectic_worker.errors import StageAlreadySubmittedError
from dialectic_worker.executor import contribution_store
from dialectic_worker.jobs import job_manager
from dialectic_worker.jobs.schemas import DialecticPlanJobPayload, JobStatus, JobType
from dialectic_worker.jobs.submission import submit_stage
from dialectic_worker.worker import Worker

SESSION = "sessabcd1234"
BASE = "proj-1/session_sessabcd/iteration_1"
SEED = "Design a rate limiter for a public API."


def _submit(deps, stage, models=("dummy-alpha", "dummy-beta"), **kwargs):
    return submit_stage(
        project_id="proj-1",
        session_id=SESSION,
        stage_slug=stage,
        model_ids=list(models),
        seed_prompt=SEED,
        deps=deps,
        **kwargs,
    )


def _run(deps, concurrency=2):
    return Worker(deps=deps, concurrency=concurrency, poll_interval=0, retry_delays=()).run_once()


def _stage_files(storage, directory):
    return [p for p in storage.list(f"{BASE}/{directory}") if not p.endswith("seed_prompt.md")]


@pytest.fixture
def theses(deps):
    plans = _submit(deps, "thesis")
    _run(deps)
    return plans


def test_thesis_stage_writes_one_contribution_per_model(deps, storage, theses):
    assert _stage_files(storage, "1_thesis") == [
        f"{BASE}/1_thesis/dummy-alpha_0_thesis.md",
        f"{BASE}/1_thesis/dummy-beta_0_thesis.md",
        f"{BASE}/1_thesis/raw_responses/dummy-alpha_0_thesis_raw.json",
        f"{BASE}/1_thesis/raw_responses/dummy-beta_0_thesis_raw.json",
    ]
    assert storage.download(f"{BASE}/1_thesis/seed_prompt.md").decode() == SEED

    for plan in theses:
        parent = job_manager.get_job(plan.id)
        assert parent.status == JobStatus.COMPLETED
        [child_id] = parent.results["child_job_ids"]
        child = job_manager.get_job(child_id)
        assert child.job_type == JobType.EXECUTE
        assert child.status == JobStatus.COMPLETED
        assert child.results["contribution_status"] == "completed"

    rows = contribution_store.list_contributions(SESSION, "thesis")
    assert sorted(r["model_slug"] for r in rows) == ["dummy-alpha", "dummy-beta"]
    for row in rows:
        assert row["document_relationships"] == {"thesis": row["id"]}
        assert row["total_tokens"] == row["prompt_tokens"] + row["completion_tokens"]
        assert SEED in row["content"]

    raw = json.loads(storage.download(f"{BASE}/1_thesis/raw_responses/dummy-alpha_0_thesis_raw.json"))
    assert raw["response"]["finish_reason"] == "stop"
    assert raw["provider_calls"] == 1


def test_antithesis_critiques_every_thesis(deps, storage, transport, theses):
    _submit(deps, "antithesis")
    _run(deps)

    assert _stage_files(storage, "2_antithesis") == sorted(
        [
            f"{BASE}/2_antithesis/{critic}_critiquing_{author}_on_thesis_0_antithesis.md"
            for critic in ("dummy-alpha", "dummy-beta")
            for author in ("dummy-alpha", "dummy-beta")
        ]
        + [
            f"{BASE}/2_antithesis/raw_responses/{critic}_critiquing_{author}_on_thesis_0_antithesis_raw.json"
            for critic in ("dummy-alpha", "dummy-beta")
            for author in ("dummy-alpha", "dummy-beta")
        ]
    )

    thesis_ids = {r["id"] for r in contribution_store.list_contributions(SESSION, "thesis")}
    for row in contribution_store.list_contributions(SESSION, "antithesis"):
        relationships = row["document_relationships"]
        assert relationships["thesis"] in thesis_ids
        assert relationships["source_group"] == relationships["thesis"]
        assert relationships["antithesis"] == row["id"]

    # Each critic's prompt carries the thesis it critiques
    antithesis_calls = [c for c in transport.calls if "Write an antithesis" in c["messages"][-1][1]]
    assert len(antithesis_calls) == 4


def test_synthesis_pairs_never_collide(deps, storage, theses):
    _submit(deps, "antithesis")
    _run(deps)
    _submit(deps, "synthesis")
    outcomes = _run(deps)

    assert all(status != JobStatus.FAILED for status in outcomes.values())
    chunks = _stage_files(storage, "3_synthesis/_work")
    assert len(chunks) == len(set(chunks)) == 8
    alpha = [c for c in chunks if c.split("/")[-1].startswith("dummy-alpha_synthesizing_")]
    pairs = [(a, p) for a in ("dummy-alpha", "dummy-beta") for p in ("dummy-alpha", "dummy-beta")]
    assert sorted(c.split("/")[-1] for c in alpha) == [
        f"dummy-alpha_synthesizing_{anchor}_with_{paired}_on_thesis_{index}_synthesis.md"
        for index, (anchor, paired) in enumerate(pairs)
    ]
    assert not storage.list(f"{BASE}/3_synthesis/raw_responses")


def test_provider_errors_retry_then_fail(deps, transport):
    transport.default = provider_failure(503)
    [plan] = _submit(deps, "thesis", models=["dummy-alpha"], max_retries=1)
    _run(deps, concurrency=1)

    assert len(transport.calls) == 2
    [child] = job_manager.get_child_jobs(plan.id)
    assert child.status == JobStatus.FAILED
    assert child.attempt_count == 1
    assert child.error_details["kind"] == "provider_error"
    assert child.error_details["status_code"] == 503
    assert child.error_details["job_id"] == child.id

    parent = job_manager.get_job(plan.id)
    assert parent.status == JobStatus.FAILED
    assert parent.error_details["child_job_ids"] == [child.id]
    assert contribution_store.list_contributions(SESSION) == []


def test_existing_artifact_is_a_storage_conflict(deps, storage, transport):
    storage.upload(f"{BASE}/1_thesis/dummy-alpha_0_thesis.md", b"already here")
    [plan] = _submit(deps, "thesis", models=["dummy-alpha"])
    _run(deps, concurrency=1)

    [child] = job_manager.get_child_jobs(plan.id)
    assert child.status == JobStatus.FAILED
    assert child.error_details["kind"] == "storage_conflict"
    assert child.error_details["path"] == f"{BASE}/1_thesis/dummy-alpha_0_thesis.md"
    assert len(transport.calls) == 1
    assert contribution_store.list_contributions(SESSION) == []
    assert storage.download(f"{BASE}/1_thesis/dummy-alpha_0_thesis.md") == b"already here"


def test_truncated_output_continues_in_a_new_job(deps, storage, transport):
    transport.replies = [{"content": f"part{i} ", "finish_reason": "length"} for i in range(5)]
    transport.replies.append({"content": "end.", "finish_reason": "stop"})
    [plan] = _submit(deps, "thesis", models=["dummy-alpha"])
    _run(deps, concurrency=1)

    assert len(transport.calls) == 6
    continuation_call = transport.calls[-1]
    roles = [role for role, _ in continuation_call["messages"]]
    assert roles == ["user", "assistant", "user"]
    assert continuation_call["messages"][1][1] == "part0 part1 part2 part3 part4 "

    children = job_manager.get_child_jobs(plan.id)
    assert len(children) == 2
    first, second = children
    assert first.results["contribution_status"] == "continuing"
    assert first.results["continuation_job_id"] == second.id
    assert second.payload.target_contribution_id == first.results["contribution_id"]
    assert second.payload.continuation_count == 1
    assert job_manager.get_job(plan.id).status == JobStatus.COMPLETED

    assert storage.download(f"{BASE}/1_thesis/_work/dummy-alpha_0_thesis_continuation_0.md").decode() == (
        "part0 part1 part2 part3 part4 "
    )
    main = storage.download(f"{BASE}/1_thesis/dummy-alpha_0_thesis.md").decode()
    assert main == "part0 part1 part2 part3 part4 end."

    [row] = contribution_store.list_contributions(SESSION, "thesis")
    assert row["id"] == first.results["contribution_id"]
    assert row["status"] == "completed"
    assert row["content"] == main
    assert row["continuation_count"] == 1
    assert not row["hit_continuation_cap"]
    assert row["storage_path"] == f"{BASE}/1_thesis/dummy-alpha_0_thesis.md"


def test_continuation_cap_without_chaining_closes_the_contribution(deps, storage, transport):
    transport.default = {"content": "more ", "finish_reason": "length"}
    [plan] = _submit(deps, "thesis", models=["dummy-alpha"], continue_until_complete=False)
    _run(deps, concurrency=1)

    assert len(transport.calls) == 5
    [child] = job_manager.get_child_jobs(plan.id)
    assert child.status == JobStatus.COMPLETED
    assert child.results["hit_continuation_cap"]
    assert child.results["continuation_job_id"] is None

    [row] = contribution_store.list_contributions(SESSION, "thesis")
    assert row["status"] == "completed"
    assert row["hit_continuation_cap"]
    assert storage.download(f"{BASE}/1_thesis/dummy-alpha_0_thesis.md").decode() == "more " * 5


def test_missing_seed_prompt_fails_without_calling_the_model(deps, transport):
    orphan = job_manager.create_job(JobType.PLAN, DialecticPlanJobPayload(
        project_id="proj-1",
        session_id=SESSION,
        stage_slug="thesis",
        model_id="dummy-alpha",
        model_slug="dummy-alpha",
    ))
    _run(deps, concurrency=1)

    [child] = job_manager.get_child_jobs(orphan.id)
    assert child.status == JobStatus.FAILED
    assert child.error_details["kind"] == "missing_source_document"
    assert child.error_details["fields"] == ["seedPrompt"]
    assert transport.calls == []


def test_resubmitting_a_stage_iteration_is_refused(deps, storage, theses):
    with pytest.raises(StageAlreadySubmittedError) as exc_info:
        _submit(deps, "thesis", models=["dummy-beta"])
    assert exc_info.value.to_error_details()["kind"] == "stage_already_submitted"
    assert len(job_manager.get_stage_jobs(SESSION, "thesis", 1, JobType.PLAN)) == 2

    [plan] = _submit(deps, "thesis", models=["dummy-alpha"], iteration_number=2)
    _run(deps, concurrency=1)

    assert job_manager.get_job(plan.id).status == JobStatus.COMPLETED
    assert storage.exists("proj-1/session_sessabcd/iteration_2/1_thesis/dummy-alpha_0_thesis.md")
    latest = contribution_store.load_source_documents(SESSION, "thesis", 1)
    assert sorted(doc.model_name for doc in latest) == ["Dummy Alpha", "Dummy Beta"]


def test_pending_submission_blocks_a_second_one(deps):
    _submit(deps, "thesis", models=["dummy-alpha"])
    with pytest.raises(StageAlreadySubmittedError):
        _submit(deps, "thesis", models=["dummy-beta", "dummy-alpha"])
    assert len(job_manager.get_stage_jobs(SESSION, "thesis", 1)) == 1


def test_failed_save_leaves_no_artifacts_and_can_be_resubmitted(deps, storage, monkeypatch):
    def refuse(**kwargs):
        raise RuntimeError("database went away")

    with monkeypatch.context() as patched:
        patched.setattr(contribution_store, "save_contribution", refuse)
        [plan] = _submit(deps, "thesis", models=["dummy-alpha"])
        _run(deps, concurrency=1)

    [child] = job_manager.get_child_jobs(plan.id)
    assert child.status == JobStatus.FAILED
    assert child.error_details["kind"] == "unexpected_error"
    assert _stage_files(storage, "1_thesis") == []

    [retry] = _submit(deps, "thesis", models=["dummy-alpha"])
    _run(deps, concurrency=1)
    assert job_manager.get_job(retry.id).status == JobStatus.COMPLETED
    assert _stage_files(storage, "1_thesis") == [
        f"{BASE}/1_thesis/dummy-alpha_0_thesis.md",
        f"{BASE}/1_thesis/raw_responses/dummy-alpha_0_thesis_raw.json",
    ]


def test_raw_response_conflict_removes_the_main_artifact(deps, storage):
    raw_path = f"{BASE}/1_thesis/raw_responses/dummy-alpha_0_thesis_raw.json"
    storage.upload(raw_path, b"{}")
    [plan] = _submit(deps, "thesis", models=["dummy-alpha"])
    _run(deps, concurrency=1)

    [child] = job_manager.get_child_jobs(plan.id)
    assert child.error_details["kind"] == "storage_conflict"
    assert child.error_details["path"] == raw_path
    assert not storage.exists(f"{BASE}/1_thesis/dummy-alpha_0_thesis.md")
    assert storage.download(raw_path) == b"{}"
    assert contribution_store.list_contributions(SESSION) == []
