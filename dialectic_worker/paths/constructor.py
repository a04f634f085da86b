"""Storage path constructor.

Maps a PathContext to a relative storage path. The filename grammar per
FileType is fixed (see NAMING_GRAMMAR); every path is derived from context
fields only, and a missing required field is a hard error rather than a
fallback to a less specific name.

Layout:
    {projectId}/session_{sessionId[:8]}/iteration_{iteration}/{stageDir}/{file}
"""

from typing import Callable

from dialectic_worker.errors import MissingRequiredContextFieldError
from dialectic_worker.paths.schemas import FileType, PathContext

# Stage slug -> directory name. Unlisted stages use the slug itself.
STAGE_DIRECTORIES = {
    "thesis": "1_thesis",
    "antithesis": "2_antithesis",
    "synthesis": "3_synthesis",
    "parenthesis": "4_parenthesis",
    "paralysis": "5_paralysis",
}

SESSION_ID_PREFIX_LENGTH = 8

_MAIN_FIELDS = ("stage_slug", "model_slug", "attempt_count", "contribution_type")

REQUIRED_FIELDS: dict[FileType, tuple[str, ...]] = {
    FileType.SEED_PROMPT: ("stage_slug",),
    FileType.USER_FEEDBACK: ("stage_slug",),
    FileType.MODEL_CONTRIBUTION_MAIN: _MAIN_FIELDS,
    FileType.MODEL_CONTRIBUTION_RAW_JSON: _MAIN_FIELDS,
    FileType.PAIRWISE_SYNTHESIS_CHUNK: (
        "stage_slug",
        "model_slug",
        "source_anchor_model_slug",
        "paired_model_slug",
        "source_anchor_type",
        "sequence_index",
        "contribution_type",
    ),
    FileType.REDUCED_SYNTHESIS: (
        "stage_slug",
        "model_slug",
        "source_anchor_type",
        "source_anchor_model_slug",
        "attempt_count",
        "contribution_type",
    ),
    FileType.FINAL_SYNTHESIS: ("stage_slug", "model_slug", "attempt_count"),
    FileType.CONTINUATION_CHUNK: _MAIN_FIELDS + ("continuation_count",),
}


def _require(context: PathContext, field_names: tuple[str, ...]) -> None:
    missing = [
        PathContext.model_fields[name].alias or name
        for name in field_names
        if getattr(context, name) in (None, "")
    ]
    if missing:
        raise MissingRequiredContextFieldError(context.file_type.value, missing)


def _base_dir(context: PathContext) -> str:
    stage_dir = STAGE_DIRECTORIES.get(context.stage_slug, context.stage_slug)
    short_session = context.session_id[:SESSION_ID_PREFIX_LENGTH]
    return f"{context.project_id}/session_{short_session}/iteration_{context.iteration}/{stage_dir}"


def _main_stem(context: PathContext) -> str:
    """Stem shared by main, raw-json and continuation files."""
    if context.source_anchor_model_slug:
        _require(context, ("source_anchor_type",))
        return (
            f"{context.model_slug}_critiquing_{context.source_anchor_model_slug}"
            f"_on_{context.source_anchor_type}"
            f"_{context.attempt_count}_{context.contribution_type}"
        )
    return f"{context.model_slug}_{context.attempt_count}_{context.contribution_type}"


def _seed_prompt(context: PathContext) -> str:
    return "seed_prompt.md"


def _user_feedback(context: PathContext) -> str:
    return f"user_feedback_{context.stage_slug}.md"


def _model_contribution_main(context: PathContext) -> str:
    return f"{_main_stem(context)}.md"


def _model_contribution_raw_json(context: PathContext) -> str:
    return f"raw_responses/{_main_stem(context)}_raw.json"


def _pairwise_synthesis_chunk(context: PathContext) -> str:
    return (
        f"_work/{context.model_slug}_synthesizing_{context.source_anchor_model_slug}"
        f"_with_{context.paired_model_slug}_on_{context.source_anchor_type}"
        f"_{context.sequence_index}_{context.contribution_type}.md"
    )


def _reduced_synthesis(context: PathContext) -> str:
    return (
        f"_work/{context.model_slug}_reducing_{context.source_anchor_type}"
        f"_by_{context.source_anchor_model_slug}"
        f"_{context.attempt_count}_{context.contribution_type}.md"
    )


def _final_synthesis(context: PathContext) -> str:
    return f"{context.model_slug}_{context.attempt_count}_final_synthesis.md"


def _continuation_chunk(context: PathContext) -> str:
    stem = _main_stem(context)
    if context.paired_model_slug:
        stem = f"{stem}_with_{context.paired_model_slug}"
    return f"_work/{stem}_continuation_{context.continuation_count}.md"


NAMING_GRAMMAR: dict[FileType, Callable[[PathContext], str]] = {
    FileType.SEED_PROMPT: _seed_prompt,
    FileType.USER_FEEDBACK: _user_feedback,
    FileType.MODEL_CONTRIBUTION_MAIN: _model_contribution_main,
    FileType.MODEL_CONTRIBUTION_RAW_JSON: _model_contribution_raw_json,
    FileType.PAIRWISE_SYNTHESIS_CHUNK: _pairwise_synthesis_chunk,
    FileType.REDUCED_SYNTHESIS: _reduced_synthesis,
    FileType.FINAL_SYNTHESIS: _final_synthesis,
    FileType.CONTINUATION_CHUNK: _continuation_chunk,
}


def construct_storage_path(context: PathContext) -> str:
    """Return the full relative storage path (directory + filename) for context.

    Raises:
        MissingRequiredContextFieldError: If the context lacks any field the
            selected FileType requires. Lists every missing field.
    """
    _require(context, REQUIRED_FIELDS[context.file_type])
    filename = NAMING_GRAMMAR[context.file_type](context)
    return f"{_base_dir(context)}/{filename}"
