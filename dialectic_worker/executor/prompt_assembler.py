"""Stage prompt assembly using Jinja2 templates.

Renders a stage's user prompt template against an IsolatedTask. For a
continuation job the contribution written so far is replayed as the
assistant turn, followed by a request to continue.
"""

from dataclasses import dataclass, field
from typing import Optional

from jinja2 import BaseLoader, Environment, StrictUndefined, TemplateError

from dialectic_worker.errors import ContractViolationError
from dialectic_worker.executor.continuation import CONTINUE_PROMPT
from dialectic_worker.jobs.task_isolator import IsolatedTask
from dialectic_worker.llm.schemas import ChatApiRequest, ChatMessage
from dialectic_worker.stages.schemas import StageDefinition

_env = Environment(
    loader=BaseLoader(),
    autoescape=False,  # We're generating markdown, not HTML
    trim_blocks=True,
    lstrip_blocks=True,
    undefined=StrictUndefined,
)


@dataclass
class AssembledPrompt:
    system_prompt: str
    message: str
    history: list[ChatMessage] = field(default_factory=list)

    def to_request(
        self,
        *,
        max_tokens: Optional[int] = None,
        provider_id: Optional[str] = None,
        prompt_id: Optional[str] = None,
    ) -> ChatApiRequest:
        return ChatApiRequest(
            message=self.message,
            messages=list(self.history),
            system_prompt=self.system_prompt,
            max_tokens_to_generate=max_tokens,
            provider_id=provider_id,
            prompt_id=prompt_id,
        )


def render_stage_prompt(stage: StageDefinition, task: IsolatedTask, seed_prompt: str) -> str:
    """Render the stage's user prompt template.

    Raises:
        ContractViolationError: If the template references context the task lacks
    """
    try:
        template = _env.from_string(stage.user_prompt_template)
        return template.render(
            stage=stage,
            seed_prompt=seed_prompt,
            user_feedback=task.payload.user_feedback or "",
            anchor=task.anchor,
            paired=task.paired,
            source_documents=list(task.source_documents),
            continuation_count=task.payload.continuation_count,
        ).strip()
    except TemplateError as e:
        raise ContractViolationError(
            f"Failed to render prompt for stage '{stage.slug}': {e}",
            job_id=task.job_id,
            stage_slug=stage.slug,
            fields=["user_prompt_template"],
        ) from e


def assemble_prompt(stage: StageDefinition, task: IsolatedTask, seed_prompt: str) -> AssembledPrompt:
    """Build the system prompt, history and new message for a task."""
    rendered = render_stage_prompt(stage, task, seed_prompt)

    if task.prior_contribution is None:
        return AssembledPrompt(system_prompt=stage.system_prompt, message=rendered)

    return AssembledPrompt(
        system_prompt=stage.system_prompt,
        message=CONTINUE_PROMPT,
        history=[
            ChatMessage(role="user", content=rendered),
            ChatMessage(role="assistant", content=task.prior_contribution.content),
        ],
    )
