"""MIXER auto-reply pipeline.

Role:
    Turns one inbound customer message into a reply proposal: the reply text, a
    confidence score and a handoff flag. It never sends anything and never decides
    whether to send; the webhook adapter compares the proposal against the operator
    settings.

Pipeline data contract (fields passed across steps):
    - customer_message, training_pairs, products, history: call inputs.
    - prompt: rendered by Prompt Build.
    - raw_text: provider output from Generation.
    - failure: GenerationFailure captured by Generation, if any.
    - response: final AIResponse from Analysis or Fallback.

Step contracts:
    Prompt Build:
        Pure rendering of the prompt from the four inputs.
    Generation:
        One provider request (optionally wrapped in retry_with_backoff); a failure
        is recorded on the context instead of raised.
    Analysis:
        Strips the handoff marker and scores confidence. Skipped on failure.
    Fallback:
        Substitutes the fixed apology reply with zero confidence. Runs only on failure.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .config import ConfidencePolicy
from .errors import GenerationFailure
from .key_rotation import TextGenerator
from .models import AIResponse, ConversationTurn, ProductSummary, TrainingPair
from .pipeline_runner import PipelineStep, StepRunner
from .prompt_builder import PromptBuilder
from .response_analyzer import analyze_response
from .retry import retry_with_backoff

logger = logging.getLogger("mixer.agent")

FALLBACK_MESSAGE = "Dạ mình xin lỗi, hiện tại hệ thống đang bận. Bạn vui lòng chờ nhân viên hỗ trợ nhé! 🙏"


def fallback_response() -> AIResponse:
    return AIResponse(message=FALLBACK_MESSAGE, confidence=0.0, should_handoff=True)


@dataclass
class ReplyContext:
    """Mutable context passed through each pipeline step."""
    request_id: str
    customer_message: str
    training_pairs: Sequence[TrainingPair]
    products: Sequence[ProductSummary]
    history: Sequence[ConversationTurn]
    prompt: str = ""
    raw_text: str = ""
    failure: Optional[GenerationFailure] = None
    response: Optional[AIResponse] = None
    trace: List[Dict[str, str]] = field(default_factory=list)

    def log(self, event: str, detail: str, status: str = "success") -> None:
        """Append a structured trace entry for the API response and debugging."""
        self.trace.append({"step": event, "detail": detail, "status": status})


class AutoReplyAgent:
    def __init__(
        self,
        generator: TextGenerator,
        prompt_builder: PromptBuilder,
        policy: Optional[ConfidencePolicy] = None,
        model: Optional[str] = None,
        max_retries: int = 0,
        retry_initial_delay: float = 1.0,
    ) -> None:
        """Purpose: Wire the generator, prompt builder and confidence policy into steps.
        Inputs/Outputs: Inputs are collaborators and retry knobs; no return value.
        Side Effects / State: Builds the step runner; holds no per-call state.
        Dependencies: StepRunner, PromptBuilder, analyze_response, retry_with_backoff.
        Failure Modes: None at construction.
        Testing Notes: Inject a fake generator exposing generate_text.
        """
        self._generator = generator
        self._prompt_builder = prompt_builder
        self._policy = policy or ConfidencePolicy()
        self._model = model
        self._max_retries = max(0, max_retries)
        self._retry_initial_delay = retry_initial_delay
        self._runner = StepRunner(
            [
                PipelineStep("Prompt Build", self._step_prompt_build),
                PipelineStep("Generation", self._step_generation),
                PipelineStep("Analysis", self._step_analysis, skip_if=lambda ctx: ctx.failure is not None),
                PipelineStep("Fallback", self._step_fallback, skip_if=lambda ctx: ctx.failure is None),
            ]
        )

    def generate_reply(
        self,
        customer_message: str,
        training_pairs: Sequence[TrainingPair],
        products: Sequence[ProductSummary],
        history: Sequence[ConversationTurn],
    ) -> AIResponse:
        """Purpose: Produce a reply proposal for one inbound message.
        Inputs/Outputs: Inputs are the message, training pairs, products and history;
            output is an AIResponse with confidence in [0, 1].
        Side Effects / State: One external generation request (plus retries if configured).
        Dependencies: Runs the step pipeline on a fresh ReplyContext.
        Failure Modes: GenerationFailure never escapes; it yields the fallback response.
            ConfigurationError raised while building the generator happens before this call.
        Testing Notes: A generator that raises must produce exactly fallback_response().
        """
        return self.run(customer_message, training_pairs, products, history).response or fallback_response()

    def run(
        self,
        customer_message: str,
        training_pairs: Sequence[TrainingPair],
        products: Sequence[ProductSummary],
        history: Sequence[ConversationTurn],
    ) -> ReplyContext:
        """Run the pipeline and return the full context, including the step trace."""
        context = ReplyContext(
            request_id=uuid.uuid4().hex[:12],
            customer_message=customer_message,
            training_pairs=training_pairs,
            products=products,
            history=history,
        )
        logger.info("request=%s message=%s", context.request_id, customer_message)
        self._runner.run(context)
        if context.response is None:
            context.response = fallback_response()
        logger.info(
            "request=%s confidence=%.2f handoff=%s fallback=%s",
            context.request_id,
            context.response.confidence,
            context.response.should_handoff,
            context.failure is not None,
        )
        return context

    def _step_prompt_build(self, context: ReplyContext) -> None:
        context.prompt = self._prompt_builder.build(
            context.customer_message,
            context.training_pairs,
            context.products,
            context.history,
        )
        logger.debug(
            "request=%s prompt_chars=%s examples=%s products=%s history=%s",
            context.request_id,
            len(context.prompt),
            len(context.training_pairs),
            len(context.products),
            len(context.history),
        )

    def _step_generation(self, context: ReplyContext) -> Optional[str]:
        try:
            context.raw_text = retry_with_backoff(
                lambda: self._generator.generate_text(context.prompt, model=self._model),
                max_retries=self._max_retries,
                initial_delay=self._retry_initial_delay,
                retry_on=(GenerationFailure,),
            )
        except GenerationFailure as exc:
            context.failure = exc
            logger.warning("request=%s generation_failed error=%s", context.request_id, exc)
            return "failed"
        return None

    def _step_analysis(self, context: ReplyContext) -> None:
        context.response = analyze_response(context.raw_text, self._policy)

    def _step_fallback(self, context: ReplyContext) -> None:
        context.response = fallback_response()
