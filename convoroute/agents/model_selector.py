"""
Model and reasoning-effort selection.

The agent recommends a model from the user's tier, and its answer is then
checked against policy before anything uses it:

1. The model must be in the tier's list, a lower tier's list, or the
   trolling allowlist. A trolling-only model marks the turn as trolling.
   Anything else is replaced by the tier's fallback model.
2. Trolling turns always run with low effort.
3. The lowest tier never runs with high effort.

If the agent call fails in any way, a fixed fallback decision is used.
"""

from __future__ import annotations

from typing import Any

from convoroute.agents.base import AgentClient, AgentUsage, format_transcript
from convoroute.agents.models import ModelSelectionDecision
from convoroute.agents.prompts import (
    DOWNGRADE_MODELS_BLOCK,
    MODEL_SELECTION_INSTRUCTION,
    MODEL_SELECTION_PROMPT,
    render,
)
from convoroute.config.logging import get_logger
from convoroute.config.tiers import REASONING_EFFORTS, ModelMeta, PolicySet, TierPolicy
from convoroute.context.models import ConversationTurn

logger = get_logger(__name__)

# Turns of selected context shown to the agent
RECENT_TURNS = 6

_COMPLEXITIES = ("low", "medium", "high")


def format_models(models: list[ModelMeta]) -> str:
    lines = []
    for model in models:
        details = [f"AAI {model.aai}"]
        if model.input_price_per_m or model.output_price_per_m:
            details.append(f"in {model.input_price_per_m} / out {model.output_price_per_m}")
        if model.ctx_tokens:
            details.append(f"ctx {model.ctx_tokens}")
        lines.append(f"- {model.name} ({', '.join(details)})")
    return "\n".join(lines)


def fallback_decision(policy: TierPolicy) -> ModelSelectionDecision:
    """The decision used whenever the agent cannot be consulted."""
    return ModelSelectionDecision(
        model=policy.fallback_model,
        reasoning_effort=policy.default_effort,
        complexity="medium",
        requires_speed=False,
        requires_quality=True,
        is_trolling=False,
        temperature=1.0,
        rationale="fallback",
    )


class ModelSelector:
    """
    Chooses model, effort and sampling temperature for a turn.

    Args:
        client: Agent model used for the selection call
        policies: Tier policies (model lists, default effort, downgrade order)
        trolling_models: Low-capability models allowed for abusive or joke turns
        prompt: Prompt template override
    """

    def __init__(
        self,
        client: AgentClient,
        policies: PolicySet,
        trolling_models: list[str],
        prompt: str = MODEL_SELECTION_PROMPT,
    ):
        self._client = client
        self._policies = policies
        self._trolling_models = list(trolling_models)
        self._prompt = prompt

    async def select(
        self,
        context: list[ConversationTurn],
        new_text: str,
        grade: str,
        usage: AgentUsage | None = None,
    ) -> ModelSelectionDecision:
        """Recommend and validate a decision. Never raises."""
        policy = self._policies.policy_for(grade)

        try:
            payload = await self._client.ask_json(
                self._build_prompt(policy, context, new_text),
                MODEL_SELECTION_INSTRUCTION,
                usage,
            )
            proposed = self._parse(payload, policy)
        except Exception as e:
            logger.warning(f"Model selection failed for {policy.grade} turn, using fallback: {e}")
            return fallback_decision(policy)

        decision = self.validate(proposed, policy.grade)
        logger.info(
            f"Model selection for {policy.grade}: {decision.model} "
            f"(effort {decision.reasoning_effort}, complexity {decision.complexity}, "
            f"trolling {decision.is_trolling}; proposed {proposed.model}/{proposed.reasoning_effort})"
        )
        return decision

    def validate(self, decision: ModelSelectionDecision, grade: str) -> ModelSelectionDecision:
        """Rewrite a proposed decision so that it complies with the tier policy."""
        policy = self._policies.policy_for(grade)
        updates: dict[str, Any] = {}

        downgrade_names = [model.name for model in self._policies.downgrade_models(grade)]
        if decision.model in policy.model_names or decision.model in downgrade_names:
            pass
        elif decision.model in self._trolling_models:
            updates["is_trolling"] = True
        else:
            logger.info(
                f"Model {decision.model!r} not allowed for {policy.grade}, "
                f"using {policy.fallback_model!r}"
            )
            updates["model"] = policy.fallback_model

        effort = decision.reasoning_effort
        if effort not in REASONING_EFFORTS:
            effort = policy.default_effort
        if updates.get("is_trolling", decision.is_trolling):
            effort = "low"
        if self._policies.is_lowest(grade) and effort == "high":
            effort = "medium"
        updates["reasoning_effort"] = effort

        return decision.model_copy(update=updates)

    def _build_prompt(
        self, policy: TierPolicy, context: list[ConversationTurn], new_text: str
    ) -> str:
        downgrade = self._policies.downgrade_models(policy.grade)
        downgrade_block = (
            render(DOWNGRADE_MODELS_BLOCK, models=format_models(downgrade)) if downgrade else ""
        )
        return render(
            self._prompt,
            models=format_models(policy.models),
            default_effort=policy.default_effort,
            tier=f"{policy.grade}: {policy.display_name or policy.grade}",
            downgrade_models=downgrade_block,
            trolling_models=", ".join(self._trolling_models),
            history=format_transcript(context[-RECENT_TURNS:]),
            message=new_text,
        )

    @staticmethod
    def _parse(payload: dict[str, Any], policy: TierPolicy) -> ModelSelectionDecision:
        model = payload.get("recommended_model")
        if not isinstance(model, str) or not model.strip():
            raise ValueError("reply has no recommended_model")

        complexity = str(payload.get("task_complexity", "medium")).lower()
        if complexity not in _COMPLEXITIES:
            complexity = "medium"

        temperature = payload.get("temperature", 1.0)
        if isinstance(temperature, bool) or not isinstance(temperature, (int, float)):
            temperature = 1.0
        temperature = min(max(float(temperature), 0.0), 2.0)

        return ModelSelectionDecision(
            model=model.strip(),
            reasoning_effort=str(payload.get("reasoning_effort") or policy.default_effort).lower(),
            complexity=complexity,
            requires_speed=bool(payload.get("requires_speed", False)),
            requires_quality=bool(payload.get("requires_quality", True)),
            is_trolling=bool(payload.get("is_trolling", False)),
            temperature=temperature,
            rationale=str(payload.get("rationale", "")),
        )
