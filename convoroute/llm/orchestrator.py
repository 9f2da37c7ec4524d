"""
Orchestration Loop: turns an inbound message into an answer.

Data flow for one turn:

    UsageLimiter.check_and_consume()         reject over-quota users
    SpendingLimiter.check_spending_limits()  degrade over-budget users
    ModeRepository.get_mode()                system prompt + sampling params
    ContextWindowManager.fetch()             bounded history
    ContextSelector.select()                 relevant subset of the history
    ModelSelector.select()                   model, effort, temperature
    ResponseLengthSelector.select()          length guideline (alongside the two above)
    ProviderRouter.select() / dispatch()     retried with exponential backoff
    ContextWindowManager.store()             user turn, then assistant turn
    UsageRepository / SpendingLimiter        cost bookkeeping

Failure policy:
- Quota rejections raise before anything is spent.
- The agents and the history fetch degrade to safe defaults on failure.
- Everything from the mode lookup to the last dispatch attempt shares one
  time budget. Persistence and bookkeeping run outside it.
- Primary generation is retried; after the last attempt (or when the
  budget runs out) the turn fails with LLMError, but only once both turns
  have been persisted.
- Bookkeeping after a successful answer never fails the turn.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal

from redis.asyncio import Redis

from convoroute.agents.base import AgentClient, AgentUsage, resolve_prompt
from convoroute.agents.context_selector import ContextSelector
from convoroute.agents.length_selector import LENGTH_AGENT_TEMPERATURE, ResponseLengthSelector
from convoroute.agents.model_selector import ModelSelector
from convoroute.agents.models import ModelSelectionDecision, ResponseLengthDecision
from convoroute.agents.prompts import (
    CONTEXT_SELECTION_PROMPT,
    MODEL_SELECTION_PROMPT,
    RESPONSE_LENGTH_PROMPT,
)
from convoroute.config.logging import get_logger
from convoroute.config.settings import OrchestratorSettings, Settings
from convoroute.config.tiers import PolicySet
from convoroute.context.models import ContextStoreError, ConversationTurn
from convoroute.context.tokenizer import Tokenizer
from convoroute.context.window import ContextWindowManager
from convoroute.llm.models import (
    ConversationMode,
    GenerationParams,
    InboundTurn,
    LLMError,
    OrchestrationError,
    ProviderReply,
    ProviderRequest,
    TurnResponse,
    TurnState,
)
from convoroute.llm.prompts import format_user_request, length_guideline, personalization_block
from convoroute.llm.providers import ProviderAdapter, build_providers
from convoroute.llm.router import ProviderRouter
from convoroute.quota.ledger import UsageLimiter, utc_now
from convoroute.quota.models import SpendingLimitExceeded, UsageLimitExceeded
from convoroute.quota.spending import SpendingLimiter
from convoroute.repository.base import (
    DonationRepository,
    ModeRepository,
    PersonalizationRepository,
    UsageRepository,
)

logger = get_logger(__name__)


class Orchestrator:
    """
    Runs the full lifecycle of a user turn.

    Args:
        settings: Retry, timeout and prompt policy
        policies: Tier policies
        usage_limiter: Request counters
        spending_limiter: Spend ceilings
        context: Conversation history store
        context_selector: Relevance agent
        model_selector: Model/effort agent
        router: Weighted provider router
        modes: Active conversation modes
        donations: Donation history (drives the support reminder)
        usage: Billing history
        personalizations: Optional user self-descriptions
        length_selector: Optional response length agent
        request_timeout: Per-call timeout for the primary generation
        clock: Current time, used for the message header
    """

    def __init__(
        self,
        settings: OrchestratorSettings,
        policies: PolicySet,
        usage_limiter: UsageLimiter,
        spending_limiter: SpendingLimiter,
        context: ContextWindowManager,
        context_selector: ContextSelector,
        model_selector: ModelSelector,
        router: ProviderRouter,
        modes: ModeRepository,
        donations: DonationRepository,
        usage: UsageRepository,
        personalizations: PersonalizationRepository | None = None,
        length_selector: ResponseLengthSelector | None = None,
        request_timeout: float | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._settings = settings
        self._policies = policies
        self._usage_limiter = usage_limiter
        self._spending = spending_limiter
        self._context = context
        self._context_selector = context_selector
        self._model_selector = model_selector
        self._router = router
        self._modes = modes
        self._donations = donations
        self._usage = usage
        self._personalizations = personalizations
        self._length_selector = length_selector
        self._request_timeout = request_timeout
        self._clock = clock

    async def handle_turn(
        self,
        conversation_id: int,
        user_id: int,
        grade: str,
        text: str,
        persona: str,
    ) -> str:
        """
        Inbound trigger: answer one message and return the text to send back.

        Raises:
            UsageLimitExceeded: The user is over a request ceiling
            OrchestrationError: The conversation has no active mode
            LLMError: Every dispatch attempt failed, or the turn ran out of time
        """
        response = await self.orchestrate(
            InboundTurn(
                conversation_id=conversation_id,
                user_id=user_id,
                grade=grade,
                text=text,
                persona=persona,
            )
        )
        if response.limit_notice:
            return f"{response.text}\n\n{response.limit_notice}"
        return response.text

    async def orchestrate(self, turn: InboundTurn) -> TurnResponse:
        """Run one turn end to end and return the structured result."""
        self._transition(turn, TurnState.IDLE)
        policy = self._policies.policy_for(turn.grade)

        # 1. Request quota
        quota = await self._usage_limiter.check_and_consume(
            turn.user_id, policy.grade, turn.usage_kind
        )
        if not quota.allowed:
            daily = quota.limit_kind == "daily"
            raise UsageLimitExceeded(
                turn.usage_kind,
                quota.limit_kind,
                quota.daily_count if daily else quota.monthly_count,
                quota.daily_limit if daily else quota.monthly_limit,
            )

        # 2. Spend ceiling: over-budget users still get an answer, from a cheap model
        spend_exceeded: SpendingLimitExceeded | None = None
        try:
            await self._spending.check_spending_limits(turn.user_id, policy.grade)
        except SpendingLimitExceeded as e:
            logger.warning(f"User {turn.user_id} over spending limit, degrading turn: {e}")
            spend_exceeded = e

        # 3. Message header
        user_text = format_user_request(turn.persona, turn.text, self._clock())

        # 4-8. Prepare and dispatch within the turn budget
        agent_usage = AgentUsage()
        request: ProviderRequest | None = None
        reply: ProviderReply | None = None
        provider: ProviderAdapter | None = None
        attempts = 0
        last_error: Exception | None = None
        failure = ""
        try:
            async with asyncio.timeout(self._settings.timeout):
                request = await self._prepare_request(
                    turn, policy.grade, user_text, spend_exceeded, agent_usage
                )
                reply, provider, attempts, last_error = await self._dispatch(turn, request)
                if reply is None:
                    failure = (
                        f"All {attempts} attempts failed for conversation "
                        f"{turn.conversation_id}: {last_error}"
                    )
        except TimeoutError as e:
            stage = "dispatch" if request is not None else "context resolution"
            logger.error(
                f"Turn for conversation {turn.conversation_id} timed out after "
                f"{self._settings.timeout}s during {stage}"
            )
            self._transition(turn, TurnState.EXHAUSTED, "turn budget spent")
            reply, provider = None, None
            last_error = e
            failure = (
                f"Turn for conversation {turn.conversation_id} timed out after "
                f"{self._settings.timeout}s"
            )

        # 9. Persist both turns, whatever happened above
        self._transition(turn, TurnState.PERSISTING)
        await self._persist(turn, policy.grade, user_text, reply.text if reply else "")

        if reply is None or provider is None or request is None:
            self._transition(turn, TurnState.DONE)
            raise LLMError(failure, cause=last_error)

        # 10. Bookkeeping
        total_cost = reply.cost + agent_usage.cost
        total_usage = reply.usage + agent_usage.usage
        await self._record_usage(turn, total_cost, total_usage.total_tokens)

        self._transition(turn, TurnState.DONE)
        return TurnResponse(
            text=reply.text or "",
            provider=provider.name,
            model=reply.model or request.model or "",
            reasoning_effort=request.reasoning_effort,
            attempts=attempts,
            usage=total_usage,
            cost=total_cost,
            limit_notice=str(spend_exceeded) if spend_exceeded else None,
        )

    async def _prepare_request(
        self,
        turn: InboundTurn,
        grade: str,
        user_text: str,
        spend_exceeded: SpendingLimitExceeded | None,
        agent_usage: AgentUsage,
    ) -> ProviderRequest:
        """Resolve mode, history and agent decisions into the primary request."""
        mode = await self._resolve_mode(turn.conversation_id)
        system_prompt = mode.prompt + await self._personalization(turn.user_id)

        self._transition(turn, TurnState.RESOLVING_CONTEXT)
        history = await self._fetch_history(turn, grade)
        (selected, decision), length = await asyncio.gather(
            self._select_context_and_model(history, user_text, grade, agent_usage),
            self._detect_length(user_text, agent_usage),
        )

        model = decision.model
        effort = decision.reasoning_effort
        if spend_exceeded is not None:
            model = self._settings.limit_exceeded_model
            effort = "low"

        if length is not None:
            system_prompt += length_guideline(length.length)

        # Support reminder for users who never donated
        if not await self._has_donations(turn.user_id):
            system_prompt += self._settings.support_prompt_addendum

        return ProviderRequest(
            system_prompt=system_prompt,
            history=selected,
            text=user_text,
            params=self._generation_params(mode, decision),
            model=model,
            reasoning_effort=effort,
            timeout=self._request_timeout,
        )

    async def _select_context_and_model(
        self,
        history: list[ConversationTurn],
        user_text: str,
        grade: str,
        agent_usage: AgentUsage,
    ) -> tuple[list[ConversationTurn], ModelSelectionDecision]:
        selected = await self._context_selector.select(history, user_text, grade, agent_usage)
        decision = await self._model_selector.select(selected, user_text, grade, agent_usage)
        return selected, decision

    async def _detect_length(
        self, user_text: str, agent_usage: AgentUsage
    ) -> ResponseLengthDecision | None:
        if self._length_selector is None:
            return None
        return await self._length_selector.select(user_text, agent_usage)

    async def _dispatch(
        self, turn: InboundTurn, request: ProviderRequest
    ) -> tuple[ProviderReply | None, ProviderAdapter | None, int, Exception | None]:
        """
        Try up to ``max_retries`` providers, drawing a fresh one each attempt.

        Only providers able to serve ``request.model`` are drawn. Attempt n
        (0-based) that fails is followed by a sleep of
        ``backoff_delay * 2**n``; there is no sleep after the last attempt.
        """
        max_retries = self._settings.max_retries
        last_error: Exception | None = None
        attempts = 0

        for attempt in range(max_retries):
            attempts = attempt + 1
            self._transition(turn, TurnState.DISPATCHING, f"attempt {attempts}/{max_retries}")
            try:
                provider = self._router.select(request.model)
            except LLMError as e:
                # No provider can serve the model; drawing again cannot help
                logger.error(f"Cannot dispatch conversation {turn.conversation_id}: {e}")
                last_error = e
                break

            try:
                reply = await self._router.dispatch(provider, request)
            except LLMError as e:
                last_error = e
                logger.error(f"Attempt {attempts}/{max_retries} via {provider.name} failed: {e}")
                if attempt < max_retries - 1:
                    delay = self._settings.backoff_delay * (2 ** attempt)
                    logger.warning(f"Retrying in {delay:.1f}s")
                    await asyncio.sleep(delay)
                continue

            self._transition(turn, TurnState.SUCCEEDED, f"{provider.name} on attempt {attempts}")
            return reply, provider, attempts, None

        self._transition(turn, TurnState.EXHAUSTED, f"after {attempts} attempts")
        return None, None, attempts, last_error

    async def _resolve_mode(self, conversation_id: int) -> ConversationMode:
        try:
            mode = await self._modes.get_mode(conversation_id)
        except Exception as e:
            raise OrchestrationError(f"Failed to load mode for conversation {conversation_id}: {e}") from e
        if mode is None:
            raise OrchestrationError(f"No active mode for conversation {conversation_id}")
        return mode

    async def _personalization(self, user_id: int) -> str:
        if self._personalizations is None:
            return ""
        try:
            text = await self._personalizations.get_personalization(user_id)
        except Exception as e:
            logger.warning(f"Failed to load personalization for user {user_id}: {e}")
            return ""
        return personalization_block(text) if text else ""

    async def _has_donations(self, user_id: int) -> bool:
        try:
            return await self._donations.has_donations(user_id)
        except Exception as e:
            logger.error(f"Failed to load donations for user {user_id}: {e}")
            return False

    async def _fetch_history(self, turn: InboundTurn, grade: str) -> list[ConversationTurn]:
        if not turn.stackful:
            return []
        try:
            return await self._context.fetch(turn.conversation_id, grade)
        except ContextStoreError as e:
            logger.error(f"Failed to fetch history for {turn.conversation_id}, continuing without: {e}")
            return []

    async def _persist(self, turn: InboundTurn, grade: str, user_text: str, answer: str) -> None:
        if not turn.stackful:
            return
        for stored in (ConversationTurn.user(user_text), ConversationTurn.assistant(answer)):
            try:
                await self._context.store(turn.conversation_id, grade, stored)
            except ContextStoreError as e:
                logger.error(f"Failed to persist {stored.role} turn for {turn.conversation_id}: {e}")

    async def _record_usage(self, turn: InboundTurn, cost: Decimal, tokens: int) -> None:
        try:
            await self._usage.save_usage(turn.user_id, turn.conversation_id, cost, tokens)
        except Exception as e:
            logger.error(f"Failed to save usage for user {turn.user_id}: {e}")
        await self._spending.add_spend(turn.user_id, cost)

    @staticmethod
    def _generation_params(
        mode: ConversationMode, decision: ModelSelectionDecision
    ) -> GenerationParams:
        """
        Mode parameters with the temperature filled in.

        A final mode that sets a temperature, zero included, overrides the
        one suggested by the model agent. A resulting zero is sent as 1.0.
        """
        params = mode.params or GenerationParams()
        temperature = decision.temperature
        if mode.final and params.temperature is not None:
            temperature = params.temperature
        return params.model_copy(update={"temperature": temperature or 1.0})

    @staticmethod
    def _transition(turn: InboundTurn, state: TurnState, detail: str = "") -> None:
        suffix = f" ({detail})" if detail else ""
        logger.debug(f"Conversation {turn.conversation_id}: {state.value}{suffix}")


def build_orchestrator(
    settings: Settings,
    redis: Redis,
    modes: ModeRepository,
    donations: DonationRepository,
    usage: UsageRepository,
    personalizations: PersonalizationRepository | None = None,
    providers: dict[str, ProviderAdapter] | None = None,
    tokenizer: Tokenizer | None = None,
) -> Orchestrator:
    """Wire every component from settings."""
    policies = settings.policy_set()
    agents = settings.agents

    context_client = AgentClient(
        agents.context_model, agents.context_timeout, agents.api_key, name="context_selector"
    )
    model_client = AgentClient(
        agents.model_selection_model, agents.model_timeout, agents.api_key, name="model_selector"
    )
    length_selector = None
    if agents.response_length_enabled:
        length_selector = ResponseLengthSelector(
            AgentClient(
                agents.response_length_model,
                agents.response_length_timeout,
                agents.api_key,
                name="response_length",
                temperature=LENGTH_AGENT_TEMPERATURE,
            ),
            resolve_prompt(agents.response_length_prompt, RESPONSE_LENGTH_PROMPT),
        )

    return Orchestrator(
        settings=settings.orchestrator,
        policies=policies,
        usage_limiter=UsageLimiter(redis, policies),
        spending_limiter=SpendingLimiter(redis, usage, policies),
        context=ContextWindowManager(
            redis, tokenizer or Tokenizer(settings.tokenizer_encoding), policies
        ),
        context_selector=ContextSelector(
            context_client, resolve_prompt(agents.context_prompt, CONTEXT_SELECTION_PROMPT)
        ),
        model_selector=ModelSelector(
            model_client,
            policies,
            agents.trolling_models,
            resolve_prompt(agents.model_selection_prompt, MODEL_SELECTION_PROMPT),
        ),
        router=ProviderRouter(
            settings.providers.weights,
            providers or build_providers(settings),
            fallback=settings.providers.fallback,
        ),
        modes=modes,
        donations=donations,
        usage=usage,
        personalizations=personalizations,
        length_selector=length_selector,
        request_timeout=settings.providers.request_timeout,
    )
