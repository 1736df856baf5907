# services/rag_service.py
import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

from config import Settings, settings
from core.domain import (
    AnswerMetadata, AskOptions, BatchAskItem, ChatReply, GenerationResult, RAGAnswer, RankedResult
)
from core.exceptions import InvalidInputError, LLMProviderError, RAGError
from core.interfaces import ILLMProvider
from infrastructure.llm_providers import ProviderRegistry
from services.indexing_pipeline import IndexingPipeline
from utils.common import elapsed_ms

logger = logging.getLogger(settings.LOGGER_NAME)

PROMPT_HEADER = (
    "You are a knowledgeable assistant. Answer the user's question using the "
    "reference documents below.\n\n"
    "Guidelines:\n"
    "1. Base the answer on the reference documents.\n"
    "2. If the documents do not contain the answer, say so clearly.\n"
    "3. Keep the answer accurate, concise and well organized.\n"
    "4. Mention which document the information comes from where helpful.\n\n"
    "Reference documents:\n"
)

NO_DOCUMENTS_PROMPT = (
    "You are a knowledgeable assistant. No supporting documents were found in the "
    "knowledge base for the question below. Answer from general knowledge and tell "
    "the user that the answer is not based on the knowledge base.\n\n"
    "User question: {question}\n\n"
    "Answer:"
)


def _clamp(value, low, high):
    return max(low, min(high, value))


class RAGService:
    """Retrieval-augmented answering: search → prompt → provider (with one fallback hop)."""

    def __init__(self, pipeline: IndexingPipeline, providers: ProviderRegistry,
                 batch_pause: float = settings.BATCH_REQUEST_PAUSE_SEC,
                 config: Settings = settings):
        self.pipeline = pipeline
        self.providers = providers
        self.batch_pause = batch_pause
        self.config = config

    # ============= Validation =============

    def _validate_question(self, question: Any, label: str = "Question") -> str:
        if not isinstance(question, str) or not question.strip():
            raise InvalidInputError(f"{label} must be a non-empty string")
        if len(question) > self.config.MAX_QUESTION_LENGTH:
            raise InvalidInputError(
                f"{label} is too long ({len(question)} > {self.config.MAX_QUESTION_LENGTH} characters)"
            )
        return question.strip()

    def _resolve_options(self, options: Optional[AskOptions]) -> AskOptions:
        """Fill defaults and clamp every option into its allowed range."""
        config = self.config
        options = options or AskOptions()
        top_k = config.DEFAULT_TOP_K if options.top_k is None else options.top_k
        threshold = (config.DEFAULT_SIMILARITY_THRESHOLD
                     if options.threshold is None else options.threshold)
        max_tokens = config.LLM_MAX_TOKENS if options.max_tokens is None else options.max_tokens
        temperature = config.LLM_TEMPERATURE if options.temperature is None else options.temperature

        return AskOptions(
            top_k=int(_clamp(top_k, 1, config.MAX_TOP_K)),
            threshold=float(_clamp(threshold, 0.0, 1.0)),
            document_ids=list(options.document_ids) if options.document_ids else None,
            max_tokens=int(_clamp(max_tokens, 1, config.LLM_MAX_TOKENS_LIMIT)),
            temperature=float(_clamp(temperature, 0.0, config.LLM_TEMPERATURE_LIMIT))
        )

    # ============= Prompt =============

    @staticmethod
    def build_prompt(question: str, contexts: List[RankedResult]) -> str:
        if not contexts:
            return NO_DOCUMENTS_PROMPT.format(question=question)

        blocks = []
        for n, ctx in enumerate(sorted(contexts, key=lambda c: c.similarity, reverse=True), start=1):
            blocks.append(
                f"[Document {n}] (similarity: {ctx.similarity:.3f})\n"
                f"Source: {ctx.document_name or 'Unknown'}\n"
                f"Content: {ctx.content}\n"
            )

        return (
            PROMPT_HEADER
            + "\n".join(blocks)
            + f"\nUser question: {question}\n\n"
            + "Answer:"
        )

    # ============= Generation =============

    async def _generate(self, prompt: str, options: AskOptions
                        ) -> Tuple[GenerationResult, ILLMProvider, bool]:
        """Active provider first, then at most one fallback."""
        chain = self.providers.chain()
        failures: List[str] = []

        for attempt, provider in enumerate(chain):
            try:
                result = await provider.generate(
                    prompt, max_tokens=options.max_tokens, temperature=options.temperature
                )
                if attempt > 0:
                    logger.warning(f"[RAG] Answered by fallback provider {provider.name}")
                return result, provider, attempt > 0
            except LLMProviderError as e:
                logger.warning(f"[RAG] Provider {provider.name} failed: {e}")
                failures.append(f"{provider.name}: {e.message}")

        raise LLMProviderError(f"All providers failed ({'; '.join(failures)})")

    async def ask(self, question: str, options: Optional[AskOptions] = None) -> RAGAnswer:
        question = self._validate_question(question)
        options = self._resolve_options(options)
        started = time.perf_counter()

        logger.info(f"[RAG] Question: '{question[:80]}' (top_k={options.top_k}, threshold={options.threshold})")
        contexts = await self.pipeline.search(
            question,
            top_k=options.top_k,
            threshold=options.threshold,
            document_ids=options.document_ids
        )
        search_latency = elapsed_ms(started)

        prompt = self.build_prompt(question, contexts)
        answer_started = time.perf_counter()
        generation, provider, fallback_used = await self._generate(prompt, options)
        answer_latency = elapsed_ms(answer_started)

        metadata = AnswerMetadata(
            search_latency_ms=search_latency,
            answer_latency_ms=answer_latency,
            total_latency_ms=elapsed_ms(started),
            provider_used=provider.name,
            model=generation.model_id or provider.model,
            search_count=len(contexts),
            fallback_used=fallback_used,
            usage=generation.usage
        )
        logger.info(
            f"[RAG] Answered with {provider.name} using {len(contexts)} chunks "
            f"in {metadata.total_latency_ms}ms"
        )
        return RAGAnswer(
            question=question,
            answer=generation.text,
            retrieved_chunks=contexts,
            metadata=metadata
        )

    async def batch_ask(self, questions: List[str],
                        options: Optional[AskOptions] = None) -> List[BatchAskItem]:
        """Answer questions one after another; a failing question does not stop the batch."""
        if not questions:
            raise InvalidInputError("At least one question is required")
        if len(questions) > self.config.MAX_BATCH_QUESTIONS:
            raise InvalidInputError(
                f"Too many questions ({len(questions)} > {self.config.MAX_BATCH_QUESTIONS})"
            )

        items: List[BatchAskItem] = []
        for i, question in enumerate(questions):
            try:
                items.append(BatchAskItem(question=question, result=await self.ask(question, options)))
            except RAGError as e:
                logger.warning(f"[RAG] Batch question {i + 1} failed: {e}")
                items.append(BatchAskItem(question=question, error=e.message))
            except Exception as e:
                logger.error(f"[RAG] Batch question {i + 1} failed unexpectedly: {e}", exc_info=True)
                items.append(BatchAskItem(question=question, error=str(e)))

            if i < len(questions) - 1 and self.batch_pause > 0:
                await asyncio.sleep(self.batch_pause)

        succeeded = sum(1 for item in items if item.error is None)
        logger.info(f"[RAG] Batch finished: {succeeded}/{len(items)} succeeded")
        return items

    async def chat(self, message: str, max_tokens: Optional[int] = None,
                   temperature: Optional[float] = None) -> ChatReply:
        """Send `message` to the providers as-is, without retrieval."""
        message = self._validate_question(message, label="Message")
        options = self._resolve_options(AskOptions(max_tokens=max_tokens, temperature=temperature))
        started = time.perf_counter()

        logger.info(f"[RAG] Direct chat: '{message[:80]}'")
        generation, provider, fallback_used = await self._generate(message, options)
        return ChatReply(
            message=message,
            answer=generation.text,
            provider_used=provider.name,
            model=generation.model_id or provider.model,
            latency_ms=elapsed_ms(started),
            fallback_used=fallback_used,
            usage=generation.usage
        )

    # ============= Providers =============

    def switch_provider(self, name: str) -> Dict[str, Any]:
        provider = self.providers.set_active(name)
        logger.info(f"[RAG] Active provider is now {provider.name}")
        return self.providers.status()

    # ============= Status =============

    def get_status(self) -> Dict[str, Any]:
        config = self.config
        return {
            "providers": self.providers.status(),
            "index": self.pipeline.get_stats(),
            "defaults": {
                "top_k": config.DEFAULT_TOP_K,
                "max_top_k": config.MAX_TOP_K,
                "threshold": config.DEFAULT_SIMILARITY_THRESHOLD,
                "max_tokens": config.LLM_MAX_TOKENS,
                "temperature": config.LLM_TEMPERATURE,
                "max_question_length": config.MAX_QUESTION_LENGTH,
                "max_batch_questions": config.MAX_BATCH_QUESTIONS
            }
        }

    async def health_check(self, check_provider: bool = False) -> Dict[str, Any]:
        """Index stats and provider selection; optionally pings the active provider."""
        health: Dict[str, Any] = {
            "status": "healthy",
            "index": self.pipeline.get_stats(),
            "providers": self.providers.status()
        }
        if check_provider:
            reachable = await self.providers.active.test_connection()
            health["active_provider_reachable"] = reachable
            if not reachable:
                health["status"] = "degraded"
        return health
