"""
Generation Client - assistance answers, quizzes and explanations from SOP context.

Tries an ordered list of chat-model providers and falls through on any failure.
A deterministic in-process generator is always the last link, so every call
returns usable output even with no provider configured.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import string
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Sequence

from jsonschema import Draft7Validator
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_core.prompts import PromptTemplate
from langchain_openai import ChatOpenAI

from ..config import ModelConfig, config, token_tracker
from ..errors import GenerationUnavailable, MalformedGenerationOutput
from ..models.domain import QuestionType, QuizQuestionDraft, RetrievedChunk, SkillLevel
from ..models.quiz_evaluation import skill_prompt_guide

logger = logging.getLogger(__name__)


QUIZ_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "array",
    "minItems": 3,
    "items": {
        "type": "object",
        "required": ["prompt", "type", "answerKey", "explanation"],
        "properties": {
            "prompt": {"type": "string", "minLength": 5},
            "type": {"enum": [t.value for t in QuestionType]},
            "options": {"type": "array", "maxItems": 26, "items": {"type": "string"}},
            "answerKey": {"type": "string", "minLength": 1},
            "explanation": {"type": "string", "minLength": 5},
        },
    },
}

_quiz_validator = Draft7Validator(QUIZ_SCHEMA)

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)

SAFETY_ESCALATION_DEFAULT = (
    "Follow lockout/tagout procedures, confirm PPE, and escalate to a supervisor when uncertain."
)

EXPLAIN_FALLBACK = (
    "The response prioritized safety and SOP compliance, then selected actions "
    "supported by the retrieved training snippets."
)


def context_text(chunks: Sequence[RetrievedChunk]) -> str:
    """Number and attribute retrieved chunks for a prompt."""
    return "\n".join(
        f"[{index}] ({chunk.source}) {chunk.text}" for index, chunk in enumerate(chunks, 1)
    )


def clean_json_text(raw: str) -> str:
    """Unwrap a fenced code block if the model added one."""
    match = _FENCED_BLOCK.search(raw)
    if match:
        return match.group(1).strip()
    return raw.strip()


def parse_quiz_output(raw: str, min_questions: int = 3) -> List[QuizQuestionDraft]:
    """
    Parse and validate model quiz output.

    Raises:
        MalformedGenerationOutput: If the text is not JSON, does not match the
            question schema, has too few items, or a multiple-choice item lacks
            a single-letter key pointing at one of its options
    """
    try:
        data = json.loads(clean_json_text(raw))
    except json.JSONDecodeError as e:
        raise MalformedGenerationOutput(f"quiz output is not JSON: {e}") from e

    errors = [error.message for error in _quiz_validator.iter_errors(data)]
    if errors:
        raise MalformedGenerationOutput(f"quiz output failed schema: {errors[0]}")

    if len(data) < min_questions:
        raise MalformedGenerationOutput(
            f"quiz output has {len(data)} question(s), need at least {min_questions}"
        )

    drafts = []
    for index, item in enumerate(data):
        question_type = QuestionType(item["type"])
        options = item.get("options")
        answer_key = item["answerKey"].strip()

        if question_type is QuestionType.MULTIPLE_CHOICE:
            options = options or []
            if len(options) < 2:
                raise MalformedGenerationOutput(
                    f"question {index} is multiple choice with {len(options)} option(s)"
                )
            letter = answer_key.upper()
            if len(letter) != 1 or letter not in string.ascii_uppercase[: len(options)]:
                raise MalformedGenerationOutput(
                    f"question {index} answer key {answer_key!r} is not an option letter"
                )
            answer_key = letter

        drafts.append(
            QuizQuestionDraft(
                prompt=item["prompt"],
                type=question_type,
                answer_key=answer_key,
                explanation=item["explanation"],
                options=options,
            )
        )

    return drafts


# ==================== Providers ====================

class Provider(ABC):
    """One text-generation backend in the fallback chain."""

    name: str = "provider"

    @property
    @abstractmethod
    def configured(self) -> bool:
        """Whether credentials are present; unconfigured providers are skipped."""

    @abstractmethod
    async def generate(self, system_prompt: str, prompt: str) -> str:
        """Return generated text or raise."""


class ChatModelProvider(Provider):
    """
    Chat model reached through an OpenAI-compatible API via LangChain.

    The client is created on first use so construction never needs network
    access or valid credentials.
    """

    def __init__(
        self,
        name: str,
        model_name: str,
        api_key: str,
        base_url: Optional[str] = None,
        temperature: float = 0.2,
        max_tokens: Optional[int] = None,
        timeout: Optional[float] = None,
        max_retries: int = 0,
    ):
        self.name = name
        self.model_name = model_name
        self.api_key = api_key
        self.base_url = base_url
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.max_retries = max_retries
        self._llm = None

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _get_llm(self) -> ChatOpenAI:
        if self._llm is None:
            self._llm = ChatOpenAI(
                model=self.model_name,
                temperature=self.temperature,
                api_key=self.api_key,
                base_url=self.base_url,
                max_tokens=self.max_tokens,
                timeout=self.timeout,
                max_retries=self.max_retries,
            )
        return self._llm

    async def generate(self, system_prompt: str, prompt: str) -> str:
        response = await self._get_llm().ainvoke(
            [SystemMessage(content=system_prompt), HumanMessage(content=prompt)]
        )

        usage = getattr(response, "usage_metadata", None)
        if usage and config.logging.log_tokens:
            token_tracker.add_tokens(
                input_tokens=usage.get("input_tokens", 0),
                output_tokens=usage.get("output_tokens", 0),
                provider=self.name,
            )

        content = response.content
        if isinstance(content, list):
            # Some providers return content parts
            content = "".join(
                part.get("text", "") if isinstance(part, dict) else str(part) for part in content
            )
        return (content or "").strip()


def default_providers(model_config: Optional[ModelConfig] = None) -> List[Provider]:
    """Gemini first, then OpenAI."""
    model_config = model_config or config.model
    return [
        ChatModelProvider(
            name="gemini",
            model_name=model_config.gemini_model,
            api_key=model_config.gemini_api_key,
            base_url=model_config.gemini_base_url,
            temperature=model_config.temperature,
            max_tokens=model_config.max_tokens,
            timeout=model_config.request_timeout,
            max_retries=model_config.max_retries,
        ),
        ChatModelProvider(
            name="openai",
            model_name=model_config.openai_model,
            api_key=model_config.openai_api_key,
            base_url=model_config.openai_base_url,
            temperature=model_config.temperature,
            max_tokens=model_config.max_tokens,
            timeout=model_config.request_timeout,
            max_retries=model_config.max_retries,
        ),
    ]


# ==================== Deterministic tail ====================

class DeterministicFallback:
    """Templated output used when no provider produced anything usable."""

    def assistance(self, module: str, context_chunks: Sequence[RetrievedChunk]) -> str:
        grounding = context_chunks[0].text if context_chunks else SAFETY_ESCALATION_DEFAULT
        return (
            f"1) Review the relevant SOP step for {module}.\n"
            "2) Perform the task in sequence and confirm each safety checkpoint.\n"
            "3) If a machine behaves unexpectedly, stop and escalate before continuing.\n"
            "Why: This guidance aligns with your request and the available training "
            f"context: {grounding}"
        )

    def quiz(self, topic: str) -> List[QuizQuestionDraft]:
        return [
            QuizQuestionDraft(
                prompt=f"What is the first action before starting a {topic} task?",
                type=QuestionType.MULTIPLE_CHOICE,
                options=[
                    "A) Skip checks to save time",
                    "B) Verify PPE and safety status",
                    "C) Ask maintenance to run it",
                    "D) Start machine immediately",
                ],
                answer_key="B",
                explanation="Safety checks and PPE verification always come before machine operation.",
            ),
            QuizQuestionDraft(
                prompt=f"Name one reason lockout/tagout is important in {topic}.",
                type=QuestionType.SHORT_ANSWER,
                answer_key="prevents unexpected machine startup",
                explanation="Lockout/tagout controls hazardous energy and prevents accidental activation.",
            ),
            QuizQuestionDraft(
                prompt="When quality readings are out of tolerance, what should you do first?",
                type=QuestionType.MULTIPLE_CHOICE,
                options=[
                    "A) Continue production",
                    "B) Disable all alarms",
                    "C) Stop and report per SOP",
                    "D) Ignore one-time deviations",
                ],
                answer_key="C",
                explanation="Out-of-tolerance readings require immediate SOP-based containment and escalation.",
            ),
        ]

    def explain(self) -> str:
        return EXPLAIN_FALLBACK


# ==================== Client ====================

class GenerationClient:
    """
    Produces learner-facing text and quiz items from retrieved SOP context.

    Features:
    - Ordered provider chain with per-call timeout
    - Language- and skill-level-shaped prompts
    - Schema validation of quiz output
    - Deterministic fallback so calls never fail
    """

    def __init__(
        self,
        providers: Optional[List[Provider]] = None,
        fallback: Optional[DeterministicFallback] = None,
        request_timeout: Optional[float] = None,
        min_quiz_questions: Optional[int] = None,
    ):
        """
        Initialize generation client.

        Args:
            providers: Providers in priority order (default: Gemini, then OpenAI)
            fallback: Deterministic generator used when every provider fails
            request_timeout: Seconds allowed per provider call (default from config)
            min_quiz_questions: Minimum valid quiz length (default from config)
        """
        self.providers = providers if providers is not None else default_providers()
        self.fallback = fallback or DeterministicFallback()
        self.request_timeout = request_timeout or config.model.request_timeout
        self.min_quiz_questions = min_quiz_questions or config.assessment.min_quiz_questions

        self.assistance_prompt = PromptTemplate(
            input_variables=["module", "question", "context"],
            template="""Module: {module}

Worker question: {question}

Retrieved training context:
{context}

Answer with 2-5 concise bullet points plus one brief "Why:" paragraph.""",
        )

        self.quiz_prompt = PromptTemplate(
            input_variables=["topic", "context"],
            template="""Topic: {topic}

Retrieved context:
{context}

Generate questions that test procedural understanding and safety judgment.
For multiple choice, answerKey should be the option letter (A/B/C/D).

Format your response as JSON:
[
  {{
    "prompt": "...",
    "type": "multiple_choice",
    "options": ["A) ...", "B) ...", "C) ...", "D) ..."],
    "answerKey": "B",
    "explanation": "..."
  }},
  {{
    "prompt": "...",
    "type": "short_answer",
    "answerKey": "model answer",
    "explanation": "..."
  }}
]""",
        )

    @staticmethod
    def _system_prompt(*parts: str) -> str:
        return " ".join(part for part in parts if part)

    async def _run_model(self, system_prompt: str, prompt: str) -> Optional[str]:
        """
        Try each configured provider in order.

        Returns:
            Generated text, or None if no provider produced any
        """
        attempted = []
        for provider in self.providers:
            if not provider.configured:
                continue

            attempted.append(provider.name)
            try:
                text = await asyncio.wait_for(
                    provider.generate(system_prompt, prompt),
                    timeout=self.request_timeout,
                )
            except Exception as e:
                logger.warning(
                    "Provider %s failed (%s: %s); trying next",
                    provider.name,
                    type(e).__name__,
                    e,
                )
                continue

            if text:
                return text
            logger.warning("Provider %s returned empty output; trying next", provider.name)

        if attempted:
            logger.warning("%s", GenerationUnavailable(
                f"all providers failed ({', '.join(attempted)}); using deterministic fallback"
            ))
        else:
            logger.debug("No generation provider configured; using deterministic fallback")
        return None

    async def generate_assistance(
        self,
        question: str,
        language: str,
        skill_level: SkillLevel,
        module: str,
        context_chunks: Sequence[RetrievedChunk],
    ) -> str:
        """
        Answer an operator question from retrieved context.

        Returns:
            Answer text (provider output or the templated fallback)
        """
        system_prompt = self._system_prompt(
            "You are a manufacturing training assistant for SME factory workers.",
            f"Respond in language code: {language}.",
            skill_prompt_guide(skill_level),
            'Provide actionable guidance first, then a short reason section prefixed with "Why:".',
            "If the context is insufficient, say what is missing and still provide a safe next step.",
        )
        prompt = self.assistance_prompt.format(
            module=module,
            question=question,
            context=context_text(context_chunks) or "No retrieved context found.",
        )

        generated = await self._run_model(system_prompt, prompt)
        if generated:
            return generated
        return self.fallback.assistance(module, context_chunks)

    async def generate_quiz(
        self,
        topic: str,
        language: str,
        skill_level: SkillLevel,
        context_chunks: Sequence[RetrievedChunk],
    ) -> List[QuizQuestionDraft]:
        """
        Generate quiz questions for a topic.

        Provider output that fails JSON or schema validation is discarded in
        favour of the fixed three-question fallback quiz.
        """
        system_prompt = self._system_prompt(
            "You generate structured factory-training quizzes.",
            f"Respond in language code: {language}.",
            skill_prompt_guide(skill_level),
            "Output only valid JSON with an array of 3 to 5 questions.",
            "Each question must include prompt, type, options(optional for short answers), answerKey, explanation.",
            'Use "multiple_choice" or "short_answer" values for type.',
        )
        prompt = self.quiz_prompt.format(
            topic=topic,
            context=context_text(context_chunks) or "No context found.",
        )

        generated = await self._run_model(system_prompt, prompt)
        if generated:
            try:
                return parse_quiz_output(generated, self.min_quiz_questions)
            except MalformedGenerationOutput as e:
                logger.warning("Discarding generated quiz for %r: %s", topic, e)

        return self.fallback.quiz(topic)

    async def explain_why(
        self,
        question: str,
        answer: str,
        language: str,
        context_chunks: Sequence[RetrievedChunk],
    ) -> str:
        """Explain the reasoning behind an answer, grounded in context."""
        system_prompt = self._system_prompt(
            "You provide transparent reasoning for manufacturing training answers.",
            f"Respond in language code: {language}.",
            "Be concise, factual, and grounded in provided context.",
        )
        payload: dict[str, Any] = {
            "task": "explain_reasoning",
            "question": question,
            "answer": answer,
            "context": context_text(context_chunks),
        }

        generated = await self._run_model(system_prompt, json.dumps(payload, indent=2))
        if generated:
            return generated
        return self.fallback.explain()
