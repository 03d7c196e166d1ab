import json
import logging
import re
from typing import Any, Final

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate

from triage.core.config import Settings
from triage.core.errors import ClassifierResponseInvalid, ClassifierUnavailable, ValidationError
from triage.domain.models import TicketAnalysis, TicketCategory, TicketUrgency
from triage.domain.ports import TicketClassifier

logger = logging.getLogger(__name__)

TEMPERATURE: Final[float] = 0.1
DEFAULT_CATEGORY: Final[TicketCategory] = TicketCategory.TECHNICAL
DEFAULT_URGENCY: Final[TicketUrgency] = TicketUrgency.MEDIUM
DEFAULT_SENTIMENT: Final[int] = 5
FALLBACK_DRAFT_REPLY: Final[str] = "Thank you for your message. A support agent will review it shortly."

_GROQ_BASE_URL: Final[str] = "https://api.groq.com/openai/v1"
_DEFAULT_MODELS: Final[dict[str, str]] = {
    "openai": "gpt-4o-mini",
    "groq": "llama-3.3-70b-versatile",
    "gemini": "gemini-2.0-flash",
}
_CATEGORIES: Final[frozenset[str]] = frozenset(category.value for category in TicketCategory)
_URGENCIES: Final[frozenset[str]] = frozenset(urgency.value for urgency in TicketUrgency)
_CODE_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)

_SYSTEM_PROMPT: Final[str] = (
    "You are a customer support AI assistant that outputs only JSON.\n"
    "Analyze the complaint for:\n"
    "1. category: {categories}\n"
    "2. sentiment_score: integer 1-10, where 1 is angry/negative and 10 is happy/positive\n"
    "3. urgency: {urgencies}\n"
    "4. draft_reply: a polite, helpful response (max 200 words)\n"
    "Return ONLY valid JSON with exactly these four fields, with no markdown formatting or code blocks:\n"
    '{{{{"category": "...", "sentiment_score": 0, "urgency": "...", "draft_reply": "..."}}}}'
)


def _category_values() -> str:
    return " | ".join(category.value for category in TicketCategory)


def _urgency_values() -> str:
    return " | ".join(urgency.value for urgency in TicketUrgency)


def build_chat_model(settings: Settings) -> BaseChatModel:
    provider = settings.llm_provider.lower().strip()
    if provider not in _DEFAULT_MODELS:
        raise ClassifierUnavailable(f"Unsupported LLM_PROVIDER: {settings.llm_provider}")
    if not settings.llm_api_key:
        raise ClassifierUnavailable(f"LLM_API_KEY is required for LLM_PROVIDER={provider}")

    model = settings.llm_model or _DEFAULT_MODELS[provider]
    timeout = settings.classifier_timeout_seconds

    if provider == "gemini":
        from langchain_google_genai import ChatGoogleGenerativeAI

        return ChatGoogleGenerativeAI(
            model=model,
            temperature=TEMPERATURE,
            timeout=timeout,
            max_retries=0,
            google_api_key=settings.llm_api_key,
        )

    from langchain_openai import ChatOpenAI

    if provider == "groq":
        return ChatOpenAI(
            model=model,
            temperature=TEMPERATURE,
            timeout=timeout,
            max_retries=0,
            api_key=settings.llm_api_key,
            base_url=_GROQ_BASE_URL,
            model_kwargs={"response_format": {"type": "json_object"}},
        )

    return ChatOpenAI(
        model=model,
        temperature=TEMPERATURE,
        timeout=timeout,
        max_retries=0,
        api_key=settings.llm_api_key,
    )


def clean_model_output(text: str) -> str:
    """Strip the markdown code fences models like to wrap JSON in."""
    return _CODE_FENCE.sub("", text).strip()


def parse_analysis(text: Any) -> dict[str, Any]:
    if not isinstance(text, str):
        raise ClassifierResponseInvalid(f"LLM returned non-text content: {type(text).__name__}")

    cleaned = clean_model_output(text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ClassifierResponseInvalid("LLM returned a response that is not valid JSON") from e

    if not isinstance(data, dict):
        raise ClassifierResponseInvalid(f"LLM returned JSON {type(data).__name__}, expected an object")
    return data


def _coerce_category(value: Any) -> TicketCategory:
    if isinstance(value, str) and value in _CATEGORIES:
        return TicketCategory(value)
    return DEFAULT_CATEGORY


def _coerce_urgency(value: Any) -> TicketUrgency:
    if isinstance(value, str) and value in _URGENCIES:
        return TicketUrgency(value)
    return DEFAULT_URGENCY


def _coerce_sentiment(value: Any) -> int:
    # bool is an int subclass, but `true` is not a score
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_SENTIMENT
    # NaN fails the comparison; huge ints never become floats here
    if not 1 <= value <= 10:
        return DEFAULT_SENTIMENT
    return int(round(value))


def _coerce_draft_reply(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        return FALLBACK_DRAFT_REPLY
    return value


def normalize_analysis(data: dict[str, Any]) -> TicketAnalysis:
    """
    Coerce a parsed model response into a TicketAnalysis.

    Never raises: out-of-range or unknown values are replaced with defaults
    instead of rejecting the whole response.
    """
    analysis = TicketAnalysis(
        category=_coerce_category(data.get("category")),
        sentiment_score=_coerce_sentiment(data.get("sentiment_score")),
        urgency=_coerce_urgency(data.get("urgency")),
        draft_reply=_coerce_draft_reply(data.get("draft_reply")),
    )
    replaced = [key for key, value in analysis.model_dump(mode="json").items() if data.get(key) != value]
    if replaced:
        logger.info("LLM response normalized fields: %s", ", ".join(replaced))
    return analysis


class LLMTicketClassifier(TicketClassifier):
    """
    Single responsibility: ask a chat model for a ticket analysis and return it normalized.
    """

    def __init__(self, llm: BaseChatModel) -> None:
        self._prompt = ChatPromptTemplate.from_messages(
            [
                (
                    "system",
                    _SYSTEM_PROMPT.format(categories=_category_values(), urgencies=_urgency_values()),
                ),
                ("human", 'Complaint: "{content}"'),
            ]
        )
        self._chain = self._prompt | llm | StrOutputParser()

    async def classify(self, content: str) -> TicketAnalysis:
        if not content or not content.strip():
            raise ValidationError("content is empty")

        try:
            raw = await self._chain.ainvoke({"content": content.strip()})
        except Exception as e:
            logger.warning("LLM call failed: %s: %s", type(e).__name__, e)
            raise ClassifierUnavailable("LLM provider failed during classification") from e

        return normalize_analysis(parse_analysis(raw))


def build_classifier(settings: Settings) -> LLMTicketClassifier:
    return LLMTicketClassifier(build_chat_model(settings))
