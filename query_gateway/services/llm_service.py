"""LLM backends for the query translator.

Every backend exposes ``invoke(messages) -> AIMessage`` so the translator can
treat LangChain chat models and native SDK clients alike. Provider SDKs are
imported lazily: only the configured one has to be installed.
"""

from typing import Any, Callable, Dict, List, Optional, Tuple

from langchain_core.messages import AIMessage, BaseMessage

from query_gateway.config import Settings, settings as default_settings
from query_gateway.utils.logging_utils import get_logger

logger = get_logger("llm")

RULE_BASED = {"provider": "rule_based", "model": "keyword_rules"}

# LangChain message type -> chat-completion role
ROLE_NAMES = {"system": "system", "human": "user", "ai": "assistant"}


def _usage(prompt: Optional[int], completion: Optional[int], total: Optional[int]) -> Optional[Dict[str, int]]:
    if not total:
        return None
    return {"input_tokens": prompt or 0, "output_tokens": completion or 0, "total_tokens": total}


class GeminiChat:
    """google-genai client behind the LangChain ``invoke`` signature."""

    def __init__(self, api_key: str, model_name: str, temperature: float = 0.0):
        from google import genai

        self.client = genai.Client(api_key=api_key)
        self.model_name = model_name
        self.temperature = temperature

    def invoke(self, messages: List[BaseMessage]) -> AIMessage:
        system = [m.content for m in messages if m.type == "system"]
        contents = [m.content for m in messages if m.type != "system"]

        response = self.client.models.generate_content(
            model=self.model_name,
            contents=contents,
            config={
                "system_instruction": "\n".join(system) or None,
                "temperature": self.temperature,
            },
        )

        usage = getattr(response, "usage_metadata", None)
        return AIMessage(
            content=response.text or "",
            usage_metadata=_usage(
                getattr(usage, "prompt_token_count", None),
                getattr(usage, "candidates_token_count", None),
                getattr(usage, "total_token_count", None),
            ),
        )


class HuggingFaceChat:
    """huggingface_hub InferenceClient behind the LangChain ``invoke`` signature."""

    def __init__(self, api_key: str, model_name: str, max_tokens: int = 1024, temperature: float = 0.1):
        from huggingface_hub import InferenceClient

        self.client = InferenceClient(model=model_name, token=api_key)
        self.max_tokens = max_tokens
        self.temperature = temperature

    def invoke(self, messages: List[BaseMessage]) -> AIMessage:
        response = self.client.chat_completion(
            messages=[{"role": ROLE_NAMES.get(m.type, "user"), "content": m.content} for m in messages],
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )

        usage = getattr(response, "usage", None)
        return AIMessage(
            content=response.choices[0].message.content or "",
            usage_metadata=_usage(
                getattr(usage, "prompt_tokens", None),
                getattr(usage, "completion_tokens", None),
                getattr(usage, "total_tokens", None),
            ),
        )


def _openai(settings: Settings) -> Tuple[Any, Dict[str, Any]]:
    from langchain_openai import ChatOpenAI

    if not settings.openai_api_key:
        raise ValueError("OPENAI_API_KEY is required when using OpenAI provider")
    llm = ChatOpenAI(
        model=settings.openai_model,
        temperature=0,
        api_key=settings.openai_api_key,
        max_retries=2,
        timeout=120,
    )
    return llm, {"provider": "openai", "model": settings.openai_model}


def _local(settings: Settings) -> Tuple[Any, Dict[str, Any]]:
    from langchain_openai import ChatOpenAI

    # OpenAI-compatible local server (LM Studio); the key is ignored but required by the client
    llm = ChatOpenAI(
        base_url=settings.local_llm_base_url,
        model=settings.local_llm_model,
        api_key="not-needed",
        temperature=0,
        max_retries=2,
        timeout=120,
    )
    return llm, {"provider": "local", "model": settings.local_llm_model, "baseUrl": settings.local_llm_base_url}


def _gemini(settings: Settings) -> Tuple[Any, Dict[str, Any]]:
    if not settings.google_api_key:
        raise ValueError("GOOGLE_API_KEY is required when using Gemini provider")
    llm = GeminiChat(settings.google_api_key, settings.gemini_model)
    return llm, {"provider": "gemini", "model": settings.gemini_model, "sdk": "google-genai"}


def _huggingface(settings: Settings) -> Tuple[Any, Dict[str, Any]]:
    if not settings.huggingface_api_key:
        raise ValueError("HUGGINGFACE_API_KEY is required when using HuggingFace provider")
    llm = HuggingFaceChat(settings.huggingface_api_key, settings.huggingface_model)
    return llm, {"provider": "huggingface", "model": settings.huggingface_model, "sdk": "huggingface_hub"}


PROVIDERS: Dict[str, Callable[[Settings], Tuple[Any, Dict[str, Any]]]] = {
    "openai": _openai,
    "gemini": _gemini,
    "local": _local,
    "huggingface": _huggingface,
}


def create_llm(settings: Settings = default_settings) -> Tuple[Any, Dict[str, Any]]:
    """
    Build the translator backend named by ``settings.llm_provider``.

    Returns ``(llm, metadata)``. Provider ``none`` returns no model, and the
    translator falls back to keyword rules.
    """
    provider = settings.llm_provider.lower()
    if provider == "none":
        logger.info("No LLM configured; using keyword rules")
        return None, dict(RULE_BASED)

    factory = PROVIDERS.get(provider)
    if factory is None:
        choices = ", ".join(["none", *PROVIDERS])
        raise ValueError(f"Unsupported LLM provider: {provider}. Use one of: {choices}")

    llm, metadata = factory(settings)
    logger.info("LLM initialized: %s (%s)", metadata["model"], metadata["provider"])
    return llm, metadata
