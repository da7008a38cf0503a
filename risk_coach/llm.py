from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage
from langchain_openai import ChatOpenAI

from .config import Settings


def create_llm(settings: Settings) -> BaseChatModel:
    """Create the chat model used by the risk coach.

    The output cap applies to each answer, not to the conversation.
    """
    return ChatOpenAI(
        model=settings.llm_model,
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_output_tokens,
        max_retries=settings.llm_max_retries,
        request_timeout=settings.llm_timeout_seconds,
    )


def response_text(message: BaseMessage) -> str:
    """Flatten a model reply to plain text.

    Some providers return a list of content parts instead of a string.
    """
    content = message.content
    if isinstance(content, str):
        return content.strip()
    parts = []
    for part in content:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(part.get("text", ""))
    return "".join(parts).strip()
