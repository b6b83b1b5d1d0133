"""Anthropic-backed generator."""

import logging
from dataclasses import dataclass, field

import anthropic
from langchain_anthropic import ChatAnthropic
from langchain_core.messages import HumanMessage, SystemMessage

from hcc.config import settings
from hcc.errors.exceptions import GeneratorError, GeneratorTimeout, RateLimitError
from hcc.generation.base import BaseGenerator, PromptContext
from hcc.state.enums import GenerationKind

logger = logging.getLogger(__name__)


@dataclass
class GeneratorConfig:
    """Configuration for the chat-model generator."""

    model_name: str = field(default_factory=lambda: settings.default_model)
    temperature: float = field(default_factory=lambda: settings.generation_temperature)
    max_tokens: int = field(default_factory=lambda: settings.generation_max_tokens)
    timeout_seconds: float = field(default_factory=lambda: settings.generation_timeout_seconds)
    # Structured calls (skeleton, delta) want deterministic output
    structured_temperature: float = 0.0


class AnthropicGenerator(BaseGenerator):
    """Generator that calls Claude through LangChain."""

    def __init__(self, config: GeneratorConfig | None = None):
        self.config = config or GeneratorConfig()
        self.model_name = self.config.model_name

        # Retries are owned by the pipeline so they count against unit budgets
        self._llm = ChatAnthropic(
            model=self.config.model_name,
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
            timeout=self.config.timeout_seconds,
            max_retries=0,
            api_key=settings.anthropic_api_key,
        )
        self._structured_llm = ChatAnthropic(
            model=self.config.model_name,
            temperature=self.config.structured_temperature,
            max_tokens=self.config.max_tokens,
            timeout=self.config.timeout_seconds,
            max_retries=0,
            api_key=settings.anthropic_api_key,
        )

    def generate(self, context: PromptContext) -> str:
        messages = [
            SystemMessage(content=context.system_prompt()),
            HumanMessage(content=context.user_prompt()),
        ]
        llm = self._llm if context.kind == GenerationKind.CHUNK else self._structured_llm

        try:
            response = llm.invoke(messages)
        except anthropic.APITimeoutError as e:
            raise GeneratorTimeout(
                f"Generator call timed out for {context.unit}",
                timeout_seconds=self.config.timeout_seconds,
                model=self.model_name,
            ) from e
        except anthropic.RateLimitError as e:
            retry_after = None
            header = e.response.headers.get("retry-after") if e.response is not None else None
            if header:
                try:
                    retry_after = float(header)
                except ValueError:
                    retry_after = None
            raise RateLimitError(retry_after=retry_after, model=self.model_name) from e
        except anthropic.APIStatusError as e:
            # 4xx other than rate limiting will not improve on retry
            raise GeneratorError(
                f"Generator returned HTTP {e.status_code}",
                model=self.model_name,
                details={"status_code": e.status_code},
                recoverable=e.status_code >= 500,
            ) from e
        except anthropic.APIError as e:
            raise GeneratorError(str(e), model=self.model_name) from e

        # Handle both string and list content types from response
        raw_content = response.content
        if isinstance(raw_content, list):
            content = " ".join(
                item if isinstance(item, str) else item.get("text", "")
                for item in raw_content
            )
        else:
            content = raw_content
        return content.strip()
