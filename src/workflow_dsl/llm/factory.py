"""Factory for the LLM providers that back workflow agents."""

import logging
from collections.abc import Callable

from workflow_dsl.core.config import LLMConfig
from workflow_dsl.llm.llama_provider import LLaMAProvider
from workflow_dsl.llm.openai_provider import OpenAIProvider
from workflow_dsl.llm.provider import LLMProvider

logger = logging.getLogger(__name__)

ProviderBuilder = Callable[[LLMConfig], LLMProvider]


class LLMFactory:
    """Builds the provider named by ``LLMConfig.provider``.

    Agents call the factory lazily, on their first run, so a workflow that
    never reaches an agent step never needs credentials or a model file.
    """

    _builders: dict[str, ProviderBuilder] = {
        "openai": OpenAIProvider,
        "llama": LLaMAProvider,
    }

    @classmethod
    def register(cls, name: str, builder: ProviderBuilder) -> None:
        """Make ``builder`` available under ``name``, replacing any previous one."""
        cls._builders[name] = builder

    @classmethod
    def available(cls) -> list[str]:
        return sorted(cls._builders)

    @classmethod
    def create(cls, config: LLMConfig) -> LLMProvider:
        """Create an LLM provider based on configuration.

        Args:
            config: LLM configuration specifying the provider.

        Returns:
            Configured LLM provider instance.

        Raises:
            ValueError: The provider is unknown or missing its settings.
        """
        builder = cls._builders.get(config.provider)
        if builder is None:
            raise ValueError(
                f"Unsupported LLM provider: {config.provider} "
                f"(available: {', '.join(cls.available())})"
            )

        logger.info(
            "Creating LLM provider",
            extra={"provider": config.provider, "max_tool_rounds": config.max_tool_rounds},
        )
        return builder(config)
