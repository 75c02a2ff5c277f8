"""Grounded answer synthesis with a hosted chat model."""

import httpx

from .config import ProviderSettings, config
from .errors import ProviderUnavailable
from .providers import build_openai_client, provider_errors

logger = config.get_logger(__name__)

SYSTEM_INSTRUCTION = (
    "You are a helpful assistant that answers questions based on the provided "
    "context. Use only the information from the context to answer. If the context "
    "does not contain enough information, say so clearly."
)
EMPTY_COMPLETION_ANSWER = "I apologize, but I couldn't generate a response."


def build_user_prompt(context: str, question: str) -> str:
    """Combine the grounding context and the literal question.

    Returns:
        The user message sent after the system instruction.
    """
    return (
        f"Context:\n{context}\n\n"
        f"Question: {question}\n\n"
        "Please provide a clear, concise answer based on the context above."
    )


class AnswerSynthesizer:
    """Calls the chat model with retrieved context and the user's question."""

    def __init__(
        self,
        settings: ProviderSettings | None = None,
        *,
        http_client: httpx.Client | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> None:
        """Initialize AnswerSynthesizer.

        Args:
            settings: Provider settings. If None, uses config.chat_provider().
            http_client: Optional transport for the SDK client.
            temperature: Sampling temperature; pass 0 for reproducible output.
                If None, uses config.CHAT_TEMPERATURE.
            max_tokens: Completion token cap. If None, uses config.CHAT_MAX_TOKENS.
        """
        self.settings = settings or config.chat_provider()
        self.client = build_openai_client(self.settings, http_client=http_client)
        self.model = self.settings.model
        self.temperature = (
            temperature if temperature is not None else config.CHAT_TEMPERATURE
        )
        self.max_tokens = (
            max_tokens if max_tokens is not None else config.CHAT_MAX_TOKENS
        )

    def build_messages(
        self,
        system_instruction: str,
        context: str,
        question: str,
    ) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": system_instruction},
            {"role": "user", "content": build_user_prompt(context, question)},
        ]

    def synthesize(self, system_instruction: str, context: str, question: str) -> str:
        """Generate an answer constrained to the supplied context.

        Raises:
            ProviderUnavailable: If the completion carries no choices.

        Returns:
            str: The model's answer text.
        """
        messages = self.build_messages(system_instruction, context, question)

        with provider_errors("generate answer"):
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )

        if not response.choices:
            msg = "Failed to generate answer: provider returned no choices"
            raise ProviderUnavailable(msg, {"model": self.model})

        answer = response.choices[0].message.content
        if not answer or not answer.strip():
            logger.warning("Chat model %s returned an empty completion", self.model)
            return EMPTY_COMPLETION_ANSWER
        return answer.strip()
