"""
FinChat - Prompt Augmenter
===========================
Merges the selected namespace's retrieved chunks with the conversation
into the message sequence sent to the chat model.

Output layout::

    [system]    SYSTEM_PROMPT
    [user/...]  history[:-1], role for role
    [user]      <CONTEXT> chunk ⏎-------⏎ chunk </CONTEXT>  MY QUESTION: <last message>

The function is pure: identical inputs give an identical prompt.  No
truncation is applied; an over-long history is passed through as is.
"""

from __future__ import annotations

from collections.abc import Sequence

from finchat.config.prompt_templates import AUGMENTED_QUERY_TEMPLATE, CONTEXT_SEPARATOR, SYSTEM_PROMPT
from finchat.src.core.models import PROMPT_ROLES, AugmentedPrompt, ChatMessage, NamespaceResult
from finchat.src.utils.logger import get_logger

logger = get_logger(__name__)


class PromptAugmenter:
    """
    Builds ``AugmentedPrompt``s.

    Parameters
    ----------
    system_prompt
        Persona / output-format instructions placed first.
    separator
        String placed between retrieved chunks.
    """

    __slots__ = ("_system_prompt", "_separator")

    def __init__(self, system_prompt: str = SYSTEM_PROMPT, separator: str = CONTEXT_SEPARATOR) -> None:
        self._system_prompt = system_prompt
        self._separator = separator


    def augment(self, history: Sequence[ChatMessage], selected: NamespaceResult | None) -> AugmentedPrompt:
        """
        Build the model-ready message list.

        Parameters
        ----------
        history
            Conversation so far; the last entry is the question to answer.
        selected
            Best namespace from the selector, or ``None`` to build the
            un-augmented prompt (no context found).

        Raises
        ------
        ValueError
            If *history* is empty or does not end with a non-empty user message.
        """
        if not history:
            raise ValueError("Cannot augment an empty conversation")

        last = history[-1]
        question = last.get("content", "")
        if last.get("role") != "user" or not question.strip():
            raise ValueError("Conversation must end with a non-empty user message")

        prompt: AugmentedPrompt = [{"role": "system", "content": self._system_prompt}]
        for message in history[:-1]:
            role = message.get("role", "")
            if role not in PROMPT_ROLES:
                logger.debug("[AUGMENT] Skipping message with role '%s'.", role)
                continue
            prompt.append({"role": role, "content": message.get("content", "")})

        prompt.append({"role": "user", "content": self.build_query(question, selected)})
        return prompt


    def build_query(self, question: str, selected: NamespaceResult | None) -> str:
        """Wrap *question* with the selected context block (or return it bare)."""
        if selected is None:
            return question

        contexts = [text for text in selected.texts if text.strip()]
        logger.debug("[AUGMENT] %d context chunk(s) from '%s'.", len(contexts), selected.namespace)
        return AUGMENTED_QUERY_TEMPLATE.format(context=self._separator.join(contexts), question=question)
