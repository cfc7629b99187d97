"""
YamiFit chatbot model wrapper.

Stateless: the caller passes the visible history, the model never keeps
memory between turns.
"""

import re
from typing import List, Optional, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from app.core.config import settings
from app.core.logger import get_logger
from app.enums import ChatbotRole

logger = get_logger("chatbot_assistant")

ARABIC_CHARS = re.compile(r"[\u0600-\u06FF\u0750-\u077F\u08A0-\u08FF]")
LETTERS = re.compile(r"[^\W\d_]")

SYSTEM_PROMPT = """You are YamiFit's friendly fitness and nutrition assistant.

You help users with healthy eating, meal ideas, calories and macros, workouts,
hydration, sleep and general wellbeing. You can also explain how YamiFit works:
meal providers, coaching with a personal coach (PRO plan) and progress tracking.

Guidelines:
- Keep answers short and easy to read on a phone: short paragraphs and bullets.
- Be warm, encouraging and practical.
- Do not diagnose medical conditions. For injuries, pregnancy, eating disorders
  or medication questions, suggest talking to a doctor or their YamiFit coach.
- If you do not know something, say so instead of guessing.
"""

ARABIC_HINT = "The user is writing in Arabic. Reply in clear Modern Standard Arabic."


def is_mostly_arabic(text: str) -> bool:
    letters = LETTERS.findall(text)
    if not letters:
        return False
    arabic = sum(1 for ch in letters if ARABIC_CHARS.match(ch))
    return arabic / len(letters) > 0.5


class ChatbotAssistant:
    """Calls the chat model with the recent visible history as context."""

    def __init__(self, model: Optional[str] = None, timeout: Optional[float] = None):
        self.model = model or settings.CHATBOT_MODEL
        self.timeout = timeout or settings.CHATBOT_MODEL_TIMEOUT_SECONDS
        self._llm = None

    @property
    def llm(self) -> ChatOpenAI:
        # Built lazily so importing the app does not require an API key
        if self._llm is None:
            self._llm = ChatOpenAI(
                model=self.model,
                temperature=0.5,
                timeout=self.timeout,
                max_retries=1,
                api_key=settings.openai_api_key,
            )
        return self._llm

    def build_messages(self, history: Sequence, text: str, locale: Optional[str] = None) -> List[BaseMessage]:
        system = SYSTEM_PROMPT
        if locale == "ar" or is_mostly_arabic(text):
            system = f"{system}\n{ARABIC_HINT}"

        messages: List[BaseMessage] = [SystemMessage(content=system)]
        for row in list(history)[-settings.CHATBOT_CONTEXT_MESSAGES:]:
            if row.role == ChatbotRole.ASSISTANT.value:
                messages.append(AIMessage(content=row.content))
            else:
                messages.append(HumanMessage(content=row.content))
        messages.append(HumanMessage(content=text))
        return messages

    async def reply(self, history: Sequence, text: str, locale: Optional[str] = None) -> str:
        messages = self.build_messages(history, text, locale)
        logger.info(f"Calling {self.model} with {len(messages) - 1} message(s) of context")
        response = await self.llm.ainvoke(messages)
        content = response.content if isinstance(response.content, str) else str(response.content)
        return content.strip()[: settings.CHATBOT_MAX_CONTENT_CHARS]


chatbot_assistant = ChatbotAssistant()


def get_chatbot_assistant() -> ChatbotAssistant:
    return chatbot_assistant
