"""Simulated study-plan assistant.

There is no model behind it: every message gets the same reply after a
fixed delay, and the first reply produces the study plan.
"""
import asyncio
import logging
import os
from datetime import datetime, timezone
from typing import List, Optional

from errors import ValidationError
from portal import AccessController
from schemas import ChatMessage, StudyPlan

logger = logging.getLogger(__name__)

DEFAULT_DELAY = 2.0

GREETING = (
    "Hi! I'm the Teacher Poli AI assistant.\n\n"
    "Why create your personalized plan?\n"
    "- Teacher Poli adapts to YOUR level and goals\n"
    "- You get an experience made just for you\n"
    "- Without a plan the AI can't help you as well\n\n"
    "Let's start: tell me about your learning goals and your current English level."
)

REPLY = (
    "Perfect! Based on your information I created a personalized study plan for you. "
    "You can download it from the side panel."
)

TEMPLATES = [
    {"title": "Basic Plan", "description": "For English beginners", "duration": "30 days"},
    {"title": "Intermediate Plan", "description": "Improve your skills", "duration": "30 days"},
    {"title": "Advanced Plan", "description": "Fluency and proficiency", "duration": "30 days"},
]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def delay_from_env() -> float:
    return float(os.getenv("PLAN_GENERATION_DELAY", DEFAULT_DELAY))


class StudyPlanAssistant:
    def __init__(self, controller: AccessController, delay: Optional[float] = None):
        self.controller = controller
        self.delay = delay_from_env() if delay is None else delay
        self.messages: List[ChatMessage] = []
        self.plan: Optional[StudyPlan] = None
        self.loading = False
        self.reset()

    def reset(self) -> None:
        self.messages = [ChatMessage(id="1", type="assistant", content=GREETING, timestamp=_now())]
        self.plan = None
        self.loading = False

    def _append(self, kind: str, content: str) -> ChatMessage:
        message = ChatMessage(id=str(len(self.messages) + 1), type=kind, content=content, timestamp=_now())
        self.messages.append(message)
        return message

    @staticmethod
    def template_prompt(index: int) -> str:
        if index < 0:
            raise ValidationError(f"Unknown template: {index}")
        try:
            template = TEMPLATES[index]
        except IndexError:
            raise ValidationError(f"Unknown template: {index}")
        return f'I would like to use the "{template["title"]}" template as the base for my study plan.'

    async def send_message(self, text: str) -> ChatMessage:
        if not text.strip():
            raise ValidationError("Message is empty")
        self._append("user", text)
        self.loading = True
        try:
            await asyncio.sleep(self.delay)
            reply = self._append("assistant", REPLY)
            self.plan = StudyPlan(
                title="Personalized Study Plan",
                level="Intermediate",
                objective="Fluent conversation",
                daily_time="45 minutes",
                generated_at=_now(),
            )
            self.controller.plan_generated()
        finally:
            self.loading = False
        return reply

    def render_plan(self) -> str:
        if self.plan is None:
            raise ValidationError("No study plan generated yet")
        p = self.plan
        return (
            "Personalized Study Plan - Teacher Poli\n\n"
            f"Level: {p.level}\n"
            f"Objective: {p.objective}\n"
            f"Daily time: {p.daily_time}\n"
            f"Generated at: {p.generated_at.isoformat()}\n"
        )
