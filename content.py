"""Content stores for onboarding videos, popups and the bonus library.

Each store persists a whole list under one local storage key. `save`
overwrites that list and then notifies the store's subscribers, so views
that are showing the content reload it from `get`.
"""
import logging
import time
from typing import Any, Callable, Dict, Generic, List, Type, TypeVar

from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as SchemaError

from errors import NotFoundError, ValidationError
from events import Signal
from schemas import (
    BonusBody,
    BonusLesson,
    BonusResource,
    LessonBody,
    OnboardingVideo,
    PopupContent,
    PopupUpdateBody,
    QuizQuestion,
    VideoUpdateBody,
)
from storage import LocalStorage

logger = logging.getLogger(__name__)

VIDEOS_KEY = "teacherpoli_onboarding_videos"
POPUPS_KEY = "teacherpoli_popup_contents"
BONUSES_KEY = "teacherpoli_bonus_data"

T = TypeVar("T", bound=BaseModel)


# Default content, used until an admin saves the first edit

def default_videos() -> List[OnboardingVideo]:
    return [
        OnboardingVideo(
            id="1",
            title="Welcome to Teacher Poli",
            description="Meet the platform and what you will find in each section.",
            duration="3:45",
            embed_url="https://www.youtube.com/embed/welcome",
        ),
        OnboardingVideo(
            id="2",
            title="How to create your study plan",
            description="Tell the assistant your goals and level to get a personalized plan.",
            duration="5:20",
            embed_url="https://www.youtube.com/embed/study-plan",
        ),
        OnboardingVideo(
            id="3",
            title="Practicing with Teacher Poli",
            description="Daily conversation practice with your AI teacher.",
            duration="4:10",
            embed_url="https://www.youtube.com/embed/practice",
        ),
    ]


def default_popups() -> List[PopupContent]:
    return [
        PopupContent(
            id="welcome",
            title="Welcome to Teacher Poli!",
            subtitle="Your English journey starts here",
            description="Before you start, create your personalized study plan.",
            button_text="Create my plan",
            features=["Personalized plan", "AI teacher available 24/7", "Exclusive bonuses"],
            type="welcome",
        ),
        PopupContent(
            id="plan-required",
            title="Study plan required",
            subtitle="This section is locked",
            description="Generate your study plan to unlock Teacher Poli and the bonuses.",
            button_text="Go to my plan",
            features=["Takes less than a minute", "Unlocks every section"],
            type="plan-required",
        ),
    ]


def default_bonuses() -> List[BonusResource]:
    return [
        BonusResource(
            id="1",
            title="Essential Phrasal Verbs",
            description="The phrasal verbs you will hear every day.",
            type="course",
            total_lessons=1,
            total_duration="15 min",
            rating=4.8,
            downloads=1250,
            lessons=[
                BonusLesson(
                    id="1",
                    title="Phrasal verbs with GET",
                    description="get up, get over, get along",
                    duration="15 min",
                    text_content="Phrasal verbs combine a verb with a particle...",
                    exercises=[
                        QuizQuestion(
                            id="1",
                            question="What does 'get over' mean?",
                            options=["To recover from", "To arrive", "To wake up", "To leave"],
                            correct_answer=0,
                            explanation="'Get over' means to recover from something.",
                        )
                    ],
                )
            ],
        ),
    ]


# Stores

class ContentStore(Generic[T]):
    def __init__(
        self,
        storage: LocalStorage,
        key: str,
        model: Type[T],
        defaults: Callable[[], List[T]],
        event: str,
    ):
        self.storage = storage
        self.key = key
        self.defaults = defaults
        self.changed = Signal(event)
        self._adapter = TypeAdapter(List[model])

    def get(self) -> List[T]:
        raw = self.storage.get_json(self.key)
        if raw is None:
            return self.defaults()
        try:
            return self._adapter.validate_python(raw)
        except SchemaError as e:
            logger.warning("Stored %s are invalid, using defaults: %s", self.key, e)
            return self.defaults()

    def save(self, items: List[T]) -> None:
        self.storage.set_json(self.key, self._adapter.dump_python(items, mode="json", by_alias=True))
        self.changed.emit()

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        return self.changed.subscribe(listener)


def _new_id(prefix: str, taken: List[str]) -> str:
    base = f"{prefix}_{int(time.time() * 1000)}"
    candidate, n = base, 1
    while candidate in taken:
        candidate = f"{base}_{n}"
        n += 1
    return candidate


def _index(items: List[Any], item_id: str, kind: str) -> int:
    for i, item in enumerate(items):
        if item.id == item_id:
            return i
    raise NotFoundError(kind, item_id)


class ContentLibrary:
    """The three content stores and the edits admins and students make."""

    def __init__(self, storage: LocalStorage):
        self.videos = ContentStore(storage, VIDEOS_KEY, OnboardingVideo, default_videos, "onboardingDataUpdated")
        self.popups = ContentStore(storage, POPUPS_KEY, PopupContent, default_popups, "popupDataUpdated")
        self.bonuses = ContentStore(storage, BONUSES_KEY, BonusResource, default_bonuses, "bonusDataUpdated")

    # Onboarding

    def mark_video_completed(self, video_id: str) -> OnboardingVideo:
        videos = self.videos.get()
        i = _index(videos, video_id, "Video")
        videos[i] = videos[i].model_copy(update={"completed": True})
        self.videos.save(videos)
        return videos[i]

    def update_video(self, video_id: str, changes: VideoUpdateBody) -> OnboardingVideo:
        videos = self.videos.get()
        i = _index(videos, video_id, "Video")
        videos[i] = videos[i].model_copy(update=changes.model_dump(exclude_none=True))
        self.videos.save(videos)
        return videos[i]

    def update_popup(self, popup_id: str, changes: PopupUpdateBody) -> PopupContent:
        popups = self.popups.get()
        i = _index(popups, popup_id, "Popup")
        popups[i] = popups[i].model_copy(update=changes.model_dump(exclude_none=True))
        self.popups.save(popups)
        return popups[i]

    # Bonuses

    def get_bonus(self, bonus_id: str) -> BonusResource:
        bonuses = self.bonuses.get()
        return bonuses[_index(bonuses, bonus_id, "Bonus")]

    def create_bonus(self, body: BonusBody) -> BonusResource:
        bonuses = self.bonuses.get()
        bonus = BonusResource(id=_new_id("bonus", [b.id for b in bonuses]), **body.model_dump())
        bonuses.append(bonus)
        self.bonuses.save(bonuses)
        return bonus

    def update_bonus(self, bonus_id: str, body: BonusBody) -> BonusResource:
        bonuses = self.bonuses.get()
        i = _index(bonuses, bonus_id, "Bonus")
        bonuses[i] = bonuses[i].model_copy(update=body.model_dump())
        self.bonuses.save(bonuses)
        return bonuses[i]

    def delete_bonus(self, bonus_id: str) -> None:
        bonuses = self.bonuses.get()
        del bonuses[_index(bonuses, bonus_id, "Bonus")]
        self.bonuses.save(bonuses)

    def _build_lesson(self, lesson_id: str, body: LessonBody, completed: bool = False) -> BonusLesson:
        exercises: List[QuizQuestion] = []
        for q in body.exercises:
            exercise_id = _new_id("exercise", [e.id for e in exercises])
            exercises.append(QuizQuestion(id=exercise_id, **q.model_dump()))
        data = body.model_dump(exclude={"exercises"})
        return BonusLesson(id=lesson_id, exercises=exercises, completed=completed, **data)

    def create_lesson(self, bonus_id: str, body: LessonBody) -> BonusLesson:
        bonuses = self.bonuses.get()
        i = _index(bonuses, bonus_id, "Bonus")
        bonus = bonuses[i]
        lesson = self._build_lesson(_new_id("lesson", [l.id for l in bonus.lessons]), body)
        bonuses[i] = bonus.model_copy(
            update={"lessons": bonus.lessons + [lesson], "total_lessons": bonus.total_lessons + 1}
        )
        self.bonuses.save(bonuses)
        return lesson

    def update_lesson(self, bonus_id: str, lesson_id: str, body: LessonBody) -> BonusLesson:
        bonuses = self.bonuses.get()
        i = _index(bonuses, bonus_id, "Bonus")
        lessons = list(bonuses[i].lessons)
        j = _index(lessons, lesson_id, "Lesson")
        lessons[j] = self._build_lesson(lesson_id, body, completed=lessons[j].completed)
        bonuses[i] = bonuses[i].model_copy(update={"lessons": lessons})
        self.bonuses.save(bonuses)
        return lessons[j]

    def delete_lesson(self, bonus_id: str, lesson_id: str) -> None:
        bonuses = self.bonuses.get()
        i = _index(bonuses, bonus_id, "Bonus")
        bonus = bonuses[i]
        j = _index(bonus.lessons, lesson_id, "Lesson")
        lessons = bonus.lessons[:j] + bonus.lessons[j + 1:]
        bonuses[i] = bonus.model_copy(
            update={"lessons": lessons, "total_lessons": max(bonus.total_lessons - 1, 0)}
        )
        self.bonuses.save(bonuses)

    def complete_lesson(self, bonus_id: str, lesson_id: str) -> BonusLesson:
        bonuses = self.bonuses.get()
        i = _index(bonuses, bonus_id, "Bonus")
        lessons = list(bonuses[i].lessons)
        j = _index(lessons, lesson_id, "Lesson")
        lessons[j] = lessons[j].model_copy(update={"completed": True})
        bonuses[i] = bonuses[i].model_copy(update={"lessons": lessons})
        self.bonuses.save(bonuses)
        return lessons[j]

    def bonus_progress(self, bonus_id: str) -> Dict[str, int]:
        bonus = self.get_bonus(bonus_id)
        completed = sum(1 for l in bonus.lessons if l.completed)
        return {"completed": completed, "total": bonus.total_lessons}

    def grade_quiz(self, bonus_id: str, lesson_id: str, answers: List[int]) -> Dict[str, Any]:
        bonus = self.get_bonus(bonus_id)
        lesson = bonus.lessons[_index(bonus.lessons, lesson_id, "Lesson")]
        if len(answers) != len(lesson.exercises):
            raise ValidationError(
                f"Expected {len(lesson.exercises)} answers, got {len(answers)}"
            )
        results = []
        for question, answer in zip(lesson.exercises, answers):
            results.append({
                "id": question.id,
                "correct": answer == question.correct_answer,
                "correctAnswer": question.correct_answer,
                "explanation": question.explanation,
            })
        return {
            "score": sum(1 for r in results if r["correct"]),
            "total": len(results),
            "results": results,
        }
