"""
Data Schemas for the Teacher Poli portal

Each Pydantic model represents a record kept by the portal, either in
local storage (JSON under a fixed key) or in the remote MongoDB backend.

Records:
- User (the signed-in session)
- StudentRecord (manually added students, collection "manual_students")
- OnboardingVideo, PopupContent (onboarding content)
- BonusResource, BonusLesson, QuizQuestion (bonus library)
- ChatMessage, StudyPlan (simulated study-plan assistant)

Content and session records use camelCase on the wire and in storage.
"""
from datetime import datetime, timezone
from typing import Optional, List, Literal

from pydantic import BaseModel, ConfigDict, Field, EmailStr, field_validator
from pydantic.alias_generators import to_camel


StudentStatus = Literal["active", "inactive"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def dump(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class User(CamelModel):
    """Session of the currently signed-in user"""
    name: str
    email: str
    is_verified: bool = True
    has_password: bool = True
    has_generated_plan: bool = False
    first_access: bool = True


class StudentRecord(BaseModel):
    """
    Manually added students
    Status:
    - active: can sign in and counts for email uniqueness
    - inactive: kept for the record only
    """
    id: str
    name: str
    email: str
    notes: str = ""
    added_by: str
    added_at: datetime
    status: StudentStatus = "active"
    created_at: datetime
    updated_at: datetime

    @field_validator("added_at", "created_at", "updated_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # backends may hand back naive UTC datetimes
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def dump(self) -> dict:
        return self.model_dump(mode="json")


class StudentCreate(BaseModel):
    name: str
    email: str
    notes: Optional[str] = ""
    added_by: str


class StudentStats(CamelModel):
    total: int = 0
    active: int = 0
    inactive: int = 0
    added_this_month: int = 0


class OnboardingVideo(CamelModel):
    id: str
    title: str
    description: str = ""
    duration: str = ""
    embed_url: str = ""
    completed: bool = False


class PopupContent(CamelModel):
    id: str
    title: str
    subtitle: str = ""
    description: str = ""
    button_text: str = ""
    features: List[str] = []
    type: str = "welcome"


class QuizQuestion(CamelModel):
    id: str
    question: str
    options: List[str] = Field(..., min_length=4, max_length=4)
    correct_answer: int = Field(0, ge=0, le=3)
    explanation: str = ""


class BonusLesson(CamelModel):
    id: str
    title: str
    description: str = ""
    video_url: Optional[str] = None
    duration: str = ""
    text_content: str = ""
    exercises: List[QuizQuestion] = []
    completed: bool = False


class BonusResource(CamelModel):
    id: str
    title: str
    description: str = ""
    type: str = "course"
    thumbnail: str = ""
    total_lessons: int = 0
    total_duration: str = ""
    rating: float = 0.0
    downloads: int = 0
    lessons: List[BonusLesson] = []


class ChatMessage(CamelModel):
    id: str
    type: Literal["user", "assistant"]
    content: str
    timestamp: datetime


class StudyPlan(CamelModel):
    title: str
    level: str
    objective: str
    daily_time: str
    generated_at: datetime


# Request bodies

class LoginBody(BaseModel):
    email: EmailStr


class PasswordBody(BaseModel):
    password: str
    confirmation: str


class StudentBody(BaseModel):
    name: str
    email: EmailStr
    notes: Optional[str] = ""


class StatusBody(BaseModel):
    status: StudentStatus


class MessageBody(BaseModel):
    content: str


class VideoUpdateBody(CamelModel):
    title: Optional[str] = None
    description: Optional[str] = None
    duration: Optional[str] = None
    embed_url: Optional[str] = None


class PopupUpdateBody(CamelModel):
    title: Optional[str] = None
    subtitle: Optional[str] = None
    description: Optional[str] = None
    button_text: Optional[str] = None
    features: Optional[List[str]] = None


class QuizQuestionBody(CamelModel):
    question: str
    options: List[str] = Field(..., min_length=4, max_length=4)
    correct_answer: int = Field(0, ge=0, le=3)
    explanation: str = ""


class LessonBody(CamelModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    video_url: Optional[str] = None
    duration: str = ""
    text_content: str = ""
    exercises: List[QuizQuestionBody] = []


class BonusBody(CamelModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    type: str = "course"
    thumbnail: str = ""
    total_duration: str = ""
    rating: float = 0.0
    downloads: int = 0


class QuizAnswersBody(BaseModel):
    answers: List[int]
