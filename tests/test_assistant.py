"""Study-plan assistant tests."""

import pytest

from assistant import GREETING, REPLY, TEMPLATES, StudyPlanAssistant
from conftest import ADMIN_EMAIL, run
from errors import ValidationError
from portal import AccessController
from schemas import StudentCreate


@pytest.fixture
def signed_in(controller: AccessController) -> AccessController:
    run(controller.directory.add(StudentCreate(name="Ana", email="ana@example.com", added_by=ADMIN_EMAIL)))
    run(controller.login("ana@example.com"))
    controller.create_password("secret1", "secret1")
    return controller


@pytest.fixture
def assistant(signed_in: AccessController) -> StudyPlanAssistant:
    return StudyPlanAssistant(signed_in, delay=0)


def test_starts_with_greeting(assistant: StudyPlanAssistant):
    assert [m.content for m in assistant.messages] == [GREETING]
    assert assistant.plan is None


def test_message_generates_plan_and_unlocks(assistant: StudyPlanAssistant, signed_in: AccessController):
    reply = run(assistant.send_message("I want to speak fluently"))

    assert reply.content == REPLY
    assert [m.type for m in assistant.messages] == ["assistant", "user", "assistant"]
    assert assistant.plan is not None
    assert assistant.loading is False
    assert signed_in.session.has_generated_plan is True
    assert signed_in.locked_tabs() == []


def test_empty_message_rejected(assistant: StudyPlanAssistant, signed_in: AccessController):
    with pytest.raises(ValidationError):
        run(assistant.send_message("   "))
    assert len(assistant.messages) == 1
    assert signed_in.session.has_generated_plan is False


def test_render_plan(assistant: StudyPlanAssistant):
    with pytest.raises(ValidationError):
        assistant.render_plan()

    run(assistant.send_message("Hello"))

    text = assistant.render_plan()
    assert "Level: Intermediate" in text
    assert "Daily time: 45 minutes" in text


def test_template_prompt():
    assert TEMPLATES[0]["title"] in StudyPlanAssistant.template_prompt(0)
    with pytest.raises(ValidationError):
        StudyPlanAssistant.template_prompt(len(TEMPLATES))
    with pytest.raises(ValidationError):
        StudyPlanAssistant.template_prompt(-1)


def test_reset(assistant: StudyPlanAssistant):
    run(assistant.send_message("Hello"))
    assistant.reset()
    assert len(assistant.messages) == 1
    assert assistant.plan is None
