from __future__ import annotations

from langchain_core.tools import StructuredTool
from pydantic import BaseModel, Field

from agent_chat.agents.base import ASK_USER_QUESTION_TOOL

_NO_ANSWER = "The user did not answer the question."


class QuestionOption(BaseModel):
    label: str = Field(description="Short option shown to the user.")
    description: str = Field(default="", description="What choosing this option means.")


class Question(BaseModel):
    question: str = Field(description="The full question text.")
    header: str = Field(default="", description="Very short label for the question.")
    options: list[QuestionOption] = Field(default_factory=list, description="Choices offered to the user.")
    multi_select: bool = Field(default=False, description="Whether several options may be selected.")


class AskUserQuestionInput(BaseModel):
    questions: list[Question] = Field(min_length=1, description="Questions to ask, in display order.")


def _ask_user_question(questions: list[Question]) -> str:
    # The turn's permission handler answers this tool; reaching the body means nobody was asked.
    return _NO_ANSWER


def build_ask_user_question_tool() -> StructuredTool:
    return StructuredTool.from_function(
        func=_ask_user_question,
        name=ASK_USER_QUESTION_TOOL,
        description=(
            "Ask the user one or more structured questions when a decision or missing detail blocks progress. "
            "Returns the user's answer as text."
        ),
        args_schema=AskUserQuestionInput,
    )
