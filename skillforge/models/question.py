# Data model for generated assessment questions
from pydantic import BaseModel
from typing import List, Optional

from skillforge.models.enums import QuestionType

class QuestionTemplate(BaseModel):
    skill: str  # skill name, category name, or "General"
    level: int
    question_type: QuestionType
    question: str
    options: Optional[List[str]] = None  # For multiple_choice
    correct_answer: str
    explanation: str = ""

class Question(BaseModel):
    id: int
    type: QuestionType
    question: str
    options: Optional[List[str]] = None
    difficulty: int
    points: int
    correct_answer: str
    explanation: str = ""

    def public_dict(self) -> dict:
        """The question as shown to the client, without answer or explanation."""
        return self.model_dump(mode="json", exclude={"correct_answer", "explanation"})
