# skillforge/services/question_service.py
import csv
import json
import math
import re
from typing import List, Dict, Optional

from skillforge.models.enums import QuestionType
from skillforge.models.question import Question, QuestionTemplate
from skillforge.utils.logger import logger
from skillforge.utils.config import settings

FALLBACK_SKILL = "General"

BASE_POINTS = {
    QuestionType.MULTIPLE_CHOICE: 10,
    QuestionType.SHORT_ANSWER: 15,
    QuestionType.CODING: 20,
}

_WHITESPACE = re.compile(r"\s+")
_PUNCTUATION = re.compile(r"[^\w\s]")


def calculate_question_points(question_type: QuestionType, level: int) -> int:
    """Higher levels are worth more: base * (1 + level * 0.5)."""
    return math.floor(BASE_POINTS[QuestionType(question_type)] * (1 + level * 0.5))


def normalize_answer(answer) -> str:
    text = str(answer).lower().strip()
    text = _WHITESPACE.sub(" ", text)
    return _PUNCTUATION.sub("", text)


class QuestionService:
    """
    Template-backed question bank. Templates are keyed by skill name, category
    or "General", then by level.
    """

    def __init__(self):
        self.templates: Dict[str, Dict[int, List[QuestionTemplate]]] = {}
        logger.info("QuestionService initialized (data loading deferred).")

    def load_templates(self, csv_path: Optional[str] = None):
        """Loads question templates from the specified CSV path."""
        csv_path = csv_path if csv_path is not None else settings.question_templates_path
        self.templates = {}
        loaded = 0
        try:
            with open(csv_path, mode="r", encoding="utf-8") as csvfile:
                reader = csv.DictReader(csvfile)
                for row in reader:
                    try:
                        raw_question_type = (row.get("question_type") or "").strip()
                        if not raw_question_type:
                            logger.warning(f"Template '{row.get('question')}' is missing question_type, defaulting to multiple_choice.")
                            raw_question_type = QuestionType.MULTIPLE_CHOICE.value

                        options = None
                        options_raw = row.get("options")
                        if options_raw:
                            try:
                                parsed_options = json.loads(options_raw)
                            except (json.JSONDecodeError, TypeError):
                                logger.error(f"Skipping row due to invalid JSON in 'options': {row}")
                                continue
                            if isinstance(parsed_options, list):
                                options = [str(o) for o in parsed_options]
                            else:
                                logger.warning(f"Options for template '{row['question']}' are not a list, ignoring them.")

                        template = QuestionTemplate(
                            skill=row["skill"].strip(),
                            level=int(row["level"]),
                            question_type=QuestionType(raw_question_type),
                            question=row["question"].strip(),
                            options=options,
                            correct_answer=row["correct_answer"].strip(),
                            explanation=(row.get("explanation") or "").strip(),
                        )
                        self.add_template(template)
                        loaded += 1
                    except ValueError as ve:
                        logger.error(f"Skipping row due to ValueError: {row} - Error: {ve}")
                    except KeyError as ke:
                        logger.error(f"Skipping row due to missing key: {row} - Missing Key: {ke}")

            logger.info(f"Loaded {loaded} question templates for {len(self.templates)} skills/categories.")
            if FALLBACK_SKILL not in self.templates:
                logger.warning(f"No '{FALLBACK_SKILL}' templates in {csv_path}; unmatched skills cannot be assessed.")

        except FileNotFoundError:
            logger.error(f"Question template file not found at: {csv_path}")

    def add_template(self, template: QuestionTemplate):
        self.templates.setdefault(template.skill, {}).setdefault(template.level, []).append(template)

    def get_template_keys(self) -> List[str]:
        return sorted(self.templates)

    def _templates_for(self, skill_name: str, category: str | None, level: int) -> List[QuestionTemplate]:
        by_level = (
            self.templates.get(skill_name)
            or (self.templates.get(category) if category else None)
            or self.templates.get(FALLBACK_SKILL)
        )
        if not by_level:
            return []
        if level in by_level:
            return by_level[level]
        if 1 in by_level:
            return by_level[1]
        return by_level[min(by_level)]

    def build_questions(self, skill_name: str, category: str | None, level: int, count: int) -> List[Question]:
        """
        Builds `count` questions for the skill by cycling through the matching
        templates. Raises LookupError when no template set matches at all.
        """
        templates = self._templates_for(skill_name, category, level)
        if not templates:
            raise LookupError(f"No template questions available for skill '{skill_name}' at level {level}")

        questions = []
        for i in range(count):
            template = templates[i % len(templates)]
            questions.append(Question(
                id=i + 1,
                type=template.question_type,
                question=template.question,
                options=template.options,
                difficulty=level,
                points=calculate_question_points(template.question_type, level),
                correct_answer=template.correct_answer,
                explanation=template.explanation,
            ))
        logger.debug(f"Built {len(questions)} questions for skill '{skill_name}' (category={category}, level={level}).")
        return questions

    def check_answer(self, question: Question, user_answer) -> bool:
        """Checks if the user's answer is correct based on the question type."""
        if user_answer is None:
            return False
        if question.type == QuestionType.MULTIPLE_CHOICE:
            # Options are sent back verbatim
            return str(user_answer).strip() == question.correct_answer.strip()

        # Free-text answers ignore case, spacing and punctuation
        return normalize_answer(user_answer) == normalize_answer(question.correct_answer)
