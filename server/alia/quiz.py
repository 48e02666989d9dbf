"""
Quiz scoring for the halakha knowledge topics.
"""
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

DEFAULT_REQUIRED_SCORE = 70


@dataclass
class IncorrectAnswer:
    question: Dict[str, Any]
    selected_answer: Optional[Dict[str, Any]]
    correct_answer: Optional[Dict[str, Any]]
    explanation: str


@dataclass
class QuizResult:
    score: int
    total_questions: int
    correct_answers: int
    time_spent: int
    passed: bool
    incorrect_answers: List[IncorrectAnswer] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "score": self.score,
            "totalQuestions": self.total_questions,
            "correctAnswers": self.correct_answers,
            "timeSpent": self.time_spent,
            "passed": self.passed,
            "incorrectAnswers": [
                {
                    "question": {k: v for k, v in item.question.items() if k != "answers"},
                    "selectedAnswer": item.selected_answer,
                    "correctAnswer": item.correct_answer,
                    "explanation": item.explanation,
                }
                for item in self.incorrect_answers
            ],
        }


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def score_attempt(
    topic: Mapping[str, Any],
    answers: Sequence[Mapping[str, Any]],
    time_spent: int = 0,
) -> QuizResult:
    """Score one attempt. Unanswered questions count as incorrect."""
    questions = topic.get("questions") or []
    selected = {a["questionId"]: a.get("answerId") for a in answers}

    correct = 0
    incorrect = []
    for question in questions:
        options = question.get("answers") or []
        correct_answer = next((o for o in options if o.get("isCorrect")), None)
        chosen_id = selected.get(question["id"])
        chosen = next((o for o in options if o.get("id") == chosen_id), None)

        if chosen is not None and correct_answer is not None and chosen["id"] == correct_answer["id"]:
            correct += 1
        else:
            incorrect.append(IncorrectAnswer(
                question=dict(question),
                selected_answer=chosen,
                correct_answer=correct_answer,
                explanation=question.get("explanation") or "",
            ))

    total = len(questions)
    score = _round_half_up(correct / total * 100) if total else 0
    required = topic.get("requiredScore")
    if required is None:
        required = DEFAULT_REQUIRED_SCORE
    return QuizResult(
        score=score,
        total_questions=total,
        correct_answers=correct,
        time_spent=time_spent,
        passed=total > 0 and score >= required,
        incorrect_answers=incorrect,
    )
