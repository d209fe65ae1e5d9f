# quality checks for generated topic pages
import logging
import re
from difflib import SequenceMatcher
from typing import List

from .models import NotesPackage, QualityCheckResult, QualityChecks, TopicPage

logger = logging.getLogger(__name__)

REQUIRED_SECTIONS = [
    "topic_title",
    "definition",
    "explanation",
    "example_detailed",
    "example_short",
    "questions",
]

# weight of each check in the overall 0-10 score
CHECK_WEIGHTS = {
    "presence_check": 0.3,
    "length_check": 0.2,
    "syllabus_alignment": 0.2,
    "answer_check": 0.15,
    "safety_check": 0.05,
    "readability_score": 0.1,
}

UNSAFE_WORDS = [
    "hate", "violence", "discrimination", "inappropriate",
    "offensive", "harmful", "dangerous", "illegal",
]

VALID_DIFFICULTIES = ("easy", "medium", "hard")

MIN_READABILITY = 6.0
TARGET_GRADE = 7.5
ALIGNMENT_THRESHOLD = 0.7
MAX_ANSWER_SIMILARITY = 0.8


def string_similarity(first: str, second: str) -> float:
    """Similarity between 0 and 1, 1 for identical strings"""
    if not first and not second:
        return 1.0
    return SequenceMatcher(None, first, second).ratio()


def count_words(text: str) -> int:
    return len(text.split())


def count_syllables(word: str) -> int:
    word = word.lower()
    if len(word) <= 3:
        return 1

    count = 0
    previous_was_vowel = False
    for char in word:
        is_vowel = char in "aeiouy"
        if is_vowel and not previous_was_vowel:
            count += 1
        previous_was_vowel = is_vowel

    # silent e
    if word.endswith("e"):
        count -= 1

    return max(1, count)


class QualityChecker:
    """Scores topic pages on a 0-10 scale.

    A page passes when every boolean check holds and the readability score
    is at least 6.
    """

    def check_topic_page(self, page: TopicPage, expected_topic: str) -> QualityCheckResult:
        checks = QualityChecks(
            presence_check=self.check_presence(page),
            length_check=self.check_length(page),
            syllabus_alignment=self.check_syllabus_alignment(page, expected_topic),
            answer_check=self.check_answers(page),
            safety_check=self.check_safety(page),
            readability_score=self.calculate_readability_score(page.explanation),
        )

        passed = self._all_passed(checks)
        score = self.calculate_overall_score(checks)

        result = QualityCheckResult(
            passed=passed,
            score=score,
            checks=checks,
            missing_sections=self.get_missing_sections(page),
            issues=self.get_issues(checks),
        )

        logger.info(f"Quality check for {page.topic_title}: {'PASSED' if passed else 'FAILED'} (Score: {score:.2f})")
        return result

    def check_notes_package(self, package: NotesPackage) -> QualityCheckResult:
        results = [self.check_topic_page(page, page.topic_title) for page in package.topic_pages()]
        return self.combine_results(results)

    def combine_results(self, results: List[QualityCheckResult]) -> QualityCheckResult:
        """Aggregate per-topic results into a single package result"""
        count = len(results)
        overall = sum(result.score for result in results) / count if count else 0.0
        all_passed = all(result.passed for result in results)

        combined = QualityCheckResult(
            passed=all_passed,
            score=overall,
            checks=QualityChecks(
                presence_check=all(r.checks.presence_check for r in results),
                length_check=all(r.checks.length_check for r in results),
                syllabus_alignment=all(r.checks.syllabus_alignment for r in results),
                answer_check=all(r.checks.answer_check for r in results),
                safety_check=all(r.checks.safety_check for r in results),
                readability_score=sum(r.checks.readability_score for r in results) / count if count else 0.0,
            ),
            issues=[issue for result in results for issue in result.issues],
        )

        logger.info(f"Package quality check: {'PASSED' if all_passed else 'FAILED'} (Score: {overall:.2f})")
        return combined

    def check_presence(self, page: TopicPage) -> bool:
        if self.get_missing_sections(page):
            return False

        if len(page.questions) != 3:
            return False

        return all(question.difficulty and question.q and question.a for question in page.questions)

    def check_length(self, page: TopicPage) -> bool:
        if not 10 <= count_words(page.definition) <= 150:
            return False
        if count_words(page.explanation) < 150:
            return False
        if not 30 <= count_words(page.example_detailed) <= 200:
            return False
        if not 5 <= count_words(page.example_short) <= 30:
            return False
        return True

    def check_syllabus_alignment(self, page: TopicPage, expected_topic: str) -> bool:
        similarity = string_similarity(page.topic_title.lower(), expected_topic.lower())
        return similarity >= ALIGNMENT_THRESHOLD

    def check_answers(self, page: TopicPage) -> bool:
        for question in page.questions:
            if len(question.a.strip()) < 10:
                return False
            # an answer that just repeats the question is not an answer
            if string_similarity(question.q.lower(), question.a.lower()) > MAX_ANSWER_SIMILARITY:
                return False
            if question.difficulty not in VALID_DIFFICULTIES:
                return False
        return True

    def check_safety(self, page: TopicPage) -> bool:
        parts = [page.definition, page.explanation, page.example_detailed, page.example_short]
        parts.extend(f"{question.q} {question.a}" for question in page.questions)
        content = " ".join(parts).lower()

        return not any(word in content for word in UNSAFE_WORDS)

    def calculate_readability_score(self, text: str) -> float:
        """Flesch-Kincaid grade level mapped to 0-10, best at grade 7.5"""
        sentences = [s for s in re.split(r"[.!?]+", text) if s.strip()]
        words = text.split()

        if not sentences or not words:
            return 0.0

        words_per_sentence = len(words) / len(sentences)
        syllables_per_word = sum(count_syllables(word) for word in words) / len(words)

        grade_level = 0.39 * words_per_sentence + 11.8 * syllables_per_word - 15.59
        score = max(0.0, 10 - abs(grade_level - TARGET_GRADE))
        return min(10.0, score)

    def calculate_overall_score(self, checks: QualityChecks) -> float:
        values = checks.model_dump()
        score = 0.0
        for name, weight in CHECK_WEIGHTS.items():
            value = values[name]
            if isinstance(value, bool):
                value = 10.0 if value else 0.0
            score += value * weight
        return score / sum(CHECK_WEIGHTS.values())

    def get_missing_sections(self, page: TopicPage) -> List[str]:
        missing = []
        for field in REQUIRED_SECTIONS:
            value = getattr(page, field, None)
            if not value or (isinstance(value, str) and not value.strip()):
                missing.append(field)
        return missing

    def get_issues(self, checks: QualityChecks) -> List[str]:
        issues = []
        if not checks.presence_check:
            issues.append("Missing required sections")
        if not checks.length_check:
            issues.append("Content length does not meet requirements")
        if not checks.syllabus_alignment:
            issues.append("Topic does not align with syllabus")
        if not checks.answer_check:
            issues.append("Question answers are inadequate")
        if not checks.safety_check:
            issues.append("Content contains inappropriate material")
        if checks.readability_score < MIN_READABILITY:
            issues.append("Content readability is not suitable for target grade level")
        return issues

    def _all_passed(self, checks: QualityChecks) -> bool:
        return (
            checks.presence_check
            and checks.length_check
            and checks.syllabus_alignment
            and checks.answer_check
            and checks.safety_check
            and checks.readability_score >= MIN_READABILITY
        )
