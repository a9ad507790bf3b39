import re
from dataclasses import dataclass
from typing import Dict, List

from articlebot.core.utils import count_words
from articlebot.models.content import ValidationReport
from articlebot.quality_checks.text_diagnostics import comprehensive_text_analysis


@dataclass
class StructureIssue:
    """A rule the draft does not satisfy."""

    code: str
    message: str


class ArticleStructureChecker:
    """Checks a Markdown draft for length and mandatory sections."""

    REQUIRED_MARKERS = [
        ("missing_title", r"^#\s+\S", "Missing H1 title"),
        ("missing_category", r"\*\*Catégorie\s*:\*\*", "Missing category line (**Catégorie:**)"),
        ("missing_summary", r"^##\s+(?:Résumé|Resume|Summary)\b", "Missing summary section (## Résumé)"),
        ("missing_faq", r"^##\s+.*\bFAQ\b", "Missing FAQ section (## FAQ)"),
        ("missing_conclusion", r"^##\s+Conclusion\b", "Missing conclusion section (## Conclusion)"),
        ("missing_cta", r"\*\*Call-to-Action\s*:?\*\*", "Missing call-to-action (**Call-to-Action:**)"),
    ]

    def __init__(self, content: str, min_words: int, max_words: int, min_sections: int):
        self.content = content or ""
        self.min_words = min_words
        self.max_words = max_words
        self.min_sections = min_sections
        self.issues: List[StructureIssue] = []

    def stats(self) -> Dict:
        analysis = comprehensive_text_analysis(self.content)
        return {
            "word_count": count_words(self.content),
            "h2_count": len(re.findall(r"^##\s+\S", self.content, re.MULTILINE)),
            "citation_count": len(re.findall(r"\[\d+\]", self.content)),
            "has_faq": bool(re.search(r"^##\s+.*\bFAQ\b", self.content, re.MULTILINE | re.IGNORECASE)),
            "has_cta": bool(re.search(r"\*\*Call-to-Action\s*:?\*\*", self.content, re.IGNORECASE)),
            "readability": analysis["readability"],
            "leakage_markers": analysis["leakage_markers"],
        }

    def check(self) -> ValidationReport:
        stats = self.stats()
        self.issues = []

        word_count = stats["word_count"]
        if word_count < self.min_words:
            self.issues.append(StructureIssue(
                "too_short", f"Article too short: {word_count} words (minimum {self.min_words})"
            ))
        elif word_count > self.max_words:
            self.issues.append(StructureIssue(
                "too_long", f"Article too long: {word_count} words (maximum {self.max_words})"
            ))

        for code, pattern, message in self.REQUIRED_MARKERS:
            if not re.search(pattern, self.content, re.MULTILINE | re.IGNORECASE):
                self.issues.append(StructureIssue(code, message))

        if stats["h2_count"] < self.min_sections:
            self.issues.append(StructureIssue(
                "few_sections",
                f"Not enough major sections: {stats['h2_count']} (minimum {self.min_sections})",
            ))

        if stats["leakage_markers"]:
            quoted = ", ".join(f"'{marker}'" for marker in stats["leakage_markers"])
            self.issues.append(StructureIssue(
                "model_leakage", f"Model commentary left in the draft: {quoted}"
            ))

        return ValidationReport(
            passed=not self.issues,
            violations=[issue.message for issue in self.issues],
            codes=[issue.code for issue in self.issues],
            stats=stats,
        )


def validate_article(content: str, min_words: int, max_words: int, min_sections: int) -> ValidationReport:
    """Main entry point for article validation."""
    return ArticleStructureChecker(content, min_words, max_words, min_sections).check()
