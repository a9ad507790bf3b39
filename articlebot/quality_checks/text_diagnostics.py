import re
from typing import Dict, List

import textstat

LEAKAGE_PATTERNS = [
    r"as an ai",
    r"en tant qu'(?:ia|intelligence artificielle)",
    r"i cannot fulfill",
    r"je ne peux pas (?:répondre|fournir|créer)",
    r"voici (?:l'article|votre article)",
    r"here(?:'s| is) (?:the|your) article",
]


class TextDiagnostics:
    """Readability and generation-artifact analysis for article text."""

    def __init__(self, text: str, lang: str = "fr"):
        self.text = text
        self.lang = lang

    def readability_analysis(self) -> Dict[str, float]:
        """Compute readability metrics."""
        if not self.text.strip():
            return {"flesch_reading_ease": 0.0, "flesch_kincaid_grade": 0.0}
        textstat.set_lang(self.lang)
        return {
            "flesch_reading_ease": float(textstat.flesch_reading_ease(self.text)),
            "flesch_kincaid_grade": float(textstat.flesch_kincaid_grade(self.text)),
        }

    def leakage_markers(self) -> List[str]:
        """Phrases that betray the model talking about itself or the request."""
        found = []
        for pattern in LEAKAGE_PATTERNS:
            match = re.search(pattern, self.text, re.IGNORECASE)
            if match:
                found.append(match.group(0))
        return found


def comprehensive_text_analysis(text: str, lang: str = "fr") -> Dict:
    """Perform text diagnostics."""
    diagnostics = TextDiagnostics(text, lang)
    return {
        "readability": diagnostics.readability_analysis(),
        "leakage_markers": diagnostics.leakage_markers(),
    }
