from .article_validator import ArticleStructureChecker, validate_article
from .text_diagnostics import TextDiagnostics, comprehensive_text_analysis

__all__ = [
    "ArticleStructureChecker",
    "validate_article",
    "TextDiagnostics",
    "comprehensive_text_analysis",
]
