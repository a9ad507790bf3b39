"""Prompt templates for every generation call.

Templates are plain functions of their inputs; nothing here calls a
service or reads configuration.
"""

import json
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from articlebot.models.content import Topic

TOPIC_EXAMPLE = {
    "topics": [
        {
            "titre": "Titre clair et accrocheur",
            "resume": "3-4 phrases avec données clés (montants, dates, %)",
            "impact": "Pourquoi c'est important maintenant pour les entreprises",
            "categorie": "UNE des catégories autorisées",
            "publishDate": "AAAA-MM-JJT10:00:00Z",
            "sources": [
                {
                    "titre": "Nom de la source",
                    "url": "https://...",
                    "date": "AAAA-MM-JJ",
                    "typeSource": "media/report/blog/official",
                }
            ],
        }
    ]
}

DOSSIER_FIELDS = {
    "angleEditorial": "Angle unique orienté décideurs",
    "questionsCentrales": ["Question 1", "Question 2", "Question 3"],
    "sourcesComplementaires": [
        {"titre": "Source", "url": "https://...", "date": "AAAA-MM-JJ", "typeSource": "report"}
    ],
    "donneesChiffrees": {"montants": "...", "pourcentages": "...", "previsions": "..."},
    "citationsExperts": [{"auteur": "Nom, fonction", "citation": "...", "source": "..."}],
    "contexteHistorique": "Chronologie et antécédents",
    "comparaisonsInternationales": "UE / USA / Asie",
    "analyseConcurrentielle": "Acteurs et positions",
    "enjeuxControverses": "Risques, limites, critiques",
    "casUsageExemples": [{"entreprise": "...", "resultat": "..."}],
    "perspectivesFutur": {"court_terme": "...", "moyen_terme": "...", "long_terme": "..."},
    "syntheseRecherche": {"pointsCles": ["..."], "messagesPrincipaux": ["..."]},
}


def discovery_prompt(
    query: str,
    categories: List[str],
    freshness_hours: int,
    now: datetime,
    avoid_titles: Optional[Iterable[str]] = None,
) -> str:
    """Ask the discovery port for fresh topics as JSON."""
    window_start = (now - timedelta(hours=freshness_hours)).date().isoformat()
    avoid = list(avoid_titles or [])[-20:]
    avoid_block = ""
    if avoid:
        avoid_block = "\nSUJETS DÉJÀ TRAITÉS (à éviter):\n" + "\n".join(f"- {t}" for t in avoid) + "\n"

    return f"""Tu es un agent de veille. Thème de recherche: {query}

Priorité géographique: France et Europe. Chaque sujet doit avoir un angle économique, financier ou organisationnel clair.

DATE COURANTE: {now.isoformat()}
FENÊTRE: {window_start} → {now.date().isoformat()} ({freshness_hours} heures maximum)
CATÉGORIES AUTORISÉES: {", ".join(categories)}
{avoid_block}
Chaque sujet doit citer au moins deux sources datées.

RENVOIE UNIQUEMENT DU JSON STRICT AU FORMAT SUIVANT:
{json.dumps(TOPIC_EXAMPLE, ensure_ascii=False, indent=2)}
"""


def research_prompt(topic: Topic) -> str:
    """Ask the research port for an editorial dossier on one topic."""
    sources = "\n".join(f"- {s.title}: {s.url}" for s in topic.sources) or "N/A"
    return f"""Tu es un documentaliste senior. Constitue un dossier éditorial complet sur ce sujet.

SUJET: {topic.title}
CATÉGORIE: {topic.category}
RÉSUMÉ: {topic.summary}
IMPACT: {topic.impact}

SOURCES INITIALES:
{sources}

Exigences: sources complémentaires différentes des sources initiales, données chiffrées concrètes, citations attribuées, comparaisons internationales factuelles.

RENVOIE UNIQUEMENT DU JSON STRICT AU FORMAT SUIVANT:
{json.dumps({"dossierEditorial": DOSSIER_FIELDS}, ensure_ascii=False, indent=2)}
"""


def _dossier_block(topic: Topic) -> str:
    dossier = topic.enrichment
    if not dossier:
        return "Aucun dossier de recherche: appuie-toi sur le résumé et les sources."

    lines = []
    if dossier.get("angleEditorial"):
        lines.append(f"ANGLE ÉDITORIAL: {dossier['angleEditorial']}")
    questions = dossier.get("questionsCentrales") or []
    if questions:
        lines.append("QUESTIONS CENTRALES:")
        lines.extend(f"{i}. {q}" for i, q in enumerate(questions, 1))
    for key, label in (
        ("donneesChiffrees", "DONNÉES CHIFFRÉES"),
        ("citationsExperts", "CITATIONS D'EXPERTS"),
        ("contexteHistorique", "CONTEXTE HISTORIQUE"),
        ("comparaisonsInternationales", "COMPARAISONS"),
        ("analyseConcurrentielle", "ANALYSE CONCURRENTIELLE"),
        ("enjeuxControverses", "CONTROVERSES"),
        ("perspectivesFutur", "PERSPECTIVES"),
    ):
        if dossier.get(key):
            value = dossier[key]
            if not isinstance(value, str):
                value = json.dumps(value, ensure_ascii=False)
            lines.append(f"{label}: {value}")
    return "\n".join(lines)


def draft_prompt(topic: Topic, min_words: int, max_words: int, min_sections: int) -> str:
    """Ask the drafting port for the full Markdown article."""
    sources = "\n".join(
        f"[{i}] {s.title}: {s.url}" + (f" ({s.date})" if s.date else "")
        for i, s in enumerate(topic.sources, 1)
    )
    return f"""Tu es un journaliste économique qui écrit pour des décideurs non techniques.
Style pédagogique et précis, chiffres sourcés, citations numérotées [n].

SUJET: {topic.title}
CATÉGORIE: {topic.category}
RÉSUMÉ: {topic.summary}
IMPACT: {topic.impact}

{_dossier_block(topic)}

SOURCES:
{sources or "N/A"}

STRUCTURE OBLIGATOIRE (Markdown):
# Titre
**Catégorie:** {topic.category}
## Résumé
(un paragraphe de synthèse)
au moins {min_sections} sections ## d'analyse
## FAQ
(au moins 4 questions/réponses)
## Conclusion
**Call-to-Action:** une phrase d'action pour le lecteur

LONGUEUR: entre {min_words} et {max_words} mots. Ne mets pas de section Sources, elle est ajoutée automatiquement.
"""


def expansion_instructions(
    previous_word_count: int, min_words: int, violations: List[str]
) -> str:
    """Corrective addendum for a draft that came back too short."""
    missing = max(min_words - previous_word_count, 0)
    issues = "\n".join(f"- {v}" for v in violations)
    return f"""

CORRECTION OBLIGATOIRE:
La version précédente ne faisait que {previous_word_count} mots, il en manque au moins {missing}.
Problèmes relevés:
{issues}

Pour atteindre au moins {min_words} mots:
- ajoute deux paragraphes d'analyse chiffrée dans chaque section ##
- ajoute une section ## consacrée aux cas d'usage concrets
- porte la FAQ à au moins 6 questions avec des réponses développées
- conserve toute la structure obligatoire
"""


def json_conversion_prompt(raw: str, schema_hint: str) -> str:
    """Ask a secondary port to turn free text into strict JSON."""
    return f"""Convert the following content into strict JSON matching this schema:
{schema_hint}

Rules: return ONLY the JSON object, no code fences, no commentary. Keep every fact present in the content; do not invent values.

CONTENT:
{raw[:20000]}
"""


# Keyword groups mapped to an editorial photo scene, checked in order.
VISUAL_SCENES = [
    (
        ("énergie", "energie", "energy", "climat", "climate", "solaire", "solar", "renouvelable"),
        "Engineer in a French energy facility reviewing an AI monitoring dashboard, utility branding visible",
    ),
    (
        ("financement", "levée", "investissement", "funding", "million", "milliard"),
        "Venture capital team in a Parisian office discussing an investment, funding figures on a glass wall",
    ),
    (
        ("partenariat", "collaboration", "partner"),
        "Two executives shaking hands in a French corporate headquarters, agreement documents on the table",
    ),
    (
        ("régulation", "regulation", "loi", "conformité", "compliance", "éthique"),
        "Compliance officer reviewing AI regulation paperwork with EU flag in the background",
    ),
    (
        ("api", "plateforme", "platform", "outil"),
        "Engineer presenting an API dashboard on a laptop in a French tech company",
    ),
    (
        ("marketing", "vente", "sales", "client"),
        "Marketing team reviewing campaign analytics on a large screen in a modern open space",
    ),
    (
        ("gpt", "llm", "modèle", "model", "intelligence artificielle"),
        "AI researcher explaining model outputs to a colleague in front of a dashboard",
    ),
]

DEFAULT_SCENE = (
    "Business professionals in a modern French office interacting with technology, "
    "Haussmann architecture visible through the window"
)


def visual_scene(title: str, summary: str = "") -> str:
    """Pick a photographic scene from keywords of the title and summary."""
    text = f"{title} {summary}".lower()
    for keywords, scene in VISUAL_SCENES:
        if any(keyword in text for keyword in keywords):
            return scene
    return DEFAULT_SCENE


def thumbnail_prompt(title: str, summary: str = "") -> str:
    return (
        f"Editorial documentary photograph: {visual_scene(title, summary)}, "
        "natural daylight, authentic shadows, rich colors, sharp details, "
        "French or European signature element visible, cinematic editorial style."
    )


def simplified_thumbnail_prompt(title: str, summary: str = "", aspect_ratio: str = "16:9") -> str:
    return (
        "Documentary editorial photograph, realistic, natural lighting.\n"
        f"TITLE: {title}\n"
        f"SCENE: {visual_scene(title, summary)}\n"
        "STYLE: authentic photojournalism, candid expressions.\n"
        f"Format: {aspect_ratio}. Single frame, no collage, no text."
    )
