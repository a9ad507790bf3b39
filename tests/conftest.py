import json
from datetime import datetime, timedelta, timezone

import pytest

from articlebot.clients.interfaces import ImagePort, PortResponse, TextPort

FIXED_NOW = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)

FILLER_WORDS = (
    "les entreprises françaises investissent davantage dans les outils "
    "d'automatisation afin de réduire leurs coûts opérationnels et gagner en agilité"
).split()


class StubTextPort(TextPort):
    """Text port replaying canned responses; the last one repeats."""

    def __init__(self, responses=None, name="stub", configured=True):
        self.responses = list(responses or [""])
        self.name = name
        self.configured = configured
        self.calls = []

    @property
    def provider_name(self) -> str:
        return self.name

    def is_configured(self) -> bool:
        return self.configured

    async def generate(self, prompt, *, temperature=None, max_tokens=None, response_format=None, system=None):
        self.calls.append(
            {"prompt": prompt, "temperature": temperature, "response_format": response_format}
        )
        item = self.responses[min(len(self.calls), len(self.responses)) - 1]
        if isinstance(item, Exception):
            raise item
        if callable(item):
            item = item(prompt)
        return PortResponse(text=item, usage={"total_tokens": 42}, model=self.name)


class StubImagePort(ImagePort):
    def __init__(self, results=None, configured=True):
        self.results = list(results or [b"\x89PNG fake"])
        self.configured = configured
        self.prompts = []

    @property
    def provider_name(self) -> str:
        return "stub-image"

    def is_configured(self) -> bool:
        return self.configured

    async def create_image(self, prompt, aspect_ratio="16:9"):
        self.prompts.append(prompt)
        item = self.results[min(len(self.prompts), len(self.results)) - 1]
        if isinstance(item, Exception):
            raise item
        return item


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def build_article(
    word_count=1300,
    title="Les PME françaises accélèrent leur adoption de l'intelligence artificielle",
    category="Innovation & Produits",
    sections=4,
    summary="Les PME françaises multiplient les projets d'IA générative. Les budgets progressent de 30% en un an.",
    include_faq=True,
    include_cta=True,
):
    """Well-formed Markdown article padded to exactly ``word_count`` words."""
    parts = [f"# {title}", f"**Catégorie:** {category}", "## Résumé", summary]
    for i in range(1, sections + 1):
        parts.append(f"## Analyse {i}")
        parts.append("{filler}" if i == 1 else f"Point clé numéro {i} pour les décideurs.")
    if include_faq:
        parts += ["## FAQ", "**Combien ça coûte ?** Cela dépend du projet."]
    parts += ["## Conclusion", "L'adoption va continuer."]
    if include_cta:
        parts.append("**Call-to-Action:** Évaluez vos processus dès maintenant.")

    skeleton = "\n\n".join(parts)
    missing = word_count - len(skeleton.replace("{filler}", "").split())
    words = [FILLER_WORDS[i % len(FILLER_WORDS)] for i in range(max(missing, 0))]
    sentences = [" ".join(words[i : i + 12]) + "." for i in range(0, len(words), 12)]
    return skeleton.replace("{filler}", " ".join(sentences))


def raw_topic(title, hours_ago=6, sources=2, category="Innovation & Produits", now=FIXED_NOW):
    return {
        "titre": title,
        "resume": f"Résumé de {title}",
        "impact": "Impact direct sur les entreprises",
        "categorie": category,
        "publishDate": (now - timedelta(hours=hours_ago)).isoformat(),
        "sources": [
            {"titre": f"Source {i}", "url": f"https://news{i}.example.com/{i}", "date": "2026-10-19"}
            for i in range(1, sources + 1)
        ],
    }


FRESH_TITLES = [
    "Mistral lève des fonds pour son modèle souverain",
    "La BPI finance les startups de robotique agricole",
    "Carrefour déploie des caisses autonomes intelligentes",
    "Doctolib intègre un assistant vocal médical",
    "Orange signe un partenariat cloud européen",
]


@pytest.fixture
def fixed_now():
    return FIXED_NOW


@pytest.fixture
def settings(tmp_path, monkeypatch):
    """Settings isolated from the environment and writing under tmp_path."""
    from articlebot.models.settings import Settings

    for key in (
        "PERPLEXITY_API_KEY",
        "OPENAI_API_KEY",
        "GEMINI_API_KEY",
        "REVE_API_KEY",
        "WEBFLOW_API_KEY",
        "WEBFLOW_COLLECTION_ID",
        "USE_INFISICAL",
    ):
        monkeypatch.delenv(key, raising=False)

    return Settings(
        _env_file=None,
        perplexity_api_key="test_key",
        openai_api_key="test_key",
        retry_base_delay=2.0,
        articles_dir=str(tmp_path / "articles"),
        data_dir=str(tmp_path / ".data"),
        database_path=str(tmp_path / ".data" / "articles.db"),
    )


@pytest.fixture
def article_factory():
    return build_article


@pytest.fixture
def well_formed_article():
    return build_article(1300)


@pytest.fixture
def topic_factory():
    return raw_topic


@pytest.fixture
def fresh_titles():
    return list(FRESH_TITLES)


@pytest.fixture
def fresh_topics_json():
    return json.dumps({"topics": [raw_topic(t) for t in FRESH_TITLES]}, ensure_ascii=False)


@pytest.fixture
def make_topic(fixed_now):
    """Build a validated Topic directly."""
    from articlebot.models.content import Source, Topic

    def _make(title="Mistral lève des fonds", hours_ago=6, sources=2, **kwargs):
        return Topic(
            title=title,
            summary=kwargs.pop("summary", "Un résumé."),
            impact=kwargs.pop("impact", "Un impact."),
            category=kwargs.pop("category", "Innovation & Produits"),
            sources=[
                Source(title=f"Source {i}", url=f"https://news{i}.example.com/{i}", date="2026-10-19")
                for i in range(1, sources + 1)
            ],
            publish_date=fixed_now - timedelta(hours=hours_ago) if hours_ago is not None else None,
            source_count=sources,
            **kwargs,
        )

    return _make


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def stub_text_port():
    return StubTextPort


@pytest.fixture
def stub_image_port():
    return StubImagePort
