"""
Local persistence for articles and daily pipeline snapshots.

Articles are indexed in SQLite and written as Markdown files with YAML
front-matter. Discovery and ranking results are kept as dated JSON files so
the CLI stages can be run one at a time.
"""

import json
import logging
import sqlite3
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from articlebot.clients.interfaces import PersistenceGateway
from articlebot.models.content import Article, SaveResult, ScoredTopic, ScoringReport, Topic

logger = logging.getLogger(__name__)


class ArticleStore(PersistenceGateway):
    """SQLite-backed persistence gateway."""

    def __init__(self, db_path: str = ".data/articles.db", articles_dir: str = "articles"):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(exist_ok=True, parents=True)
        self.articles_dir = Path(articles_dir)
        self._init_database()

    @classmethod
    def from_settings(cls, settings) -> "ArticleStore":
        return cls(settings.database_path, settings.articles_dir)

    def _init_database(self):
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS articles (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    slug TEXT UNIQUE NOT NULL,
                    title TEXT NOT NULL,
                    category TEXT NOT NULL,
                    filename TEXT NOT NULL,
                    word_count INTEGER DEFAULT 0,
                    reading_time INTEGER DEFAULT 1,
                    passed_validation INTEGER DEFAULT 0,
                    thumbnail_path TEXT,
                    created_at TIMESTAMP NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_created_at ON articles(created_at)")
            conn.commit()

    def save(self, article: Article) -> SaveResult:
        """Insert or update the row for ``article.slug``."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO articles
                    (slug, title, category, filename, word_count, reading_time,
                     passed_validation, thumbnail_path, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(slug) DO UPDATE SET
                    title = excluded.title,
                    category = excluded.category,
                    filename = excluded.filename,
                    word_count = excluded.word_count,
                    reading_time = excluded.reading_time,
                    passed_validation = excluded.passed_validation,
                    thumbnail_path = excluded.thumbnail_path
                """,
                (
                    article.slug,
                    article.title,
                    article.category,
                    article.filename,
                    article.word_count,
                    article.reading_time,
                    int(article.validation.passed),
                    article.thumbnail_path,
                    article.created_at.isoformat(),
                ),
            )
            conn.commit()
            row_id = conn.execute(
                "SELECT id FROM articles WHERE slug = ?", (article.slug,)
            ).fetchone()[0]

        asset_url = Path(article.thumbnail_path).resolve().as_uri() if article.thumbnail_path else None
        logger.debug(f"Stored article {article.slug} as #{row_id}")
        return SaveResult(id=row_id, slug=article.slug, canonical_asset_url=asset_url)

    def exists(self, slug: str) -> bool:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute("SELECT 1 FROM articles WHERE slug = ?", (slug,)).fetchone()
        return row is not None

    def list_past_titles(self) -> List[str]:
        """Stored titles followed by the stems of Markdown files on disk."""
        with sqlite3.connect(self.db_path) as conn:
            titles = [row[0] for row in conn.execute("SELECT title FROM articles ORDER BY id")]
        if self.articles_dir.exists():
            titles.extend(path.stem for path in sorted(self.articles_dir.glob("*.md")))
        return titles

    def list_articles(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        query = "SELECT * FROM articles ORDER BY created_at DESC, id DESC"
        params: Tuple = ()
        if limit:
            query += " LIMIT ?"
            params = (limit,)
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            return [dict(row) for row in conn.execute(query, params)]


class SnapshotStore:
    """Dated JSON snapshots plus the Markdown article folder."""

    def __init__(self, data_dir: str = ".data", articles_dir: str = "articles"):
        self.data_dir = Path(data_dir)
        self.articles_dir = Path(articles_dir)

    @classmethod
    def from_settings(cls, settings) -> "SnapshotStore":
        return cls(settings.data_dir, settings.articles_dir)

    def _snapshot_path(self, kind: str, day: date) -> Path:
        return self.data_dir / f"{kind}-{day.isoformat()}.json"

    def _write(self, path: Path, payload: Dict[str, Any]) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, ensure_ascii=False, indent=2, default=str), encoding="utf-8")
        logger.info(f"💾 Snapshot saved: {path}")
        return path

    def _latest(self, kind: str) -> Optional[Path]:
        if not self.data_dir.exists():
            return None
        candidates = sorted(self.data_dir.glob(f"{kind}-*.json"))
        return candidates[-1] if candidates else None

    def has_snapshot(self, kind: str, day: Optional[date] = None) -> bool:
        return self._snapshot_path(kind, day or date.today()).exists()

    def save_discovered(self, topics: List[Topic], day: Optional[date] = None) -> Path:
        payload = {
            "generated_at": datetime.now().isoformat(),
            "topics": [t.model_dump(mode="json") for t in topics],
        }
        return self._write(self._snapshot_path("discovered", day or date.today()), payload)

    def save_ranked(
        self, ranked: List[ScoredTopic], report: ScoringReport, day: Optional[date] = None
    ) -> Path:
        payload = {
            "generated_at": datetime.now().isoformat(),
            "report": report.model_dump(mode="json"),
            "ranked": [s.model_dump(mode="json") for s in ranked],
        }
        return self._write(self._snapshot_path("ranked", day or date.today()), payload)

    def load_latest_discovered(self) -> List[Topic]:
        path = self._latest("discovered")
        if path is None:
            return []
        data = json.loads(path.read_text(encoding="utf-8"))
        return [Topic.model_validate(t) for t in data.get("topics", [])]

    def load_latest_ranked(self) -> Tuple[List[ScoredTopic], Optional[ScoringReport]]:
        path = self._latest("ranked")
        if path is None:
            return [], None
        data = json.loads(path.read_text(encoding="utf-8"))
        ranked = [ScoredTopic.model_validate(s) for s in data.get("ranked", [])]
        report = ScoringReport.model_validate(data["report"]) if data.get("report") else None
        return ranked, report

    def write_article(self, article: Article) -> Path:
        """Write the article as Markdown with YAML front-matter."""
        front_matter = dict(article.front_matter)
        if article.thumbnail_path:
            front_matter["thumbnail"] = article.thumbnail_path
        header = yaml.safe_dump(front_matter, allow_unicode=True, sort_keys=False)

        path = self.articles_dir / article.filename
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(f"---\n{header}---\n\n{article.body}\n", encoding="utf-8")
        logger.info(f"📝 Article written: {path}")
        return path

    def list_article_files(self) -> List[Path]:
        if not self.articles_dir.exists():
            return []
        return sorted(self.articles_dir.glob("*.md"), reverse=True)
