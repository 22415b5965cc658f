from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.routes.analyze import get_analyzer, get_dify_service
from app.services.analyzer import AnalyzerConfig, BillAnalyzer
from app.services.matcher import KeywordMatcher
from app.services.reference_table import ReferenceEntry, ReferenceTable, default_keyword_table


class FakeDify:
    """Stands in for the Dify client; records calls and replays canned outputs."""

    def __init__(self, outputs=None, email="Dear Billing Office, ..."):
        self.outputs = outputs if outputs is not None else {}
        self.email = email
        self.uploads = []
        self.email_calls = []

    async def upload_file(self, content, filename, content_type, user):
        self.uploads.append((filename, len(content), user))
        return "file-123"

    async def run_extraction(self, file_id, user, prompt=None):
        return self.outputs

    async def generate_email(self, analysis_data, system_prompt):
        self.email_calls.append((analysis_data, system_prompt))
        return self.email


@pytest.fixture()
def urinalysis_table() -> ReferenceTable:
    return ReferenceTable([
        ReferenceEntry(match_keywords=("urinalysis",), market_price=60,
                       max_acceptable=150, code="LAB-001"),
    ])


@pytest.fixture()
def analyzer(urinalysis_table) -> BillAnalyzer:
    return BillAnalyzer(KeywordMatcher(urinalysis_table))


@pytest.fixture()
def default_analyzer() -> BillAnalyzer:
    return BillAnalyzer(KeywordMatcher(default_keyword_table()), AnalyzerConfig())


@pytest.fixture()
def fake_dify() -> FakeDify:
    return FakeDify()


@pytest.fixture()
def client(default_analyzer, fake_dify):
    app.dependency_overrides[get_analyzer] = lambda: default_analyzer
    app.dependency_overrides[get_dify_service] = lambda: fake_dify
    yield TestClient(app)
    app.dependency_overrides.clear()


def mock_engine(*rows):
    """An Engine double whose connection returns `rows` from successive queries."""
    engine = MagicMock()
    context = engine.connect.return_value
    context.__exit__.return_value = False
    conn = context.__enter__.return_value
    conn.execute.return_value.mappings.return_value.first.side_effect = list(rows)
    return engine, conn


@pytest.fixture()
def make_engine():
    return mock_engine
