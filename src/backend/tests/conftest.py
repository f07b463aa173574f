import pytest

from forge.models.schemas import AnalysisOptions
from tests.fakes import FakeClaudeService, SleepRecorder

DOCUMENT = (
    "Remote work increases productivity by 40 percent. Every company that adopted it "
    "saw profits rise.\n\nTherefore all companies should mandate remote work immediately. "
    "Critics say collaboration suffers, but they are wrong."
)


@pytest.fixture
def document() -> str:
    return DOCUMENT


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def no_tools() -> AnalysisOptions:
    return AnalysisOptions(web_search=False, deep_research=False, grammar=False)


@pytest.fixture
def fake_service_factory():
    def _factory(handler=None) -> FakeClaudeService:
        return FakeClaudeService(handler)

    return _factory
