import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

import pytest

from conversation_state import Seller
from services.catalog_client import CatalogSubmitter, InMemoryCatalogSubmitter
from services.draft_repository import InMemoryDraftRepository
from services.field_extractor import ExtractorConfig, FieldExtractor
from services.identity_store import InMemoryIdentityStore
from services.photo_classifier import PhotoAnalysis, PhotoClassifier
from services.photo_intake import PhotoIntakePipeline
from services.photo_storage import PhotoStorage
from services.session_manager import SessionManager
from services.transcriber import Transcriber
from utils.error_handling import PhotoError, SubmissionError, TranscriptionError
from workflow import ConversationEngine, WorkflowInput, WorkflowResult, run_workflow

PHONE_A = "+15551230001"
PHONE_B = "+15551230002"
SELLER_EMAIL = "amna@example.com"

DESIGNERS = ("sana safinaz", "maria b", "elan", "khaadi")
ITEM_TYPES = ("3-piece", "kurta", "lehnga", "suit")
CONDITIONS = ("new with tags", "like new", "gently used")
SIZES = ("xs", "small", "medium", "large", "xl")


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> None:
        self.now += timedelta(**kwargs)


class KeywordExtractor(FieldExtractor):
    """Deterministic stand-in for the LLM: picks known words out of the text."""

    def __init__(self) -> None:
        self.calls: List[str] = []
        self.scripted: Dict[str, Dict[str, Any]] = {}
        self.before_return: Optional[Callable[[str], Awaitable[None]]] = None

    async def extract(self, text: str, known_fields: Dict[str, Any], config: Optional[ExtractorConfig] = None) -> Dict[str, Any]:
        self.calls.append(text)
        if text in self.scripted:
            result = dict(self.scripted[text])
        else:
            result = self._parse(text)
        if self.before_return is not None:
            await self.before_return(text)
        return result

    @staticmethod
    def _parse(text: str) -> Dict[str, Any]:
        lowered = text.lower()
        out: Dict[str, Any] = {}
        for name in DESIGNERS:
            if name in lowered:
                out["designer"] = name.title()
        for name in ITEM_TYPES:
            if name in lowered:
                out["item_type"] = name
        for name in CONDITIONS:
            if name in lowered:
                out["condition"] = name
        words = re.findall(r"[a-z]+", lowered)
        for name in SIZES:
            if name in words:
                out["size"] = name
        price = re.search(r"\$(\d+)", text)
        if price:
            out["asking_price"] = int(price.group(1))
        return out


class FakeClassifier(PhotoClassifier):
    """``not-clothing`` in the ref rejects it, ``tag`` marks a brand tag, ``broken`` raises."""

    async def analyze(self, photo_ref: str) -> PhotoAnalysis:
        if "broken" in photo_ref:
            raise RuntimeError("vision model unavailable")
        return PhotoAnalysis(
            is_clothing="not-clothing" not in photo_ref,
            has_tag="tag" in photo_ref,
        )


class FakeStorage(PhotoStorage):
    """Refs containing ``fail`` fail to upload."""

    def __init__(self) -> None:
        self.stored: List[str] = []

    async def store(self, photo_ref: str, draft_id: str) -> str:
        if "fail" in photo_ref:
            raise PhotoError("upload failed", photo_ref=photo_ref)
        url = f"https://cdn.test/{draft_id}/{photo_ref}"
        self.stored.append(url)
        return url


class FakeTranscriber(Transcriber):
    """Scripted voice notes; unknown urls fail to transcribe."""

    def __init__(self) -> None:
        self.transcripts: Dict[str, str] = {}
        self.calls: List[str] = []

    async def transcribe(self, media_url: str) -> str:
        self.calls.append(media_url)
        if media_url not in self.transcripts:
            raise TranscriptionError(f"no speech in {media_url}")
        return self.transcripts[media_url]


class FailingSubmitter(CatalogSubmitter):
    def __init__(self) -> None:
        self.calls = 0

    async def submit(self, draft_fields: Dict[str, Any], photo_refs: List[str], draft_id: str, seller: Seller) -> str:
        self.calls += 1
        raise SubmissionError("catalog is down")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def identity() -> InMemoryIdentityStore:
    return InMemoryIdentityStore()


@pytest.fixture
def drafts() -> InMemoryDraftRepository:
    return InMemoryDraftRepository()


@pytest.fixture
def extractor() -> KeywordExtractor:
    return KeywordExtractor()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def catalog() -> InMemoryCatalogSubmitter:
    return InMemoryCatalogSubmitter()


@pytest.fixture
def transcriber() -> FakeTranscriber:
    return FakeTranscriber()


@pytest.fixture
def sessions(identity, clock) -> SessionManager:
    return SessionManager(identity, clock=clock)


@pytest.fixture
def intake(drafts, storage) -> PhotoIntakePipeline:
    return PhotoIntakePipeline(drafts, FakeClassifier(), storage)


@pytest.fixture
def engine(sessions, drafts, extractor, intake, catalog, transcriber) -> ConversationEngine:
    return ConversationEngine(
        sessions=sessions,
        drafts=drafts,
        extractor=extractor,
        intake=intake,
        catalog=catalog,
        transcriber=transcriber,
    )


@pytest.fixture
def seller(identity) -> Seller:
    return identity.add_seller(SELLER_EMAIL, phone=PHONE_A, name="Amna")


@pytest.fixture
def send(engine) -> Callable[..., Awaitable[WorkflowResult]]:
    async def _send(phone: str, text: str = "", media: Optional[List[str]] = None,
                    message_id: Optional[str] = None, audio: Optional[List[str]] = None) -> WorkflowResult:
        return await run_workflow(
            engine,
            WorkflowInput(
                phone=phone,
                text=text,
                media=media or [],
                audio=audio or [],
                message_id=message_id or uuid.uuid4().hex,
            ),
        )
    return _send


@pytest.fixture
async def signed_in(send, seller):
    """Phone A signed in as the seller, sitting at the menu."""
    result = await send(PHONE_A, "hi")
    assert result.state == "authorized"
    return seller
