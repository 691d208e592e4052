import datetime as dt
import json

import httpx
import pytest

from app.models import REASON_MEDIA_USAGE, CreditTransaction, User
from app.services.credit_ledger import CreditLedger
from app.services.media_service import (
    MediaGenerationError,
    MediaKind,
    MediaService,
    ReplicateClient,
)
from app.settings import settings
from tests.utils import InMemoryRedis, jwt_auth_headers, make_session_factory, seed_user

BASE_URL = "https://replicate.test/v1"


async def _no_sleep(_: float) -> None:
    return None


class FakeReplicate:
    """Routes MockTransport requests to a scripted sequence of poll statuses."""

    def __init__(self, poll_statuses: list[dict], *, create_status: int = 201) -> None:
        self.poll_statuses = list(poll_statuses)
        self.create_status = create_status
        self.created: list[dict] = []
        self.polls = 0

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            self.created.append(json.loads(request.content))
            if self.create_status >= 400:
                return httpx.Response(self.create_status, json={"detail": "Invalid version"})
            return httpx.Response(
                self.create_status,
                json={"id": "pred-1", "status": "starting", "urls": {"get": f"{BASE_URL}/predictions/pred-1"}},
            )
        self.polls += 1
        return httpx.Response(200, json={"id": "pred-1", **self.poll_statuses.pop(0)})


@pytest.fixture()
def session_factory():
    return make_session_factory()


def _service(session_factory, http: httpx.AsyncClient, **overrides) -> MediaService:
    test_settings = settings.model_copy(update={"credit_lock_retry_delay_seconds": 0.001})
    replicate = ReplicateClient(
        http,
        api_key=overrides.pop("api_key", "r8_test"),
        base_url=BASE_URL,
        poll_interval_seconds=0,
        max_poll_attempts=overrides.pop("max_poll_attempts", 5),
        sleep=_no_sleep,
    )
    ledger = CreditLedger(session_factory=session_factory, redis=InMemoryRedis(), settings=test_settings)
    return MediaService(replicate=replicate, ledger=ledger, settings=test_settings)


def _seed(session_factory, balance: int = 100) -> User:
    with session_factory() as session:
        return seed_user(session, balance=balance, last_reset=dt.datetime.now(dt.UTC))


@pytest.mark.asyncio
async def test_image_generation_polls_and_debits(session_factory):
    fake = FakeReplicate(
        [
            {"status": "processing"},
            {"status": "succeeded", "output": ["https://cdn.test/cat.png"]},
        ]
    )
    user = _seed(session_factory)

    async with httpx.AsyncClient(transport=httpx.MockTransport(fake.handler)) as http:
        result = await _service(session_factory, http).generate(user.id, MediaKind.IMAGE, "a cat")

    assert result.url == "https://cdn.test/cat.png"
    assert result.prediction_id == "pred-1"
    assert result.cost == settings.image_generation_cost
    assert result.new_balance == 100 - settings.image_generation_cost
    assert result.warning is None
    assert fake.polls == 2
    [created] = fake.created
    assert created["version"] == settings.image_generation_model
    assert created["input"]["prompt"].startswith("a cat, high quality")
    assert created["input"]["aspect_ratio"] == "1:1"

    with session_factory() as session:
        [record] = session.query(CreditTransaction).all()
        assert record.reason == REASON_MEDIA_USAGE
        assert record.amount == -settings.image_generation_cost


@pytest.mark.asyncio
async def test_video_output_may_be_a_plain_string(session_factory):
    fake = FakeReplicate([{"status": "succeeded", "output": "https://cdn.test/clip.mp4"}])
    user = _seed(session_factory)

    async with httpx.AsyncClient(transport=httpx.MockTransport(fake.handler)) as http:
        result = await _service(session_factory, http).generate(user.id, MediaKind.VIDEO, "waves")

    assert result.url == "https://cdn.test/clip.mp4"
    assert result.cost == settings.video_generation_cost
    assert fake.created[0]["input"] == {"prompt": "waves" + ", cinematic, smooth motion, high quality, professional"}


@pytest.mark.asyncio
@pytest.mark.parametrize("prompt", [None, "", "   ", 42])
async def test_invalid_prompt(session_factory, prompt):
    fake = FakeReplicate([])
    user = _seed(session_factory)

    async with httpx.AsyncClient(transport=httpx.MockTransport(fake.handler)) as http:
        with pytest.raises(MediaGenerationError) as exc_info:
            await _service(session_factory, http).generate(user.id, MediaKind.IMAGE, prompt)

    assert exc_info.value.status_code == 400
    assert exc_info.value.code == "INVALID_PROMPT"
    assert fake.created == []


@pytest.mark.asyncio
async def test_insufficient_balance_skips_upstream(session_factory):
    fake = FakeReplicate([])
    user = _seed(session_factory, balance=settings.video_generation_cost - 1)

    async with httpx.AsyncClient(transport=httpx.MockTransport(fake.handler)) as http:
        with pytest.raises(MediaGenerationError) as exc_info:
            await _service(session_factory, http).generate(user.id, MediaKind.VIDEO, "waves")

    assert exc_info.value.status_code == 402
    assert exc_info.value.code == "INSUFFICIENT_BALANCE"
    assert fake.created == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("poll", "code"),
    [
        ({"status": "failed", "error": "NSFW content detected"}, "PREDICTION_FAILED"),
        ({"status": "canceled"}, "PREDICTION_CANCELED"),
        ({"status": "succeeded", "output": []}, "NO_OUTPUT"),
    ],
)
async def test_prediction_failures_are_not_billed(session_factory, poll, code):
    fake = FakeReplicate([poll])
    user = _seed(session_factory)

    async with httpx.AsyncClient(transport=httpx.MockTransport(fake.handler)) as http:
        with pytest.raises(MediaGenerationError) as exc_info:
            await _service(session_factory, http).generate(user.id, MediaKind.IMAGE, "a cat")

    assert exc_info.value.code == code
    with session_factory() as session:
        assert session.get(User, user.id).credit_balance == 100


@pytest.mark.asyncio
async def test_polling_gives_up_after_max_attempts(session_factory):
    fake = FakeReplicate([{"status": "processing"}] * 3)
    user = _seed(session_factory)

    async with httpx.AsyncClient(transport=httpx.MockTransport(fake.handler)) as http:
        with pytest.raises(MediaGenerationError) as exc_info:
            await _service(session_factory, http, max_poll_attempts=3).generate(
                user.id, MediaKind.IMAGE, "a cat"
            )

    assert exc_info.value.status_code == 408
    assert exc_info.value.code == "TIMEOUT"
    assert fake.polls == 3


@pytest.mark.asyncio
async def test_create_rejection_surfaces_detail(session_factory):
    fake = FakeReplicate([], create_status=422)
    user = _seed(session_factory)

    async with httpx.AsyncClient(transport=httpx.MockTransport(fake.handler)) as http:
        with pytest.raises(MediaGenerationError) as exc_info:
            await _service(session_factory, http).generate(user.id, MediaKind.IMAGE, "a cat")

    assert exc_info.value.status_code == 422
    assert exc_info.value.code == "GENERATION_FAILED"
    assert exc_info.value.message == "Invalid version"


@pytest.mark.asyncio
async def test_unreachable_upstream(session_factory):
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    user = _seed(session_factory)
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        with pytest.raises(MediaGenerationError) as exc_info:
            await _service(session_factory, http).generate(user.id, MediaKind.IMAGE, "a cat")

    assert exc_info.value.status_code == 502
    assert exc_info.value.code == "UPSTREAM_UNAVAILABLE"


@pytest.mark.asyncio
async def test_missing_api_key(session_factory):
    fake = FakeReplicate([])
    user = _seed(session_factory)

    async with httpx.AsyncClient(transport=httpx.MockTransport(fake.handler)) as http:
        with pytest.raises(MediaGenerationError) as exc_info:
            await _service(session_factory, http, api_key="").generate(user.id, MediaKind.IMAGE, "a cat")

    assert exc_info.value.code == "MISSING_API_KEY"
    assert fake.created == []


def test_media_route_maps_errors_to_json(client, db_session):
    user = seed_user(db_session, email="media@example.com", balance=0)

    resp = client.post(
        "/api/media/image",
        json={"prompt": "a cat"},
        headers=jwt_auth_headers(str(user.id)),
    )

    assert resp.status_code == 402
    assert resp.json()["code"] == "INSUFFICIENT_BALANCE"
