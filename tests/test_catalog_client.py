import json

import httpx
import pytest

from conversation_state import Seller
from services.catalog_client import HttpCatalogSubmitter
from utils.error_handling import SubmissionError

SELLER = Seller(id="seller-1", email="amna@example.com", name="Amna")
FIELDS = {"designer": "Elan", "item_type": "lehnga", "size": "medium", "condition": "like new", "asking_price": 120}


def catalog_at(handler) -> HttpCatalogSubmitter:
    return HttpCatalogSubmitter("https://catalog.test/", api_key="k-1", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_submit_posts_listing_with_idempotency_key():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"id": "cat-1"})

    catalog_id = await catalog_at(handler).submit(FIELDS, ["https://cdn.test/a.jpg"], "draft-9", SELLER)

    assert catalog_id == "cat-1"
    request = seen[0]
    assert str(request.url) == "https://catalog.test/listings"
    assert request.headers["Idempotency-Key"] == "draft-9"
    assert request.headers["Authorization"] == "Bearer k-1"
    body = json.loads(request.content)
    assert body["title"] == "Elan lehnga"
    assert body["images"] == ["https://cdn.test/a.jpg"]
    assert body["status"] == "pending_review"


@pytest.mark.asyncio
async def test_html_body_on_success_status_is_a_submission_error():
    submitter = catalog_at(lambda request: httpx.Response(200, text="<html>gateway ok</html>"))

    with pytest.raises(SubmissionError):
        await submitter.submit(FIELDS, [], "draft-9", SELLER)


@pytest.mark.asyncio
async def test_response_without_id_is_a_submission_error():
    submitter = catalog_at(lambda request: httpx.Response(200, json={"status": "queued"}))

    with pytest.raises(SubmissionError):
        await submitter.submit(FIELDS, [], "draft-9", SELLER)


@pytest.mark.asyncio
async def test_server_error_is_a_submission_error():
    submitter = catalog_at(lambda request: httpx.Response(503, text="maintenance"))

    with pytest.raises(SubmissionError, match="503"):
        await submitter.submit(FIELDS, [], "draft-9", SELLER)
