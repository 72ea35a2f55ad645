from fastapi import FastAPI
from fastapi.testclient import TestClient

from concierge.routers import tasks
from concierge.services.assistant_tasks import (
    UNAVAILABLE_MENU_TITLE,
    AssistantTaskService,
    parse_json_reply,
)


MENU_REPLY = """```json
{"title": "Seaside Feast", "description": "Crab first, abalone after.",
 "items": [{"productId": "A", "quantity": 2}, {"productId": "B", "quantity": 1},
           {"productId": "GHOST", "quantity": 5}]}
```"""


def test_parse_json_reply_tolerates_fences():
    assert parse_json_reply('```json\n{"a": 1}\n```') == {"a": 1}
    assert parse_json_reply("not json") is None
    assert parse_json_reply("") is None


async def test_banquet_total_is_computed_from_catalogue(fake_client, catalog):
    client = fake_client([MENU_REPLY])
    service = AssistantTaskService(client)

    menu = await service.plan_banquet(catalog, people=4, budget=8000, preference="steamed")

    assert menu.title == "Seaside Feast"
    assert [item.product_id for item in menu.items] == ["A", "B", "GHOST"]
    assert menu.total_price == 2580 * 2 + 1580
    assert client.calls[0]["system_instruction"] is None
    assert "4 diners" in client.calls[0]["transcript"][0].content


async def test_banquet_falls_back_when_provider_degrades(fake_client, catalog, degraded_result):
    service = AssistantTaskService(fake_client([degraded_result]))

    menu = await service.plan_banquet(catalog, people=2, budget=500, preference="")

    assert menu.title == UNAVAILABLE_MENU_TITLE
    assert menu.items == []
    assert menu.total_price == 0


async def test_banquet_falls_back_on_unparseable_reply(fake_client, catalog):
    service = AssistantTaskService(fake_client(["Sorry, I cannot help with that."]))

    menu = await service.plan_banquet(catalog, people=2, budget=500, preference="")

    assert menu.title == UNAVAILABLE_MENU_TITLE


async def test_smart_search_keeps_only_known_ids(fake_client, catalog):
    service = AssistantTaskService(fake_client(['{"matchedIds": ["B", "nope", "A"]}']))

    assert await service.smart_search("something to braise", catalog) == ["B", "A"]


async def test_parse_address_ignores_unknown_fields(fake_client):
    reply = '{"name": "Li Wei", "phone": "13800000000", "city": "Shanghai", "zip": "200000"}'
    service = AssistantTaskService(fake_client([reply]))

    draft = await service.parse_address("Li Wei 13800000000 Shanghai")

    assert draft.name == "Li Wei"
    assert draft.city == "Shanghai"
    assert draft.province == ""


async def test_draft_review_returns_empty_when_degraded(fake_client, degraded_result):
    service = AssistantTaskService(fake_client([degraded_result]))

    assert await service.draft_review("King Crab", ["sweet"], "excited") == ""


def _client(service, catalog):
    app = FastAPI()
    app.include_router(tasks.router, prefix="/api/tasks")
    app.state.task_service = service
    app.state.default_catalog = catalog
    return TestClient(app)


def test_banquet_endpoint_uses_default_catalogue(fake_client, catalog):
    client = _client(AssistantTaskService(fake_client([MENU_REPLY])), catalog)

    response = client.post("/api/tasks/banquet", json={"people": 4, "budget": 8000})

    assert response.status_code == 200
    body = response.json()
    assert body["totalPrice"] == 2580 * 2 + 1580
    assert body["items"][0] == {"productId": "A", "quantity": 2}


def test_search_endpoint(fake_client, catalog):
    client = _client(AssistantTaskService(fake_client(['{"matchedIds": ["A"]}'])), catalog)

    response = client.post("/api/tasks/search", json={"query": "crab"})

    assert response.json() == {"matched_ids": ["A"]}


def test_review_endpoint_is_503_when_unavailable(fake_client, catalog, degraded_result):
    client = _client(AssistantTaskService(fake_client([degraded_result])), catalog)

    response = client.post("/api/tasks/review", json={"productName": "King Crab"})

    assert response.status_code == 503


def test_review_endpoint_returns_text(fake_client, catalog):
    client = _client(AssistantTaskService(fake_client(["So sweet! 🦀"])), catalog)

    response = client.post("/api/tasks/review", json={"productName": "King Crab", "tags": ["sweet"]})

    assert response.json() == {"review": "So sweet! 🦀"}
