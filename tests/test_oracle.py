import json

import httpx
import pytest

from mailtrust.classification import HTTPClassificationOracle, parse_oracle_reply
from mailtrust.classification.oracle import message_body, strip_html
from mailtrust.errors import OracleError
from mailtrust.models import Message


def _message(**kwargs):
    defaults = {"id": "m1", "user_id": "u1", "from_address": "boss@corp.example", "subject": "Q3 plan"}
    defaults.update(kwargs)
    return Message(**defaults)


def test_parse_reply_extracts_embedded_json():
    reply = 'Sure! ```json\n{"category": "Work", "priority": 9, "confidence": 0.8, "summary": "plan"}\n```'
    parsed = parse_oracle_reply(reply)
    assert parsed.category == "work"
    assert parsed.priority == 5
    assert parsed.confidence == 0.8
    assert parsed.summary == "plan"
    assert parsed.key_entities == {"people": [], "dates": [], "amounts": [], "tasks": []}


def test_parse_reply_defaults_and_unknown_category():
    parsed = parse_oracle_reply('{"category": "bananas", "confidence": 0}')
    assert parsed.category == "uncategorized"
    assert parsed.confidence == 0.5
    assert parsed.priority == 3


def test_parse_reply_rejects_garbage():
    with pytest.raises(OracleError):
        parse_oracle_reply("no json here")
    with pytest.raises(OracleError):
        parse_oracle_reply("{not: valid}")


def test_message_body_prefers_text_and_strips_html():
    assert message_body(_message(body_text="plain")) == "plain"
    html = "<style>p{}</style><p>Hello <b>there</b></p><script>x()</script>"
    assert message_body(_message(body_html=html)) == "Hello there"
    assert len(strip_html("<p>" + "a" * 6000 + "</p>")) == 5000


@pytest.mark.asyncio
async def test_classify_posts_message_and_parses_reply():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("Authorization")
        seen["payload"] = json.loads(request.content)
        return httpx.Response(200, text='{"category": "work", "confidence": 0.9, "needs_reply": true}')

    oracle = HTTPClassificationOracle(
        "https://oracle.example/classify",
        api_key="secret",
        model="small",
        transport=httpx.MockTransport(handler),
    )
    try:
        result = await oracle.classify(_message(body_text="Please review"))
    finally:
        await oracle.close()

    assert result.category == "work"
    assert result.needs_reply is True
    assert seen["auth"] == "Bearer secret"
    assert seen["payload"] == {
        "from_address": "boss@corp.example",
        "from_name": "",
        "subject": "Q3 plan",
        "body": "Please review",
        "model": "small",
    }


@pytest.mark.asyncio
async def test_http_error_status_raises_oracle_error():
    oracle = HTTPClassificationOracle(
        "https://oracle.example/classify",
        transport=httpx.MockTransport(lambda request: httpx.Response(503)),
    )
    try:
        with pytest.raises(OracleError, match="HTTP 503"):
            await oracle.classify(_message())
    finally:
        await oracle.close()


@pytest.mark.asyncio
async def test_timeout_raises_oracle_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    oracle = HTTPClassificationOracle("https://oracle.example/classify", transport=httpx.MockTransport(handler))
    try:
        with pytest.raises(OracleError, match="timed out"):
            await oracle.classify(_message())
    finally:
        await oracle.close()
