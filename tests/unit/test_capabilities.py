"""Tests for the reference step capabilities."""

import json
from types import SimpleNamespace

import httpx
import pytest

from stepweave.capabilities import (
    AIProcessorCapability,
    DataSourceCapability,
    DeliveryCapability,
    TransformCapability,
    build_registry,
)
from stepweave.capabilities.ai import build_prompt
from stepweave.config import AIConfig, DataSourceConfig, StepweaveConfig, TransformConfig
from stepweave.contracts import CapabilityError, StepKind


def test_build_registry_covers_every_kind():
    registry = build_registry(StepweaveConfig())
    assert registry.missing_kinds() == []
    assert isinstance(registry.get(StepKind.DELIVERY), DeliveryCapability)


# -- data source -------------------------------------------------------------


@pytest.mark.asyncio
async def test_mock_data_source_uses_table_from_input():
    capability = DataSourceCapability()
    output = await capability.execute({"backend": "mock", "host": "x"}, {"table": "orders"})

    assert output["source"] == "mock"
    assert output["row_count"] == 5
    assert output["rows"][0]["product"] == "Laptop"
    assert output["query"] == "SELECT * FROM orders"


@pytest.mark.asyncio
async def test_mock_data_source_defaults_to_customers_and_rejects_unknown_table():
    capability = DataSourceCapability()
    output = await capability.execute({"backend": "mock"}, None)
    assert output["rows"][0]["name"] == "John Doe"

    with pytest.raises(CapabilityError, match="Table not found: invoices"):
        await capability.execute({"backend": "mock", "table": "invoices"}, None)


@pytest.mark.asyncio
async def test_data_source_mock_mode_overrides_backend():
    capability = DataSourceCapability(DataSourceConfig(mock_mode=True))
    output = await capability.execute({"backend": "postgresql", "host": "db"}, None)
    assert output["source"] == "mock"


@pytest.mark.asyncio
async def test_data_source_unsupported_backend():
    with pytest.raises(CapabilityError, match="Unsupported data source backend: mongodb"):
        await DataSourceCapability().execute({"backend": "mongodb"}, None)


# -- transform ---------------------------------------------------------------


@pytest.mark.asyncio
async def test_transform_runs_script_with_parameters_and_utils():
    capability = TransformCapability()
    rows = [
        {"name": "a", "status": "premium", "total_spent": 10},
        {"name": "b", "status": "active", "total_spent": 5},
        {"name": "c", "status": "premium", "total_spent": 20},
    ]
    script = """
premium = [row for row in data if row["status"] == parameters["status"]]
return {
    "names": [row["name"] for row in utils.sort_by(premium, "total_spent", descending=True)],
    "spent": utils.total(premium, "total_spent"),
    "groups": sorted(utils.group_by(data, "status")),
}
"""
    output = await capability.execute(
        {"operation": "aggregate", "script": script, "parameters": {"status": "premium"}},
        rows,
    )

    assert output["result"] == {"names": ["c", "a"], "spent": 30.0, "groups": ["active", "premium"]}
    assert output["metadata"]["operation"] == "aggregate"
    assert output["metadata"]["input_size"] > 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "script",
    [
        "import os\nreturn os.listdir('.')",
        "return data.__class__",
        "return open('/etc/passwd').read()",
        "return eval('1 + 1')",
    ],
)
async def test_transform_rejects_unsafe_scripts(script):
    with pytest.raises(CapabilityError, match="unsafe pattern"):
        await TransformCapability().execute({"operation": "map", "script": script}, [])


FRAME_WALK = """
def rows():
    yield source.gi_frame.f_back
source = rows()
caller = next(source)
found = caller.f_globals['builtins']
{read}
"""


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "read",
    [
        "return found.open(parameters['path']).read()",
        "reader = found.open\nreturn reader(parameters['path']).read()",
    ],
)
async def test_transform_rejects_frame_walks_out_of_the_script(tmp_path, read):
    secret = tmp_path / "secret.txt"
    secret.write_text("TOP-SECRET")
    config = {
        "operation": "map",
        "script": FRAME_WALK.format(read=read),
        "parameters": {"path": str(secret)},
    }
    with pytest.raises(CapabilityError, match="unsafe pattern"):
        await TransformCapability().execute(config, [])


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "script",
    [
        "reader = open\nreturn reader",
        "return '{0.gi_code}'.format(data)",
        "return utils.total.__globals__",
        "try:\n    data['x']\nexcept KeyError as e:\n    return e.__traceback__.tb_frame",
    ],
)
async def test_transform_rejects_unsafe_names_even_when_not_called(script):
    with pytest.raises(CapabilityError, match="unsafe pattern"):
        await TransformCapability().execute({"operation": "map", "script": script}, {})


@pytest.mark.asyncio
async def test_transform_rejects_long_scripts_and_bad_operations():
    capability = TransformCapability(TransformConfig(max_script_length=10))
    with pytest.raises(CapabilityError, match="too long"):
        await capability.execute({"operation": "map", "script": "return data + data"}, [])
    with pytest.raises(CapabilityError, match="Invalid operation: pivot"):
        await capability.execute({"operation": "pivot", "script": "return 1"}, [])


@pytest.mark.asyncio
async def test_transform_script_errors_are_reported():
    capability = TransformCapability()
    with pytest.raises(CapabilityError, match="Transform operation failed: KeyError"):
        await capability.execute({"operation": "map", "script": "return data['missing']"}, {})
    with pytest.raises(CapabilityError, match="Invalid transform script"):
        await capability.execute({"operation": "map", "script": "return ("}, {})


# -- AI processor ------------------------------------------------------------


def test_build_prompt_formats_query_rows():
    prompt = build_prompt("Summarise", {"rows": [{"id": 1}], "row_count": 1})
    assert prompt.startswith("Summarise\n\nDatabase Query Results (1 rows):")
    assert build_prompt("Go", None) == "Go"
    assert build_prompt("Go", {"result": "earlier"}).endswith("Previous Analysis Result:\nearlier")


@pytest.mark.asyncio
async def test_ai_mock_mode_returns_deterministic_analysis():
    capability = AIProcessorCapability(AIConfig(mock_mode=True))
    output = await capability.execute(
        {"model": "groq:llama-3.1-8b-instant", "prompt": "Summarise"},
        {"rows": [{"id": 1}, {"id": 2}]},
    )

    assert output["result"]["record_count"] == 2
    assert output["metadata"]["mock"] is True
    assert output["metadata"]["tokens_used"] == 0
    assert output["metadata"]["prompt"]["temperature"] == 0.7


class FakeAgent:
    def __init__(self, model, reply):
        self.model = model
        self.reply = reply
        self.calls = []

    async def run(self, prompt, model_settings=None):
        self.calls.append((prompt, model_settings))
        if isinstance(self.reply, Exception):
            raise self.reply
        return SimpleNamespace(
            output=self.reply,
            usage=lambda: SimpleNamespace(total_tokens=42),
        )


@pytest.mark.asyncio
async def test_ai_uses_agent_and_parses_json_output():
    agents = {}

    def factory(model):
        agents[model] = FakeAgent(model, json.dumps({"sentiment": "positive"}))
        return agents[model]

    capability = AIProcessorCapability(AIConfig(mock_mode=False), agent_factory=factory)
    config = {"model": "test-model", "prompt": "Classify", "temperature": 0.1, "max_tokens": 50}
    output = await capability.execute(config, "great product")
    await capability.execute(config, "again")

    assert output["result"] == {"sentiment": "positive"}
    assert output["metadata"]["tokens_used"] == 42
    assert list(agents) == ["test-model"]
    prompt, settings = agents["test-model"].calls[0]
    assert prompt == "Classify\n\ngreat product"
    assert settings == {"temperature": 0.1, "max_tokens": 50}


@pytest.mark.asyncio
async def test_ai_text_output_and_provider_failure():
    capability = AIProcessorCapability(
        AIConfig(mock_mode=False), agent_factory=lambda model: FakeAgent(model, "plain words")
    )
    output = await capability.execute({"model": "m", "prompt": "p"}, None)
    assert output["result"]["analysis"] == "plain words"
    assert output["result"]["type"] == "text"

    failing = AIProcessorCapability(
        AIConfig(mock_mode=False),
        agent_factory=lambda model: FakeAgent(model, RuntimeError("rate limited")),
    )
    with pytest.raises(CapabilityError, match="AI processing failed: rate limited"):
        await failing.execute({"model": "m", "prompt": "p"}, None)


def test_ai_mock_mode_follows_api_key(monkeypatch):
    monkeypatch.delenv("GROQ_API_KEY", raising=False)
    assert AIProcessorCapability(AIConfig()).mock_mode is True
    monkeypatch.setenv("GROQ_API_KEY", "key")
    assert AIProcessorCapability(AIConfig()).mock_mode is False


# -- delivery ----------------------------------------------------------------


@pytest.mark.asyncio
async def test_webhook_delivery_sends_payload():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"ok": True})

    capability = DeliveryCapability(transport=httpx.MockTransport(handler))
    output = await capability.execute(
        {
            "destination": "webhook",
            "webhook": {"url": "https://hooks.example.com/in", "method": "put", "headers": {"X-Token": "t"}},
        },
        {"rows": [1]},
    )

    assert output["result"]["status_code"] == 200
    assert output["result"]["response"] == {"ok": True}
    request = requests[0]
    assert request.method == "PUT"
    assert request.headers["X-Token"] == "t"
    assert request.headers["User-Agent"] == "stepweave-workflow/1.0"
    assert json.loads(request.content)["data"] == {"rows": [1]}


@pytest.mark.asyncio
async def test_chat_delivery_normalises_channel():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200, text="ok")

    capability = DeliveryCapability(transport=httpx.MockTransport(handler))
    output = await capability.execute(
        {"destination": "chat", "chat": {"webhook": "https://chat.example.com/hook", "channel": "alerts"}},
        {"result": "All good"},
    )

    assert output["result"]["channel"] == "#alerts"
    assert seen == [{"text": "All good", "channel": "#alerts"}]


@pytest.mark.asyncio
async def test_delivery_http_errors_become_capability_errors():
    def server_error(request):
        return httpx.Response(503)

    def unreachable(request):
        raise httpx.ConnectError("connection refused", request=request)

    config = {"destination": "webhook", "webhook": {"url": "https://hooks.example.com/in"}}
    with pytest.raises(CapabilityError, match="HTTP 503"):
        await DeliveryCapability(transport=httpx.MockTransport(server_error)).execute(config, {})
    with pytest.raises(CapabilityError, match="ConnectError"):
        await DeliveryCapability(transport=httpx.MockTransport(unreachable)).execute(config, {})


@pytest.mark.asyncio
async def test_email_delivery_is_simulated():
    output = await DeliveryCapability().execute(
        {"destination": "email", "email": {"to": "ops@example.com", "subject": "Report"}},
        [1, 2],
    )
    assert output["result"]["recipients"] == ["ops@example.com"]
    assert output["result"]["message_id"].endswith("@stepweave>")

    with pytest.raises(CapabilityError, match="Unsupported delivery destination: fax"):
        await DeliveryCapability().execute({"destination": "fax"}, None)
