# tests/test_api.py
"""
Tests for the ConvoCore facade, using an in-memory provider.
"""

from typing import Any, Dict, List, Optional

import pytest

from convocore import ConvoCore
from convocore.exceptions import ConfigError, InvalidArgumentType, ProviderNotConfigured
from convocore.models import (
    ErrorCode,
    GenerationResult,
    Message,
    ModelDescriptor,
    ModelPage,
    Part,
    ProviderErrorDetail,
    StreamUpdate,
    TokenCountResult,
)
from convocore.providers import GeminiProvider
from convocore.providers.base import BaseProvider
from convocore.sessions import MultiSessionStore, SingleSessionStore


class FakeProvider(BaseProvider):
    """Records calls and returns canned results."""

    default_model = "fake-default"

    def __init__(self, config: Optional[Dict[str, Any]] = None, log_raw_payloads: bool = False):
        super().__init__(config or {}, log_raw_payloads)
        self.calls: List[tuple] = []
        self.pages: List[ModelPage] = []
        self.closed = False

    def get_name(self) -> str:
        return "fake"

    async def list_models(self, page_size=50, page_token=None):
        self.calls.append(("list_models", page_size, page_token))
        return self.pages.pop(0)

    async def count_tokens(self, payload, model, settings=None, cancel_event=None):
        self.calls.append(("count_tokens", list(payload), model, settings))
        return TokenCountResult(total_tokens=len(payload))

    async def generate_content(self, payload, model, settings=None, cancel_event=None, stream_callback=None):
        self.calls.append(("generate_content", list(payload), model, settings))
        if stream_callback is not None:
            stream_callback(StreamUpdate(done=True))
        return GenerationResult(contents=[Message(role="model", parts=[Part(text="ok")])])

    @property
    def error_codes(self):
        return {"STOP": ErrorCode(text="Stopped.", hide=True), 404: "Not Found", "X": {"text": "Mapped", "hide": 1}}

    async def close(self):
        self.closed = True


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def core(provider):
    core = ConvoCore(provider=provider)
    core.store.start_session("chat", selected=True)
    return core


class TestConstruction:
    """Wiring of the facade."""

    def test_defaults(self):
        """Default config gives a multi-session store and no provider."""
        core = ConvoCore()
        assert isinstance(core.store, MultiSessionStore)
        assert core.provider is None
        assert core.store.notifier is core.notifier

    def test_single_session_from_config(self):
        """sessions.single_session selects the single-session store."""
        core = ConvoCore({"sessions": {"single_session": True}})
        assert isinstance(core.store, SingleSessionStore)
        assert isinstance(ConvoCore(single_session=True).store, SingleSessionStore)

    def test_default_provider_created(self):
        """providers.default creates the named adapter."""
        core = ConvoCore({"providers": {"default": "gemini", "gemini": {"api_key": "k", "timeout": 5}}})
        assert isinstance(core.provider, GeminiProvider)
        assert core.provider.api_key == "k"

    def test_unknown_provider(self):
        """Unknown provider names are configuration errors."""
        with pytest.raises(ConfigError):
            ConvoCore({"providers": {"default": "nope"}})

    def test_max_listeners_forwarded(self):
        """The notifier uses the configured listener limit."""
        assert ConvoCore({"sessions": {"max_listeners": 3}}).notifier.get_max_listeners() == 3

    def test_internal_channel(self, core):
        """The internal channel sees store mutations."""
        internal = core.notifier.acquire_internal_channel()
        seen = []
        internal.on("setTemperature", lambda value, sid: seen.append((value, sid)))
        core.store.set_temperature(0.3)
        assert seen == [(0.3, "chat")]


class TestNetworkOperations:
    """Delegation to the provider."""

    @pytest.mark.asyncio
    async def test_requires_provider(self):
        """Network operations without a provider raise."""
        core = ConvoCore()
        with pytest.raises(ProviderNotConfigured):
            await core.generate_content([Message(role="user", parts=[Part(text="x")])], model="m")
        with pytest.raises(ProviderNotConfigured):
            await core.get_models()

    @pytest.mark.asyncio
    async def test_get_models_inserts_new_only(self, core, provider):
        """Listed models are inserted; known ids are left out of the returned page."""
        core.models.insert({"id": "known"})
        provider.pages.append(ModelPage(
            models=[ModelDescriptor(id="known"), ModelDescriptor(id="fresh", index=1)],
            next_page_token="p2",
        ))
        page = await core.get_models()

        assert [m.id for m in page.models] == ["fresh"]
        assert core.models.next_page_token == "p2"
        assert core.models.exists("fresh")
        assert provider.calls[0] == ("list_models", 50, None)

    @pytest.mark.asyncio
    async def test_get_models_error_page(self, core, provider):
        """An error page is returned untouched and nothing is inserted."""
        provider.pages.append(ModelPage(error=ProviderErrorDetail(code=403, message="denied")))
        page = await core.get_models(page_size=10, page_token="t")
        assert page.error.code == 403
        assert len(core.models) == 0
        assert provider.calls[0] == ("list_models", 10, "t")

    @pytest.mark.asyncio
    async def test_default_payload_from_session(self, core, provider):
        """Without a payload the session's instruction and history are sent."""
        core.store.set_system_instruction("Be brief.")
        core.store.append_entry(Message(role="user", parts=[Part(text="hi")]))
        core.store.set_model("session-model")
        core.store.set_temperature(0.1)

        result = await core.count_tokens()
        _, payload, model, settings = provider.calls[0]
        assert result.total_tokens == 2
        assert payload[0].role == "system" and payload[0].text == "Be brief."
        assert payload[1].text == "hi"
        assert model == "session-model"
        assert settings.temperature == 0.1

    @pytest.mark.asyncio
    async def test_model_falls_back_to_provider_default(self, core, provider):
        """The provider default model is used when neither argument nor session has one."""
        await core.generate_content()
        assert provider.calls[0][2] == "fake-default"

    @pytest.mark.asyncio
    async def test_stream_callback_forwarded(self, core, provider):
        """The stream callback reaches the provider; the result is not stored."""
        updates = []
        result = await core.generate_content(model="m", stream_callback=updates.append)
        assert updates == [StreamUpdate(done=True)]
        assert result.contents[0].text == "ok"
        assert core.store.get_last_index() == -1

    @pytest.mark.asyncio
    async def test_unresolvable_model(self, core, provider):
        """No model anywhere is an argument error."""
        provider.default_model = None
        with pytest.raises(InvalidArgumentType):
            await core.generate_content()

    @pytest.mark.asyncio
    async def test_context_manager_closes_provider(self, provider):
        """Leaving the async context closes the provider."""
        async with ConvoCore(provider=provider):
            pass
        assert provider.closed


class TestErrorCodes:
    """get_error_code lookups."""

    def test_lookups(self, core):
        """ErrorCode, plain string, mapping and numeric-string entries resolve."""
        assert core.get_error_code("STOP") == ErrorCode(text="Stopped.", hide=True)
        assert core.get_error_code(404) == ErrorCode(text="Not Found")
        assert core.get_error_code("404") == ErrorCode(text="Not Found")
        assert core.get_error_code("X") == ErrorCode(text="Mapped")
        assert core.get_error_code("missing") is None

    def test_without_provider(self):
        """No provider, no codes."""
        assert ConvoCore().get_error_code("STOP") is None


class TestDestroy:
    """Teardown."""

    def test_destroy(self, core):
        """destroy clears sessions, listeners and the catalog."""
        core.models.insert({"id": "m"})
        core.notifier.on("setModel", lambda *a: None)
        core.destroy()
        assert core.store.session_ids() == []
        assert len(core.models) == 0
        assert core.notifier.listener_count("setModel") == 0
