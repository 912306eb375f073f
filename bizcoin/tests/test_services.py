"""Tests for bizcoin.services — the service container."""

import httpx
import pytest

from bizcoin.cache import keys
from bizcoin.cache.policy import DEFAULT_QUERY_CONFIG, resolve_profile
from bizcoin.hooks.token_storage import FileTokenStorage, InMemoryTokenStorage
from bizcoin.services import create_services


def _transport(seen=None) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(200, json={"id": "s1", "tokens": 3})

    return httpx.MockTransport(handler)


class TestCreateServices:

    @pytest.mark.asyncio
    async def test_without_classroom_no_operations(self, make_settings) -> None:
        services = create_services(make_settings(), transport=_transport())
        assert services.tokens is None
        assert services.time_tracking is None
        assert services.assignments is None
        await services.aclose()

    @pytest.mark.asyncio
    async def test_operations_share_one_client(self, make_settings) -> None:
        services = create_services(make_settings(), transport=_transport(), classroom_id="c1")
        assert services.tokens.classroom_id == "c1"
        assert services.assignments.classroom_id == "c1"
        await services.aclose()

    @pytest.mark.asyncio
    async def test_separate_containers_do_not_share_cache(self, make_settings) -> None:
        first = create_services(make_settings(), transport=_transport())
        second = create_services(make_settings(), transport=_transport())
        await first.client.read(keys.student("s1"))
        assert second.client.peek(keys.student("s1")) is None
        await first.aclose()
        await second.aclose()

    @pytest.mark.asyncio
    async def test_reads_go_to_base_url_with_token(self, make_settings) -> None:
        seen = []
        services = create_services(
            make_settings(api_base_url="http://bizcoin.test"),
            token_storage=InMemoryTokenStorage("tok"),
            transport=_transport(seen),
        )
        assert (await services.client.read(keys.student("s1")))["tokens"] == 3
        assert str(seen[0].url) == "http://bizcoin.test/api/students/s1"
        assert seen[0].headers["authorization"] == "Bearer tok"
        await services.aclose()

    @pytest.mark.asyncio
    async def test_aclose_drops_cache(self, make_settings) -> None:
        services = create_services(make_settings(), transport=_transport())
        await services.client.read(keys.student("s1"))
        await services.aclose()
        assert services.client.keys() == []

    def test_default_config_from_profile(self, make_settings) -> None:
        services = create_services(make_settings(cache_profile="stable"), transport=_transport())
        services.client.write(keys.student("s1"), lambda old: {"id": "s1"})
        assert services.client.get_entry(keys.student("s1")).config == resolve_profile("stable")

    def test_default_config_without_profile(self, make_settings) -> None:
        services = create_services(make_settings(), transport=_transport())
        services.client.write(keys.student("s1"), lambda old: {"id": "s1"})
        assert services.client.get_entry(keys.student("s1")).config == DEFAULT_QUERY_CONFIG

    def test_token_path_selects_file_storage(self, make_settings, tmp_path) -> None:
        services = create_services(
            make_settings(token_path=str(tmp_path / "token")), transport=_transport()
        )
        assert isinstance(services.remote.token_storage, FileTokenStorage)

    def test_default_storage_in_memory(self, make_settings) -> None:
        services = create_services(make_settings(), transport=_transport())
        assert isinstance(services.remote.token_storage, InMemoryTokenStorage)
