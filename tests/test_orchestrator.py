import logging

import httpx
import pytest

from conftest import HONDA_VIN, SUPRA_CHASSIS, UNKNOWN_WMI_VIN, FakeSource, nhtsa_payload
from vindecode.caching import cache_key
from vindecode.chain import SourceChain
from vindecode.errors import DecodeFailedError, MalformedIdentifierError, RemoteDecodeError
from vindecode.local_decoder import LocalVinDecoder
from vindecode.merger import MergeEngine
from vindecode.sources import LocalSource
from vinservice import logging_config
from vinservice.nhtsa import NhtsaClient
from vinservice.orchestrator import (
    ChainOrchestrator,
    LegacyOrchestrator,
    create_legacy_orchestrator,
    create_orchestrator,
)


def _client(handler):
    return NhtsaClient(transport=httpx.MockTransport(handler))


def _nhtsa_ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json=nhtsa_payload())


def _refused(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


# ── Extensible mode ─────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_extensible_decode_merges_and_caches(memory_cache):
    remote = FakeSource("nhtsa_api", 2, data={"make": "HONDA", "model": "Accord", "manufacturer": "AMERICAN HONDA"})
    chain = SourceChain([LocalSource(), remote])
    orchestrator = create_orchestrator(chain, MergeEngine(), cache=memory_cache, execution_strategy="collect_all")
    assert isinstance(orchestrator, ChainOrchestrator)

    record = await orchestrator.decode(HONDA_VIN)
    assert record.make == "HONDA"
    assert record.model == "Accord"
    assert record.year == "2003"
    assert record.sources == ["local", "nhtsa_api"]
    assert record.decoded_by == "nhtsa_api"
    assert not record.is_locally_decoded

    again = await orchestrator.decode(HONDA_VIN)
    assert again.make == "HONDA"
    assert remote.calls == [HONDA_VIN]
    assert await memory_cache.has(cache_key("vin_data", HONDA_VIN))


@pytest.mark.asyncio
async def test_extensible_skip_cache_runs_chain_again(memory_cache):
    remote = FakeSource("nhtsa_api", 1, data={"make": "HONDA"})
    orchestrator = create_orchestrator(SourceChain([remote]), MergeEngine(), cache=memory_cache)
    await orchestrator.decode(HONDA_VIN)
    await orchestrator.decode(HONDA_VIN, skip_cache=True)
    assert len(remote.calls) == 2


@pytest.mark.asyncio
async def test_extensible_total_failure_raises():
    chain = SourceChain([FakeSource("a", 1, error="down"), FakeSource("b", 2, error="also down")])
    orchestrator = create_orchestrator(chain, MergeEngine(), execution_strategy="collect_all")
    with pytest.raises(DecodeFailedError) as excinfo:
        await orchestrator.decode(HONDA_VIN)
    assert [r.source for r in excinfo.value.failures] == ["a", "b"]
    assert "down" in str(excinfo.value)


@pytest.mark.asyncio
async def test_extensible_no_applicable_source_raises():
    chain = SourceChain([FakeSource("vin_only", 1, data={"make": "X"}, handles=False)])
    with pytest.raises(DecodeFailedError):
        await create_orchestrator(chain, MergeEngine()).decode(SUPRA_CHASSIS)


@pytest.mark.asyncio
async def test_malformed_identifier_never_reaches_sources():
    source = FakeSource("a", 1, data={"make": "X"})
    orchestrator = create_orchestrator(SourceChain([source]), MergeEngine())
    with pytest.raises(MalformedIdentifierError):
        await orchestrator.decode("1HGCM82633A00435O")
    assert source.calls == []


@pytest.mark.asyncio
async def test_chain_mode_decodes_chassis_numbers_locally():
    remote = FakeSource("nhtsa_api", 2, data={"make": "X"}, handles=False)
    orchestrator = create_orchestrator(SourceChain([LocalSource(), remote]), MergeEngine())
    record = await orchestrator.decode(SUPRA_CHASSIS)
    assert record.make == "Toyota"
    assert record.model == "Supra"
    assert record.year is None
    assert record.is_locally_decoded
    assert remote.calls == []


@pytest.mark.asyncio
async def test_chain_mode_without_local_fallback_rejects_local_only_result():
    chain = SourceChain([LocalSource(), FakeSource("nhtsa_api", 2, error="down")])
    orchestrator = create_orchestrator(chain, MergeEngine(), execution_strategy="collect_all")
    orchestrator.set_local_fallback(False)
    with pytest.raises(DecodeFailedError):
        await orchestrator.decode(HONDA_VIN)


@pytest.mark.asyncio
async def test_force_refresh_requeries_locally_decoded_entry(memory_cache):
    remote = FakeSource("nhtsa_api", 2, data={"make": "HONDA"})
    orchestrator = create_orchestrator(SourceChain([LocalSource(), remote]), MergeEngine(), cache=memory_cache)

    local = await orchestrator.decode_locally(HONDA_VIN)
    assert local.is_locally_decoded
    cached = await orchestrator.decode(HONDA_VIN)
    assert cached.is_locally_decoded
    assert remote.calls == []

    refreshed = await orchestrator.decode(HONDA_VIN, force_refresh=True)
    assert refreshed.make == "HONDA"
    assert refreshed.decoded_by == "nhtsa_api"
    assert remote.calls == [HONDA_VIN]

    # remote-decoded entries are served even when a refresh is requested
    await orchestrator.decode(HONDA_VIN, force_refresh=True)
    assert remote.calls == [HONDA_VIN]


@pytest.mark.asyncio
async def test_fail_fast_tries_remote_sources_before_local():
    remote = FakeSource("nhtsa_api", 2, data={"make": "HONDA", "model": "Accord"})
    orchestrator = create_orchestrator(SourceChain([LocalSource(), remote]), MergeEngine())
    record = await orchestrator.decode(HONDA_VIN)
    assert remote.calls == [HONDA_VIN]
    assert record.sources == ["nhtsa_api"]
    assert record.decoded_by == "nhtsa_api"
    assert record.model == "Accord"


@pytest.mark.asyncio
async def test_fail_fast_falls_back_to_local_when_remotes_fail():
    remote = FakeSource("nhtsa_api", 2, error="down")
    orchestrator = create_orchestrator(SourceChain([LocalSource(), remote]), MergeEngine())
    record = await orchestrator.decode(HONDA_VIN)
    assert remote.calls == [HONDA_VIN]
    assert record.sources == ["local"]
    assert record.is_locally_decoded
    assert record.make == "Honda"


@pytest.mark.asyncio
async def test_fail_fast_without_local_fallback_uses_remote_result():
    remote = FakeSource("nhtsa_api", 2, data={"make": "HONDA", "model": "Accord"})
    orchestrator = create_orchestrator(SourceChain([LocalSource(), remote]), MergeEngine())
    orchestrator.set_local_fallback(False)
    record = await orchestrator.decode(HONDA_VIN)
    assert remote.calls == [HONDA_VIN]
    assert record.sources == ["nhtsa_api"]
    assert record.decoded_by == "nhtsa_api"
    assert not record.is_locally_decoded


@pytest.mark.asyncio
async def test_fail_fast_without_local_fallback_reports_remote_failures():
    orchestrator = create_orchestrator(
        SourceChain([LocalSource(), FakeSource("nhtsa_api", 2, error="down")]), MergeEngine()
    )
    orchestrator.set_local_fallback(False)
    with pytest.raises(DecodeFailedError) as excinfo:
        await orchestrator.decode(HONDA_VIN)
    assert [r.source for r in excinfo.value.failures] == ["nhtsa_api"]
    assert "nhtsa_api: down" in str(excinfo.value)


@pytest.mark.asyncio
async def test_remote_manufacturer_is_learned_and_persisted(memory_cache):
    remote = FakeSource("nhtsa_api", 2, data={"make": "NISSAN", "manufacturer": "NISSAN NORTH AMERICA"})
    decoder = LocalVinDecoder()
    chain = SourceChain([LocalSource(decoder), remote])
    orchestrator = create_orchestrator(chain, MergeEngine(), cache=memory_cache, execution_strategy="collect_all")

    await orchestrator.decode(UNKNOWN_WMI_VIN)
    assert decoder.manufacturer_for("1N4") == "NISSAN NORTH AMERICA"
    assert await memory_cache.get("vin_manufacturer_codes") == {"1N4": "NISSAN NORTH AMERICA"}

    fresh = create_orchestrator(SourceChain([LocalSource()]), MergeEngine(), cache=memory_cache)
    local = await fresh.decode_locally(UNKNOWN_WMI_VIN)
    assert local.make == "NISSAN NORTH AMERICA"


@pytest.mark.asyncio
async def test_learning_never_overrides_builtin_codes(memory_cache):
    remote = FakeSource("nhtsa_api", 2, data={"make": "HONDA", "manufacturer": "AMERICAN HONDA MOTOR CO., INC."})
    decoder = LocalVinDecoder()
    orchestrator = create_orchestrator(
        SourceChain([LocalSource(decoder), remote]), MergeEngine(), cache=memory_cache, execution_strategy="collect_all"
    )
    await orchestrator.decode(HONDA_VIN)
    assert decoder.manufacturer_for("1HG") == "Honda"
    assert decoder.learned_codes() == {}


@pytest.mark.asyncio
async def test_clear_cache_removes_merged_record(memory_cache):
    orchestrator = create_orchestrator(SourceChain([LocalSource()]), MergeEngine(), cache=memory_cache)
    await orchestrator.decode(HONDA_VIN)
    assert await orchestrator.clear_cache(HONDA_VIN)
    assert not await orchestrator.clear_cache(HONDA_VIN)


def test_validate_is_exposed():
    orchestrator = create_orchestrator(SourceChain([LocalSource()]), MergeEngine())
    assert orchestrator.validate(HONDA_VIN).is_valid
    assert not orchestrator.validate("nope").is_valid


# ── Legacy mode ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_legacy_remote_fields_override_local_baseline(memory_cache):
    orchestrator = create_legacy_orchestrator(cache=memory_cache, remote=_client(_nhtsa_ok))
    assert isinstance(orchestrator, LegacyOrchestrator)

    record = await orchestrator.decode(HONDA_VIN)
    assert record.make == "HONDA"
    assert record.model == "Accord"
    assert record.get("plant") == "MARYSVILLE"
    assert record.additional_info["wmi"] == "1HG"
    assert record.additional_info["decoded_by"] == "nhtsa_api"
    assert record.decoded_by == "nhtsa_api"
    assert not record.is_locally_decoded


@pytest.mark.asyncio
async def test_legacy_falls_back_to_local_on_connection_error():
    record = await create_legacy_orchestrator(remote=_client(_refused)).decode(HONDA_VIN)
    assert record.make == "Honda"
    assert record.year == "2003"
    assert record.is_locally_decoded
    assert record.cache_metadata["failure_kind"] == "connection"
    assert "connection refused" in record.cache_metadata["remote_error"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response, kind",
    [
        (httpx.Response(500), "request"),
        (httpx.Response(200, json={"Message": "nope"}), "malformed_response"),
        (httpx.Response(200, json={"Results": []}), "malformed_response"),
    ],
)
async def test_legacy_failure_kinds(response, kind):
    orchestrator = create_legacy_orchestrator(remote=_client(lambda request: response))
    record = await orchestrator.decode(HONDA_VIN)
    assert record.is_locally_decoded
    assert record.cache_metadata["failure_kind"] == kind


@pytest.mark.asyncio
async def test_legacy_without_fallback_raises_typed_error():
    orchestrator = create_legacy_orchestrator(remote=_client(_refused), use_local_fallback=False)
    with pytest.raises(RemoteDecodeError) as excinfo:
        await orchestrator.decode(HONDA_VIN)
    assert excinfo.value.kind == "connection"


@pytest.mark.asyncio
async def test_legacy_serves_remote_cache_and_refreshes_local_cache(memory_cache):
    calls = []

    def handler(request):
        calls.append(1)
        if len(calls) == 1:
            raise httpx.ConnectError("offline", request=request)
        return httpx.Response(200, json=nhtsa_payload())

    orchestrator = create_legacy_orchestrator(cache=memory_cache, remote=_client(handler))
    first = await orchestrator.decode(HONDA_VIN)
    assert first.is_locally_decoded

    served = await orchestrator.decode(HONDA_VIN)
    assert served.is_locally_decoded
    assert len(calls) == 1

    refreshed = await orchestrator.decode(HONDA_VIN, force_refresh=True)
    assert refreshed.decoded_by == "nhtsa_api"
    assert len(calls) == 2

    # remote-decoded entries are served even when a refresh is requested
    await orchestrator.decode(HONDA_VIN, force_refresh=True)
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_legacy_chassis_number_skips_remote():
    def handler(request):
        raise AssertionError("remote must not be called")

    record = await create_legacy_orchestrator(remote=_client(handler)).decode(SUPRA_CHASSIS)
    assert record.model == "Supra"
    assert record.is_locally_decoded
    assert "remote_skipped" in record.cache_metadata


@pytest.mark.asyncio
async def test_legacy_learns_manufacturer_codes(memory_cache):
    def handler(request):
        return httpx.Response(200, json=nhtsa_payload(**{"Manufacturer Name": "NISSAN NORTH AMERICA, INC."}))

    orchestrator = create_legacy_orchestrator(cache=memory_cache, remote=_client(handler))
    await orchestrator.decode(UNKNOWN_WMI_VIN)
    local = await orchestrator.decode_locally(UNKNOWN_WMI_VIN)
    assert local.manufacturer == "NISSAN NORTH AMERICA, INC."
    assert local.is_locally_decoded


@pytest.mark.asyncio
async def test_legacy_set_cache_ttl_and_fallback_toggle(memory_cache):
    orchestrator = create_legacy_orchestrator(cache=memory_cache, remote=_client(_refused))
    assert orchestrator.set_cache_ttl(60) is orchestrator
    assert orchestrator.cache_ttl == 60
    orchestrator.set_local_fallback(False)
    with pytest.raises(RemoteDecodeError):
        await orchestrator.decode(HONDA_VIN)


@pytest.mark.asyncio
async def test_legacy_fallback_log_carries_correlation_id(caplog):
    token = logging_config.correlation_id.set("req-42")
    try:
        with caplog.at_level(logging.WARNING, logger="vinservice.orchestrator"):
            await create_legacy_orchestrator(remote=_client(_refused)).decode(HONDA_VIN)
    finally:
        logging_config.correlation_id.reset(token)
    records = [r for r in caplog.records if r.getMessage().startswith("Remote decode failed")]
    assert len(records) == 1
    assert records[0].extra_data == {"correlation_id": "req-42", "failure_kind": "connection"}


@pytest.mark.asyncio
async def test_local_decode_log_carries_correlation_id(caplog):
    token = logging_config.correlation_id.set("req-7")
    try:
        with caplog.at_level(logging.DEBUG, logger="vinservice.orchestrator"):
            await create_legacy_orchestrator(remote=_client(_refused)).decode_locally(SUPRA_CHASSIS)
    finally:
        logging_config.correlation_id.reset(token)
    records = [r for r in caplog.records if r.getMessage() == f"Decoded {SUPRA_CHASSIS} locally"]
    assert len(records) == 1
    assert records[0].extra_data["correlation_id"] == "req-7"
