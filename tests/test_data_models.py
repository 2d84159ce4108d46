import pytest

from vindecode.data_models import (
    ChainExecutionResult,
    MergedRecord,
    SourceResult,
    is_empty,
    prune_empty,
)


@pytest.mark.parametrize("value", [None, "", "   ", [], {}, ()])
def test_empty_values(value):
    assert is_empty(value)


@pytest.mark.parametrize("value", ["x", 0, False, [None], {"a": None}])
def test_present_values(value):
    assert not is_empty(value)


def test_prune_empty_drops_absent_fields():
    assert prune_empty({"make": "Honda", "trim": "", "model": None, "dimensions": {}}) == {"make": "Honda"}


def test_failed_result_requires_error():
    with pytest.raises(ValueError):
        SourceResult(success=False, source="nhtsa_api")


def test_failed_result_cannot_carry_data():
    with pytest.raises(ValueError):
        SourceResult(success=False, source="nhtsa_api", error="boom", data={"make": "Honda"})


def test_failure_factory_records_error_in_metadata():
    result = SourceResult.failure("clearvin", "Empty response", execution_time=0.1)
    assert not result.success
    assert result.data == {}
    assert result.meta("error") == "Empty response"
    assert result.meta("execution_time") == 0.1


def test_ok_result_prunes_empty_fields():
    result = SourceResult.ok("local", {"make": "Honda", "model": "", "trim": None})
    assert result.data == {"make": "Honda"}
    assert result.get("model") is None
    assert result.to_dict()["source"] == "local"


def test_chain_result_accessors():
    ok = SourceResult.ok("nhtsa_api", {"make": "Honda"})
    bad = SourceResult.failure("clearvin", "timeout")
    result = ChainExecutionResult(successful=(ok,), failed=(bad,), strategy="collect_all", total_execution_time=1.5)
    assert result.has_successful_results
    assert result.has_failed_results
    assert result.successful_sources == ["nhtsa_api"]
    assert result.failed_sources == ["clearvin"]
    assert result.result_by_source("clearvin") is bad
    assert result.result_by_source("local") is None
    assert result.to_dict()["execution_strategy"] == "collect_all"


def test_merged_record_to_dict_has_stable_shape():
    record = MergedRecord(fields={"make": "Honda", "year": "2003"}, cache_metadata={"sources": ["local"]})
    payload = record.to_dict()
    assert payload["make"] == "Honda"
    assert payload["model"] is None
    assert payload["validation"] == {"error_code": None, "error_text": None, "is_valid": True}
    assert payload["additional_info"] == {}
    assert payload["cache_metadata"]["sources"] == ["local"]


def test_merged_record_round_trips_through_cache_shape():
    record = MergedRecord(
        fields={"make": "Honda", "additional_info": {"wmi": "1HG"}},
        cache_metadata={"sources": ["nhtsa_api"], "decoded_by": "nhtsa_api"},
    )
    restored = MergedRecord.from_dict(record.to_dict())
    assert restored.make == "Honda"
    assert restored.model is None
    assert restored.additional_info == {"wmi": "1HG"}
    assert restored.cache_metadata == record.cache_metadata
    assert not restored.is_locally_decoded


def test_merged_record_is_not_mutated_through_accessors():
    record = MergedRecord(fields={"additional_info": {"wmi": "1HG"}})
    info = record.additional_info
    info["wmi"] = "XXX"
    assert record.additional_info == {"wmi": "1HG"}


def test_locally_decoded_detection():
    assert MergedRecord(cache_metadata={"decoded_by": "local_decoder"}).is_locally_decoded
    assert MergedRecord(cache_metadata={"sources": ["local"]}).is_locally_decoded
    assert MergedRecord(fields={"additional_info": {"decoded_by": "local_decoder"}}).is_locally_decoded
    assert not MergedRecord(cache_metadata={"sources": ["nhtsa_api"]}).is_locally_decoded


def test_empty_record():
    record = MergedRecord.empty()
    assert record.is_empty
    assert record.sources == []
    assert record.cache_metadata["total_execution_time"] == 0
