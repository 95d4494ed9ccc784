from datetime import datetime, timedelta, timezone

from context_service.services.serialization import normalize_metadata, parse_timestamp


class TestNormalizeMetadata:
    def test_none(self):
        assert normalize_metadata(None) == {}

    def test_mapping_passthrough(self):
        assert normalize_metadata({"k": "v"}) == {"k": "v"}

    def test_json_string_object(self):
        assert normalize_metadata('{"k":"v","n":1}') == {"k": "v", "n": 1}

    def test_blank_string(self):
        assert normalize_metadata("   ") == {}

    def test_invalid_string_returns_empty_object(self):
        assert normalize_metadata("not-json") == {}

    def test_non_mapping_json_returns_empty_object(self):
        assert normalize_metadata("[1,2,3]") == {}

    def test_key_value_iterable(self):
        assert normalize_metadata([("k", "v")]) == {"k": "v"}

    def test_bad_iterable_returns_empty_object(self):
        assert normalize_metadata(["k"]) == {}

    def test_non_iterable_returns_empty_object(self):
        assert normalize_metadata(42) == {}


class TestParseTimestamp:
    def test_none_and_bool(self):
        assert parse_timestamp(None) is None
        assert parse_timestamp(True) is None

    def test_naive_datetime_assumed_utc(self):
        parsed = parse_timestamp(datetime(2024, 1, 1, 12, 0))
        assert parsed == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def test_aware_datetime_converted(self):
        plus_two = timezone(timedelta(hours=2))
        parsed = parse_timestamp(datetime(2024, 1, 1, 14, 0, tzinfo=plus_two))
        assert parsed == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert parsed.tzinfo == timezone.utc

    def test_iso_string_with_z(self):
        assert parse_timestamp("2024-05-20T08:30:00Z") == datetime(
            2024, 5, 20, 8, 30, tzinfo=timezone.utc,
        )

    def test_epoch_seconds(self):
        assert parse_timestamp(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)

    def test_epoch_milliseconds(self):
        assert parse_timestamp(1_700_000_000_000) == parse_timestamp(1_700_000_000)

    def test_out_of_range_epoch(self):
        assert parse_timestamp(1e30) is None

    def test_garbage(self):
        assert parse_timestamp("yesterday-ish") is None
        assert parse_timestamp("") is None
        assert parse_timestamp(["2024"]) is None
