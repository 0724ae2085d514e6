import pytest
from datetime import datetime, timezone
from pydantic import BaseModel

from snapshot_migrator.codec import (
    BYTES_SERIALIZER_ID,
    JSON_SERIALIZER_ID,
    MODEL_SERIALIZER_ID,
    BytesSerializer,
    JsonSerializer,
    SerializerRegistry,
    SnapshotCodec,
    default_registry,
    pack_envelope,
    unpack_envelope,
)
from snapshot_migrator.errors import DeserializationError, SerializationError, WriteError
from snapshot_migrator.models import LegacySnapshotRow


class CounterState(BaseModel):
    count: int


CREATED = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def make_row(snapshot, serializer_id=None, manifest=None, persistence_id="counter-1", sequence_number=7):
    return LegacySnapshotRow(
        persistence_id=persistence_id,
        sequence_number=sequence_number,
        created=CREATED,
        snapshot=snapshot,
        serializer_id=serializer_id,
        serializer_manifest=manifest,
    )


@pytest.fixture
def codec():
    return SnapshotCodec(default_registry({"counter.v1": CounterState}))


def test_decode_json_row(codec):
    decoded = codec.decode(make_row(b'{"count": 3}', serializer_id=JSON_SERIALIZER_ID))
    assert decoded.payload == {"count": 3}
    assert decoded.serializer_id == JSON_SERIALIZER_ID
    assert decoded.metadata.persistence_id == "counter-1"
    assert decoded.metadata.sequence_number == 7
    assert decoded.metadata.timestamp == CREATED


def test_decode_legacy_envelope(codec):
    blob = pack_envelope(BYTES_SERIALIZER_ID, "", b"\x00\x01state")
    decoded = codec.decode(make_row(blob))
    assert decoded.payload == b"\x00\x01state"
    assert decoded.serializer_id == BYTES_SERIALIZER_ID


def test_decode_model_by_manifest(codec):
    row = make_row(b'{"count": 12}', serializer_id=MODEL_SERIALIZER_ID, manifest="counter.v1")
    decoded = codec.decode(row)
    assert decoded.payload == CounterState(count=12)
    assert decoded.manifest == "counter.v1"


def test_decode_model_inside_envelope(codec):
    blob = pack_envelope(MODEL_SERIALIZER_ID, "counter.v1", b'{"count": 5}')
    assert codec.decode(make_row(blob)).payload == CounterState(count=5)


def test_unregistered_serializer_id(codec):
    with pytest.raises(DeserializationError, match="No serializer registered for id 999"):
        codec.decode(make_row(b"{}", serializer_id=999))


def test_payload_not_matching_scheme(codec):
    with pytest.raises(DeserializationError, match="counter-1@7"):
        codec.decode(make_row(b"\xff\xfe not json", serializer_id=JSON_SERIALIZER_ID))


def test_unknown_model_manifest(codec):
    with pytest.raises(DeserializationError, match="Unknown model manifest"):
        codec.decode(make_row(b'{"count": 1}', serializer_id=MODEL_SERIALIZER_ID, manifest="other"))


def test_model_validation_failure(codec):
    with pytest.raises(DeserializationError):
        codec.decode(make_row(b'{"count": "many"}', serializer_id=MODEL_SERIALIZER_ID, manifest="counter.v1"))


def test_truncated_envelope(codec):
    with pytest.raises(DeserializationError, match="truncated"):
        codec.decode(make_row(b"\x00\x00"))


def test_envelope_manifest_overflow():
    blob = pack_envelope(JSON_SERIALIZER_ID, "abc", b"")[:-2]
    with pytest.raises(DeserializationError, match="3-byte manifest"):
        unpack_envelope(blob)


def test_envelope_layout():
    blob = pack_envelope(JSON_SERIALIZER_ID, "m", b"{}")
    assert blob == b"\x00\x00\x00\x1e\x00\x01m{}"
    assert unpack_envelope(blob) == (JSON_SERIALIZER_ID, "m", b"{}")


def test_manifest_specific_registration_wins():
    class Upper(BytesSerializer):
        def from_binary(self, data, manifest):
            return data.upper()

    registry = SerializerRegistry([BytesSerializer()])
    registry.register(Upper(), manifest="shout")
    codec = SnapshotCodec(registry)
    assert codec.decode(make_row(b"hi", serializer_id=BYTES_SERIALIZER_ID, manifest="shout")).payload == b"HI"
    assert codec.decode(make_row(b"hi", serializer_id=BYTES_SERIALIZER_ID)).payload == b"hi"


def test_duplicate_registration_rejected():
    registry = SerializerRegistry([JsonSerializer()])
    with pytest.raises(ValueError):
        registry.register(JsonSerializer())


def test_bind_requires_registration():
    with pytest.raises(ValueError):
        SerializerRegistry().bind(dict, JsonSerializer())


def test_encode_uses_type_bindings(codec):
    assert codec.encode({"b": 1, "a": 2}).model_dump() == {
        "data": b'{"a":2,"b":1}',
        "serializer_id": JSON_SERIALIZER_ID,
        "manifest": "",
    }
    assert codec.encode(b"raw").serializer_id == BYTES_SERIALIZER_ID
    encoded = codec.encode(CounterState(count=4))
    assert encoded.serializer_id == MODEL_SERIALIZER_ID
    assert encoded.manifest == "counter.v1"


def test_encode_with_explicit_scheme(codec):
    encoded = codec.encode(CounterState(count=4), MODEL_SERIALIZER_ID, "counter.v1")
    assert encoded.data == b'{"count":4}'


def test_encode_failures_are_write_errors(codec):
    with pytest.raises(SerializationError):
        codec.encode({1, 2, 3})
    with pytest.raises(WriteError):
        codec.encode({"a": 1}, serializer_id=12345)
    with pytest.raises(SerializationError):
        codec.encode({"a": object()}, serializer_id=JSON_SERIALIZER_ID)
