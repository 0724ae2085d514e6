"""
Payload encoding for snapshots.

A stored payload is identified by a (serializer id, manifest) pair. The
`SerializerRegistry` maps those pairs to `Serializer` implementations and is
built once at startup; the `SnapshotCodec` uses it to turn legacy rows into
`DecodedSnapshot` objects and to encode payloads for the target store.

Legacy rows written before serializer columns existed carry their scheme inside
the payload itself, in a small binary envelope:

    int32 serializer id | uint16 manifest length | manifest (UTF-8) | payload

All integers are big-endian.
"""
import json
import struct
from typing import Any, Dict, Iterable, Mapping, Tuple, Type

from pydantic import BaseModel, ValidationError

from .errors import DeserializationError, SerializationError
from .models import DecodedSnapshot, EncodedPayload, LegacySnapshotRow, SnapshotMetadata
from .protocols import Serializer

BYTES_SERIALIZER_ID = 4
JSON_SERIALIZER_ID = 30
MODEL_SERIALIZER_ID = 31

_ENVELOPE_HEADER = struct.Struct(">iH")


class BytesSerializer:
    """Passes raw bytes through untouched."""
    identifier = BYTES_SERIALIZER_ID

    def manifest(self, obj: Any) -> str:
        return ""

    def to_binary(self, obj: Any) -> bytes:
        if not isinstance(obj, (bytes, bytearray, memoryview)):
            raise SerializationError(f"Cannot write {type(obj).__name__} as raw bytes")
        return bytes(obj)

    def from_binary(self, data: bytes, manifest: str | None) -> bytes:
        return bytes(data)


class JsonSerializer:
    """UTF-8 JSON documents; the manifest is not used."""
    identifier = JSON_SERIALIZER_ID

    def manifest(self, obj: Any) -> str:
        return ""

    def to_binary(self, obj: Any) -> bytes:
        try:
            return json.dumps(obj, sort_keys=True, separators=(",", ":")).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise SerializationError(f"Payload is not JSON serializable: {e}") from e

    def from_binary(self, data: bytes, manifest: str | None) -> Any:
        try:
            return json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise DeserializationError(f"Invalid JSON payload: {e}") from e


class PydanticModelSerializer:
    """
    Pydantic models stored as JSON. The manifest is the name the model class was
    registered under, so the class can be renamed without breaking old rows.
    """
    identifier = MODEL_SERIALIZER_ID

    def __init__(self, models: Mapping[str, Type[BaseModel]] | None = None):
        self._models: Dict[str, Type[BaseModel]] = {}
        self._names: Dict[Type[BaseModel], str] = {}
        for name, model in (models or {}).items():
            self.register(name, model)

    def register(self, name: str, model: Type[BaseModel]):
        if name in self._models:
            raise ValueError(f"Model manifest '{name}' is already registered")
        self._models[name] = model
        self._names[model] = name

    def manifest(self, obj: Any) -> str:
        name = self._names.get(type(obj))
        if name is None:
            raise SerializationError(f"Model {type(obj).__name__} has no registered manifest")
        return name

    def to_binary(self, obj: Any) -> bytes:
        if not isinstance(obj, BaseModel):
            raise SerializationError(f"{type(obj).__name__} is not a pydantic model")
        return obj.model_dump_json().encode("utf-8")

    def from_binary(self, data: bytes, manifest: str | None) -> BaseModel:
        model = self._models.get(manifest or "")
        if model is None:
            raise DeserializationError(f"Unknown model manifest '{manifest}'")
        try:
            return model.model_validate_json(data)
        except ValidationError as e:
            raise DeserializationError(f"Payload does not match model '{manifest}': {e}") from e


class SerializerRegistry:
    """
    Lookup table from (serializer id, manifest) to `Serializer`.

    A serializer registered without a manifest handles every manifest for its id;
    one registered with a manifest takes precedence for that exact pair. Python
    types are bound to serializers for encoding values that carry no scheme.
    """

    def __init__(self, serializers: Iterable[Serializer] = ()):
        self._by_id: Dict[int, Serializer] = {}
        self._by_key: Dict[Tuple[int, str], Serializer] = {}
        self._bindings: Dict[type, Serializer] = {}
        for serializer in serializers:
            self.register(serializer)

    def register(self, serializer: Serializer, manifest: str | None = None) -> "SerializerRegistry":
        if manifest:
            key = (serializer.identifier, manifest)
            if key in self._by_key:
                raise ValueError(f"Serializer {key} is already registered")
            self._by_key[key] = serializer
        else:
            if serializer.identifier in self._by_id:
                raise ValueError(f"Serializer id {serializer.identifier} is already registered")
            self._by_id[serializer.identifier] = serializer
        return self

    def bind(self, cls: type, serializer: Serializer) -> "SerializerRegistry":
        if self._by_id.get(serializer.identifier) is not serializer and serializer not in self._by_key.values():
            raise ValueError(f"Serializer id {serializer.identifier} must be registered before binding")
        self._bindings[cls] = serializer
        return self

    def lookup(self, serializer_id: int, manifest: str | None) -> Serializer | None:
        exact = self._by_key.get((serializer_id, manifest or ""))
        if exact is not None:
            return exact
        return self._by_id.get(serializer_id)

    def resolve(self, serializer_id: int, manifest: str | None) -> Serializer:
        serializer = self.lookup(serializer_id, manifest)
        if serializer is None:
            raise DeserializationError(
                f"No serializer registered for id {serializer_id} (manifest '{manifest or ''}')"
            )
        return serializer

    def serializer_for(self, obj: Any) -> Serializer:
        for cls in type(obj).__mro__:
            serializer = self._bindings.get(cls)
            if serializer is not None:
                return serializer
        raise SerializationError(f"No serializer bound for type {type(obj).__name__}")


def default_registry(models: Mapping[str, Type[BaseModel]] | None = None) -> SerializerRegistry:
    """Registry with the built-in bytes, JSON and pydantic model serializers."""
    raw = BytesSerializer()
    json_serializer = JsonSerializer()
    model_serializer = PydanticModelSerializer(models)
    registry = SerializerRegistry([raw, json_serializer, model_serializer])
    registry.bind(bytes, raw).bind(bytearray, raw)
    registry.bind(dict, json_serializer).bind(list, json_serializer)
    registry.bind(BaseModel, model_serializer)
    return registry


def pack_envelope(serializer_id: int, manifest: str, data: bytes) -> bytes:
    encoded_manifest = manifest.encode("utf-8")
    return _ENVELOPE_HEADER.pack(serializer_id, len(encoded_manifest)) + encoded_manifest + data


def unpack_envelope(blob: bytes) -> Tuple[int, str, bytes]:
    if len(blob) < _ENVELOPE_HEADER.size:
        raise DeserializationError(f"Legacy snapshot envelope truncated ({len(blob)} bytes)")
    serializer_id, manifest_length = _ENVELOPE_HEADER.unpack_from(blob)
    start = _ENVELOPE_HEADER.size
    end = start + manifest_length
    if end > len(blob):
        raise DeserializationError(
            f"Legacy snapshot envelope declares a {manifest_length}-byte manifest "
            f"but only {len(blob) - start} bytes follow the header"
        )
    try:
        manifest = blob[start:end].decode("utf-8")
    except UnicodeDecodeError as e:
        raise DeserializationError(f"Legacy snapshot manifest is not UTF-8: {e}") from e
    return serializer_id, manifest, bytes(blob[end:])


class SnapshotCodec:
    def __init__(self, registry: SerializerRegistry):
        self.registry = registry

    def decode(self, row: LegacySnapshotRow) -> DecodedSnapshot:
        """Decodes a legacy row, failing with `DeserializationError` on any mismatch."""
        where = f"{row.persistence_id}@{row.sequence_number}"
        try:
            if row.serializer_id is None:
                serializer_id, manifest, data = unpack_envelope(row.snapshot)
            else:
                serializer_id = row.serializer_id
                manifest = row.serializer_manifest or ""
                data = row.snapshot
            serializer = self.registry.resolve(serializer_id, manifest)
            payload = serializer.from_binary(data, manifest or None)
        except DeserializationError as e:
            raise DeserializationError(f"Cannot decode snapshot {where}: {e}") from e
        except (TypeError, ValueError) as e:
            raise DeserializationError(f"Cannot decode snapshot {where}: {e}") from e

        metadata = SnapshotMetadata(
            persistence_id=row.persistence_id,
            sequence_number=row.sequence_number,
            timestamp=row.created,
        )
        return DecodedSnapshot(
            metadata=metadata,
            payload=payload,
            serializer_id=serializer_id,
            manifest=manifest,
        )

    def encode(
        self, payload: Any, serializer_id: int | None = None, manifest: str | None = None
    ) -> EncodedPayload:
        """
        Encodes a payload with the given scheme, or with the serializer bound to
        its type when no scheme is given.
        """
        if serializer_id is None:
            serializer = self.registry.serializer_for(payload)
        else:
            serializer = self.registry.lookup(serializer_id, manifest)
            if serializer is None:
                raise SerializationError(f"No serializer registered for id {serializer_id}")
        if manifest is None:
            manifest = serializer.manifest(payload)
        try:
            data = serializer.to_binary(payload)
        except SerializationError:
            raise
        except (TypeError, ValueError) as e:
            raise SerializationError(f"Cannot encode payload: {e}") from e
        return EncodedPayload(data=data, serializer_id=serializer.identifier, manifest=manifest)
