"""Protobuf messages of the station API, built at import time from descriptors.

Only the fields this service reads are declared; protobuf skips unknown
fields, so the full upstream schema does not have to be mirrored here.
"""

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.message import DecodeError

from nearby_station.domain.errors import UpstreamProtocolError
from nearby_station.domain.models import Line, Station

PACKAGE = "app.trainlcd.grpc"
SERVICE = f"{PACKAGE}.StationAPI"
GET_STATIONS_BY_COORDINATES = f"/{SERVICE}/GetStationsByCoordinates"

_Field = descriptor_pb2.FieldDescriptorProto


def _add_field(
    message: descriptor_pb2.DescriptorProto,
    name: str,
    number: int,
    field_type: int,
    *,
    repeated: bool = False,
    optional: bool = False,
    type_name: str | None = None,
) -> None:
    label = _Field.LABEL_REPEATED if repeated else _Field.LABEL_OPTIONAL
    field = message.field.add(name=name, number=number, type=field_type, label=label)
    if type_name:
        field.type_name = f".{PACKAGE}.{type_name}"
    if optional:
        # proto3 `optional` is a synthetic one-field oneof
        field.proto3_optional = True
        field.oneof_index = len(message.oneof_decl)
        message.oneof_decl.add(name=f"_{name}")


def _build_file() -> descriptor_pb2.FileDescriptorProto:
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="nearby_station/stationapi.proto", package=PACKAGE, syntax="proto3"
    )

    request = file_proto.message_type.add(name="GetStationByCoordinatesRequest")
    _add_field(request, "latitude", 1, _Field.TYPE_DOUBLE)
    _add_field(request, "longitude", 2, _Field.TYPE_DOUBLE)
    _add_field(request, "limit", 3, _Field.TYPE_UINT32, optional=True)

    line = file_proto.message_type.add(name="Line")
    _add_field(line, "name_short", 2, _Field.TYPE_STRING)
    _add_field(line, "name_roman", 5, _Field.TYPE_STRING, optional=True)

    station = file_proto.message_type.add(name="Station")
    _add_field(station, "name", 3, _Field.TYPE_STRING)
    _add_field(station, "name_roman", 5, _Field.TYPE_STRING, optional=True)
    _add_field(station, "lines", 9, _Field.TYPE_MESSAGE, repeated=True, type_name="Line")

    response = file_proto.message_type.add(name="MultipleStationResponse")
    _add_field(response, "stations", 1, _Field.TYPE_MESSAGE, repeated=True, type_name="Station")

    return file_proto


_pool = descriptor_pool.DescriptorPool()
_pool.AddSerializedFile(_build_file().SerializeToString())

GetStationByCoordinatesRequest = message_factory.GetMessageClass(
    _pool.FindMessageTypeByName(f"{PACKAGE}.GetStationByCoordinatesRequest")
)
LineMessage = message_factory.GetMessageClass(_pool.FindMessageTypeByName(f"{PACKAGE}.Line"))
StationMessage = message_factory.GetMessageClass(
    _pool.FindMessageTypeByName(f"{PACKAGE}.Station")
)
MultipleStationResponse = message_factory.GetMessageClass(
    _pool.FindMessageTypeByName(f"{PACKAGE}.MultipleStationResponse")
)


def encode_coordinates_request(latitude: float, longitude: float, limit: int | None) -> bytes:
    """Serialize a GetStationByCoordinatesRequest."""
    request = GetStationByCoordinatesRequest(latitude=latitude, longitude=longitude)
    if limit is not None:
        request.limit = limit
    return request.SerializeToString()


def _optional(message: object, field_name: str) -> str | None:
    return getattr(message, field_name) if message.HasField(field_name) else None  # type: ignore[attr-defined]


def _to_station(message: object) -> Station:
    return Station(
        name=message.name,  # type: ignore[attr-defined]
        name_localized=_optional(message, "name_roman"),
        lines=tuple(
            Line(short_name=line.name_short, localized_name=_optional(line, "name_roman"))
            for line in message.lines  # type: ignore[attr-defined]
        ),
    )


def decode_stations_response(payload: bytes) -> list[Station]:
    """Parse a MultipleStationResponse into domain stations, preserving order.

    Raises:
        UpstreamProtocolError: The payload is not a valid MultipleStationResponse.
    """
    response = MultipleStationResponse()
    try:
        response.ParseFromString(payload)
    except DecodeError as e:
        raise UpstreamProtocolError(f"Malformed MultipleStationResponse: {e}") from e
    return [_to_station(station) for station in response.stations]
