import dataclasses
from datetime import datetime, UTC

import pytest

from s3objects.error import ContractViolationException
from s3objects.models import CannedAcl, ObjectMetadata, StorageClass


def test_defaults():
    metadata = ObjectMetadata()

    assert metadata.content_type == "binary/octet-stream"
    assert metadata.storage_class is StorageClass.STANDARD
    assert metadata.acl_short is CannedAcl.PRIVATE
    assert metadata.user_metadata == {}
    assert metadata.expires is None


def test_enum_fields_accept_strings():
    metadata = ObjectMetadata(storage_class="GLACIER", acl_short="public-read")

    assert metadata.storage_class is StorageClass.GLACIER
    assert metadata.acl_short is CannedAcl.PUBLIC_READ


@pytest.mark.parametrize("fields", [{"storage_class": "cold"}, {"acl_short": "everyone"}])
def test_unknown_enum_values_are_rejected(fields):
    with pytest.raises(ContractViolationException):
        ObjectMetadata(**fields)


def test_contract_violation_is_a_value_error():
    with pytest.raises(ValueError):
        ObjectMetadata(storage_class="cold")


@pytest.mark.parametrize(
    "value",
    [
        "2010-01-02",
        "2010-01-02T00:00:00Z",
        "Sat, 02 Jan 2010 00:00:00 GMT",
        1262390400,
        datetime(2010, 1, 2),
    ],
)
def test_expires_is_coerced_to_utc_datetime(value):
    metadata = ObjectMetadata(expires=value)
    assert metadata.expires == datetime(2010, 1, 2, tzinfo=UTC)


def test_unparseable_timestamp_is_rejected():
    with pytest.raises(ContractViolationException):
        ObjectMetadata(expires="next tuesday")


def test_user_metadata_keys_are_lowercased_last_write_wins():
    metadata = ObjectMetadata(user_metadata={"Color": "red", "COLOR": "blue", "Shape": "round"})
    assert metadata.user_metadata == {"color": "blue", "shape": "round"}


def test_etag_quotes_are_stripped():
    assert ObjectMetadata(etag='"abc123"').etag == "abc123"


def test_negative_size_is_rejected():
    with pytest.raises(ContractViolationException):
        ObjectMetadata(size=-1)


def test_metadata_is_immutable():
    metadata = ObjectMetadata()
    with pytest.raises(dataclasses.FrozenInstanceError):
        metadata.content_type = "text/plain"


def test_with_user_metadata_replaces_mapping():
    metadata = ObjectMetadata(content_type="text/plain", user_metadata={"old": "1"})
    updated = metadata.with_user_metadata({"new": "2"})

    assert updated.user_metadata == {"new": "2"}
    assert updated.content_type == "text/plain"
    assert metadata.user_metadata == {"old": "1"}


def test_user_metadata_is_read_only():
    metadata = ObjectMetadata(user_metadata={"color": "blue"})

    with pytest.raises(TypeError):
        metadata.user_metadata["Color"] = "RED"
    assert metadata.user_metadata == {"color": "blue"}


def test_metadata_is_hashable():
    assert hash(ObjectMetadata(user_metadata={"a": "1"})) == hash(ObjectMetadata(user_metadata={"a": "1"}))
