import datetime
import json
from types import SimpleNamespace

import pytest

from fasten.errors import SerializationError
from fasten.host import Host, attribute, dependency
from fasten.serializers import Serializer, tag_value, untag_value

ISSUED_AT = datetime.datetime(2024, 5, 1, 12, 0, tzinfo=datetime.timezone.utc)


class Credentials(Host):
    key = attribute(str)
    issued_at = attribute(datetime.datetime)


class Bucket(Host):
    name = attribute(str)
    region = attribute(str)

    @dependency
    def credentials(d):
        d.set_class(Credentials)


class Folder(Host):
    path = attribute(str)

    @classmethod
    def deserialize(cls, data):
        if "dir" in data:
            data["path"] = data.pop("dir")
        return data


class Scratch:
    def __init__(self, path=None):
        self.path = path


class Workspace(Host):
    title = attribute(str)
    created_on = attribute(datetime.date)
    starts_at = attribute(datetime.time)
    region = attribute(str, default="us-east-1")

    @dependency
    def storage(d):
        d.option("bucket").set_class(Bucket).bind_attribute("region")
        d.option("folder").set_class(Folder)
        d.option("scratch").set_class(Scratch)


class Archive(Host):
    @dependency
    def volumes(d):
        d.option("bucket").set_class(Bucket)
        d.option("folder").set_class(Folder)


class Memory:
    pass


class Cache(Host):
    @dependency
    def storage(d):
        d.option("folder").set_class(Folder).default()
        d.option("memory").set_class(Memory)


class Mirror(Host):
    @dependency
    def target(d):
        d.option("primary").set_class(Folder)
        d.option("backup").set_class(Folder)


class Report(Host):
    title = attribute(str)
    owner = attribute()

    @classmethod
    def deserialize(cls, data):
        if "heading" in data:
            data["title"] = data.pop("heading")
        return data


@pytest.fixture
def workspace():
    return Workspace(
        title="Training",
        created_on=datetime.date(2024, 5, 1),
        starts_at=datetime.time(9, 30),
        storage={"bucket": {"name": "raw", "credentials": {"key": "k", "issued_at": ISSUED_AT}}},
    )


def test_serialize_writes_attributes_and_option_envelopes(workspace):
    data = workspace.serialize()

    assert data["title"] == "Training"
    assert data["region"] == "us-east-1"
    assert data["created_on"] == {"__type__": "date", "value": "2024-05-01"}
    assert data["starts_at"] == {"__type__": "time", "value": "09:30:00"}
    assert data["storage"] == {
        "bucket": {
            "name": "raw",
            "region": "us-east-1",
            "credentials": {
                "default": {
                    "key": "k",
                    "issued_at": {"__type__": "datetime", "value": "2024-05-01T12:00:00+00:00"},
                }
            },
        }
    }


def test_serialize_drops_blank_values():
    data = Workspace(title="Empty", region="").serialize()

    assert data == {"title": "Empty"}


def test_round_trip_through_json(workspace):
    serializer = Serializer()

    copy = serializer.load(Workspace, serializer.to_json(workspace))

    assert copy.attributes == workspace.attributes
    assert copy.storage.name == "raw"
    assert copy.storage.credentials.issued_at == ISSUED_AT
    assert copy.serialize() == workspace.serialize()


def test_plain_dependencies_serialize_their_public_attributes():
    workspace = Workspace(title="Local", storage={"scratch": {"path": "/tmp"}})

    assert workspace.serialize()["storage"] == {"scratch": {"path": "/tmp"}}
    assert Serializer().load(Workspace, workspace.serialize()).storage.path == "/tmp"


def test_recorded_option_disambiguates_shared_classes():
    mirror = Mirror(target={"backup": {"path": "/b"}})

    assert mirror.serialize() == {"target": {"backup": {"path": "/b"}}}


def test_sequence_dependencies_keep_order():
    archive = Archive(volumes=[{"folder": {"path": "/a"}}, {"bucket": {"name": "b"}}])

    data = archive.serialize()

    assert data == {"volumes": [{"folder": {"path": "/a"}}, {"bucket": {"name": "b"}}]}
    copy = Serializer().load(Archive, data)
    assert [type(volume) for volume in copy.volumes] == [Folder, Bucket]


def test_option_without_attributes_keeps_its_envelope():
    cache = Cache(storage={"memory": {}})

    data = cache.serialize()

    assert data == {"storage": {"memory": {}}}
    assert isinstance(Serializer().load(Cache, data).storage, Memory)


def test_sequence_member_without_attributes_keeps_its_envelope():
    cache = Cache(storage=[{"memory": {}}, {"folder": {"path": "/a"}}])

    data = cache.serialize()

    assert data == {"storage": [{"memory": {}}, {"folder": {"path": "/a"}}]}
    copy = Serializer().load(Cache, Serializer().to_json(cache))
    assert [type(member) for member in copy.storage] == [Memory, Folder]


def test_mapping_dependencies_keep_keys():
    archive = Archive(volumes={"hot": {"bucket": {"name": "h"}}, "cold": {"folder": {"path": "/c"}}})

    data = archive.serialize()

    assert data == {"volumes": {"hot": {"bucket": {"name": "h"}}, "cold": {"folder": {"path": "/c"}}}}
    copy = Serializer().load(Archive, data)
    assert copy.volumes["cold"].path == "/c"
    assert copy.volumes["hot"].name == "h"


def test_unmatched_dependency_cannot_be_serialized():
    detached = SimpleNamespace(storage=object(), graph=SimpleNamespace(entry=lambda name: None))

    with pytest.raises(
        SerializationError,
        match="Don't know how to serialize dependency of type storage, "
        "available options are \\['bucket', 'folder', 'scratch'\\]",
    ):
        Serializer().serialize_dependency(detached, "storage", Workspace.__definition__.dependencies["storage"])


def test_associations_are_written_as_sentinels():
    owner = SimpleNamespace(id=7)
    report = Report(title="Q3", owner=owner)
    serializer = Serializer(associations=["owner"])

    data = serializer.serialize(report)

    assert data == {"title": "Q3", "owner": True}
    assert serializer.deserialize(data, Report) == {"title": "Q3"}
    assert serializer.deserialize(data, Report, association_reader=lambda name: owner) == {
        "title": "Q3",
        "owner": owner,
    }


def test_host_deserialize_hook_runs_on_the_whole_map():
    report = Serializer().load(Report, json.dumps({"heading": "Legacy"}))

    assert report.title == "Legacy"


def test_option_deserialize_hook_runs_on_its_payload():
    data = Serializer().deserialize({"storage": {"folder": {"dir": "/old"}}}, Workspace)

    assert data == {"storage": {"folder": {"path": "/old"}}}


def test_deserialize_accepts_empty_input():
    assert Serializer().deserialize(None) == {}
    assert Serializer().deserialize("") == {}


def test_temporal_values_are_tagged_recursively():
    value = {"at": [ISSUED_AT], "on": datetime.date(2024, 5, 1)}

    tagged = tag_value(value)

    assert tagged == {
        "at": [{"__type__": "datetime", "value": "2024-05-01T12:00:00+00:00"}],
        "on": {"__type__": "date", "value": "2024-05-01"},
    }
    assert untag_value(json.loads(json.dumps(tagged))) == {"at": [ISSUED_AT], "on": datetime.date(2024, 5, 1)}


def test_unknown_tags_decode_to_their_raw_value():
    assert untag_value({"amount": {"__type__": "decimal", "value": "1.50"}}) == {"amount": "1.50"}
