import datetime
import os

import pytest

from fasten.errors import ResolutionError, UnknownAttributeError
from fasten.host import Host, attribute, dependency
from fasten.model import Association, Model, ServiceRegistry, snake_name
from fasten.storage import SQLiteRecordStore

CREATED_AT = datetime.datetime(2024, 5, 1, 12, 0, tzinfo=datetime.timezone.utc)


class CsvReader:
    def __init__(self, bucket=None):
        self.bucket = bucket


class Owner(Model):
    columns = ("email",)


@Owner.services.register("basic")
class BasicOwner(Host):
    nickname = attribute(str)


class Dataset(Model):
    table = "datasets"
    columns = ("name",)
    associations = (Association("owner", "owner_id", Owner),)
    delegates = ("describe", "bucket")


@Dataset.services.register("s3")
class S3Dataset(Host):
    bucket = attribute(str, required=True)
    root_dir = attribute(str)
    created_at = attribute(datetime.datetime)
    owner = attribute()

    @dependency
    def reader(d):
        d.option("csv").set_class(CsvReader).bind_attribute("bucket").default()

    @property
    def region(self):
        return self.bucket.split("-")[0]

    @region.setter
    def region(self, value):
        self.bucket = f"{value}-{self.bucket.split('-', 1)[-1]}"

    def describe(self):
        return f"s3://{self.bucket}"


@Dataset.services.register("local")
class LocalDataset(Host):
    path = attribute(str)


class Upload(Model):
    services = ServiceRegistry()


@Upload.services.register("s3")
class S3Upload(Host):
    bucket = attribute(str)


@Upload.services.register("local")
class LocalUpload(Host):
    path = attribute(str)


@Upload.services.resolver
def choose_upload(attributes):
    if attributes.get("bucket"):
        return "s3"
    if attributes.get("path"):
        return "local"
    return None


@pytest.fixture
def store():
    store = SQLiteRecordStore()
    yield store
    store.close()


@pytest.fixture
def owner(store):
    return Owner(store, email="ann@example.com", nickname="ann").save()


@pytest.fixture
def dataset(store, owner):
    return Dataset(
        store, name="train", dataset_type="s3", bucket="eu-data", created_at=CREATED_AT, owner=owner
    ).save()


def test_snake_name():
    assert snake_name("TrainingDataset") == "training_dataset"
    assert snake_name("Owner") == "owner"


def test_table_and_column_names_follow_the_class_name():
    assert Owner.table == "owner"
    assert Dataset.table == "datasets"
    assert Dataset.option_key() == "dataset_type"
    assert Dataset.service_attribute_name() == "dataset_service"
    assert Dataset.stored_columns() == ["name", "owner_id", "dataset_type", "configuration"]


def test_each_model_gets_its_own_service_registry():
    assert Owner.services.options == ["basic"]
    assert Dataset.services.options == ["s3", "local"]


def test_record_exposes_columns_service_and_delegates(dataset):
    assert dataset.name == "train"
    assert dataset.dataset_type == "s3"
    assert isinstance(dataset.dataset_service, S3Dataset)
    assert dataset.bucket == "eu-data"
    assert dataset.describe() == "s3://eu-data"


def test_undeclared_names_are_not_delegated(dataset):
    with pytest.raises(AttributeError, match="Dataset has no attribute 'reader'"):
        dataset.reader


def test_save_stores_service_configuration_as_json(store, dataset):
    row = store.fetch("datasets", dataset.id)

    assert row["name"] == "train"
    assert row["owner_id"] == dataset.owner.id
    assert '"bucket": "eu-data"' in row["configuration"]
    assert '"owner": true' in row["configuration"]
    assert '"reader": {"csv": {"bucket": "eu-data"}}' in row["configuration"]


def test_find_rebuilds_the_service(store, dataset):
    loaded = Dataset.find(store, dataset.id)

    assert loaded.id == dataset.id
    assert loaded.name == "train"
    assert isinstance(loaded.service, S3Dataset)
    assert loaded.service.attributes == {**dataset.service.attributes, "owner": loaded.owner}
    assert loaded.service.created_at == CREATED_AT
    assert loaded.service.reader.bucket == "eu-data"


def test_find_restores_associations_through_the_store(store, dataset):
    loaded = Dataset.find(store, dataset.id)

    assert loaded.owner.email == "ann@example.com"
    assert loaded.owner.owner_service.nickname == "ann"
    assert loaded.service.owner is loaded.owner


def test_find_missing_record(store):
    assert Dataset.find(store, 42) is None


def test_root_dir_defaults_to_the_model_module(dataset):
    assert dataset.service.root_dir == os.path.dirname(os.path.abspath(__file__))


def test_saving_twice_updates_the_row(store, dataset):
    dataset.assign_attributes({"name": "renamed", "bucket": "us-data"})
    dataset.save()

    loaded = Dataset.find(store, dataset.id)
    assert loaded.id == dataset.id
    assert loaded.name == "renamed"
    assert loaded.bucket == "us-data"
    assert loaded.service.reader.bucket == "us-data"


def test_assign_attributes_propagates_into_the_service_graph(dataset):
    dataset.assign_attributes({"bucket": "us-data"})

    assert dataset.service.reader.bucket == "us-data"


def test_assign_attributes_accepts_service_properties(dataset):
    dataset.assign_attributes({"region": "us"})

    assert dataset.bucket == "us-data"
    assert dataset.service.reader.bucket == "us-data"


def test_assign_attributes_rejects_unknown_names(dataset):
    with pytest.raises(UnknownAttributeError, match="unknown attribute 'colour' for S3Dataset"):
        dataset.assign_attributes({"colour": "red"})


def test_service_is_chosen_by_type_column(store):
    dataset = Dataset(store, name="scratch", dataset_type="local", path="/tmp")

    assert isinstance(dataset.service, LocalDataset)
    assert dataset.service.path == "/tmp"


def test_single_service_is_the_default(owner):
    assert owner.owner_type == "basic"


def test_resolver_chooses_service_from_attributes(store):
    upload = Upload(store, path="/tmp")

    assert upload.upload_type == "local"
    assert isinstance(upload.upload_service, LocalUpload)
    assert Upload(store, bucket="raw").upload_type == "s3"


def test_unresolvable_service_is_rejected(store):
    with pytest.raises(
        ResolutionError,
        match="Upload requires argument upload_type. Invalid option key received: None. "
        "Allowed options are: \\['s3', 'local'\\]",
    ):
        Upload(store)


def test_unknown_service_key_is_rejected(store):
    with pytest.raises(ResolutionError, match="Invalid option key received: ftp"):
        Dataset(store, name="x", dataset_type="ftp")


def test_registry_register_decorator_and_lookup():
    services = ServiceRegistry()

    @services.register("local")
    class Local:
        pass

    assert services["local"] is Local
    assert services[None] is None
    assert "local" in services
    assert services.default_key == "local"
    assert services.resolve_key({"kind": "other"}, "kind") == "other"
