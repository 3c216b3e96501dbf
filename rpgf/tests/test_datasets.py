"""
Tests for CustomDatasetService: caps, destructive replace, visibility.
"""

import io
import uuid

import pandas as pd
import pytest

from rpgf.errors import AuthorizationError, ConflictError, ValidationError


@pytest.fixture
def dataset(services, round_, admin):
    return services.datasets.create_dataset(round_.id, "Impact", admin.user_id)


def _csv(rows, fields=("score",)):
    header = ",".join(["applicationId", *fields])
    return "\n".join([header, *(",".join(r) for r in rows)]) + "\n"


def test_new_dataset_is_private_and_empty(dataset):
    assert dataset.is_public is False
    assert dataset.row_count == 0
    assert dataset.fields == []


def test_blank_name_rejected(services, round_, admin):
    with pytest.raises(ValidationError):
        services.datasets.create_dataset(round_.id, "   ", admin.user_id)


def test_sixth_dataset_conflicts(services, round_, admin):
    for i in range(5):
        services.datasets.create_dataset(round_.id, f"ds{i}", admin.user_id)
    with pytest.raises(ConflictError):
        services.datasets.create_dataset(round_.id, "one-too-many", admin.user_id)


def test_non_admin_cannot_create(services, round_):
    with pytest.raises(AuthorizationError):
        services.datasets.create_dataset(round_.id, "Impact", str(uuid.uuid4()))


def test_upload_replaces_rows(services, dataset, applications, admin):
    a, b, c = applications
    first = services.datasets.upload_rows(dataset.id, _csv([(a.id, "1"), (b.id, "2")]), admin.user_id)
    assert first.row_count == 2
    assert first.fields == ["score"]

    second = services.datasets.upload_rows(
        dataset.id, _csv([(c.id, "9", "x")], fields=("score", "tier")), admin.user_id
    )
    assert second.row_count == 1
    assert second.fields == ["score", "tier"]

    values = services.datasets.values_for_application(a.id, admin.user_id, is_admin=True)
    assert values[0].values == {}


def test_invalid_upload_changes_nothing(services, dataset, applications, admin):
    a, b, _ = applications
    services.datasets.upload_rows(dataset.id, _csv([(a.id, "1")]), admin.user_id)

    with pytest.raises(ValidationError) as exc_info:
        services.datasets.upload_rows(
            dataset.id, _csv([(b.id, "2"), ("bad", "3"), (b.id, "4")]), admin.user_id
        )
    assert exc_info.value.messages == ["Row 3: invalid application ID", "Row 4: duplicate application ID"]
    assert str(exc_info.value) == "Row 3: invalid application ID\nRow 4: duplicate application ID"

    after = services.datasets.list_datasets(dataset.round_id, admin.user_id)[0]
    assert after.row_count == 1
    assert services.datasets.values_for_application(a.id, admin.user_id)[0].values == {"score": "1"}


def test_non_admin_cannot_upload(services, dataset, applications, voters):
    with pytest.raises(AuthorizationError):
        services.datasets.upload_rows(dataset.id, _csv([(applications[0].id, "1")]), voters[0].user_id)


class TestVisibility:
    def test_private_dataset_hidden_from_non_admins(self, services, dataset, applications, admin, voters):
        a = applications[0]
        services.datasets.upload_rows(dataset.id, _csv([(a.id, "5")]), admin.user_id)

        assert services.datasets.values_for_application(a.id, voters[0].user_id) == []
        assert services.datasets.list_datasets(dataset.round_id, voters[0].user_id) == []
        with pytest.raises(AuthorizationError):
            services.datasets.download_dataset(dataset.id, voters[0].user_id)

    def test_public_dataset_visible_to_everyone(self, services, dataset, applications, admin):
        a, b, _ = applications
        services.datasets.upload_rows(dataset.id, _csv([(a.id, "5")]), admin.user_id)
        services.datasets.set_visibility(dataset.id, True, admin.user_id)

        values = services.datasets.values_for_application(a.id, None)
        assert [(v.dataset_name, v.values) for v in values] == [("Impact", {"score": "5"})]
        # No row for b: dataset listed with empty values.
        assert services.datasets.values_for_application(b.id, None)[0].values == {}

        df = pd.read_csv(io.StringIO(services.datasets.download_dataset(dataset.id, None)), dtype=str)
        assert list(df.columns) == ["applicationId", "score"]
        assert df.iloc[0].tolist() == [a.id, "5"]

    def test_only_admin_changes_visibility(self, services, dataset, voters):
        with pytest.raises(AuthorizationError):
            services.datasets.set_visibility(dataset.id, True, voters[0].user_id)


def test_delete_dataset(services, dataset, applications, admin):
    services.datasets.upload_rows(dataset.id, _csv([(applications[0].id, "1")]), admin.user_id)
    services.datasets.delete_dataset(dataset.id, admin.user_id)
    assert services.datasets.list_datasets(dataset.round_id, admin.user_id) == []


def test_duplicate_name_in_round_conflicts(services, dataset, round_, admin):
    with pytest.raises(ConflictError):
        services.datasets.create_dataset(round_.id, "  Impact ", admin.user_id)
    assert len(services.datasets.list_datasets(round_.id, admin.user_id)) == 1


@pytest.mark.parametrize("body", ["", "applicationId,score\nx,1,2,3\n", "not,a,dataset\n"])
def test_non_admin_upload_is_unauthorized_before_parsing(services, dataset, body):
    with pytest.raises(AuthorizationError):
        services.datasets.upload_rows(dataset.id, body, str(uuid.uuid4()))


def test_exactly_ten_fields_accepted(services, config, dataset, applications, admin):
    assert config.max_custom_dataset_fields == 10
    fields = [f"f{i}" for i in range(10)]
    updated = services.datasets.upload_rows(
        dataset.id, _csv([(applications[0].id, *(("x",) * 10))], fields=fields), admin.user_id
    )
    assert updated.fields == fields

    with pytest.raises(ValidationError) as exc_info:
        services.datasets.upload_rows(
            dataset.id, _csv([(applications[0].id, *(("x",) * 11))], fields=[*fields, "f10"]), admin.user_id
        )
    assert exc_info.value.messages == ["A custom dataset can have a maximum of 10 fields."]


def test_upload_ignores_byte_order_mark(services, dataset, applications, admin):
    text = "\ufeff" + _csv([(applications[0].id, "4")])
    updated = services.datasets.upload_rows(dataset.id, text, admin.user_id)
    assert updated.fields == ["score"]
    assert updated.row_count == 1
