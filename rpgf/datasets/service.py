"""
rpgf/datasets/service.py: Admin-managed tabular data attached to a round's applications.

A custom dataset is a named table keyed by application ID. Admins create it,
upload its rows as CSV (each upload replaces every previous row), and decide
whether non-admins may see it. Application reads merge the visible datasets'
values into the application payload.
"""

import logging
from typing import Optional

import pandas as pd

from rpgf.config import DEFAULT_CONFIG, RPGFConfig
from rpgf.datasets.csv_ingest import (
    APPLICATION_ID_COLUMN,
    parse_dataset_csv,
    validate_dataset,
)
from rpgf.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from rpgf.models import AuditLogAction, CustomDataset, CustomDatasetValues
from rpgf.rounds.service import is_round_admin, load_round, require_round_admin
from rpgf.storage.repositories import ApplicationRepository, AuditLogRepository, DatasetRepository
from rpgf.storage.session import Database

logger = logging.getLogger(__name__)


def visible_datasets(session, round_id: str, user_id: Optional[str]) -> list[CustomDataset]:
    """Datasets of a round that `user_id` may read: all for admins, public ones otherwise."""
    admin = is_round_admin(session, round_id, user_id)
    return DatasetRepository(session).list_for_round(round_id, public_only=not admin)


def dataset_values_for_application(
    session, application_id: str, user_id: Optional[str], is_admin: Optional[bool] = None
) -> list[CustomDatasetValues]:
    """One entry per dataset visible to `user_id`; values are empty where the dataset has no row."""
    application = ApplicationRepository(session).get(application_id)
    if application is None:
        raise NotFoundError("Application not found.")
    if is_admin is None:
        is_admin = is_round_admin(session, application.round_id, user_id)

    datasets = DatasetRepository(session)
    visible = [d for d in datasets.list_for_round(application.round_id) if d.is_public or is_admin]
    rows = datasets.rows_for_application(application_id, [d.id for d in visible])
    return [
        CustomDatasetValues(dataset_id=d.id, dataset_name=d.name, values=rows.get(d.id, {}))
        for d in visible
    ]


class CustomDatasetService:
    """
    Args:
        database: Database providing the transactional boundary.
        config:   RPGFConfig; supplies the per-round dataset and per-dataset field caps.
    """

    def __init__(self, database: Database, config: RPGFConfig = DEFAULT_CONFIG):
        self.database = database
        self.config = config

    def _load_dataset(self, session, dataset_id: str, for_update: bool = False) -> CustomDataset:
        dataset = DatasetRepository(session).get(dataset_id, for_update=for_update)
        if dataset is None:
            logger.error("Custom dataset not found: %s", dataset_id)
            raise NotFoundError("Custom dataset not found.")
        return dataset

    def create_dataset(self, round_id: str, name: str, requesting_user_id: str) -> CustomDataset:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Dataset name must not be empty.")

        logger.info("Creating custom dataset '%s' for round %s", name, round_id)
        with self.database.transaction() as session:
            require_round_admin(
                session, round_id, requesting_user_id,
                action="manage custom datasets for this round", for_update=True,
            )
            datasets = DatasetRepository(session)
            cap = self.config.max_custom_datasets_per_round
            if datasets.count_for_round(round_id) >= cap:
                raise ConflictError(f"A round can have a maximum of {cap} custom datasets.")
            if datasets.name_exists(round_id, name):
                raise ConflictError(f"A custom dataset named '{name}' already exists in this round.")
            dataset = datasets.add(round_id, name)
            AuditLogRepository(session).add(
                round_id, AuditLogAction.CUSTOM_DATASET_CREATED, requesting_user_id,
                {"id": dataset.id, "name": name},
            )
            return dataset

    def upload_rows(self, dataset_id: str, csv_text: str, requesting_user_id: str) -> CustomDataset:
        """
        Replace a dataset's rows with the contents of an uploaded CSV.

        The file is parsed and fully validated before anything is written; any
        problem aborts the upload with every message collected, leaving the
        previous rows untouched. The dataset row is locked for the duration of
        the replace, so concurrent uploads to the same dataset serialize.

        Raises:
            NotFoundError:      Dataset does not exist.
            AuthorizationError: Requester is not an admin of the dataset's round.
            ValidationError:    Unparseable CSV, or one or more validation messages.
        """
        with self.database.transaction() as session:
            dataset = self._load_dataset(session, dataset_id, for_update=True)
            require_round_admin(
                session, dataset.round_id, requesting_user_id,
                action="manage custom datasets for this round",
            )
            parsed = parse_dataset_csv(csv_text)

            known_ids = ApplicationRepository(session).ids_for_round(dataset.round_id)
            errors = validate_dataset(parsed, known_ids, self.config.max_custom_dataset_fields)
            if errors:
                logger.error(
                    "Rejected upload for dataset %s with %d error(s)", dataset_id, len(errors)
                )
                raise ValidationError(errors)

            rows = parsed.to_rows()
            logger.info("Replacing %d row(s) in dataset %s", len(rows), dataset_id)
            updated = DatasetRepository(session).replace_rows(dataset_id, parsed.fields, rows)
            AuditLogRepository(session).add(
                dataset.round_id, AuditLogAction.CUSTOM_DATASET_UPLOADED, requesting_user_id,
                {"id": dataset_id, "rowCount": updated.row_count},
            )
            return updated

    def set_visibility(self, dataset_id: str, is_public: bool, requesting_user_id: str) -> CustomDataset:
        with self.database.transaction() as session:
            dataset = self._load_dataset(session, dataset_id, for_update=True)
            require_round_admin(
                session, dataset.round_id, requesting_user_id,
                action="manage custom datasets for this round",
            )
            logger.info("Dataset %s visibility -> %s", dataset_id, "public" if is_public else "private")
            updated = DatasetRepository(session).set_visibility(dataset_id, bool(is_public))
            AuditLogRepository(session).add(
                dataset.round_id, AuditLogAction.CUSTOM_DATASET_UPDATED, requesting_user_id,
                {"id": dataset_id, "isPublic": updated.is_public},
            )
            return updated

    def values_for_application(
        self,
        application_id: str,
        requesting_user_id: Optional[str],
        is_admin: Optional[bool] = None,
    ) -> list[CustomDatasetValues]:
        """
        Dataset values attached to one application.

        is_admin=None resolves admin status from the application's round.
        """
        with self.database.transaction() as session:
            return dataset_values_for_application(session, application_id, requesting_user_id, is_admin)

    def list_datasets(self, round_id: str, requesting_user_id: Optional[str]) -> list[CustomDataset]:
        with self.database.transaction() as session:
            load_round(session, round_id)
            return visible_datasets(session, round_id, requesting_user_id)

    def download_dataset(self, dataset_id: str, requesting_user_id: Optional[str]) -> str:
        """CSV text with the applicationId column first, then the dataset's fields."""
        with self.database.transaction() as session:
            dataset = self._load_dataset(session, dataset_id)
            if not dataset.is_public and not is_round_admin(session, dataset.round_id, requesting_user_id):
                raise AuthorizationError("You are not authorized to view this dataset.")
            rows = DatasetRepository(session).rows(dataset_id)

        columns = [APPLICATION_ID_COLUMN, *dataset.fields]
        records = [{APPLICATION_ID_COLUMN: app_id, **values} for app_id, values in sorted(rows.items())]
        return pd.DataFrame(records, columns=columns).to_csv(index=False)

    def delete_dataset(self, dataset_id: str, requesting_user_id: str) -> None:
        with self.database.transaction() as session:
            dataset = self._load_dataset(session, dataset_id, for_update=True)
            require_round_admin(
                session, dataset.round_id, requesting_user_id,
                action="manage custom datasets for this round",
            )
            DatasetRepository(session).delete(dataset_id)
            AuditLogRepository(session).add(
                dataset.round_id, AuditLogAction.CUSTOM_DATASET_DELETED, requesting_user_id,
                {"id": dataset_id, "name": dataset.name},
            )
            logger.info("Deleted custom dataset %s from round %s", dataset_id, dataset.round_id)
