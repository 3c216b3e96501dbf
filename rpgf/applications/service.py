"""
rpgf/applications/service.py: Application reads and exports with custom dataset values merged in.

Applications themselves are owned by the intake side of the platform; this
module only registers the minimal record the voting core needs (id, round,
project name) and enriches reads with the datasets the caller may see.

CSV export layout:
    id, projectName, createdAt, <Dataset A>:<field 1>, <Dataset A>:<field 2>, <Dataset B>:...

Dataset columns are left-joined on application id; cells are blank where a
dataset has no row for the application.
"""

import logging
from typing import Any, Optional

import pandas as pd

from rpgf.datasets.service import dataset_values_for_application, visible_datasets
from rpgf.errors import NotFoundError, ValidationError
from rpgf.models import Application
from rpgf.rounds.service import load_round
from rpgf.storage.repositories import ApplicationRepository, DatasetRepository
from rpgf.storage.session import Database

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("json", "csv")
BASE_COLUMNS = ["id", "projectName", "createdAt"]


class ApplicationService:
    def __init__(self, database: Database):
        self.database = database

    def register_application(
        self, round_id: str, project_name: str, application_id: Optional[str] = None
    ) -> Application:
        project_name = (project_name or "").strip()
        if not project_name:
            raise ValidationError("Project name must not be empty.")
        with self.database.transaction() as session:
            load_round(session, round_id)
            application = ApplicationRepository(session).add(round_id, project_name, application_id)
        logger.info("Registered application %s in round %s", application.id, round_id)
        return application

    def get_application(self, application_id: str, requesting_user_id: Optional[str]) -> dict[str, Any]:
        """Application payload with `customDatasetValues` for every dataset the caller may see."""
        with self.database.transaction() as session:
            application = ApplicationRepository(session).get(application_id)
            if application is None:
                raise NotFoundError("Application not found.")
            values = dataset_values_for_application(session, application_id, requesting_user_id)

        payload = application.to_dict()
        payload["customDatasetValues"] = [v.to_dict() for v in values]
        return payload

    def export_applications(self, round_id: str, requesting_user_id: Optional[str], fmt: str = "json"):
        """
        Export every application of a round.

        Args:
            round_id:           Round to export.
            requesting_user_id: Decides which datasets are included.
            fmt:                "json" (list of dicts) or "csv" (text).

        Raises:
            NotFoundError:   Round does not exist.
            ValidationError: Unsupported format.
        """
        fmt = (fmt or "json").lower()
        if fmt not in EXPORT_FORMATS:
            raise ValidationError(f"Unsupported export format '{fmt}'. Expected json or csv.")

        with self.database.transaction() as session:
            load_round(session, round_id)
            applications = ApplicationRepository(session).list_for_round(round_id)
            datasets = visible_datasets(session, round_id, requesting_user_id)
            repo = DatasetRepository(session)
            rows_by_dataset = {d.id: repo.rows(d.id) for d in datasets}

        logger.info(
            "Exporting %d application(s) of round %s as %s with %d dataset(s)",
            len(applications), round_id, fmt, len(datasets),
        )

        if fmt == "json":
            out = []
            for application in applications:
                payload = application.to_dict()
                payload["customDatasetValues"] = [
                    {
                        "datasetId": d.id,
                        "datasetName": d.name,
                        "values": rows_by_dataset[d.id].get(application.id, {}),
                    }
                    for d in datasets
                ]
                out.append(payload)
            return out

        df = pd.DataFrame(
            [[a.id, a.project_name, a.created_at.isoformat()] for a in applications],
            columns=BASE_COLUMNS,
        )
        for d in datasets:
            if not d.fields:
                continue
            dataset_df = pd.DataFrame(
                [
                    [app_id, *(values.get(f, "") for f in d.fields)]
                    for app_id, values in rows_by_dataset[d.id].items()
                ],
                columns=["id", *(f"{d.name}:{f}" for f in d.fields)],
            )
            df = df.merge(dataset_df, on="id", how="left")

        return df.fillna("").to_csv(index=False)
