"""
Storage layer - DynamoDB persistence of sanitized analysis results.

Results are stored as opaque JSON blobs keyed by (report_id, kind). The
table schema belongs to the reporting side; this module only writes what the
pipeline produced and re-validates it on the way out.
"""

import boto3
from decimal import Decimal
import json

from vehicle_analysis.models import (
    AnalysisKind,
    AnalysisResult,
    ValuationResult,
    ComprehensiveResult,
    PaintResult,
    StorageError,
    ResultNotFoundError,
)
from vehicle_analysis.config import DYNAMODB_TABLE


RESULT_MODELS = {
    AnalysisKind.DAMAGE: AnalysisResult,
    AnalysisKind.VALUATION: ValuationResult,
    AnalysisKind.COMPREHENSIVE: ComprehensiveResult,
    AnalysisKind.PAINT: PaintResult,
}


def _key(report_id: str, kind: AnalysisKind) -> dict:
    return {"report_id": report_id, "kind": kind.value}


class ResultStore:
    """
    Results table keyed by (report_id, kind).

    Pass a boto3 Table (or a stand-in) to share one; otherwise the table is
    resolved on first use and reused for the life of the store.
    """

    def __init__(self, table=None, table_name: str = DYNAMODB_TABLE):
        self._table = table
        self.table_name = table_name

    @property
    def table(self):
        if self._table is None:
            self._table = boto3.resource("dynamodb").Table(self.table_name)
        return self._table

    def save(self, report_id: str, kind: AnalysisKind | str, result) -> None:
        """
        Persists a sanitized result under (report_id, kind).

        Raises:
            StorageError: If the DynamoDB write fails.
        """
        kind = AnalysisKind(kind)
        try:
            item = _key(report_id, kind)
            item["result"] = _to_dynamodb(result.model_dump(mode="json"))
            self.table.put_item(Item=item)
        except Exception as e:
            raise StorageError(f"Failed to save {kind.value} result for report {report_id}: {e}") from e

    def load(self, report_id: str, kind: AnalysisKind | str):
        """
        Retrieves and re-validates a stored result into its typed model.

        Raises:
            ResultNotFoundError: If nothing is stored under (report_id, kind).
            StorageError: If the DynamoDB read fails.
        """
        kind = AnalysisKind(kind)
        try:
            response = self.table.get_item(Key=_key(report_id, kind))
        except Exception as e:
            raise StorageError(f"Failed to load {kind.value} result for report {report_id}: {e}") from e

        if "Item" not in response:
            raise ResultNotFoundError(f"No {kind.value} result for report {report_id}")

        try:
            return RESULT_MODELS[kind].model_validate(_from_dynamodb(response["Item"]["result"]))
        except Exception as e:
            raise StorageError(f"Stored {kind.value} result for report {report_id} is unreadable: {e}") from e

    def delete(self, report_id: str, kind: AnalysisKind | str) -> None:
        """
        Raises:
            StorageError: If the DynamoDB delete fails.
        """
        kind = AnalysisKind(kind)
        try:
            self.table.delete_item(Key=_key(report_id, kind))
        except Exception as e:
            raise StorageError(f"Failed to delete {kind.value} result for report {report_id}: {e}") from e


def _to_dynamodb(data: dict) -> dict:
    """Convert floats to Decimal for DynamoDB compatibility."""
    return json.loads(json.dumps(data), parse_float=Decimal)


def _from_dynamodb(data):
    """Convert Decimals back to int/float so the models validate."""
    if isinstance(data, dict):
        return {k: _from_dynamodb(v) for k, v in data.items()}
    if isinstance(data, list):
        return [_from_dynamodb(v) for v in data]
    if isinstance(data, Decimal):
        return int(data) if data == data.to_integral_value() else float(data)
    return data
