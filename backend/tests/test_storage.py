"""
Unit tests for storage module
"""
from decimal import Decimal

import pytest
from unittest.mock import MagicMock, patch

from vehicle_analysis.storage import (
    ResultStore,
    _to_dynamodb,
    _from_dynamodb,
)
from vehicle_analysis.models import (
    AnalysisKind,
    AnalysisResult,
    ValuationResult,
    PaintResult,
    StorageError,
    ResultNotFoundError,
)


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def mock_dynamodb_table():
    return MagicMock()


@pytest.fixture
def store(mock_dynamodb_table):
    return ResultStore(table=mock_dynamodb_table)


# ============================================================================
# SAVE RESULT TESTS
# ============================================================================

class TestSaveResult:

    def test_save_success(self, damage_result, store, mock_dynamodb_table):
        store.save("RPT-001", AnalysisKind.DAMAGE, damage_result)

        mock_dynamodb_table.put_item.assert_called_once()
        item = mock_dynamodb_table.put_item.call_args[1]['Item']
        assert item['report_id'] == "RPT-001"
        assert item['kind'] == "damage"
        assert item['result']['overall_assessment']['total_repair_cost'] == 30000

    def test_save_accepts_plain_kind(self, valuation_result, store, mock_dynamodb_table):
        store.save("RPT-001", "valuation", valuation_result)
        item = mock_dynamodb_table.put_item.call_args[1]['Item']
        assert item['kind'] == "valuation"

    def test_save_dynamodb_error(self, damage_result, store, mock_dynamodb_table):
        mock_dynamodb_table.put_item.side_effect = Exception("DynamoDB unavailable")
        with pytest.raises(StorageError) as exc_info:
            store.save("RPT-001", AnalysisKind.DAMAGE, damage_result)
        assert "RPT-001" in str(exc_info.value)

    def test_table_resolved_lazily_once(self, damage_result):
        with patch('vehicle_analysis.storage.boto3.resource') as mock_resource:
            store = ResultStore(table_name="reports")
            mock_resource.assert_not_called()
            store.save("RPT-001", AnalysisKind.DAMAGE, damage_result)
            store.save("RPT-002", AnalysisKind.DAMAGE, damage_result)

        mock_resource.assert_called_once_with("dynamodb")
        mock_resource.return_value.Table.assert_called_once_with("reports")
        assert mock_resource.return_value.Table.return_value.put_item.call_count == 2

    def test_stores_are_independent(self, damage_result):
        first, second = MagicMock(), MagicMock()
        ResultStore(table=first).save("RPT-001", AnalysisKind.DAMAGE, damage_result)
        ResultStore(table=second).delete("RPT-001", AnalysisKind.DAMAGE)

        first.put_item.assert_called_once()
        first.delete_item.assert_not_called()
        second.put_item.assert_not_called()
        second.delete_item.assert_called_once()

    def test_table_resolution_error(self, damage_result):
        with patch('vehicle_analysis.storage.boto3.resource', side_effect=Exception("no credentials")):
            with pytest.raises(StorageError):
                ResultStore().save("RPT-001", AnalysisKind.DAMAGE, damage_result)


# ============================================================================
# LOAD RESULT TESTS
# ============================================================================

class TestLoadResult:

    def test_load_round_trip(self, damage_result, store, mock_dynamodb_table):
        stored = _to_dynamodb(damage_result.model_dump(mode="json"))
        mock_dynamodb_table.get_item.return_value = {'Item': {'result': stored}}

        result = store.load("RPT-001", AnalysisKind.DAMAGE)

        assert isinstance(result, AnalysisResult)
        assert result == damage_result
        mock_dynamodb_table.get_item.assert_called_once_with(
            Key={'report_id': "RPT-001", 'kind': "damage"}
        )

    def test_load_valuation(self, valuation_result, store, mock_dynamodb_table):
        stored = _to_dynamodb(valuation_result.model_dump(mode="json"))
        mock_dynamodb_table.get_item.return_value = {'Item': {'result': stored}}
        assert isinstance(store.load("RPT-001", "valuation"), ValuationResult)

    def test_load_paint(self, paint_result, store, mock_dynamodb_table):
        stored = _to_dynamodb(paint_result.model_dump(mode="json"))
        mock_dynamodb_table.get_item.return_value = {'Item': {'result': stored}}

        result = store.load("RPT-001", "paint")
        assert isinstance(result, PaintResult)
        assert result == paint_result

    def test_load_not_found(self, store, mock_dynamodb_table):
        mock_dynamodb_table.get_item.return_value = {}
        with pytest.raises(ResultNotFoundError) as exc_info:
            store.load("RPT-999", AnalysisKind.DAMAGE)
        assert "RPT-999" in str(exc_info.value)

    def test_load_dynamodb_error(self, store, mock_dynamodb_table):
        mock_dynamodb_table.get_item.side_effect = Exception("Network error")
        with pytest.raises(StorageError):
            store.load("RPT-001", AnalysisKind.DAMAGE)

    def test_load_corrupt_item(self, store, mock_dynamodb_table):
        mock_dynamodb_table.get_item.return_value = {'Item': {'result': {'damage_areas': []}}}
        with pytest.raises(StorageError) as exc_info:
            store.load("RPT-001", AnalysisKind.DAMAGE)
        assert "unreadable" in str(exc_info.value)


# ============================================================================
# DELETE RESULT TESTS
# ============================================================================

class TestDeleteResult:

    def test_delete(self, store, mock_dynamodb_table):
        store.delete("RPT-001", AnalysisKind.COMPREHENSIVE)
        mock_dynamodb_table.delete_item.assert_called_once_with(
            Key={'report_id': "RPT-001", 'kind': "comprehensive"}
        )

    def test_delete_error(self, store, mock_dynamodb_table):
        mock_dynamodb_table.delete_item.side_effect = Exception("boom")
        with pytest.raises(StorageError):
            store.delete("RPT-001", AnalysisKind.COMPREHENSIVE)


# ============================================================================
# CONVERSION TESTS
# ============================================================================

class TestConversion:

    def test_floats_become_decimal(self):
        assert _to_dynamodb({"a": 1.5, "b": [2.25]}) == {"a": Decimal("1.5"), "b": [Decimal("2.25")]}

    def test_decimals_restored(self):
        assert _from_dynamodb({"a": Decimal("3"), "b": [Decimal("1.5")], "c": "x"}) == {
            "a": 3, "b": [1.5], "c": "x",
        }
