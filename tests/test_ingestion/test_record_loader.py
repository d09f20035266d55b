"""Tests for record_loader — DataFrame / CSV to MatrixInput."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from config.settings import MatrixSettings
from statement_matrix.ingestion.record_loader import records_from_csv, records_from_dataframe
from statement_matrix.matrix.engine import build_matrix_model
from statement_matrix.matrix.models import BLANK


@pytest.fixture()
def df() -> pd.DataFrame:
    return pd.DataFrame({
        "region": ["US", "US", "EU", None],
        "city": ["NY", "Boston", "Paris", "Nowhere"],
        "year": [2023, 2024, 2023, 2023],
        "sales": [100.0, 150.0, np.nan, 5.0],
        "owner": ["Ana", "Bo", "Cy", None],
        "area": ["Americas", "Americas", "Europe", "Other"],
    })


class TestRecordsFromDataFrame:
    def test_tuples(self, df):
        data = records_from_dataframe(df, ["region", "city"], ["year"], ["sales"])
        assert data.records[0].row == ("US", "NY")
        assert data.records[0].columns == ("2023",)
        assert data.row_fields == ["region", "city"]
        assert data.value_fields == ["sales"]

    def test_blank_categories(self, df):
        data = records_from_dataframe(df, ["region"], ["year"], ["sales"])
        assert data.records[3].row == (BLANK,)

    def test_nan_values_become_none(self, df):
        data = records_from_dataframe(df, ["region"], ["year"], ["sales"], extra_fields=["owner"])
        assert data.records[2].values == {"sales": None}
        assert data.records[3].fields == {"owner": None}
        assert data.records[0].values["sales"] == 100.0
        assert type(data.records[0].values["sales"]) is float

    def test_group_field(self, df):
        data = records_from_dataframe(df, ["region"], group_field="area")
        assert data.group_field == "area"
        assert data.records[0].group == "Americas"

    def test_missing_column_raises(self, df):
        with pytest.raises(KeyError, match="profit"):
            records_from_dataframe(df, ["region"], value_fields=["profit"])

    def test_feeds_engine(self, df):
        data = records_from_dataframe(df, ["region"], ["year"], ["sales"])
        model = build_matrix_model(data, MatrixSettings(blank_as_zero=True))
        assert model.value("US", "2023||sales") == 100.0
        assert model.value("EU", "2023||sales") == 0.0


class TestRecordsFromCsv:
    def test_reads_csv(self, tmp_path):
        path = tmp_path / "sales.csv"
        path.write_text("region,year,sales\nUS,2023,10\nUS,2023,5\n")
        data = records_from_csv(path, ["region"], column_fields=["year"], value_fields=["sales"])
        assert len(data.records) == 2
        model = build_matrix_model(data, MatrixSettings())
        assert model.value("US", "2023||sales") == 15.0
