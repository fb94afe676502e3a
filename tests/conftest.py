import pytest
import pandas as pd
from fastapi.testclient import TestClient
from filter_engine.main import app
import logging

@pytest.fixture(autouse=True)
def setup_logging():
    # Configure logging for tests
    logging.basicConfig(
        level=logging.DEBUG,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

@pytest.fixture
def client():
    return TestClient(app)

@pytest.fixture
def test_dataset_path(tmp_path):
    # Create a test dataset
    dataset_path = tmp_path / "test.csv"
    dataset_path.write_text(
        "name,score,city,joined\n"
        "alice,1,Paris,2024-01-01\n"
        "bob,2,Berlin,2024-01-02\n"
        "carol,3,Paris,2024-01-03\n"
        "dave,4,,2024-01-10\n"
        "erin,5,Rome,2024-01-11\n"
        "frank,6,Berlin,2024-02-01\n"
    )
    return str(dataset_path)

@pytest.fixture
def scores():
    return [1, 2, 3, 4, 5, 6, 7, 8, 9, 10]

@pytest.fixture
def test_excel_path(tmp_path):
    # Excel columns come back as datetime64
    dataset_path = tmp_path / "visits.xlsx"
    pd.DataFrame({
        "visitor": ["ann", "ben", "cid", "dot", "eve", "fay"],
        "visited": pd.to_datetime([
            "2024-01-01", "2024-01-05", "2024-01-09", "2024-01-13", "2024-01-17", "2024-01-21"
        ]),
    }).to_excel(dataset_path, index=False)
    return str(dataset_path)
