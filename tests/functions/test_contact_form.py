import json
from datetime import datetime, timezone
from unittest.mock import Mock, patch

import pytest

from src.functions.contact_form.contact_form import (
    build_item,
    count_items,
    handler,
    validate_submission,
)

ORIGIN = "https://beta.qandmedating.com"

sample_submission = {
    "name": "Test User",
    "email": "Test.User@Example.com",
    "message": "Hello there",
}


@pytest.fixture(autouse=True)
def contact_env(monkeypatch):
    monkeypatch.setenv("TABLE_NAME", "ContactForm-Beta")
    monkeypatch.setenv("MAX_ITEMS", "100")
    monkeypatch.setenv("ALLOWED_ORIGINS", f"{ORIGIN},http://localhost:3000")
    monkeypatch.setenv("STAGE", "Beta")


@pytest.fixture
def mock_table():
    """Fixture to provide access to the mocked table"""
    with patch("src.functions.contact_form.contact_form.boto3") as boto3:
        table = boto3.resource.return_value.Table.return_value
        table.scan.return_value = {"Count": 3}
        table.put_item.return_value = {}
        yield table


def event(body, origin=ORIGIN):
    return {"headers": {"origin": origin}, "body": body if isinstance(body, str) else json.dumps(body)}


def test_submission_is_stored(mock_table):
    # Act
    response = handler(event(sample_submission), None)

    # Assert
    assert response["statusCode"] == 200
    assert response["headers"]["Access-Control-Allow-Origin"] == ORIGIN
    item = mock_table.put_item.call_args.kwargs["Item"]
    assert item["email"] == "test.user@example.com"
    assert item["subject"] == "General Inquiry"
    assert item["stage"] == "Beta"
    assert json.loads(response["body"])["timestamp"] == item["timestamp"]


def test_missing_fields_are_rejected(mock_table):
    response = handler(event({"name": "Test User"}), None)

    assert response["statusCode"] == 400
    assert json.loads(response["body"])["error"] == "Missing required fields: email, message"
    mock_table.put_item.assert_not_called()


def test_invalid_json(mock_table):
    response = handler(event("{not json"), None)

    assert response["statusCode"] == 400
    assert json.loads(response["body"])["error"] == "Invalid JSON"


def test_non_object_body(mock_table):
    response = handler(event([1, 2]), None)

    assert response["statusCode"] == 400


def test_full_table_rejects_submissions(mock_table):
    # Arrange
    mock_table.scan.return_value = {"Count": 100}

    # Act
    response = handler(event(sample_submission), None)

    # Assert
    assert response["statusCode"] == 503
    mock_table.put_item.assert_not_called()


def test_unknown_origin_gets_no_cors_headers(mock_table):
    response = handler(event(sample_submission, origin="https://evil.example"), None)

    assert response["statusCode"] == 200
    assert "Access-Control-Allow-Origin" not in response["headers"]


def test_storage_failure_returns_500(mock_table):
    mock_table.put_item.side_effect = Exception("DynamoDB unavailable")

    response = handler(event(sample_submission), None)

    assert response["statusCode"] == 500


def test_count_items_follows_pages():
    table = Mock()
    table.scan.side_effect = [
        {"Count": 2, "LastEvaluatedKey": {"email": "a@example.com"}},
        {"Count": 1},
    ]

    assert count_items(table) == 3
    assert table.scan.call_args.kwargs["ExclusiveStartKey"] == {"email": "a@example.com"}


def test_validate_submission_checks_email():
    assert validate_submission({**sample_submission, "email": "not-an-email"}) == "Invalid email address"
    assert validate_submission(sample_submission) is None


def test_build_item_keeps_optional_phone():
    now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    item = build_item({**sample_submission, "subject": "Waitlist", "phone": "555-0100"}, now)

    assert item["date"] == "2024-05-01"
    assert item["subject"] == "Waitlist"
    assert item["phone"] == "555-0100"
