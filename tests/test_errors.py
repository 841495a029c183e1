from __future__ import annotations

from sqlalchemy.exc import OperationalError

from hira.errors import (
    API_ERROR,
    STORAGE_ERROR,
    UNKNOWN_ERROR,
    BackendError,
    StepTransitionError,
    ValidationError,
    format_error_message,
    handle_error,
    is_error_type,
)


def test_hira_errors_pass_through_with_context():
    err = ValidationError("Title is required")
    assert handle_error(err, "save project") is err
    assert err.context == "save project"


def test_database_errors_become_backend_errors():
    err = handle_error(OperationalError("select 1", {}, Exception("locked")), "load projects")
    assert isinstance(err, BackendError)
    assert is_error_type(err, API_ERROR)
    assert format_error_message(err) == "API Error: Database operation failed"


def test_os_and_unknown_errors():
    assert handle_error(PermissionError("denied")).code == STORAGE_ERROR
    err = handle_error(KeyError("x"), "step")
    assert err.code == UNKNOWN_ERROR
    assert isinstance(err.__cause__, KeyError)


def test_step_transition_error_is_a_validation_error():
    err = StepTransitionError("Please complete Project Details first", current_step=0, requested_step=2)
    assert isinstance(err, ValidationError)
    assert format_error_message(err) == "Validation Error: Please complete Project Details first"
    assert err.to_dict()["code"] == "STEP_LOCKED"
