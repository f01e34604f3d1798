"""Tests for the remote-client adapter seam."""

from unittest.mock import MagicMock

import pytest
import structlog

from converge.core.errors import (
    DeadlineExceededError,
    EmptyResponseError,
    ErrorClass,
    FatalError,
    NotFoundError,
    TransientError,
)
from converge.core.settings import ConvergeSettings
from converge.execution.invoker import CodeClassifier, Invoker, RemoteClient, RemoteServiceError
from converge.execution.retry import NotFoundPolicy, RetryProfile, transient_classifier

from tests._support.fake_remote import FakeRemoteService


@pytest.fixture
def invoker(remote, limiter, poller):
    return Invoker(client=remote, rate_limiter=limiter, classifier=CodeClassifier(), poller=poller)


class TestRemoteServiceError:
    """Tests for the vendor error shape."""

    def test_str_includes_code_and_request_id(self):
        err = RemoteServiceError("InternalError", "boom", request_id="req-1")
        assert str(err) == "[InternalError] boom (request_id=req-1)"

    def test_code_only(self):
        assert str(RemoteServiceError("InternalError")) == "[InternalError]"


class TestCodeClassifier:
    """Vendor code → ErrorClass."""

    def test_transient_codes(self):
        classify = CodeClassifier()
        assert classify(RemoteServiceError("RequestLimitExceeded")) == ErrorClass.TRANSIENT
        assert classify(RemoteServiceError("ClientError.NetworkError")) == ErrorClass.TRANSIENT

    def test_not_found_prefixes(self):
        classify = CodeClassifier()
        assert classify(RemoteServiceError("ResourceNotFound.InstanceNotFound")) == ErrorClass.NOT_FOUND
        assert classify(RemoteServiceError("InvalidParameter.InstanceNotFound")) == ErrorClass.NOT_FOUND

    def test_everything_else_is_fatal(self):
        classify = CodeClassifier()
        assert classify(RemoteServiceError("InvalidParameterValue")) == ErrorClass.FATAL
        assert classify(ValueError("local bug")) == ErrorClass.FATAL

    def test_fallback(self):
        classify = CodeClassifier(fallback=transient_classifier)
        assert classify(ConnectionError("reset")) == ErrorClass.TRANSIENT

    def test_with_transient_extends_copy(self):
        base = CodeClassifier()
        extended = base.with_transient(["FailedOperation.ResourceBusy"])
        assert extended(RemoteServiceError("FailedOperation.ResourceBusy")) == ErrorClass.TRANSIENT
        assert base(RemoteServiceError("FailedOperation.ResourceBusy")) == ErrorClass.FATAL

    def test_from_settings(self):
        settings = ConvergeSettings(transient_error_codes=["Busy"], not_found_error_prefixes=["Gone"])
        classify = CodeClassifier.from_settings(settings)
        assert classify(RemoteServiceError("Busy")) == ErrorClass.TRANSIENT
        assert classify(RemoteServiceError("Gone.Really")) == ErrorClass.NOT_FOUND
        assert classify(RemoteServiceError("RequestLimitExceeded")) == ErrorClass.FATAL


class TestInvokerCall:
    """Single classified calls."""

    def test_fake_remote_satisfies_protocol(self):
        assert isinstance(FakeRemoteService(), RemoteClient)

    def test_returns_response(self, invoker, remote):
        remote.script("DescribeDBInstances", {"InstanceSet": [{"InstanceId": "mssql-1"}]})
        response = invoker.call("DescribeDBInstances", {"InstanceIdSet": ["mssql-1"]})
        assert response["InstanceSet"][0]["InstanceId"] == "mssql-1"
        assert remote.requests("DescribeDBInstances") == [{"InstanceIdSet": ["mssql-1"]}]

    def test_acquires_rate_limit(self, invoker, remote, limiter):
        remote.script("DescribeOrders", {"Deals": []})
        invoker.call("DescribeOrders")
        assert limiter.actions() == ["DescribeOrders"]

    def test_none_response_is_empty_response_error(self, remote, limiter):
        client = MagicMock()
        client.invoke.return_value = None
        invoker = Invoker(client=client, rate_limiter=limiter)
        with pytest.raises(EmptyResponseError) as exc_info:
            invoker.call("DescribeAccounts", {"InstanceId": "mssql-1"})
        assert exc_info.value.context.action == "DescribeAccounts"
        client.invoke.assert_called_once_with("DescribeAccounts", {"InstanceId": "mssql-1"})

    @pytest.mark.parametrize(
        "code, expected",
        [
            ("RequestLimitExceeded", TransientError),
            ("ResourceNotFound.InstanceNotFound", NotFoundError),
            ("InvalidParameterValue", FatalError),
        ],
    )
    def test_vendor_errors_are_classified(self, invoker, remote, code, expected):
        remote.install_fault("DescribeDBs", code, request_id="req-5")
        remote.script("DescribeDBs", {})
        with pytest.raises(expected) as exc_info:
            invoker.call("DescribeDBs")
        err = exc_info.value
        assert type(err) is expected
        assert err.context.action == "DescribeDBs"
        assert err.context.request_id == "req-5"
        assert isinstance(err.__cause__, RemoteServiceError)

    def test_per_call_classifier_override(self, invoker, remote):
        remote.install_fault("ModifyDB", "FailedOperation.ResourceBusy")
        remote.script("ModifyDB", {})
        classify = CodeClassifier().with_transient(["FailedOperation.ResourceBusy"])
        with pytest.raises(TransientError):
            invoker.call("ModifyDB", classifier=classify)

    def test_converge_errors_pass_through(self, invoker, remote):
        original = NotFoundError("already classified")
        remote.script("DescribeDBs", original)
        with pytest.raises(NotFoundError) as exc_info:
            invoker.call("DescribeDBs")
        assert exc_info.value is original
        assert exc_info.value.context.action == "DescribeDBs"

    def test_failures_are_logged(self, invoker, remote):
        remote.install_fault("CreateDB", "InvalidParameterValue", request_id="req-8")
        remote.script("CreateDB", {})
        with structlog.testing.capture_logs() as logs:
            with pytest.raises(FatalError):
                invoker.call("CreateDB")
        entry = next(e for e in logs if e["event"] == "invoker.call_failed")
        assert entry["log_level"] == "error"
        assert entry["action"] == "CreateDB"
        assert entry["request_id"] == "req-8"
        assert entry["error_class"] == "FATAL"

    def test_transient_failures_log_warning(self, invoker, remote):
        remote.install_fault("DescribeDBs", "InternalError")
        remote.script("DescribeDBs", {})
        with structlog.testing.capture_logs() as logs:
            with pytest.raises(TransientError):
                invoker.call("DescribeDBs")
        entry = next(e for e in logs if e["event"] == "invoker.call_failed")
        assert entry["log_level"] == "warning"


class TestInvokerCallWithRetry:
    """Retried calls."""

    def test_retries_transient_faults(self, invoker, remote, fake_clock):
        remote.install_fault("DescribeFlowStatus", "RequestLimitExceeded", times=2)
        remote.script("DescribeFlowStatus", {"Status": 0})
        assert invoker.call_with_retry("DescribeFlowStatus", {"FlowId": 7}) == {"Status": 0}
        assert remote.call_count("DescribeFlowStatus") == 3
        assert fake_clock.sleeps == [5.0, 5.0]

    def test_fatal_not_retried(self, invoker, remote):
        remote.install_fault("CreateDB", "InvalidParameterValue", times=5)
        remote.script("CreateDB", {})
        with pytest.raises(FatalError):
            invoker.call_with_retry("CreateDB")
        assert remote.call_count("CreateDB") == 1

    def test_not_found_as_absent(self, invoker, remote):
        remote.install_fault("DescribeAccounts", "ResourceNotFound.InstanceNotFound")
        remote.script("DescribeAccounts", {})
        assert invoker.call_with_retry("DescribeAccounts", not_found=NotFoundPolicy.ABSENT) is None

    def test_deadline(self, invoker, remote):
        remote.install_fault("DescribeDBs", "InternalError", times=100)
        remote.script("DescribeDBs", {})
        with pytest.raises(DeadlineExceededError) as exc_info:
            invoker.call_with_retry("DescribeDBs", profile=RetryProfile("tiny", 1.0, 3.0))
        assert exc_info.value.attempts == 3
        assert exc_info.value.context.action == "DescribeDBs"
