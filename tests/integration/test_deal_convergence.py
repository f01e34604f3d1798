"""End-to-end convergence of an order-based instance creation.

Walks the full path a resource manager takes: submit through the
``Invoker``, resolve the deal, poll the flow, then list what was created.
Everything runs against the scripted remote on a fake clock.
"""

import pytest

from converge.core.errors import DeadlineExceededError, TaskFailedError
from converge.core.ids import IdLayout
from converge.execution.convergence import (
    FLOW_STATUS_TABLE,
    ConvergenceWorkflow,
    DealEntry,
    StatusReport,
    Submission,
)
from converge.execution.invoker import CodeClassifier, Invoker
from converge.execution.pagination import Paginator

from tests._support import make_items

DB_ID = IdLayout("sqlserver_db", ("instance_id", "db_name"))


@pytest.fixture
def invoker(remote, limiter, poller):
    return Invoker(client=remote, rate_limiter=limiter, classifier=CodeClassifier(), poller=poller)


@pytest.fixture
def workflow(poller, limiter):
    return ConvergenceWorkflow(poller=poller, rate_limiter=limiter)


def lookup_deal(invoker):
    def resolve(deal_name):
        response = invoker.call_with_retry("DescribeOrders", {"DealNames": [deal_name]})
        return [
            DealEntry.of(deal["InstanceIdSet"], deal.get("FlowId"))
            for deal in response["Deals"]
        ]

    return resolve


def describe_flow(invoker):
    def query(flow_id):
        response = invoker.call("DescribeFlowStatus", {"FlowId": flow_id})
        return StatusReport(code=response["Status"], request_id=response.get("RequestId"))

    return query


class TestDealConvergence:
    """Deal → one instance id + one handle → poll to a terminal status."""

    def test_instance_returned_after_four_polls(self, remote, invoker, workflow, fake_clock):
        remote.script("CreateDBInstances", {"DealName": "deal-20260101"})
        remote.script("DescribeOrders", {"Deals": [{"InstanceIdSet": ["mssql-k8e2"], "FlowId": 3301}]})
        remote.script(
            "DescribeFlowStatus",
            {"Status": 1, "RequestId": "r1"},
            {"Status": 1, "RequestId": "r2"},
            {"Status": 1, "RequestId": "r3"},
            {"Status": 0, "RequestId": "r4"},
        )

        created = invoker.call("CreateDBInstances", {"Zone": "ap-guangzhou-2", "GoodsNum": 1})
        instance_id = workflow.await_completion(
            Submission.order(created["DealName"], action="CreateDBInstances"),
            FLOW_STATUS_TABLE,
            resolve_order=lookup_deal(invoker),
            query_status=describe_flow(invoker),
            status_action="DescribeFlowStatus",
        )

        assert instance_id == "mssql-k8e2"
        assert remote.call_count("DescribeFlowStatus") == 4
        assert remote.requests("DescribeFlowStatus")[0] == {"FlowId": 3301}
        assert remote.requests("DescribeOrders") == [{"DealNames": ["deal-20260101"]}]
        assert fake_clock.sleeps == [10.0, 10.0, 10.0]

    def test_throttled_status_query_is_retried(self, remote, invoker, workflow):
        remote.script("DescribeOrders", {"Deals": [{"InstanceIdSet": ["mssql-k8e2"], "FlowId": 3301}]})
        remote.script("DescribeFlowStatus", {"Status": 0})
        remote.install_fault("DescribeFlowStatus", "RequestLimitExceeded", times=2)

        instance_id = workflow.await_completion(
            Submission.order("deal-1"),
            FLOW_STATUS_TABLE,
            resolve_order=lookup_deal(invoker),
            query_status=describe_flow(invoker),
        )
        assert instance_id == "mssql-k8e2"
        assert remote.call_count("DescribeFlowStatus") == 3

    def test_failed_flow_carries_request_id(self, remote, invoker, workflow):
        remote.script("DescribeOrders", {"Deals": [{"InstanceIdSet": ["mssql-k8e2"], "FlowId": 3301}]})
        remote.script("DescribeFlowStatus", {"Status": 1}, {"Status": 2, "RequestId": "req-fail"})

        with pytest.raises(TaskFailedError) as exc_info:
            workflow.await_completion(
                Submission.order("deal-1"),
                FLOW_STATUS_TABLE,
                resolve_order=lookup_deal(invoker),
                query_status=describe_flow(invoker),
                status_action="DescribeFlowStatus",
            )
        err = exc_info.value
        assert err.context.request_id == "req-fail"
        assert err.context.resource_id == "mssql-k8e2"
        assert err.handle == 3301

    def test_stuck_flow_times_out(self, remote, invoker, workflow, fake_clock):
        remote.script("DescribeOrders", {"Deals": [{"InstanceIdSet": ["mssql-k8e2"], "FlowId": 3301}]})
        remote.script("DescribeFlowStatus", {"Status": 1})

        with pytest.raises(DeadlineExceededError):
            workflow.await_completion(
                Submission.order("deal-1"),
                FLOW_STATUS_TABLE,
                resolve_order=lookup_deal(invoker),
                query_status=describe_flow(invoker),
            )
        assert fake_clock.now == 1200.0


class TestDatabaseLifecycle:
    """Create a database under a composite id, then find it by listing."""

    def test_create_then_find(self, remote, invoker, limiter, poller):
        databases = [{"Name": f"db{i}"} for i in range(20)] + [{"Name": "orders"}]
        remote.script("CreateDB", {"FlowId": 0})
        remote.serve_pages("DescribeDBs", databases, key="DBDetails")

        created = invoker.call("CreateDB", {"InstanceId": "mssql-1", "DBs": [{"DBName": "orders"}]})
        workflow = ConvergenceWorkflow(poller=poller, rate_limiter=limiter)
        db_id = workflow.await_completion(
            Submission.direct(DB_ID.encode(instance_id="mssql-1", db_name="orders"), created["FlowId"]),
            FLOW_STATUS_TABLE,
            query_status=lambda handle: pytest.fail("a zero flow id needs no polling"),
        )
        assert db_id == "mssql-1#orders"

        fields = DB_ID.decode(db_id)

        def list_dbs(offset, limit):
            request = {"InstanceId": fields["instance_id"], "Offset": offset, "Limit": limit}
            return invoker.call("DescribeDBs", request)["DBDetails"]

        paginator = Paginator(rate_limiter=limiter, poller=poller)
        found = paginator.find_one(list_dbs, lambda db: db["Name"] == fields["db_name"], 20, what="database")
        assert found == {"Name": "orders"}
        assert remote.call_count("DescribeDBs") == 2

    def test_full_listing_costs_extra_round_trip(self, remote, invoker, limiter):
        remote.serve_pages("DescribeAccounts", make_items(40), key="Accounts")

        def list_accounts(offset, limit):
            return invoker.call("DescribeAccounts", {"Offset": offset, "Limit": limit})["Accounts"]

        accounts = Paginator(rate_limiter=limiter).collect_all(list_accounts, 20)
        assert len(accounts) == 40
        assert remote.call_count("DescribeAccounts") == 3
