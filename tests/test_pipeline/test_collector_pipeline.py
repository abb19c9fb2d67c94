"""Tests for CollectorPipeline."""

import asyncio
import time

import pymysql
import pytest

from mymon.config.models import MonitorSettings
from mymon.utils.errors import (
    ConfigError,
    PipelineTimeout,
    PublishError,
    RequiredStepError,
    TargetConnectionError,
)
from mymon.utils.metrics import MetricKind
from mymon.utils.status import Role

from conftest import FakeSession


def pushed_names(publisher_mock):
    records = publisher_mock.push.call_args[0][0]
    return {record.name: record for record in records}


def liveness_values(harness):
    """(alive, ...) values of every liveness push, in order."""
    pushes = []
    for call in harness.liveness_publisher.push.call_args_list:
        records = {record.name: record.value for record in call[0][0]}
        pushes.append(records)
    return pushes


@pytest.mark.asyncio
async def test_pipeline_success_publishes_all_steps(make_pipeline, make_target):
    """Test a healthy master: every step runs and one batch is pushed."""
    session = FakeSession()
    target = make_target(tags={"cluster": "orders"})
    harness = make_pipeline({target.key: session})

    result = await harness.pipeline.run(target)

    assert result.success is True
    assert result.published is True
    assert result.error is None
    assert result.role == Role.MASTER
    harness.publisher.push.assert_called_once()

    records = pushed_names(harness.publisher)
    assert records["global_status.com_select"].value == 100.0
    assert records["global_status.com_select"].kind == MetricKind.COUNTER
    assert records["global_status.threads_connected"].kind == MetricKind.GAUGE
    assert records["variables.max_connections"].value == 151.0
    assert records["innodb.history_list_length"].value == 17.0
    assert records["binlog.count"].value == 2.0
    assert records["binlog.file_size_total"].value == 1500.0
    assert "global_status.ssl_cipher" not in records
    assert "variables.datadir" not in records

    tags = records["binlog.count"].tags
    assert tags["role"] == "master"
    assert tags["read_only"] == "0"
    assert tags["port"] == "3306"
    assert tags["cluster"] == "orders"
    assert records["binlog.count"].endpoint == "db1.example.com"

    assert session.closed is True
    assert any(q.startswith("SHOW FULL PROCESSLIST") for q in session.queries)
    assert harness.liveness.snapshot()[target.key].alive is True


@pytest.mark.asyncio
@pytest.mark.parametrize("failing_query,step", [
    ("SELECT @@GLOBAL.read_only", "read_only"),
    ("SHOW SLAVE STATUS", "slave_status"),
    ("SHOW /*!50001 GLOBAL */ STATUS", "global_status"),
    ("SHOW GLOBAL VARIABLES", "global_variables"),
    ("SHOW ENGINE INNODB STATUS", "engine_status"),
    ("SHOW BINARY LOGS", "binary_logs"),
])
async def test_required_step_failure_discards_everything(make_pipeline, make_target, failing_query, step):
    """Test any required step failure: no metrics, no publish, target down."""
    session = FakeSession()
    session.responses[failing_query] = pymysql.err.OperationalError(1227, "Access denied")
    target = make_target()
    harness = make_pipeline({target.key: session})

    result = await harness.pipeline.run(target)

    assert result.success is False
    assert result.metrics == []
    assert isinstance(result.error, RequiredStepError)
    assert result.error.step == step
    harness.publisher.push.assert_not_called()
    assert liveness_values(harness) == [{"mysql.alive": 0.0}]
    assert session.closed is True
    assert not any(q.startswith("SHOW FULL PROCESSLIST") for q in session.queries)


@pytest.mark.asyncio
async def test_connection_failure_marks_down(make_pipeline, make_target, bad_credentials):
    """Test authentication failure aborts before any query."""
    target = make_target(host="db3.example.com")
    harness = make_pipeline({target.key: bad_credentials})

    result = await harness.pipeline.run(target)

    assert result.success is False
    assert isinstance(result.error, TargetConnectionError)
    harness.publisher.push.assert_not_called()
    assert harness.liveness.snapshot()[target.key].alive is False


@pytest.mark.asyncio
async def test_publish_failure_keeps_target_alive(make_pipeline, make_target):
    """Test agent network failure: logged, but liveness still up."""
    target = make_target()
    harness = make_pipeline({target.key: FakeSession()})
    harness.publisher.push.side_effect = PublishError("Push to agent failed: connection refused")

    result = await harness.pipeline.run(target)

    assert result.success is True
    assert result.published is False
    assert harness.liveness.snapshot()[target.key].alive is True
    assert liveness_values(harness)[0]["mysql.alive"] == 1.0


@pytest.mark.asyncio
async def test_processlist_failure_does_not_retract_publish(make_pipeline, make_target):
    """Test diagnostic step failure after a successful publish."""
    session = FakeSession()
    session.responses["SHOW FULL PROCESSLIST"] = pymysql.err.OperationalError(1227, "Access denied")
    target = make_target()
    harness = make_pipeline({target.key: session})

    result = await harness.pipeline.run(target)

    assert result.success is True
    assert result.published is True
    harness.publisher.push.assert_called_once()
    assert harness.liveness.snapshot()[target.key].alive is True
    assert session.closed is True


@pytest.mark.asyncio
async def test_hung_step_fails_at_deadline(make_pipeline, make_target):
    """Test a step blocking 10s is abandoned near the deadline, not after 10s."""
    session = FakeSession()
    session.block_on("SHOW GLOBAL VARIABLES", seconds=10.0)
    target = make_target()
    harness = make_pipeline(
        {target.key: session},
        MonitorSettings(interval=5, deadline=0.3, workers=2, abort_grace=2.0)
    )

    start = time.monotonic()
    result = await harness.pipeline.run(target)
    duration = time.monotonic() - start

    assert duration < 3.0
    assert result.success is False
    assert isinstance(result.error, PipelineTimeout)
    assert result.elapsed < 1.0
    assert session.aborted.is_set()
    assert session.closed is True
    harness.publisher.push.assert_not_called()
    # Reported down exactly once even though the worker also saw the failure
    assert liveness_values(harness) == [{"mysql.alive": 0.0}]


@pytest.mark.asyncio
async def test_deadline_during_processlist_keeps_success(make_pipeline, make_target):
    """Test a deadline hit in the diagnostic step only aborts that step."""
    session = FakeSession()
    session.block_on("SHOW FULL PROCESSLIST", seconds=10.0)
    target = make_target()
    harness = make_pipeline(
        {target.key: session},
        MonitorSettings(interval=5, deadline=0.3, workers=2, abort_grace=2.0)
    )

    result = await harness.pipeline.run(target)

    assert result.success is True
    assert result.published is True
    assert session.aborted.is_set()
    assert harness.liveness.snapshot()[target.key].alive is True


@pytest.mark.asyncio
async def test_slave_role_and_metrics(make_pipeline, make_target):
    """Test replication status drives role, tags and slave metrics."""
    session = FakeSession()
    session.responses["SELECT @@GLOBAL.read_only"] = [{"read_only": 1}]
    session.responses["SHOW SLAVE STATUS"] = [{
        "Slave_IO_Running": "Yes",
        "Slave_SQL_Running": "No",
        "Seconds_Behind_Master": None,
        "Read_Master_Log_Pos": 4711,
        "Exec_Master_Log_Pos": 4700,
        "Master_Host": "db0.example.com",
    }]
    target = make_target()
    harness = make_pipeline({target.key: session})

    result = await harness.pipeline.run(target)

    assert result.role == Role.SLAVE
    assert result.read_only is True
    records = pushed_names(harness.publisher)
    assert records["slave.slave_io_running"].value == 1.0
    assert records["slave.slave_sql_running"].value == 0.0
    assert records["slave.seconds_behind_master"].value == -1.0
    assert records["slave.read_master_log_pos"].kind == MetricKind.COUNTER
    assert records["global_status.com_select"].tags["role"] == "slave"
    assert liveness_values(harness)[0] == {"mysql.alive": 1.0, "mysql.is_slave": 1.0, "mysql.read_only": 1.0}


@pytest.mark.asyncio
async def test_read_only_without_replication(make_pipeline, make_target):
    """Test a read-only instance that is not replicating."""
    session = FakeSession()
    session.responses["SELECT @@GLOBAL.read_only"] = [{"read_only": 1}]
    target = make_target()
    harness = make_pipeline({target.key: session})

    result = await harness.pipeline.run(target)

    assert result.role == Role.READ_ONLY_UNKNOWN
    assert pushed_names(harness.publisher)["binlog.count"].tags["role"] == "read-only-unknown"


@pytest.mark.asyncio
async def test_concurrent_targets_do_not_share_role(make_pipeline, make_target):
    """Test role and tags stay per invocation when pipelines overlap."""
    master = FakeSession()
    slave = FakeSession()
    slave.responses["SHOW SLAVE STATUS"] = [{"Slave_IO_Running": "Yes", "Slave_SQL_Running": "Yes"}]
    master_target = make_target(host="db1.example.com")
    slave_target = make_target(host="db2.example.com")
    harness = make_pipeline({master_target.key: master, slave_target.key: slave})

    results = await asyncio.gather(
        harness.pipeline.run(master_target),
        harness.pipeline.run(slave_target),
    )

    assert [r.role for r in results] == [Role.MASTER, Role.SLAVE]
    for call in harness.publisher.push.call_args_list:
        records = call[0][0]
        expected = "slave" if records[0].endpoint == "db2.example.com" else "master"
        assert {record.tags["role"] for record in records} == {expected}


@pytest.mark.asyncio
async def test_ignore_metrics_filters_names(make_pipeline, make_target):
    """Test configured metric names are never pushed."""
    target = make_target(ignore_metrics=["global_status.com_select", "binlog.count"])
    harness = make_pipeline({target.key: FakeSession()})

    await harness.pipeline.run(target)

    records = pushed_names(harness.publisher)
    assert "global_status.com_select" not in records
    assert "binlog.count" not in records
    assert "binlog.file_size_total" in records


@pytest.mark.asyncio
async def test_unknown_engine_is_required_step_failure(make_pipeline, make_target):
    """Test an unregistered engine strategy fails the engine step."""
    target = make_target(engine="rocksdb")
    harness = make_pipeline({target.key: FakeSession()})

    result = await harness.pipeline.run(target)

    assert result.success is False
    assert result.error.step == "engine_status"
    harness.publisher.push.assert_not_called()


@pytest.mark.asyncio
async def test_innodb_metrics_engine(make_pipeline, make_target):
    """Test the information_schema based engine strategy."""
    session = FakeSession()
    session.responses["SELECT NAME, COUNT, TYPE FROM information_schema.INNODB_METRICS"] = [
        {"NAME": "lock_deadlocks", "COUNT": 3, "TYPE": "counter"},
        {"NAME": "buffer_pool_size", "COUNT": 134217728, "TYPE": "value"},
    ]
    target = make_target(engine="innodb_metrics")
    harness = make_pipeline({target.key: session})

    result = await harness.pipeline.run(target)

    assert result.success is True
    records = pushed_names(harness.publisher)
    assert records["innodb.lock_deadlocks"].kind == MetricKind.COUNTER
    assert records["innodb.buffer_pool_size"].kind == MetricKind.GAUGE


@pytest.mark.asyncio
async def test_uncreatable_snapshot_dir_is_config_error(make_pipeline, make_target, tmp_path):
    """Test a bad working directory skips the target without a liveness event."""
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("x")
    target = make_target(snapshot_dir=str(blocker / "snapshots"))
    session = FakeSession()
    harness = make_pipeline({target.key: session})

    result = await harness.pipeline.run(target)

    assert result.success is False
    assert isinstance(result.error, ConfigError)
    assert session.queries == []
    harness.liveness_publisher.push.assert_not_called()


@pytest.mark.asyncio
async def test_processlist_snapshot_written(make_pipeline, make_target, tmp_path):
    """Test the diagnostic step saves a snapshot when configured."""
    target = make_target(snapshot_dir=str(tmp_path / "snap"))
    harness = make_pipeline({target.key: FakeSession()})

    await harness.pipeline.run(target)

    files = list((tmp_path / "snap").glob("processlist_db1.example.com_3306_*.json"))
    assert len(files) == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
