import asyncio
import json
import logging

import pytest

from sensors2mqtt.discovery import Topics
from sensors2mqtt.drivers import OneWireDriver
from sensors2mqtt.lifecycle import LifecycleState, ReportingLifecycle
from sensors2mqtt.mqtt_client import ConnectFailure, PublishFailure
from sensors2mqtt.sensors import OneWireBus, Reading, SensorError
from tests.fakes import FakeClient, ScriptedDriver

DISCOVERY_TOPIC = "homeassistant/sensor/test/temperature/config"
STATE_TOPIC = "home/sensor/test/state"


def temp(value, ts):
    return Reading("test", {"temperature": value}, ts)


@pytest.mark.asyncio
async def test_run_announces_then_reports_changes(fake_client, run_context):
    driver = ScriptedDriver([[temp(20.0, 0)], [temp(20.2, 1)], [temp(21.0, 2)]])
    lifecycle = ReportingLifecycle(driver, fake_client, run_context, poll_interval=0)

    state = await lifecycle.run()

    assert state is LifecycleState.STOPPED
    assert driver.configured and driver.closed
    assert fake_client.disconnected
    assert fake_client.topics() == [DISCOVERY_TOPIC, STATE_TOPIC, STATE_TOPIC]
    assert [payload for _, payload in fake_client.messages[1:]] == [{"temperature": 20.0}, {"temperature": 21.0}]
    assert lifecycle.sensor_states["test"].last_value == {"temperature": 21.0}
    assert not run_context.shutdown_requested


@pytest.mark.asyncio
async def test_heartbeat_republishes_unchanged_value(fake_client, run_context):
    driver = ScriptedDriver([[temp(20.0, 0)], [temp(20.0, 30)], [temp(20.0, 61)]])
    lifecycle = ReportingLifecycle(driver, fake_client, run_context, poll_interval=0)

    await lifecycle.run()

    assert fake_client.topics().count(STATE_TOPIC) == 2


@pytest.mark.asyncio
async def test_connect_failure_fails_run(run_context):
    client = FakeClient(connect_error=ConnectFailure("refused"))
    driver = ScriptedDriver([[temp(20.0, 0)]])

    state = await ReportingLifecycle(driver, client, run_context, poll_interval=0).run()

    assert state is LifecycleState.FAILED
    assert run_context.shutdown_requested
    assert client.messages == []
    assert driver.closed


@pytest.mark.asyncio
async def test_discovery_failure_is_fatal(run_context):
    client = FakeClient(publish_error=PublishFailure("broker gone"))
    driver = ScriptedDriver([[temp(20.0, 0)]])

    state = await ReportingLifecycle(driver, client, run_context, poll_interval=0).run()

    assert state is LifecycleState.FAILED
    assert driver.batches, "polling must not start after a failed announce"


@pytest.mark.asyncio
async def test_read_failure_is_fatal_by_default(fake_client, run_context, caplog):
    driver = ScriptedDriver([SensorError("bus hiccup"), [temp(20.0, 1)]])

    with caplog.at_level(logging.ERROR):
        state = await ReportingLifecycle(driver, fake_client, run_context, poll_interval=0).run()

    assert state is LifecycleState.FAILED
    assert "bus hiccup" in caplog.text
    assert fake_client.topics() == [DISCOVERY_TOPIC]


@pytest.mark.asyncio
async def test_read_retries_tolerate_transient_failures(fake_client, run_context):
    driver = ScriptedDriver([SensorError("bus hiccup"), [temp(20.0, 1)]])

    state = await ReportingLifecycle(driver, fake_client, run_context, poll_interval=0, read_retries=1).run()

    assert state is LifecycleState.STOPPED
    assert fake_client.topics() == [DISCOVERY_TOPIC, STATE_TOPIC]


@pytest.mark.asyncio
async def test_error_while_stopping_is_not_a_failure(fake_client, run_context):
    class StopThenFail(ScriptedDriver):
        async def read(self, ctx):
            ctx.stop()
            raise SensorError("interrupted")

    state = await ReportingLifecycle(StopThenFail([]), fake_client, run_context, poll_interval=0).run()

    assert state is LifecycleState.STOPPED
    assert not run_context.shutdown_requested


@pytest.mark.asyncio
async def test_stop_interrupts_poll_delay(fake_client, run_context):
    driver = ScriptedDriver([[temp(20.0, 0)], [temp(25.0, 1)]])
    lifecycle = ReportingLifecycle(driver, fake_client, run_context, poll_interval=30)

    task = asyncio.create_task(lifecycle.run())
    await asyncio.sleep(0.05)
    run_context.stop()
    state = await asyncio.wait_for(task, timeout=2)

    assert state is LifecycleState.STOPPED
    assert fake_client.topics() == [DISCOVERY_TOPIC, STATE_TOPIC]


@pytest.mark.asyncio
async def test_task_cancellation_releases_connection(fake_client, run_context):
    driver = ScriptedDriver([[temp(20.0, 0)]])
    lifecycle = ReportingLifecycle(driver, fake_client, run_context, poll_interval=30)

    task = asyncio.create_task(lifecycle.run())
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert lifecycle.state is LifecycleState.STOPPED
    assert fake_client.disconnected
    assert not run_context.shutdown_requested


@pytest.fixture()
def names_file(tmp_path):
    path = tmp_path / "names.json"
    path.write_text(json.dumps({"28-000a": "kitchen"}))
    return str(path)


def onewire_driver(names_file):
    return OneWireDriver(Topics("boiler", base_topic="nick"), OneWireBus(reader=dict), names_file)


@pytest.mark.asyncio
async def test_onewire_announces_named_probes_at_startup(fake_client, run_context, names_file):
    driver = onewire_driver(names_file)
    lifecycle = ReportingLifecycle(driver, fake_client, run_context)
    await driver.configure(run_context)

    await lifecycle.announce()
    await lifecycle.report(Reading("28-000a", {"temperature": 19.5}, 0))
    await lifecycle.report(Reading("28-000a", {"temperature": 21.0}, 1))

    assert fake_client.messages[0] == (
        "homeassistant/sensor/boiler_28-000a/temperature/config",
        {
            "name": "boiler_kitchen",
            "device_class": "temperature",
            "state_topic": "nick/sensor/boiler/kitchen/state",
            "unit_of_measurement": "°C",
            "value_template": "{{ value_json.temperature }}",
        },
    )
    assert fake_client.topics()[1:] == ["nick/sensor/boiler/kitchen/state"] * 2


@pytest.mark.asyncio
async def test_unnamed_probe_is_announced_before_first_state(fake_client, run_context, names_file, caplog):
    driver = onewire_driver(names_file)
    lifecycle = ReportingLifecycle(driver, fake_client, run_context)
    await driver.configure(run_context)
    await lifecycle.announce()

    with caplog.at_level(logging.WARNING):
        await lifecycle.report(Reading("28-000b", {"temperature": 30.0}, 0))
        await lifecycle.report(Reading("28-000b", {"temperature": 35.0}, 1))

    assert "Failed to find name for 28-000b" in caplog.text
    assert fake_client.topics()[1:] == [
        "homeassistant/sensor/boiler_28-000b/temperature/config",
        "nick/sensor/boiler/28-000b/state",
        "nick/sensor/boiler/28-000b/state",
    ]
    assert lifecycle.sensor_states["28-000b"].display_name == "28-000b"


@pytest.mark.asyncio
async def test_unnamed_probe_without_late_discovery(fake_client, run_context, names_file):
    driver = onewire_driver(names_file)
    lifecycle = ReportingLifecycle(driver, fake_client, run_context, announce_late=False)
    await driver.configure(run_context)
    await lifecycle.announce()

    assert await lifecycle.report(Reading("28-000b", {"temperature": 30.0}, 0))

    assert fake_client.topics()[1:] == ["nick/sensor/boiler/28-000b/state"]


@pytest.mark.asyncio
async def test_missing_names_file_fails_startup(fake_client, run_context, tmp_path):
    driver = onewire_driver(str(tmp_path / "absent.json"))

    state = await ReportingLifecycle(driver, fake_client, run_context).run()

    assert state is LifecycleState.FAILED
    assert not fake_client.connected
    assert fake_client.messages == []
