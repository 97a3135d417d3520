import asyncio
import json

import pytest

from portcalc import telemetry
from portcalc.calculator import CalculationError, evaluate, parse_call
from portcalc.models import InitMessage, PortMessage, ProgramInfo
from portcalc.ports import OutputPort
from portcalc import program as program_module
from portcalc.program import Program
from portcalc.transport import PortLink, TransportClosed
from tests.utils.wait import wait_for_condition


@pytest.fixture(autouse=True)
def _clean_trace():
    telemetry.reset()
    yield
    telemetry.reset()


def test_output_port_delivers_to_subscribers_until_unsubscribed():
    port = OutputPort()
    seen_a, seen_b = [], []

    port.subscribe(seen_a.append)
    port.subscribe(seen_b.append)
    port.send(1)
    port.unsubscribe(seen_a.append)
    port.unsubscribe(lambda value: None)
    port.send(2)

    assert seen_a == [1]
    assert seen_b == [1, 2]
    assert port.subscribers == [seen_b.append]


def test_output_port_allows_unsubscribe_during_delivery():
    port = OutputPort()
    seen = []

    def once(value):
        port.unsubscribe(once)
        seen.append(("once", value))

    port.subscribe(once)
    port.subscribe(lambda value: seen.append(("always", value)))
    port.send("a")
    port.send("b")

    assert seen == [("once", "a"), ("always", "a"), ("always", "b")]


def test_models_round_trip_wire_payloads():
    init = InitMessage(flags="p1ass(1)")
    assert InitMessage.from_payload(init.to_payload()) == init
    assert InitMessage.from_payload({"params": "junk"}).flags == ""

    message = PortMessage(value={"a": 1})
    assert message.to_payload() == {
        "method": "ports/output",
        "params": {"port": "output", "value": {"a": 1}},
    }
    assert PortMessage.from_payload({"params": {"value": None}}) == PortMessage()

    info = ProgramInfo(name="calculator", version="0.1.0", title="Calc")
    assert ProgramInfo.from_payload(info.to_payload()) == info


@pytest.mark.parametrize(
    "source, expected",
    [
        ("p1ass(1998, 11 / 24)", {"name": "p1ass", "args": [1998, 11 / 24]}),
        ("f()", {"name": "f", "args": []}),
        ("  sum(-1, +2, (3 + 4) * 2, 7 // 2, 7 % 4, 2 ** 3)  ", {"name": "sum", "args": [-1, 2, 14, 3, 3, 8]}),
        ("g(1.5e3)", {"name": "g", "args": [1500.0]}),
        ("h(2 ** 4000, 2 ** -2, 9.0 ** 0.5)", {"name": "h", "args": [2 ** 4000, 0.25, 3.0]}),
    ],
)
def test_calculator_evaluates_call_expressions(source, expected):
    assert parse_call(source) == expected
    assert evaluate(source) == expected


@pytest.mark.parametrize(
    "source",
    [
        "",
        "p1ass(1998, 11 /",
        "1 + 2",
        "obj.method(1)",
        "f(x)",
        "f('text')",
        "f(True)",
        "f(1j)",
        "f(a=1)",
        "f(*[1])",
        "f(1 / 0)",
        "f(1 % 0)",
        "f(2 ** 100000)",
        "f(2 ** 10 ** 10)",
        "f(((9 ** 1024) ** 1024) ** 1024)",
        "f(2 ** 4000 * 2 ** 4000)",
        "f((-8) ** 0.5)",
        "f(1e308 * 10)",
        "f(1e999)",
        "f(1e308 * 10 - 1e308 * 10)",
        "f(10.0 ** 1000)",
        "f(1)\x00",
        "f(" + "-" * 2000 + "1)",
        "f(g(1))",
    ],
)
def test_calculator_rejects_unsupported_sources(source):
    with pytest.raises(CalculationError):
        parse_call(source)
    assert evaluate(source) is None


def _read_trace(path):
    with path.open("r", encoding="utf-8") as handle:
        return [json.loads(line) for line in handle if line.strip()]


@pytest.mark.asyncio
async def test_port_link_carries_one_init_and_one_output():
    link = PortLink()

    await link.send_init(InitMessage(flags="p1ass(1)"))
    assert await link.receive_init() == InitMessage(flags="p1ass(1)")
    with pytest.raises(RuntimeError):
        await link.send_init(InitMessage(flags="again"))

    await link.send_output(PortMessage(value={"ok": 1}))
    assert await link.receive_output() == PortMessage(value={"ok": 1})
    with pytest.raises(RuntimeError):
        await link.send_output(PortMessage(value=2))


@pytest.mark.asyncio
async def test_port_link_close_wakes_waiting_receivers():
    link = PortLink()
    waiting = asyncio.create_task(link.receive_output())
    await asyncio.sleep(0)

    link.close()

    with pytest.raises(TransportClosed):
        await waiting
    with pytest.raises(TransportClosed):
        await link.receive_init()
    with pytest.raises(TransportClosed):
        await link.send_init(InitMessage(flags="late"))


@pytest.mark.asyncio
async def test_program_instance_emits_once_on_output_port(tmp_path):
    trace_path = telemetry.initialize(tmp_path)
    program = Program(lambda flags: {"flags": flags})
    instance = program.init("p1ass(1)")
    seen = []
    instance.ports.output.subscribe(seen.append)

    try:
        await wait_for_condition(lambda: len(seen) == 1)
        await asyncio.sleep(0.02)

        assert seen == [{"flags": "p1ass(1)"}]
        assert instance.emitted is True
        assert instance.received_messages == [
            {"method": "init", "params": {"flags": "p1ass(1)"}},
        ]
        events = _read_trace(trace_path)
        assert [(event["role"], event["direction"], event["method"]) for event in events] == [
            ("host", "outgoing", "init"),
            ("program", "incoming", "init"),
            ("program", "outgoing", "ports/output"),
            ("host", "incoming", "ports/output"),
        ]
        assert [event["seq"] for event in events] == [0, 1, 2, 3]
    finally:
        await instance.shutdown()


@pytest.mark.asyncio
async def test_program_instance_tasks_finish_after_emission():
    instance = Program(lambda flags: flags).init("x")
    seen = []
    instance.ports.output.subscribe(seen.append)

    await wait_for_condition(lambda: all(task.done() for task in instance.tasks))

    assert seen == ["x"]
    assert len(instance.tasks) == 2
    assert not any(task in program_module._background_tasks for task in instance.tasks)


@pytest.mark.asyncio
async def test_program_supports_async_update():
    async def slow_update(flags: str):
        await asyncio.sleep(0)
        return flags.upper()

    program = Program(slow_update, info=ProgramInfo(name="upper", version="1"))
    instance = program.init("abc")
    seen = []
    instance.ports.output.subscribe(seen.append)

    try:
        await wait_for_condition(lambda: seen == ["ABC"])
    finally:
        await instance.shutdown()


@pytest.mark.asyncio
async def test_program_reports_update_errors_as_none():
    def broken(flags: str):
        raise ValueError("boom")

    program = Program(broken)
    instance = program.init("x")
    seen = []
    instance.ports.output.subscribe(seen.append)

    try:
        await wait_for_condition(lambda: len(seen) == 1)
        assert seen == [None]
    finally:
        await instance.shutdown()


@pytest.mark.asyncio
async def test_program_instance_shutdown_stops_tasks():
    blocker = asyncio.Event()

    async def never(flags: str):
        await blocker.wait()

    instance = Program(never).init("x")
    await asyncio.sleep(0)
    await instance.shutdown()

    assert all(task.done() for task in instance.tasks)
    assert instance.emitted is False


def test_program_init_requires_running_loop():
    with pytest.raises(RuntimeError, match="running event loop"):
        Program(lambda flags: flags).init("x")


def test_telemetry_writes_only_while_initialized(tmp_path):
    payload = {"method": "init", "params": {"flags": "x"}}
    assert telemetry.record_message(role="host", direction="outgoing", payload=payload) is None

    path = telemetry.initialize(tmp_path / "trace")
    entry = telemetry.record_message(role="host", direction="outgoing", payload=payload)

    assert entry["method"] == "init"
    assert _read_trace(path) == [entry]

    telemetry.reset()
    telemetry.record_message(role="host", direction="outgoing", payload=payload)
    assert len(_read_trace(path)) == 1
