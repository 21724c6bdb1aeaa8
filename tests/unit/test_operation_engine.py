from __future__ import annotations

import asyncio

import pytest

from flowvision.ai.errors import DuplicateOperationError, InvalidOperationError, OperationNotFoundError, ProviderFailureError, ProviderUnavailableError, UnknownKindError
from flowvision.operations.engine import EngineConfig, OperationEngine
from flowvision.operations.models import Operation, OperationStatus, Progress
from flowvision.operations.processors import KindRegistry, ProcessorOutput, ProcessorRequest, ProgressReporter
from tests.conftest import FakeProvider, ManualClock, settle, spin


class Recorder:
  """Progress subscriber that keeps every snapshot it receives."""

  def __init__(self) -> None:
    self.events: list[Progress] = []

  def __call__(self, progress: Progress) -> None:
    self.events.append(progress)

  @property
  def trail(self) -> list[tuple[str, float]]:
    return [(event.status.value, event.percentage) for event in self.events]


@pytest.mark.anyio
async def test_high_priority_operation_reports_full_progress_sequence(engine: OperationEngine) -> None:
  recorder = Recorder()
  operation_id = engine.enqueue(Operation(id="op1", kind="content_analysis", input="X", priority="high"), recorder)
  await settle(engine)

  assert operation_id == "op1"
  assert recorder.trail == [("queued", 0), ("processing", 10), ("processing", 60), ("processing", 90), ("completed", 100)]
  result = engine.get_result("op1")
  assert result is not None
  assert result.payload is not None
  assert result.cached is False
  assert result.confidence == pytest.approx(0.9)
  assert result.model == "fake-model"
  assert result.tokens_used == 42


@pytest.mark.anyio
async def test_identical_requests_resolve_to_cached_results(engine: OperationEngine, provider: FakeProvider) -> None:
  engine.enqueue(Operation(id="first", kind="content_analysis", input="Slow checkout", context={"team": "web"}))
  await settle(engine)
  first = engine.get_result("first")

  recorder = Recorder()
  engine.enqueue(Operation(id="second", kind="content_analysis", input="Slow checkout", context={"team": "web"}), recorder)
  engine.enqueue(Operation(id="third", kind="content_analysis", input="Slow checkout", context={"team": "web"}))

  # The result is stored immediately; only the subscriber notification is deferred.
  second = engine.get_result("second")
  third = engine.get_result("third")
  assert first is not None and second is not None and third is not None
  assert first.cached is False
  assert second.cached is True and third.cached is True
  assert second.payload == first.payload == third.payload
  assert len(provider.prompts) == 1

  await settle(engine)
  assert recorder.trail == [("completed", 100)]


@pytest.mark.anyio
async def test_context_presence_changes_the_cache_key(engine: OperationEngine, provider: FakeProvider) -> None:
  engine.enqueue(Operation(id="no-context", kind="clustering", input=["a", "b"]))
  await settle(engine)
  engine.enqueue(Operation(id="empty-context", kind="clustering", input=["a", "b"], context={}))
  await settle(engine)

  assert len(provider.prompts) == 2
  result = engine.get_result("empty-context")
  assert result is not None
  assert result.cached is False


@pytest.mark.anyio
async def test_high_priority_starts_before_earlier_waiting_operations(clock: ManualClock) -> None:
  provider = FakeProvider(gated=True)
  engine = OperationEngine(provider, config=EngineConfig(cache_hit_delay_seconds=0.0), clock=clock)
  started: list[str] = []

  def track(progress: Progress) -> None:
    if progress.status is OperationStatus.PROCESSING and progress.percentage == 10:
      started.append(progress.operation_id)

  engine.enqueue(Operation(id="running", kind="content_analysis", input="a"), track)
  for index in range(3):
    engine.enqueue(Operation(id=f"normal-{index}", kind="content_analysis", input=f"n{index}"), track)
  engine.enqueue(Operation(id="urgent", kind="content_analysis", input="u", priority="high"), track)

  provider.release()
  await settle(engine)

  assert started == ["running", "urgent", "normal-0", "normal-1", "normal-2"]


@pytest.mark.anyio
async def test_normal_and_low_share_one_fifo_band(clock: ManualClock) -> None:
  provider = FakeProvider(gated=True)
  engine = OperationEngine(provider, config=EngineConfig(cache_hit_delay_seconds=0.0), clock=clock)
  started: list[str] = []

  def track(progress: Progress) -> None:
    if progress.status is OperationStatus.PROCESSING and progress.percentage == 10:
      started.append(progress.operation_id)

  engine.enqueue(Operation(id="running", kind="insight_synthesis", input="a"), track)
  engine.enqueue(Operation(id="low", kind="insight_synthesis", input="b", priority="low"), track)
  engine.enqueue(Operation(id="normal", kind="insight_synthesis", input="c"), track)
  engine.enqueue(Operation(id="high-1", kind="insight_synthesis", input="d", priority="high"), track)
  engine.enqueue(Operation(id="high-2", kind="insight_synthesis", input="e", priority="high"), track)

  provider.release()
  await settle(engine)

  assert started == ["running", "high-1", "high-2", "low", "normal"]


@pytest.mark.anyio
async def test_recorded_progress_never_decreases(clock: ManualClock, provider: FakeProvider) -> None:
  async def erratic(request: ProcessorRequest, report: ProgressReporter) -> ProcessorOutput:
    report(70, "Halfway")
    report(40, "Recounting")
    report(80, "Almost")
    return ProcessorOutput(payload={"ok": True}, tokens_used=1, model="local")

  registry = KindRegistry()
  registry.register("erratic", erratic, default_duration=1.0, cache_ttl=60.0)
  engine = OperationEngine(provider, registry=registry, clock=clock)
  recorder = Recorder()
  engine.enqueue(Operation(id="op", kind="erratic", input="x"), recorder)
  await settle(engine)

  percentages = [event.percentage for event in recorder.events]
  assert percentages == sorted(percentages)
  assert percentages[-1] == 100
  assert 40 not in percentages


@pytest.mark.anyio
async def test_cancel_before_start_never_processes(clock: ManualClock) -> None:
  provider = FakeProvider(gated=True)
  engine = OperationEngine(provider, clock=clock)
  recorder = Recorder()
  engine.enqueue(Operation(id="long", kind="content_analysis", input="a"))
  engine.enqueue(Operation(id="waiting", kind="content_analysis", input="b"), recorder)

  assert engine.cancel("waiting") is True
  provider.release()
  await settle(engine)

  assert recorder.trail == [("queued", 0), ("cancelled", 0)]
  assert engine.get_progress("waiting").status is OperationStatus.CANCELLED
  assert engine.get_result("waiting") is None
  assert len(provider.prompts) == 1


@pytest.mark.anyio
async def test_cancel_running_operation_discards_its_result(clock: ManualClock) -> None:
  provider = FakeProvider(gated=True)
  engine = OperationEngine(provider, clock=clock)
  recorder = Recorder()
  engine.enqueue(Operation(id="busy", kind="recommendation_generation", input="a"), recorder)
  await spin()
  assert provider.in_flight == 1

  assert engine.cancel("busy") is True
  provider.release()
  await settle(engine)

  assert engine.get_progress("busy").status is OperationStatus.CANCELLED
  assert engine.get_result("busy") is None
  assert len(engine.cache) == 0
  assert recorder.events[-1].status is OperationStatus.CANCELLED
  assert [event for event in recorder.events if event.status is OperationStatus.COMPLETED] == []


@pytest.mark.anyio
async def test_cancel_unknown_or_settled_operation_returns_false(engine: OperationEngine) -> None:
  assert engine.cancel("missing") is False
  engine.enqueue(Operation(id="done", kind="content_analysis", input="a"))
  await settle(engine)
  assert engine.cancel("done") is False
  assert engine.get_progress("done").status is OperationStatus.COMPLETED


@pytest.mark.anyio
async def test_terminal_operations_expire_after_retention(clock: ManualClock, provider: FakeProvider) -> None:
  engine = OperationEngine(provider, config=EngineConfig(retention_seconds=60.0), clock=clock)
  recorder = Recorder()
  engine.enqueue(Operation(id="op", kind="content_analysis", input="a"), recorder)
  await settle(engine)

  clock.advance(59)
  assert engine.get_progress("op") is not None
  assert engine.get_result("op") is not None

  clock.advance(2)
  assert engine.get_progress("op") is None
  assert engine.get_result("op") is None
  assert engine.sweep() == ["op"]
  assert engine.notifier.subscriber_count("op") == 0


@pytest.mark.anyio
async def test_provider_failure_does_not_block_the_next_operation(engine: OperationEngine, provider: FakeProvider) -> None:
  provider.errors.append(ProviderFailureError("upstream exploded"))
  engine.enqueue(Operation(id="bad", kind="content_analysis", input="a"))
  engine.enqueue(Operation(id="good", kind="content_analysis", input="b"))
  await settle(engine)

  failed = engine.get_progress("bad")
  assert failed.status is OperationStatus.FAILED
  assert "upstream exploded" in failed.message
  assert failed.percentage == 60
  assert engine.get_result("bad") is None
  assert engine.get_progress("good").status is OperationStatus.COMPLETED
  # Failures are never cached.
  assert len(engine.cache) == 1


@pytest.mark.anyio
async def test_provider_timeout_becomes_failure(clock: ManualClock) -> None:
  provider = FakeProvider(gated=True)
  engine = OperationEngine(provider, config=EngineConfig(provider_timeout_seconds=0.05), clock=clock)
  engine.enqueue(Operation(id="slow", kind="content_analysis", input="a"))

  for _ in range(100):
    progress = engine.get_progress("slow")
    if progress.status.is_terminal:
      break
    await asyncio.sleep(0.01)

  assert progress.status is OperationStatus.FAILED
  assert "timed out" in progress.message
  assert progress.current_step == "timed_out"
  await spin()
  assert engine.queue_status().active_workers == 0


@pytest.mark.anyio
async def test_empty_completion_fails_and_non_json_uses_fallback(clock: ManualClock) -> None:
  empty = OperationEngine(FakeProvider(text="   "), clock=clock)
  empty.enqueue(Operation(id="empty", kind="content_analysis", input="a"))
  await settle(empty)
  assert empty.get_progress("empty").status is OperationStatus.FAILED
  assert "No response" in empty.get_progress("empty").message

  prose = OperationEngine(FakeProvider(text="The checkout is slow because of images."), clock=clock)
  prose.enqueue(Operation(id="prose", kind="content_analysis", input="a"))
  await settle(prose)
  result = prose.get_result("prose")
  assert result is not None
  assert result.payload["impact"].startswith("The checkout is slow")
  assert result.confidence == pytest.approx(0.7)


@pytest.mark.anyio
async def test_enqueue_rejects_work_without_a_provider() -> None:
  engine = OperationEngine(None)
  with pytest.raises(ProviderUnavailableError):
    engine.enqueue(Operation(id="op", kind="content_analysis", input="a"))
  assert engine.queue_status().queue_length == 0


@pytest.mark.anyio
async def test_enqueue_validates_synchronously(engine: OperationEngine) -> None:
  with pytest.raises(UnknownKindError):
    engine.enqueue(Operation(id="op", kind="sentiment", input="a"))
  with pytest.raises(InvalidOperationError):
    engine.enqueue(Operation(id="", kind="content_analysis", input="a"))
  with pytest.raises(InvalidOperationError):
    engine.enqueue(Operation(id="op", kind="content_analysis", input="   "))
  with pytest.raises(InvalidOperationError):
    engine.enqueue(Operation(id="op", kind="content_analysis", input="a", priority="urgent"))  # type: ignore[arg-type]
  with pytest.raises(InvalidOperationError):
    engine.enqueue(Operation(id="op", kind="content_analysis", input="a", estimated_duration=-1))
  with pytest.raises(InvalidOperationError):
    engine.enqueue(Operation(id="op", kind="content_analysis", input="a", context=["not", "a", "mapping"]))  # type: ignore[arg-type]
  assert engine.queue_status().tracked_operations == 0


@pytest.mark.anyio
async def test_duplicate_ids_are_rejected_while_tracked(engine: OperationEngine, clock: ManualClock) -> None:
  engine.enqueue(Operation(id="op", kind="content_analysis", input="a"))
  with pytest.raises(DuplicateOperationError):
    engine.enqueue(Operation(id="op", kind="content_analysis", input="b"))

  await settle(engine)
  with pytest.raises(DuplicateOperationError):
    engine.enqueue(Operation(id="op", kind="content_analysis", input="b"))

  clock.advance(engine.config.retention_seconds + 1)
  assert engine.enqueue(Operation(id="op", kind="content_analysis", input="b")) == "op"


@pytest.mark.anyio
async def test_worker_pool_runs_up_to_max_workers(clock: ManualClock) -> None:
  provider = FakeProvider(gated=True)
  engine = OperationEngine(provider, config=EngineConfig(max_workers=2, queue_healthy_limit=1), clock=clock)
  for index in range(3):
    engine.enqueue(Operation(id=f"op-{index}", kind="clustering", input=f"issue {index}"))
  await spin()

  status = engine.queue_status()
  assert provider.in_flight == 2
  assert status.active_workers == 2
  assert status.max_workers == 2
  assert status.queue_length == 1
  assert status.draining is True
  assert status.healthy is False

  provider.release()
  await settle(engine)
  status = engine.queue_status()
  assert status.active_workers == 0
  assert status.draining is False
  assert status.cache_size == 3


@pytest.mark.parametrize("overrides", [{"max_workers": 0}, {"max_workers": 33}, {"provider_timeout_seconds": 0}, {"retention_seconds": -1}, {"tick_interval_seconds": 0}])
def test_engine_config_rejects_invalid_values(overrides: dict[str, float]) -> None:
  with pytest.raises(ValueError):
    EngineConfig(**overrides)


@pytest.mark.anyio
async def test_faulty_subscriber_does_not_break_processing(engine: OperationEngine) -> None:
  def explode(progress: Progress) -> None:
    raise RuntimeError("subscriber bug")

  recorder = Recorder()
  engine.enqueue(Operation(id="op", kind="content_analysis", input="a"), explode)
  engine.subscribe("op", recorder)
  await settle(engine)

  assert recorder.trail[-1] == ("completed", 100)
  assert engine.get_result("op") is not None


@pytest.mark.anyio
async def test_stop_abandons_in_flight_work(clock: ManualClock) -> None:
  provider = FakeProvider(gated=True)
  engine = OperationEngine(provider, config=EngineConfig(tick_interval_seconds=0.01), clock=clock)
  engine.start()
  engine.enqueue(Operation(id="op", kind="content_analysis", input="a"))
  await spin()
  assert provider.in_flight == 1

  engine.enqueue(Operation(id="waiting", kind="content_analysis", input="b"))

  await engine.stop()

  assert provider.in_flight == 0
  status = engine.queue_status()
  assert status.active_workers == 0
  assert status.queue_length == 0
  assert engine.get_result("op") is None
  for operation_id in ("op", "waiting"):
    progress = engine.get_progress(operation_id)
    assert progress.status is OperationStatus.FAILED
    assert "stopped" in progress.message


@pytest.mark.anyio
async def test_stopped_engine_rejects_work_until_restarted(clock: ManualClock) -> None:
  provider = FakeProvider(gated=True)
  engine = OperationEngine(provider, config=EngineConfig(retention_seconds=5.0, tick_interval_seconds=0.01), clock=clock)
  engine.start()
  engine.enqueue(Operation(id="op", kind="content_analysis", input="a"))
  await spin()
  await engine.stop()

  with pytest.raises(ProviderUnavailableError):
    engine.enqueue(Operation(id="late", kind="content_analysis", input="b"))
  assert engine.get_progress("late") is None

  # Abandoned ids purge after retention like any other terminal operation.
  clock.advance(6)
  assert engine.sweep() == ["op"]
  engine.start()
  try:
    provider.release()
    assert engine.enqueue(Operation(id="op", kind="content_analysis", input="a")) == "op"
    await settle(engine)
    assert engine.get_progress("op").status is OperationStatus.COMPLETED
  finally:
    await engine.stop()


@pytest.mark.anyio
async def test_ticker_sweeps_expired_operations(provider: FakeProvider, clock: ManualClock) -> None:
  engine = OperationEngine(provider, config=EngineConfig(retention_seconds=1.0, tick_interval_seconds=0.01), clock=clock)
  engine.start()
  try:
    engine.enqueue(Operation(id="op", kind="content_analysis", input="a"), Recorder())
    await settle(engine)
    assert engine.notifier.subscriber_count("op") == 1

    clock.advance(2)
    await asyncio.sleep(0.05)
    assert engine.notifier.subscriber_count("op") == 0
    assert engine.queue_status().tracked_operations == 0
  finally:
    await engine.stop()


@pytest.mark.anyio
async def test_mutating_a_returned_result_does_not_leak_into_cache_hits(engine: OperationEngine) -> None:
  engine.enqueue(Operation(id="first", kind="content_analysis", input="Slow checkout"))
  await settle(engine)
  first = engine.get_result("first")
  assert first is not None
  first.payload["category"] = "Edited"

  engine.enqueue(Operation(id="second", kind="content_analysis", input="Slow checkout"))
  second = engine.get_result("second")
  assert second is not None
  assert second.cached is True
  assert second.payload["category"] == "Performance"


@pytest.mark.anyio
async def test_key_types_are_part_of_the_cache_key(engine: OperationEngine, provider: FakeProvider) -> None:
  engine.enqueue(Operation(id="int-key", kind="content_analysis", input={1: "one"}))
  await settle(engine)
  engine.enqueue(Operation(id="str-key", kind="content_analysis", input={"1": "one"}))
  await settle(engine)

  result = engine.get_result("str-key")
  assert result is not None
  assert result.cached is False
  assert len(provider.prompts) == 2

  engine.enqueue(Operation(id="mixed", kind="content_analysis", input={1: "a", "b": 2}))
  await settle(engine)
  assert engine.get_progress("mixed").status is OperationStatus.COMPLETED


@pytest.mark.anyio
async def test_enqueue_rejects_input_without_a_json_form(engine: OperationEngine) -> None:
  with pytest.raises(InvalidOperationError, match="JSON-compatible"):
    engine.enqueue(Operation(id="op", kind="content_analysis", input={"when": object()}))
  with pytest.raises(InvalidOperationError):
    engine.enqueue(Operation(id="op", kind="content_analysis", input="a", context={"owner": object()}))
  assert engine.queue_status().tracked_operations == 0


@pytest.mark.anyio
async def test_provider_reported_timeouts_share_the_timeout_step(engine: OperationEngine, provider: FakeProvider) -> None:
  provider.errors.append(ProviderFailureError("gateway timed out", timed_out=True))
  provider.errors.append(ProviderFailureError("bad gateway"))
  engine.enqueue(Operation(id="slow", kind="content_analysis", input="a"))
  engine.enqueue(Operation(id="broken", kind="content_analysis", input="b"))
  await settle(engine)

  assert engine.get_progress("slow").current_step == "timed_out"
  assert engine.get_progress("broken").current_step == "failed"


@pytest.mark.anyio
async def test_subscribe_requires_a_tracked_operation(engine: OperationEngine) -> None:
  with pytest.raises(OperationNotFoundError):
    engine.subscribe("missing", Recorder())
  assert engine.notifier.subscriber_count("missing") == 0

  engine.enqueue(Operation(id="op", kind="content_analysis", input="a"))
  recorder = Recorder()
  unsubscribe = engine.subscribe("op", recorder)
  await settle(engine)
  assert recorder.trail[-1] == ("completed", 100)
  unsubscribe()
  assert engine.notifier.subscriber_count("op") == 0
