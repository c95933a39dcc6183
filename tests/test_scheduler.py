import asyncio

from gateway.scheduler import PeriodicTask, Scheduler


def test_task_fires_immediately_and_repeats():
    runs = []

    async def job():
        runs.append(len(runs))

    async def scenario():
        task = PeriodicTask("refresh", 0.01, job)
        task.start()
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        first = len(runs)
        await asyncio.sleep(0.1)
        await task.stop()
        return first

    first = asyncio.run(scenario())
    assert first == 1
    assert len(runs) >= 3


def test_overlapping_tick_is_skipped():
    started = []
    release = None

    async def scenario():
        nonlocal release
        release = asyncio.Event()

        async def slow_job():
            started.append(True)
            await release.wait()

        task = PeriodicTask("slow", 0.01, slow_job)
        task.start()
        await asyncio.sleep(0.06)
        skipped = task.skipped
        release.set()
        await task.stop()
        return skipped

    skipped = asyncio.run(scenario())
    assert len(started) == 1
    assert skipped >= 2


def test_failing_job_keeps_running():
    calls = []

    async def broken():
        calls.append(True)
        raise RuntimeError("upstream exploded")

    async def scenario():
        task = PeriodicTask("broken", 0.01, broken)
        task.start()
        await asyncio.sleep(0.05)
        await task.stop()

    asyncio.run(scenario())
    assert len(calls) >= 2


def test_stop_cancels_run_in_flight():
    cancelled = []

    async def scenario():
        async def endless():
            try:
                await asyncio.sleep(60)
            except asyncio.CancelledError:
                cancelled.append(True)
                raise

        scheduler = Scheduler()
        task = scheduler.add("endless", 60, endless)
        scheduler.start()
        await asyncio.sleep(0.01)
        await scheduler.stop()
        return task

    task = asyncio.run(scenario())
    assert cancelled == [True]
    assert not task.is_running


def test_stop_before_start_is_a_no_op():
    async def job():
        pass

    asyncio.run(PeriodicTask("idle", 1, job).stop())
