"""Tests for the windowed upload pipeline."""

import asyncio

from inspection_capture.domain.uploads import BatchCommit, UploadTask, UploadTaskState
from inspection_capture.services.uploads import (
    UploadPipeline,
    build_photo_path,
    progress_percent,
    run_in_windows,
)
from tests.conftest import InMemoryPhotoStorage, photo


def _batch(tasks: list[UploadTask]) -> BatchCommit:
    return BatchCommit(
        report_id="ASM-20240501001",
        process_code="ASM",
        model="X1",
        serial="SN-1",
        expected_items=["A", "B", "C"],
        tasks=tasks,
    )


def test_photo_path_is_deterministic() -> None:
    path = build_photo_path(
        "ASM", "X1", "SN-1", "ASM-20240501001", ["A", "B", "C"], "B", 2
    )

    assert path == "ASM/X1/SN-1/ASM-20240501001/item2-2.jpg"


def test_photo_path_sorts_unknown_items_last() -> None:
    path = build_photo_path("ASM", "X1", "SN-1", "R", ["A", "B"], "Z", 0)

    assert path.endswith("/item3-1.jpg")


def test_progress_percent_handles_empty_batch() -> None:
    assert progress_percent(0, 0) == 0
    assert progress_percent(2, 3) == 67


def test_mixed_batch_settles_with_progress(
    pipeline: UploadPipeline, photo_storage: InMemoryPhotoStorage
) -> None:
    batch = _batch(
        [
            UploadTask(item="A", file_index=0, attachment=photo(b"a")),
            UploadTask(item="B", file_index=0, attachment=photo(b"b")),
            UploadTask(item="C", file_index=0),
        ]
    )
    progress: list[tuple[int, int]] = []

    def on_progress(done: int, total: int) -> None:
        progress.append((done, total))

    asyncio.run(pipeline.run(batch, on_progress=on_progress))

    assert progress == [(0, 3), (1, 3), (2, 3), (3, 3)]
    assert batch.succeeded
    assert batch.uploaded_paths() == {
        "A": ["ASM/X1/SN-1/ASM-20240501001/item1-1.jpg"],
        "B": ["ASM/X1/SN-1/ASM-20240501001/item2-1.jpg"],
    }
    stored = photo_storage.objects["ASM/X1/SN-1/ASM-20240501001/item1-1.jpg"]
    assert stored == b"jpeg:a"
    assert batch.tasks[2].state is UploadTaskState.DONE
    assert len(photo_storage.put_order) == 2


def test_one_failure_marks_batch_failed(
    pipeline: UploadPipeline, photo_storage: InMemoryPhotoStorage
) -> None:
    photo_storage.failing_paths.add("ASM/X1/SN-1/ASM-20240501001/item2-1.jpg")
    batch = _batch(
        [
            UploadTask(item="A", file_index=0, attachment=photo(b"a")),
            UploadTask(item="B", file_index=0, attachment=photo(b"b", "back.jpg")),
        ]
    )

    asyncio.run(pipeline.run(batch))

    assert batch.settled
    assert not batch.succeeded
    assert [(failure.item, failure.filename) for failure in batch.failures] == [
        ("B", "back.jpg")
    ]
    assert batch.tasks[1].state is UploadTaskState.FAILED
    assert batch.completed_count == 2


def test_compression_failure_counts_as_upload_failure(
    pipeline: UploadPipeline,
) -> None:
    batch = _batch([UploadTask(item="A", file_index=0, attachment=photo(b"corrupt"))])

    asyncio.run(pipeline.run(batch))

    assert len(batch.failures) == 1


def test_leftover_object_from_earlier_attempt_is_replaced(
    pipeline: UploadPipeline, photo_storage: InMemoryPhotoStorage
) -> None:
    photo_storage.objects["ASM/X1/SN-1/ASM-20240501001/item1-1.jpg"] = b"jpeg:old"
    batch = _batch([UploadTask(item="A", file_index=0, attachment=photo(b"new"))])

    asyncio.run(pipeline.run(batch))

    assert batch.failures == []
    stored = photo_storage.objects["ASM/X1/SN-1/ASM-20240501001/item1-1.jpg"]
    assert stored == b"jpeg:new"


def test_windows_never_overlap() -> None:
    events: list[str] = []
    active = 0
    peak = 0

    def operation(index: int):
        async def run() -> int:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            events.append(f"start-{index}")
            await asyncio.sleep(0.001 * (7 - index % 7))
            events.append(f"end-{index}")
            active -= 1
            return index

        return run

    results = asyncio.run(run_in_windows([operation(i) for i in range(14)], 6))

    assert results == list(range(14))
    assert peak == 6
    last_end_of_first_window = max(events.index(f"end-{i}") for i in range(6))
    first_start_of_second_window = min(
        events.index(f"start-{i}") for i in range(6, 12)
    )
    assert last_end_of_first_window < first_start_of_second_window


def test_windows_return_exceptions_in_place() -> None:
    async def ok() -> str:
        return "ok"

    async def boom() -> str:
        raise RuntimeError("boom")

    results = asyncio.run(run_in_windows([ok, boom, ok], 2))

    assert results[0] == "ok"
    assert isinstance(results[1], RuntimeError)
    assert results[2] == "ok"
