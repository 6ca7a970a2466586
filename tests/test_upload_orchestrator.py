import asyncio
from datetime import datetime

import pytest

from doodlesync.application.services.sync_state import SyncState, needs_sync
from doodlesync.application.services.upload_orchestrator import (
    RemoteRefs,
    UploadOrchestrator,
    storage_path,
    thumbnail_path,
)
from doodlesync.exceptions import (
    EncodingFailed,
    InvalidContent,
    MetadataWriteFailed,
    ResolutionFailed,
    SyncInProgress,
    SyncTimedOut,
    UploadFailed,
)
from doodlesync.infrastructure.render.pillow_renderer import PillowRenderer

from conftest import EMPTY, FakeMetadataStore, FakeObjectStore, FakeSleep, make_drawing, stroke_payload

SYNC_FIELDS = (
    "firebase_synced",
    "firebase_image_url",
    "firebase_thumbnail_url",
    "firebase_upload_date",
    "firebase_document_id",
    "modified_date",
    "name",
)


def snapshot(drawing):
    return {f: getattr(drawing, f) for f in SYNC_FIELDS}


def build(test_settings, object_store=None, metadata_store=None, sleep=None, renderer=None):
    return UploadOrchestrator(
        renderer=renderer or PillowRenderer(),
        object_store=object_store or FakeObjectStore(),
        metadata_store=metadata_store or FakeMetadataStore(),
        settings=test_settings,
        sleep=sleep or FakeSleep(),
    )


def test_storage_keys_use_id_and_creation_seconds():
    drawing = make_drawing("A", created=1000)
    assert storage_path(drawing, "anonymous") == "drawings/anonymous/A_1000.png"
    assert thumbnail_path(drawing, "anonymous") == "thumbnails/anonymous/A_1000_thumb.png"


@pytest.mark.asyncio
async def test_upload_without_user_uses_default_scopes(orchestrator, object_store, metadata_store):
    drawing = make_drawing("A", name="Cat", created=1000)

    outcome = await orchestrator.upload_drawing(drawing)

    assert outcome.success is True
    keys = [key for key, _, _ in object_store.puts]
    assert keys == ["drawings/anonymous/A_1000.png", "thumbnails/anonymous/A_1000_thumb.png"]
    document = metadata_store.documents[outcome.document_id]
    assert document["UserId"] == "dummy"
    assert document["collection"] == "drawings"


@pytest.mark.asyncio
async def test_upload_with_user_scopes_paths_and_metadata(orchestrator, object_store, metadata_store):
    drawing = make_drawing("A", created=1000)

    outcome = await orchestrator.upload_drawing(drawing, user_id="u42")

    assert outcome.success is True
    assert object_store.puts[0][0] == "drawings/u42/A_1000.png"
    assert object_store.puts[1][0] == "thumbnails/u42/A_1000_thumb.png"
    assert metadata_store.documents[outcome.document_id]["UserId"] == "u42"


@pytest.mark.asyncio
async def test_successful_upload_marks_record_synced(orchestrator, object_store):
    drawing = make_drawing("A", created=1000)
    started = datetime.utcnow()

    outcome = await orchestrator.upload_drawing(drawing)

    assert outcome.image_url == "https://storage.test/drawings/anonymous/A_1000.png"
    assert outcome.thumbnail_url == "https://storage.test/thumbnails/anonymous/A_1000_thumb.png"
    assert drawing.firebase_synced is True
    assert drawing.firebase_image_url == outcome.image_url
    assert drawing.firebase_thumbnail_url == outcome.thumbnail_url
    assert drawing.firebase_document_id == outcome.document_id == "doc-1"
    assert drawing.firebase_upload_date >= started
    assert needs_sync(drawing) is False
    assert orchestrator.state_machine.state_for(drawing) == SyncState.SYNCED


@pytest.mark.asyncio
async def test_uploaded_image_is_opaque_png_with_traceable_metadata(orchestrator, object_store):
    from io import BytesIO
    from PIL import Image

    drawing = make_drawing("A", name="Cat", created=1000)
    await orchestrator.upload_drawing(drawing)

    key, content_type, metadata = object_store.puts[0]
    assert content_type == "image/png"
    assert metadata == {
        "drawingId": "A",
        "drawingName": "Cat",
        "createdDate": "1970-01-01T00:16:40",
        "modifiedDate": "1970-01-01T00:16:40",
    }
    image = Image.open(BytesIO(object_store.objects[key]))
    assert image.format == "PNG"
    assert image.mode == "RGB"
    assert image.getpixel((0, image.height - 1)) == (255, 255, 255)
    assert object_store.puts[1][2] == {"drawingId": "A", "type": "thumbnail"}


@pytest.mark.asyncio
async def test_metadata_document_fields_match_backend_contract(orchestrator, metadata_store):
    drawing = make_drawing("A", name="Cat", created=1000)

    outcome = await orchestrator.upload_drawing(drawing)

    document = dict(metadata_store.documents[outcome.document_id])
    document.pop("collection")
    assert document == {
        "Title": "Cat",
        "OriginalImageUrl": outcome.image_url,
        "UserId": "dummy",
        "Status": "pending",
        "Text_Prompt": "",
        "CreatedAt": drawing.created_date,
        "UpdatedAt": drawing.modified_date,
        "NanoBananaUrl": None,
        "UsdzUrl": None,
    }


@pytest.mark.asyncio
async def test_resolution_succeeds_on_third_attempt(test_settings):
    sleep = FakeSleep()
    flaky = build(test_settings, object_store=FakeObjectStore(resolve_failures=2), sleep=sleep)
    steady = build(test_settings)
    flaky_drawing, steady_drawing = make_drawing("A"), make_drawing("A")

    flaky_outcome = await flaky.upload_drawing(flaky_drawing)
    steady_outcome = await steady.upload_drawing(steady_drawing)

    assert flaky_outcome == steady_outcome
    assert sleep.delays == [1.0, 1.0]
    assert flaky_drawing.firebase_image_url == steady_drawing.firebase_image_url
    assert flaky.object_store.resolve_calls.count("drawings/anonymous/A_1000.png") == 3


@pytest.mark.asyncio
async def test_resolution_exhaustion_fails_without_metadata_document(test_settings):
    sleep = FakeSleep()
    object_store = FakeObjectStore(resolve_failures=3)
    metadata_store = FakeMetadataStore()
    orchestrator = build(test_settings, object_store=object_store, metadata_store=metadata_store, sleep=sleep)
    drawing = make_drawing("A")
    before = snapshot(drawing)

    outcome = await orchestrator.upload_drawing(drawing)

    assert outcome.success is False
    assert isinstance(outcome.error, ResolutionFailed)
    assert outcome.error_kind == "resolution_failed"
    assert "object not found yet" in outcome.error_message
    assert metadata_store.create_calls == 0
    assert len(object_store.resolve_calls) == 3
    assert sleep.delays == [1.0, 1.0]
    assert snapshot(drawing) == before
    # Raw image stays remote, no orphan cleanup
    assert "drawings/anonymous/A_1000.png" in object_store.objects
    status = orchestrator.state_machine.status_for(drawing)
    assert status.state == SyncState.SYNC_FAILED
    assert status.last_error == outcome.error_message


@pytest.mark.asyncio
async def test_thumbnail_failure_is_not_fatal(test_settings):
    object_store = FakeObjectStore(fail_prefixes=("thumbnails/",))
    metadata_store = FakeMetadataStore()
    orchestrator = build(test_settings, object_store=object_store, metadata_store=metadata_store)
    drawing = make_drawing("A")

    outcome = await orchestrator.upload_drawing(drawing)

    assert outcome.success is True
    assert outcome.thumbnail_url is None
    assert drawing.firebase_synced is True
    assert drawing.firebase_thumbnail_url is None
    assert metadata_store.create_calls == 1


@pytest.mark.asyncio
async def test_no_thumbnail_skips_thumbnail_upload(orchestrator, object_store):
    drawing = make_drawing("A", thumbnail=None)

    outcome = await orchestrator.upload_drawing(drawing)

    assert outcome.success is True
    assert outcome.thumbnail_url is None
    assert [key for key, _, _ in object_store.puts] == ["drawings/anonymous/A_1000.png"]


@pytest.mark.asyncio
async def test_undecodable_payload_makes_no_remote_calls(orchestrator, object_store, metadata_store):
    drawing = make_drawing("A", data=b"\x00not a drawing")
    before = snapshot(drawing)

    outcome = await orchestrator.upload_drawing(drawing)

    assert isinstance(outcome.error, InvalidContent)
    assert object_store.puts == []
    assert metadata_store.create_calls == 0
    assert snapshot(drawing) == before


@pytest.mark.asyncio
async def test_empty_drawing_is_invalid_content(orchestrator, object_store):
    drawing = make_drawing("A", data=EMPTY)

    outcome = await orchestrator.upload_drawing(drawing)

    assert outcome.error_kind == "invalid_content"
    assert object_store.puts == []


@pytest.mark.asyncio
async def test_encoding_error_is_reported(test_settings):
    class BrokenEncoder(PillowRenderer):
        def encode_png(self, image):
            raise EncodingFailed("Failed to convert image to data")

    object_store = FakeObjectStore()
    orchestrator = build(test_settings, object_store=object_store, renderer=BrokenEncoder())

    outcome = await orchestrator.upload_drawing(make_drawing("A"))

    assert isinstance(outcome.error, EncodingFailed)
    assert object_store.puts == []


@pytest.mark.asyncio
async def test_upload_transport_error_is_upload_failed(test_settings):
    object_store = FakeObjectStore(fail_prefixes=("drawings/",))
    metadata_store = FakeMetadataStore()
    orchestrator = build(test_settings, object_store=object_store, metadata_store=metadata_store)
    drawing = make_drawing("A")
    before = snapshot(drawing)

    outcome = await orchestrator.upload_drawing(drawing)

    assert isinstance(outcome.error, UploadFailed)
    assert "network unreachable" in outcome.error_message
    assert object_store.resolve_calls == []
    assert metadata_store.create_calls == 0
    assert snapshot(drawing) == before


@pytest.mark.asyncio
async def test_metadata_write_failure_leaves_record_unmodified(test_settings):
    orchestrator = build(test_settings, metadata_store=FakeMetadataStore(fail=True))
    drawing = make_drawing("A")
    before = snapshot(drawing)

    outcome = await orchestrator.upload_drawing(drawing)

    assert isinstance(outcome.error, MetadataWriteFailed)
    assert "PERMISSION_DENIED" in outcome.error_message
    assert snapshot(drawing) == before
    assert needs_sync(drawing) is True


@pytest.mark.asyncio
async def test_progress_is_monotonic_and_finishes_at_one(orchestrator):
    drawing = make_drawing("A")
    seen = []

    await orchestrator.upload_drawing(drawing, on_progress=seen.append)

    assert seen == sorted(seen)
    assert 0.25 not in seen
    assert seen[-1] == 1.0
    assert orchestrator.state_machine.status_for(drawing).progress == 1.0


@pytest.mark.asyncio
async def test_listener_sees_uploading_then_synced(orchestrator):
    drawing = make_drawing("A")
    states = []
    orchestrator.state_machine.subscribe(lambda drawing_id, status: states.append(status.state))

    await orchestrator.upload_drawing(drawing)

    assert states[0] == SyncState.UPLOADING
    assert states[-1] == SyncState.SYNCED


@pytest.mark.asyncio
async def test_overlapping_upload_of_same_drawing_is_rejected(test_settings):
    gate = asyncio.Event()
    object_store = FakeObjectStore(put_gate=gate)
    orchestrator = build(test_settings, object_store=object_store)
    drawing = make_drawing("A")

    first = asyncio.create_task(orchestrator.upload_drawing(drawing))
    await object_store.put_started.wait()
    with pytest.raises(SyncInProgress):
        await orchestrator.upload_drawing(drawing)

    gate.set()
    outcome = await first
    assert outcome.success is True


@pytest.mark.asyncio
async def test_different_drawings_upload_concurrently(test_settings):
    orchestrator = build(test_settings)
    first, second = make_drawing("A"), make_drawing("B")

    outcomes = await asyncio.gather(orchestrator.upload_drawing(first), orchestrator.upload_drawing(second))

    assert all(o.success for o in outcomes)
    assert {o.document_id for o in outcomes} == {"doc-1", "doc-2"}


@pytest.mark.asyncio
async def test_cancellation_leaves_record_untouched(test_settings):
    object_store = FakeObjectStore(put_gate=asyncio.Event())
    metadata_store = FakeMetadataStore()
    orchestrator = build(test_settings, object_store=object_store, metadata_store=metadata_store)
    drawing = make_drawing("A")
    before = snapshot(drawing)

    task = asyncio.create_task(orchestrator.upload_drawing(drawing))
    await object_store.put_started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert snapshot(drawing) == before
    assert metadata_store.create_calls == 0
    assert orchestrator.state_machine.state_for(drawing) == SyncState.LOCAL_ONLY


@pytest.mark.asyncio
async def test_overall_deadline_reports_timeout(test_settings):
    settings = test_settings.model_copy(update={"SYNC_TIMEOUT_SEC": 0.05})
    object_store = FakeObjectStore(put_gate=asyncio.Event())
    orchestrator = build(settings, object_store=object_store)
    drawing = make_drawing("A")

    outcome = await orchestrator.upload_drawing(drawing)

    assert isinstance(outcome.error, SyncTimedOut)
    assert drawing.firebase_synced is False


@pytest.mark.asyncio
async def test_stale_record_can_be_resynced(orchestrator, metadata_store):
    drawing = make_drawing("A")
    await orchestrator.upload_drawing(drawing)
    drawing.touch()
    assert needs_sync(drawing) is True

    outcome = await orchestrator.upload_drawing(drawing)

    assert outcome.success is True
    assert needs_sync(drawing) is False
    assert drawing.firebase_document_id == "doc-2"
    assert metadata_store.create_calls == 2


@pytest.mark.asyncio
async def test_delete_remote_is_best_effort(orchestrator, object_store, metadata_store):
    drawing = make_drawing("A")
    await orchestrator.upload_drawing(drawing)
    object_store.fail_delete = True

    failures = await orchestrator.delete_remote(RemoteRefs.of(drawing))

    assert len(failures) == 2
    assert metadata_store.deleted == ["doc-1"]


@pytest.mark.asyncio
async def test_delete_remote_removes_everything(orchestrator, object_store, metadata_store):
    drawing = make_drawing("A")
    outcome = await orchestrator.upload_drawing(drawing)

    failures = await orchestrator.delete_remote(RemoteRefs.of(drawing))

    assert failures == []
    assert object_store.deleted == [outcome.image_url, outcome.thumbnail_url]
    assert metadata_store.deleted == [outcome.document_id]


@pytest.mark.asyncio
async def test_download_and_processing_status(orchestrator, metadata_store):
    drawing = make_drawing("A")
    assert await orchestrator.download_image(drawing) is None
    assert await orchestrator.fetch_processing_status(drawing) is None

    await orchestrator.upload_drawing(drawing)
    metadata_store.documents["doc-1"]["Status"] = "completed"
    metadata_store.documents["doc-1"]["UsdzUrl"] = "https://models.test/a.usdz"

    image = await orchestrator.download_image(drawing)
    thumbnail = await orchestrator.download_thumbnail(drawing)
    status = await orchestrator.fetch_processing_status(drawing)

    assert image.startswith(b"\x89PNG")
    assert thumbnail == b"thumb-png"
    assert status == {"status": "completed", "nano_banana_url": None, "usdz_url": "https://models.test/a.usdz"}


@pytest.mark.asyncio
async def test_empty_download_url_counts_as_failed_attempt(test_settings):
    sleep = FakeSleep()
    object_store = FakeObjectStore(empty_resolves=3)
    metadata_store = FakeMetadataStore()
    orchestrator = build(test_settings, object_store=object_store, metadata_store=metadata_store, sleep=sleep)
    drawing = make_drawing("A")
    before = snapshot(drawing)

    outcome = await orchestrator.upload_drawing(drawing)

    assert outcome.error_kind == "resolution_failed"
    assert sleep.delays == [1.0, 1.0]
    assert metadata_store.create_calls == 0
    assert snapshot(drawing) == before
    assert orchestrator.state_machine.state_for(drawing) == SyncState.SYNC_FAILED

    retry = await orchestrator.upload_drawing(drawing)
    assert retry.success is True
    assert drawing.firebase_image_url == "https://storage.test/drawings/anonymous/A_1000.png"


@pytest.mark.asyncio
async def test_empty_download_url_then_real_one_succeeds(test_settings):
    sleep = FakeSleep()
    orchestrator = build(test_settings, object_store=FakeObjectStore(empty_resolves=1), sleep=sleep)
    drawing = make_drawing("A")

    outcome = await orchestrator.upload_drawing(drawing)

    assert outcome.success is True
    assert sleep.delays == [1.0]


@pytest.mark.asyncio
async def test_oversized_drawing_is_invalid_content(test_settings):
    object_store = FakeObjectStore()
    orchestrator = build(test_settings, object_store=object_store, renderer=PillowRenderer(max_dimension=1000))
    drawing = make_drawing("A", data=stroke_payload([(0, 0), (1e9, 1e9)]))

    outcome = await orchestrator.upload_drawing(drawing)

    assert outcome.error_kind == "invalid_content"
    assert object_store.puts == []
