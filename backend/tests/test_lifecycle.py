import json
import uuid
from datetime import datetime, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import Conflict, InvalidTransition, NotFound, StorageError, Unauthorized, ValidationError
from app.models.audit import AuditLog
from app.models.enums import AuditAction, ImageType, MaintenancePriority, MaintenanceStatus as S, UserRole
from app.models.maintenance import MaintenanceRequest
from conftest import image


@pytest.fixture
def request_in(service, actors, new_request):
    """Walk a fresh request to ``status`` along the legal path."""
    async def walk(status):
        req = await new_request()
        if status == S.PENDING:
            return req
        if status == S.CANCELLED:
            return await service.cancel(actors.admin, req.id, "No longer needed")
        req = await service.assign(actors.admin, req.id, actors.staff.id)
        if status == S.ASSIGNED:
            return req
        req = await service.start_work(actors.staff, req.id)
        if status == S.IN_PROGRESS:
            return req
        return await service.complete(actors.staff, req.id, "Fixed")

    return walk


# === Scenarios ===

async def test_cannot_start_work_on_pending_request(service, actors, new_request):
    created = await new_request()
    assert created.status == S.PENDING
    assert created.assigned_to is None

    with pytest.raises(InvalidTransition):
        await service.start_work(actors.admin, created.id)

    assert await service.get_request(actors.admin, created.id) == created


async def test_assign_then_start(service, actors, new_request):
    created = await new_request()

    assigned = await service.assign(actors.admin, created.id, actors.staff.id)
    assert assigned.status == S.ASSIGNED
    assert assigned.assigned_to == actors.staff.id
    assert assigned.assigned_at is not None
    assert assigned.assignee_name == "Staff"

    started = await service.start_work(actors.staff, created.id)
    assert started.status == S.IN_PROGRESS
    assert started.started_at is not None
    assert started.updated_at >= assigned.updated_at


async def test_complete_with_completion_image(service, actors, request_in):
    req = await request_in(S.IN_PROGRESS)

    done = await service.complete(actors.staff, req.id, "Fixed the leak", [image("imgA.jpg")])

    assert done.status == S.COMPLETED
    assert done.completed_at is not None
    assert done.notes == "Fixed the leak"
    completion = [i for i in done.images if i.image_type == ImageType.COMPLETION]
    assert len(completion) == 1
    assert completion[0].image_url.startswith(f"https://storage.test/maintenance/{req.id}/")
    assert completion[0].image_url.endswith("-imgA.jpg")


async def test_cancel_requires_reason(service, actors, new_request):
    created = await new_request()

    with pytest.raises(ValidationError):
        await service.cancel(actors.rentee, created.id, "")
    with pytest.raises(ValidationError):
        await service.cancel(actors.admin, created.id, "   ")

    assert (await service.get_request(actors.admin, created.id)).status == S.PENDING


async def test_internal_comments_hidden_from_rentee(service, actors, request_in):
    req = await request_in(S.ASSIGNED)

    await service.add_comment(actors.rentee, req.id, "Any update?", is_internal=False)
    await service.add_comment(actors.staff, req.id, "Waiting on parts", is_internal=True)

    rentee_view = await service.get_request(actors.rentee, req.id)
    staff_view = await service.get_request(actors.staff, req.id)
    assert [c.content for c in rentee_view.comments] == ["Any update?"]
    assert [c.content for c in staff_view.comments] == ["Any update?", "Waiting on parts"]
    assert staff_view.comments[1].created_by.role == "staff"


# === State machine ===

ALLOWED = {
    "assign": {S.PENDING},
    "start": {S.ASSIGNED},
    "complete": {S.IN_PROGRESS},
    "cancel": {S.PENDING, S.ASSIGNED, S.IN_PROGRESS},
    "image": {S.PENDING, S.ASSIGNED, S.IN_PROGRESS},
    "comment": set(S),
}


@pytest.mark.parametrize("status", list(S))
@pytest.mark.parametrize("event", list(ALLOWED))
async def test_transition_table(service, actors, request_in, status, event):
    req = await request_in(status)
    run = {
        "assign": lambda: service.assign(actors.admin, req.id, actors.other_staff.id),
        "start": lambda: service.start_work(actors.admin, req.id),
        "complete": lambda: service.complete(actors.admin, req.id, "Done"),
        "cancel": lambda: service.cancel(actors.admin, req.id, "Duplicate"),
        "image": lambda: service.add_image(actors.admin, req.id, image()),
        "comment": lambda: service.add_comment(actors.admin, req.id, "Checked in"),
    }[event]

    if status in ALLOWED[event]:
        after = await run()
        assert after.version == req.version + 1
        assert after.updated_at >= req.updated_at
    else:
        with pytest.raises(InvalidTransition):
            await run()
        assert await service.get_request(actors.admin, req.id) == req


async def test_cancel_records_reason_and_time(service, actors, request_in):
    req = await request_in(S.IN_PROGRESS)

    cancelled = await service.cancel(actors.staff, req.id, "Tenant moved out")

    assert cancelled.status == S.CANCELLED
    assert cancelled.cancellation_reason == "Tenant moved out"
    assert cancelled.cancelled_at is not None


async def test_complete_requires_notes(service, actors, request_in):
    req = await request_in(S.IN_PROGRESS)

    with pytest.raises(ValidationError):
        await service.complete(actors.staff, req.id, "  ", [image()])

    after = await service.get_request(actors.staff, req.id)
    assert after.status == S.IN_PROGRESS
    assert after.images == req.images


async def test_assign_stores_schedule_and_additional_images(service, actors, new_request):
    created = await new_request()
    scheduled = datetime(2026, 3, 4, 10, 0, tzinfo=timezone.utc)

    assigned = await service.assign(
        actors.admin, created.id, actors.staff.id, scheduled_for=scheduled, files=[image("access.png", content_type="image/png")]
    )

    assert assigned.assigned_at == datetime(2026, 3, 4, 10, 0)
    assert [i.image_type for i in assigned.images] == [ImageType.ADDITIONAL]


# === Authorization ===

async def test_staff_may_self_assign_unassigned_request(service, actors, new_request):
    created = await new_request()

    assigned = await service.assign(actors.staff, created.id, actors.staff.id)

    assert assigned.assigned_to == actors.staff.id


async def test_staff_cannot_assign_someone_else(service, actors, new_request):
    created = await new_request()

    with pytest.raises(Unauthorized):
        await service.assign(actors.staff, created.id, actors.other_staff.id)


async def test_staff_cannot_act_on_requests_assigned_to_others(service, actors, request_in):
    req = await request_in(S.ASSIGNED)

    with pytest.raises(Unauthorized):
        await service.start_work(actors.other_staff, req.id)
    with pytest.raises(Unauthorized):
        await service.cancel(actors.other_staff, req.id, "Not mine")
    assert (await service.get_request(actors.admin, req.id)).status == S.ASSIGNED


async def test_rentee_cannot_assign_or_start(service, actors, request_in):
    req = await request_in(S.PENDING)

    with pytest.raises(Unauthorized):
        await service.assign(actors.rentee, req.id, actors.staff.id)

    assigned = await request_in(S.ASSIGNED)
    with pytest.raises(Unauthorized):
        await service.start_work(actors.rentee, assigned.id)


async def test_rentee_cancels_only_own_pending_requests(service, actors, request_in):
    pending = await request_in(S.PENDING)
    with pytest.raises(Unauthorized):
        await service.cancel(actors.other_rentee, pending.id, "Not mine")

    cancelled = await service.cancel(actors.rentee, pending.id, "Fixed it myself")
    assert cancelled.status == S.CANCELLED

    assigned = await request_in(S.ASSIGNED)
    with pytest.raises(Unauthorized):
        await service.cancel(actors.rentee, assigned.id, "Changed my mind")


@pytest.mark.parametrize("status", [S.COMPLETED, S.CANCELLED])
async def test_rentee_cancel_of_closed_request_is_invalid_transition(service, actors, request_in, status):
    req = await request_in(status)

    with pytest.raises(InvalidTransition):
        await service.cancel(actors.rentee, req.id, "Changed my mind")


async def test_rentee_comments_and_images_are_restricted(service, actors, request_in):
    req = await request_in(S.ASSIGNED)

    with pytest.raises(Unauthorized):
        await service.add_comment(actors.rentee, req.id, "Secret", is_internal=True)
    with pytest.raises(Unauthorized):
        await service.add_image(actors.rentee, req.id, image(), image_type=ImageType.COMPLETION)
    with pytest.raises(Unauthorized):
        await service.add_comment(actors.other_rentee, req.id, "Hello")

    updated = await service.add_image(actors.rentee, req.id, image("closeup.jpg"))
    assert [i.image_type for i in updated.images] == [ImageType.ADDITIONAL]


async def test_assignee_must_be_active_staff(service, actors, new_request):
    created = await new_request()

    for candidate in (actors.rentee.id, actors.retired_staff.id, None):
        with pytest.raises(ValidationError):
            await service.assign(actors.admin, created.id, candidate)

    assert (await service.get_request(actors.admin, created.id)).status == S.PENDING


async def test_reassignment_after_pending_is_rejected(service, actors, request_in):
    req = await request_in(S.ASSIGNED)

    with pytest.raises(InvalidTransition):
        await service.assign(actors.admin, req.id, actors.other_staff.id)

    assert (await service.get_request(actors.admin, req.id)).assigned_to == actors.staff.id


# === Reads ===

async def test_get_unknown_request(service, actors):
    with pytest.raises(NotFound):
        await service.get_request(actors.admin, uuid.uuid4())


async def test_rentee_cannot_view_other_requests(service, actors, new_request):
    created = await new_request()

    with pytest.raises(Unauthorized):
        await service.get_request(actors.other_rentee, created.id)


async def test_get_request_is_repeatable(service, actors, request_in):
    req = await request_in(S.IN_PROGRESS)

    first = await service.get_request(actors.admin, req.id)
    second = await service.get_request(actors.admin, req.id)

    assert first == second


async def test_list_requests_scopes_and_orders(service, actors, new_request):
    first = await new_request()
    second = await new_request(title="Mould in bathroom")
    theirs = await new_request(actor=actors.other_rentee)
    await service.assign(actors.staff, first.id, actors.staff.id)

    mine = await service.list_requests(actors.rentee)
    assert [r.id for r in mine] == [second.id, first.id]

    everything = await service.list_requests(actors.admin)
    assert {r.id for r in everything} == {first.id, second.id, theirs.id}

    pending = await service.list_requests(actors.admin, status=S.PENDING)
    assert {r.id for r in pending} == {second.id, theirs.id}

    assigned_to_me = await service.list_requests(actors.staff, assigned_to_me=True)
    assert [r.id for r in assigned_to_me] == [first.id]


# === Creation ===

async def test_create_with_initial_images(service, actors, new_request, notifier):
    created = await new_request(
        files=[image("tap.jpg"), image("floor.jpg")],
        priority=MaintenancePriority.HIGH,
        request_type="plumbing",
    )

    assert created.rentee_id == actors.rentee.id
    assert created.priority == MaintenancePriority.HIGH
    assert created.request_type == "plumbing"
    assert created.version == 1
    assert {i.image_type for i in created.images} == {ImageType.INITIAL}
    assert len(created.images) == 2
    assert notifier.of("request_created")[0]["recipients"] == ["role:staff"]


@pytest.mark.parametrize("field", ["title", "description", "property_id"])
async def test_create_requires_fields(new_request, field):
    with pytest.raises(ValidationError):
        await new_request(**{field: "  " if field != "property_id" else None})


async def test_staff_create_on_behalf_of_rentee(service, actors, new_request):
    with pytest.raises(ValidationError):
        await new_request(actor=actors.staff)
    with pytest.raises(ValidationError):
        await new_request(actor=actors.staff, rentee_id=actors.staff.id)
    with pytest.raises(Unauthorized):
        await new_request(actor=actors.rentee, rentee_id=actors.other_rentee.id)

    created = await new_request(actor=actors.staff, rentee_id=actors.rentee.id)
    assert created.rentee_id == actors.rentee.id


async def test_create_rejects_non_images(new_request, provider):
    with pytest.raises(ValidationError):
        await new_request(files=[image("lease.pdf", content_type="application/pdf")])

    assert provider.objects == {}


# === Atomicity ===

async def test_failed_upload_leaves_request_untouched(service, actors, request_in):
    req = await request_in(S.IN_PROGRESS)

    with pytest.raises(StorageError):
        await service.complete(actors.staff, req.id, "Fixed", [image("ok.jpg"), image("fail.jpg")])

    after = await service.get_request(actors.staff, req.id)
    assert after == req


async def test_oversized_file_fails_before_any_upload(service, actors, request_in, provider):
    req = await request_in(S.IN_PROGRESS)
    uploaded_before = dict(provider.objects)

    with pytest.raises(ValidationError):
        await service.complete(actors.staff, req.id, "Fixed", [image("ok.jpg"), image("huge.jpg", b"x" * (2 * 1024 * 1024))])

    assert provider.objects == uploaded_before
    assert (await service.get_request(actors.staff, req.id)).status == S.IN_PROGRESS


async def test_database_failure_rolls_back(service, actors, request_in, monkeypatch):
    req = await request_in(S.ASSIGNED)

    async def broken_commit(self):
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(AsyncSession, "commit", broken_commit)
    with pytest.raises(StorageError):
        await service.start_work(actors.staff, req.id)
    monkeypatch.undo()

    after = await service.get_request(actors.staff, req.id)
    assert after.status == S.ASSIGNED
    assert after.started_at is None


# === Image batches ===

async def test_batch_reports_each_file(service, actors, request_in):
    req = await request_in(S.IN_PROGRESS)

    result = await service.add_images(
        actors.staff,
        req.id,
        [image("pipes.jpg"), image("fail.jpg"), image("invoice.pdf", content_type="application/pdf")],
        image_type=ImageType.PROGRESS,
    )

    assert result.uploaded == 1
    assert sorted(f.filename for f in result.failed) == ["fail.jpg", "invoice.pdf"]
    assert [i.image_type for i in result.request.images] == [ImageType.PROGRESS]
    assert result.request.version == req.version + 1


async def test_batch_with_no_successes_changes_nothing(service, actors, request_in):
    req = await request_in(S.IN_PROGRESS)

    result = await service.add_images(actors.staff, req.id, [image("fail-1.jpg"), image("fail-2.jpg")])

    assert result.uploaded == 0
    assert len(result.failed) == 2
    assert result.request == req


async def test_batch_requires_files(service, actors, request_in):
    req = await request_in(S.PENDING)

    with pytest.raises(ValidationError):
        await service.add_images(actors.rentee, req.id, [])


# === Concurrency ===

async def test_stale_expected_version_conflicts(service, actors, request_in):
    req = await request_in(S.ASSIGNED)

    with pytest.raises(Conflict):
        await service.start_work(actors.staff, req.id, expected_version=req.version - 1)

    started = await service.start_work(actors.staff, req.id, expected_version=req.version)
    assert started.status == S.IN_PROGRESS


async def test_concurrent_write_is_detected(lifecycle, service, db, actors, new_request):
    created = await new_request()
    request = await lifecycle.load(created.id)

    # Another writer bumps the row behind this session's back
    table = MaintenanceRequest.__table__
    await db.execute(table.update().where(table.c.id == created.id).values(version=request.version + 1))
    request.title = "Edited"

    with pytest.raises(Conflict):
        await lifecycle._persist(request, actors.admin, AuditAction.REQUEST_ASSIGNED)

    assert (await service.get_request(actors.admin, created.id)).title == created.title


# === Side effects ===

async def test_audit_entries_written_with_each_change(service, actors, request_in, db):
    req = await request_in(S.COMPLETED)

    result = await db.execute(select(AuditLog).where(AuditLog.resource_id == req.id))
    entries = result.scalars().all()

    assert {e.action for e in entries} == {
        AuditAction.REQUEST_CREATED,
        AuditAction.REQUEST_ASSIGNED,
        AuditAction.WORK_STARTED,
        AuditAction.REQUEST_COMPLETED,
    }
    assigned = next(e for e in entries if e.action == AuditAction.REQUEST_ASSIGNED)
    assert assigned.user_id == actors.admin.id
    assert assigned.details["staff_id"] == str(actors.staff.id)


async def test_notifications_skip_the_actor(service, actors, new_request, notifier):
    created = await new_request()

    await service.assign(actors.staff, created.id, actors.staff.id)
    assert notifier.of("request_assigned")[0]["recipients"] == [str(actors.rentee.id)]

    await service.add_comment(actors.staff, created.id, "Parts on order", is_internal=True)
    assert str(actors.rentee.id) not in notifier.of("comment_added")[0]["recipients"]

    await service.start_work(actors.staff, created.id)
    assert notifier.of("work_started")[0]["recipients"] == [str(actors.rentee.id)]


async def test_notification_failure_does_not_block(service, actors, new_request, notifier):
    notifier.broken = True

    created = await new_request()
    cancelled = await service.cancel(actors.rentee, created.id, "Resolved")

    assert cancelled.status == S.CANCELLED


# === Legacy threads ===

async def test_legacy_comment_thread_in_notes(service, actors, new_request, db):
    created = await new_request()
    thread = [
        {"content": "Please knock loudly", "createdBy": {"name": "Rentee", "role": "rentee"},
         "createdAt": "2026-01-05T08:00:00Z", "isInternal": False},
        {"content": "Spare key in lockbox", "createdBy": {"name": "Staff", "role": "staff"},
         "createdAt": "2026-01-05T09:00:00Z", "isInternal": True},
    ]
    table = MaintenanceRequest.__table__
    await db.execute(table.update().where(table.c.id == created.id).values(notes=json.dumps(thread)))
    await db.commit()

    await service.add_comment(actors.rentee, created.id, "Any news?")

    rentee_view = await service.get_request(actors.rentee, created.id)
    admin_view = await service.get_request(actors.admin, created.id)
    assert rentee_view.notes is None
    assert [c.content for c in rentee_view.comments] == ["Please knock loudly", "Any news?"]
    assert [c.legacy for c in admin_view.comments] == [True, True, False]
    assert admin_view.comments[2].created_by.role == UserRole.RENTEE.value


async def test_completion_keeps_legacy_comment_thread(service, actors, request_in, db):
    req = await request_in(S.IN_PROGRESS)
    await service.add_comment(actors.staff, req.id, "On my way")
    thread = [
        {"content": "Please knock loudly", "createdBy": {"name": "Rentee", "role": "rentee"},
         "createdAt": "2026-01-05T08:00:00Z", "isInternal": False},
        {"content": "Dog is friendly", "createdBy": {"name": "Staff", "role": "staff"},
         "createdAt": "2026-01-05T09:00:00Z", "isInternal": True},
    ]
    table = MaintenanceRequest.__table__
    await db.execute(table.update().where(table.c.id == req.id).values(notes=json.dumps(thread)))
    await db.commit()

    done = await service.complete(actors.staff, req.id, "Fixed")

    assert done.notes == "Fixed"
    assert [c.content for c in done.comments] == ["Please knock loudly", "Dog is friendly", "On my way"]
    assert done.comments[1].is_internal is True
    assert done.comments[1].created_by.name == "Staff"

    rentee_view = await service.get_request(actors.rentee, req.id)
    assert [c.content for c in rentee_view.comments] == ["Please knock loudly", "On my way"]

    await service.add_comment(actors.rentee, req.id, "Thanks!")
    after = await service.get_request(actors.admin, req.id)
    assert [c.content for c in after.comments][-2:] == ["On my way", "Thanks!"]


# === Stored evidence ===

async def test_same_file_name_never_overwrites_earlier_evidence(service, actors, new_request, provider):
    created = await new_request(files=[image("image.jpg", b"\xff\xd8-BEFORE")])
    await service.assign(actors.admin, created.id, actors.staff.id)
    await service.start_work(actors.staff, created.id)

    done = await service.complete(actors.staff, created.id, "Fixed", [image("image.jpg", b"\xff\xd8-AFTER")])

    urls = {i.image_type: i.image_url for i in done.images}
    assert urls[ImageType.INITIAL] != urls[ImageType.COMPLETION]
    assert sorted(provider.objects.values()) == [b"\xff\xd8-AFTER", b"\xff\xd8-BEFORE"]
