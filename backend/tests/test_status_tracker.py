import uuid
from datetime import datetime

from app.models.enums import ImageType, MaintenancePriority, MaintenanceStatus
from app.schemas.maintenance import MaintenanceImageResponse, MaintenanceResponse
from app.services.status_tracker import track

CREATED = datetime(2026, 3, 1, 9, 0)
SCHEDULED = datetime(2026, 3, 4, 8, 30)
STARTED = datetime(2026, 3, 4, 9, 15)
COMPLETED = datetime(2026, 3, 4, 11, 45)


def request(**fields):
    data = dict(
        id=uuid.uuid4(),
        property_id=uuid.uuid4(),
        rentee_id=uuid.uuid4(),
        title="Broken heater",
        description="No heat in the bedroom",
        priority=MaintenancePriority.HIGH,
        status=MaintenanceStatus.PENDING,
        version=1,
        created_at=CREATED,
        updated_at=CREATED,
    )
    data.update(fields)
    return MaintenanceResponse(**data)


def photo(name, image_type, when):
    return MaintenanceImageResponse(
        image_url=f"https://cdn.test/{name}.jpg", image_type=image_type, uploaded_at=when
    )


def steps_by_key(progress):
    return {step.key: step for step in progress.steps}


def test_pending_request_only_has_created_step_done():
    progress = track(request())

    assert [s.key for s in progress.steps] == ["created", "assigned", "scheduled", "in_progress", "completed"]
    assert [s.completed for s in progress.steps] == [True, False, False, False, False]
    assert progress.steps[0].description == "Created on Mar 01, 2026"
    assert progress.cancellation is None


def test_assigned_and_scheduled_share_assigned_at():
    progress = track(request(
        status=MaintenanceStatus.ASSIGNED,
        assigned_to=uuid.uuid4(),
        assignee_name="Sam Staff",
        assigned_at=SCHEDULED,
    ))
    steps = steps_by_key(progress)

    assert steps["assigned"].completed and steps["scheduled"].completed
    assert steps["assigned"].date == steps["scheduled"].date == SCHEDULED
    assert steps["assigned"].description == "Assigned to Sam Staff\nScheduled for: Mar 04, 2026"
    assert steps["scheduled"].description == "Scheduled for Mar 04, 2026"
    assert not steps["in_progress"].completed


def test_in_progress_shows_progress_photos():
    progress = track(request(
        status=MaintenanceStatus.IN_PROGRESS,
        assigned_to=uuid.uuid4(),
        assigned_at=SCHEDULED,
        started_at=STARTED,
        images=[
            photo("before", ImageType.INITIAL, CREATED),
            photo("pipes", ImageType.PROGRESS, STARTED),
        ],
    ))
    steps = steps_by_key(progress)

    assert steps["in_progress"].completed
    assert steps["in_progress"].description == "Started on Mar 04, 2026"
    assert [i.image_url for i in steps["in_progress"].images] == ["https://cdn.test/pipes.jpg"]
    assert not steps["completed"].completed
    assert steps["completed"].images == []


def test_completed_attaches_notes_and_completion_images():
    progress = track(request(
        status=MaintenanceStatus.COMPLETED,
        assigned_to=uuid.uuid4(),
        assigned_at=SCHEDULED,
        started_at=STARTED,
        completed_at=COMPLETED,
        notes="Replaced the thermostat",
        images=[
            photo("done", ImageType.COMPLETION, COMPLETED),
            MaintenanceImageResponse(image_url="", image_type=ImageType.COMPLETION, uploaded_at=COMPLETED),
        ],
    ))
    steps = steps_by_key(progress)

    assert all(step.completed for step in progress.steps)
    assert steps["completed"].notes == "Replaced the thermostat"
    assert [i.image_url for i in steps["completed"].images] == ["https://cdn.test/done.jpg"]


def test_cancelled_request_shows_notice_instead_of_steps():
    cancelled_at = datetime(2026, 3, 2, 14, 0)
    progress = track(request(
        status=MaintenanceStatus.CANCELLED,
        cancelled_at=cancelled_at,
        cancellation_reason="Fixed it myself",
        images=[photo("before", ImageType.INITIAL, CREATED)],
    ))

    assert progress.steps == []
    assert progress.cancellation.reason == "Fixed it myself"
    assert progress.cancellation.cancelled_at == cancelled_at
    assert len(progress.cancellation.images) == 1


def test_cancelled_without_timestamp_falls_back_to_updated_at():
    updated = datetime(2026, 3, 3, 16, 0)
    progress = track(request(status=MaintenanceStatus.CANCELLED, updated_at=updated, cancellation_reason="dup"))

    assert progress.cancellation.cancelled_at == updated
