import asyncio

import pytest
from fastapi import HTTPException
from sqlalchemy import select, update

from app.api.staging.service import StagingJobService
from app.common.constants import FREE_REMIXES_PER_IMAGE
from app.models import StagingJob, TransactionType
from app.schemas import RemixRequest
from conftest import balance_of, staging_request, transactions_for


def remix_request(style="scandinavian"):
    return RemixRequest(room_type="living-room", style=style)


async def completed_job(context, session, user):
    result = await StagingJobService(session, context).create_job(user, staging_request())
    assert result["status"] == "completed"
    return result


async def primary_flags(session, group_id):
    result = await session.execute(
        select(StagingJob.id, StagingJob.is_primary_version)
        .where(StagingJob.version_group_id == group_id)
        .execution_options(populate_existing=True)
    )
    return {job_id: is_primary for job_id, is_primary in result.all()}


@pytest.mark.asyncio
async def test_first_remix_is_free_and_groups_versions(context, session, make_user):
    user = await make_user(credits=5)
    parent = await completed_job(context, session, user)
    service = StagingJobService(session, context)

    remix = await service.remix_job(user, parent["job_id"], remix_request())

    assert remix["status"] == "completed"
    assert remix["is_free_remix"] is True
    assert remix["free_remixes_remaining"] == FREE_REMIXES_PER_IMAGE - 1
    assert remix["parent_job_id"] == parent["job_id"]
    assert remix["is_primary_version"] is False
    assert remix["original_image_url"] == parent["original_image_url"]
    # one charge for the parent, none for the free remix
    assert await balance_of(session, user) == 4

    flags = await primary_flags(session, remix["version_group_id"])
    assert flags == {parent["job_id"]: True, remix["job_id"]: False}


@pytest.mark.asyncio
async def test_remix_is_charged_after_free_allowance(context, session, make_user):
    user = await make_user(credits=5)
    parent = await completed_job(context, session, user)
    service = StagingJobService(session, context)

    for _ in range(FREE_REMIXES_PER_IMAGE):
        free = await service.remix_job(user, parent["job_id"], remix_request())
        assert free["is_free_remix"] is True

    paid = await service.remix_job(user, parent["job_id"], remix_request("industrial"))

    assert paid["is_free_remix"] is False
    assert paid["free_remixes_remaining"] == 0
    assert await balance_of(session, user) == 3
    deductions = await transactions_for(session, user.id, TransactionType.STAGING_DEDUCTION)
    assert len(deductions) == 2


@pytest.mark.asyncio
async def test_paid_remix_requires_credits(context, session, make_user, sync_provider):
    user = await make_user(credits=1)
    parent = await completed_job(context, session, user)
    service = StagingJobService(session, context)
    for _ in range(FREE_REMIXES_PER_IMAGE):
        await service.remix_job(user, parent["job_id"], remix_request())
    calls_before = len(sync_provider.calls)

    with pytest.raises(HTTPException) as exc_info:
        await service.remix_job(user, parent["job_id"], remix_request())

    assert exc_info.value.status_code == 402
    assert len(sync_provider.calls) == calls_before


@pytest.mark.asyncio
async def test_remix_requires_completed_parent(context, session, make_user, sync_provider):
    user = await make_user(credits=5)
    sync_provider.available = False
    pending = await StagingJobService(session, context).create_job(user, staging_request())
    assert pending["status"] == "processing"

    with pytest.raises(HTTPException) as exc_info:
        await StagingJobService(session, context).remix_job(
            user, pending["job_id"], remix_request()
        )

    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_remix_with_unreachable_original_is_rejected(context, session, make_user):
    user = await make_user(credits=5)
    parent = await completed_job(context, session, user)
    await session.execute(
        update(StagingJob)
        .where(StagingJob.id == parent["job_id"])
        .values(original_image_url="https://staging-test.s3.amazonaws.com/missing/original.png")
    )
    await session.commit()

    with pytest.raises(HTTPException) as exc_info:
        await StagingJobService(session, context).remix_job(
            user, parent["job_id"], remix_request()
        )

    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_remix_of_inline_original_decodes_data_url(
    context, session, make_user, s3_instance, sync_provider
):
    s3_instance.put_object.side_effect = RuntimeError("S3 unavailable")
    user = await make_user(credits=5)
    parent = await completed_job(context, session, user)

    remix = await StagingJobService(session, context).remix_job(
        user, parent["job_id"], remix_request()
    )

    assert remix["status"] == "completed"
    assert sync_provider.calls[-1].mime_type == "image/png"


@pytest.mark.asyncio
async def test_remixing_two_jobs_of_one_photo_keeps_a_single_primary(
    context, session, make_user, s3_instance
):
    # both uploads fall back to the same inline image and so share a version group
    s3_instance.put_object.side_effect = RuntimeError("S3 unavailable")
    user = await make_user(credits=5)
    first = await completed_job(context, session, user)
    second = await completed_job(context, session, user)
    assert first["original_image_url"] == second["original_image_url"]
    service = StagingJobService(session, context)

    first_remix = await service.remix_job(user, first["job_id"], remix_request())
    second_remix = await service.remix_job(user, second["job_id"], remix_request())

    assert first_remix["version_group_id"] == second_remix["version_group_id"]
    flags = await primary_flags(session, first_remix["version_group_id"])
    assert flags == {
        first["job_id"]: True,
        second["job_id"]: False,
        first_remix["job_id"]: False,
        second_remix["job_id"]: False,
    }
    assert len(context.version_group_locks) == 0


@pytest.mark.asyncio
async def test_set_primary_leaves_exactly_one_primary(context, session, make_user):
    user = await make_user(credits=5)
    parent = await completed_job(context, session, user)
    service = StagingJobService(session, context)
    remix = await service.remix_job(user, parent["job_id"], remix_request())

    snapshot = await service.set_primary_version(user, remix["job_id"])

    assert snapshot.is_primary_version is True
    flags = await primary_flags(session, remix["version_group_id"])
    assert flags == {parent["job_id"]: False, remix["job_id"]: True}


@pytest.mark.asyncio
async def test_concurrent_set_primary_never_leaves_two_winners(context, session, make_user):
    user = await make_user(credits=5)
    parent = await completed_job(context, session, user)
    service = StagingJobService(session, context)
    first = await service.remix_job(user, parent["job_id"], remix_request())
    second = await service.remix_job(user, parent["job_id"], remix_request("coastal"))

    sessions = [context.session_factory() for _ in range(3)]
    targets = [parent["job_id"], first["job_id"], second["job_id"]]
    try:
        await asyncio.gather(
            *[
                StagingJobService(s, context).set_primary_version(user, job_id)
                for s, job_id in zip(sessions, targets)
            ]
        )
    finally:
        for s in sessions:
            await s.close()

    flags = await primary_flags(session, first["version_group_id"])
    assert len(flags) == 3
    assert sum(flags.values()) == 1


@pytest.mark.asyncio
async def test_get_versions_by_job_or_group(context, session, make_user):
    user = await make_user(credits=5)
    parent = await completed_job(context, session, user)
    service = StagingJobService(session, context)

    ungrouped = await service.get_versions(user, job_id=parent["job_id"])
    assert ungrouped["total_versions"] == 1
    assert ungrouped["version_group"] is None

    remix = await service.remix_job(user, parent["job_id"], remix_request())
    by_job = await service.get_versions(user, job_id=remix["job_id"])
    by_group = await service.get_versions(user, group_id=remix["version_group_id"])

    assert by_job["total_versions"] == by_group["total_versions"] == 2
    assert by_group["free_remixes_remaining"] == FREE_REMIXES_PER_IMAGE - 1
    assert by_group["show_version_warning"] is False
    assert [v.job_id for v in by_group["versions"]] == [parent["job_id"], remix["job_id"]]


@pytest.mark.asyncio
async def test_get_versions_requires_an_identifier(context, session, make_user):
    user = await make_user(credits=5)

    with pytest.raises(HTTPException) as exc_info:
        await StagingJobService(session, context).get_versions(user)

    assert exc_info.value.status_code == 400
