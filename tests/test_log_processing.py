"""Log processing tests: usage enrichment and variable indexing."""

import json
from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from prompt_telemetry.models.execution_logs import ExecutionLogModel, LogSearchEntryModel
from prompt_telemetry.telemetry.errors import (
    ExecutionLogNotFoundError,
    InvalidArchivedDataError,
)
from prompt_telemetry.utils import as_utc

OPENAI_INPUT = {
    "model": "gpt-4o",
    "input": [{"role": "user", "content": "hi"}],
    "text": {"format": {"type": "text"}},
    "reasoning": {"effort": "low"},
}
OPENAI_OUTPUT = {
    "model": "gpt-4o-2024-08-06",
    "usage": {
        "input_tokens": 100,
        "input_tokens_details": {"cached_tokens": 0},
        "output_tokens": 50,
        "output_tokens_details": {"reasoning_tokens": 0},
        "total_tokens": 150,
    },
}


async def _search_rows(session_factory, log_id: int) -> list[LogSearchEntryModel]:
    async with session_factory() as session:
        result = await session.execute(
            select(LogSearchEntryModel)
            .where(LogSearchEntryModel.log_id == log_id)
            .order_by(LogSearchEntryModel.variable_path)
        )
        return list(result.scalars().all())


async def _reload(session_factory, log_id: int) -> ExecutionLogModel:
    async with session_factory() as session:
        return await session.get(ExecutionLogModel, log_id)


async def test_variables_are_indexed(archived_log_factory, log_processing, session_factory):
    log = await archived_log_factory(
        files={
            "variables.json": {
                "user": {"name": "Ada", "age": 36, "vip": True},
                "tags": ["a", "b"],
                "note": None,
            }
        }
    )

    await log_processing.process_execution_log(log.tenant_id, log.project_id, log.id)

    rows = await _search_rows(session_factory, log.id)
    assert [(r.variable_path, r.variable_value) for r in rows] == [
        ("note", ""),
        ("tags", '["a", "b"]'),
        ("user.age", "36"),
        ("user.name", "Ada"),
        ("user.vip", "true"),
    ]
    assert all(r.tenant_id == log.tenant_id for r in rows)
    assert all(r.project_id == log.project_id for r in rows)
    assert all(r.prompt_id == log.prompt_id for r in rows)


async def test_search_rows_carry_log_creation_time(
    archived_log_factory, log_processing, session_factory
):
    created_at = datetime(2020, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    log = await archived_log_factory(
        files={"variables.json": {"a": 1, "b": "x"}}, created_at=created_at
    )

    await log_processing.process_execution_log(log.tenant_id, log.project_id, log.id)

    rows = await _search_rows(session_factory, log.id)
    assert len(rows) == 2
    assert all(as_utc(r.created_at) == created_at for r in rows)


async def test_reprocessing_does_not_duplicate_rows(
    archived_log_factory, log_processing, session_factory
):
    log = await archived_log_factory(files={"variables.json": {"a": 1, "b": 2}})

    await log_processing.process_execution_log(log.tenant_id, log.project_id, log.id)
    await log_processing.process_execution_log(log.tenant_id, log.project_id, log.id)

    assert len(await _search_rows(session_factory, log.id)) == 2


async def test_missing_log_raises(log_processing):
    with pytest.raises(ExecutionLogNotFoundError):
        await log_processing.process_execution_log(1, 10, 999)


async def test_log_from_other_tenant_is_not_found(archived_log_factory, log_processing):
    log = await archived_log_factory(files={"variables.json": {"a": 1}})
    with pytest.raises(ExecutionLogNotFoundError):
        await log_processing.process_execution_log(log.tenant_id + 1, log.project_id, log.id)


async def test_log_without_path_is_noop(
    execution_log_factory, log_processing, session_factory
):
    log = await execution_log_factory(log_path=None)
    await log_processing.process_execution_log(log.tenant_id, log.project_id, log.id)
    assert await _search_rows(session_factory, log.id) == []


async def test_missing_variables_file_is_noop(
    archived_log_factory, log_processing, session_factory
):
    log = await archived_log_factory(files={"input.json": {"prompt": "hi"}})
    await log_processing.process_execution_log(log.tenant_id, log.project_id, log.id)
    assert await _search_rows(session_factory, log.id) == []


async def test_malformed_variables_raise(archived_log_factory, log_processing):
    log = await archived_log_factory(raw_files={"variables.json": "{not json"})
    with pytest.raises(InvalidArchivedDataError) as exc_info:
        await log_processing.process_execution_log(log.tenant_id, log.project_id, log.id)
    assert exc_info.value.path.endswith("/variables.json")


async def test_non_object_variables_raise(archived_log_factory, log_processing):
    log = await archived_log_factory(raw_files={"variables.json": "[1, 2, 3]"})
    with pytest.raises(InvalidArchivedDataError):
        await log_processing.process_execution_log(log.tenant_id, log.project_id, log.id)


async def test_openai_usage_is_recorded(
    archived_log_factory, log_processing, session_factory
):
    log = await archived_log_factory(
        files={"input.json": OPENAI_INPUT, "output.json": OPENAI_OUTPUT}
    )

    await log_processing.process_execution_log(log.tenant_id, log.project_id, log.id)

    refreshed = await _reload(session_factory, log.id)
    assert refreshed.provider == "openai"
    assert refreshed.model == "gpt-4o-2024-08-06"
    assert json.loads(refreshed.usage) == {
        "input_tokens": 100,
        "cached_tokens": 0,
        "output_tokens": 50,
        "reasoning_tokens": 0,
        "total_tokens": 150,
    }


async def test_google_usage_is_recorded(
    archived_log_factory, log_processing, session_factory
):
    log = await archived_log_factory(
        files={
            "input.json": {"contents": [{"parts": [{"text": "hi"}]}], "config": {"a": 1}},
            "output.json": [
                {"candidates": []},
                {
                    "modelVersion": "gemini-2.0-flash",
                    "usageMetadata": {"promptTokenCount": 4, "totalTokenCount": 9},
                },
            ],
        }
    )

    await log_processing.process_execution_log(log.tenant_id, log.project_id, log.id)

    refreshed = await _reload(session_factory, log.id)
    assert refreshed.provider == "google"
    assert refreshed.model == "gemini-2.0-flash"
    assert json.loads(refreshed.usage)["total_tokens"] == 9


async def test_existing_usage_is_not_overwritten(
    archived_log_factory, log_processing, session_factory
):
    log = await archived_log_factory(
        files={"input.json": OPENAI_INPUT, "output.json": OPENAI_OUTPUT},
        provider="openai",
        model="gpt-4o-mini",
        usage=json.dumps({"total_tokens": 1}),
    )

    await log_processing.process_execution_log(log.tenant_id, log.project_id, log.id)

    refreshed = await _reload(session_factory, log.id)
    assert refreshed.model == "gpt-4o-mini"
    assert json.loads(refreshed.usage) == {"total_tokens": 1}


async def test_unrecognized_payloads_leave_usage_empty(
    archived_log_factory, log_processing, session_factory
):
    log = await archived_log_factory(
        files={"input.json": {"prompt": "hi"}, "output.json": {"text": "hello"}},
        raw_files={},
    )

    await log_processing.process_execution_log(log.tenant_id, log.project_id, log.id)

    refreshed = await _reload(session_factory, log.id)
    assert refreshed.provider is None
    assert refreshed.usage is None


async def test_undecodable_output_leaves_usage_empty(
    archived_log_factory, log_processing, session_factory
):
    log = await archived_log_factory(
        files={"input.json": OPENAI_INPUT}, raw_files={"output.json": "garbage"}
    )

    await log_processing.process_execution_log(log.tenant_id, log.project_id, log.id)

    refreshed = await _reload(session_factory, log.id)
    assert refreshed.provider is None
