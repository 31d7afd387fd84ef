"""Unit tests for the CLI, arq tasks and worker hooks."""
import json
from unittest.mock import AsyncMock, Mock, patch

import pytest

from entity_indexer import cli
from entity_indexer.errors.exceptions import PersistenceError
from entity_indexer.services.llm.client import MockLLMClient
from entity_indexer.services.persistence.paths import link_path
from entity_indexer.services.persistence.store import InMemoryDocumentStore
from entity_indexer.services.persistence.writer import PersistenceWriter
from entity_indexer.tasks.indexing_tasks import bootstrap_catalog_task, index_product_task

from tests.helpers import MERCHANT, P1_REPLY, make_pipeline


class UnreadableStore(InMemoryDocumentStore):
    async def list_collection(self, collection, limit=None):
        raise PersistenceError("catalog offline")


class TestCli:
    """Test argument handling, output and exit codes."""

    def _run(self, argv, pipeline, capsys):
        with patch("entity_indexer.cli.build_pipeline", return_value=pipeline):
            code = cli.main(argv)
        return code, json.loads(capsys.readouterr().out)

    def test_bootstrap_dry_run(self, catalog_store, capsys):
        pipeline = make_pipeline(catalog_store, MockLLMClient([P1_REPLY]))
        code, output = self._run(["bootstrap", "--merchant", MERCHANT], pipeline, capsys)

        assert code == cli.EXIT_OK
        assert output["ok"] is True
        assert output["mode"] == "bootstrap"
        assert output["commit"] is False
        assert output["processed"] == 3
        assert output["written"] == 0

    def test_bootstrap_commit_verbose(self, catalog_store, capsys):
        pipeline = make_pipeline(catalog_store, MockLLMClient([P1_REPLY]))
        code, output = self._run(
            ["bootstrap", "-m", MERCHANT, "--limit", "1", "--commit", "--verbose"], pipeline, capsys
        )
        assert code == cli.EXIT_OK
        assert output["processed"] == 1
        assert output["written"] == 1
        assert output["samples"] == []
        assert link_path(MERCHANT, "p1") in catalog_store.documents

    def test_bootstrap_catalog_error(self, capsys):
        pipeline = make_pipeline(UnreadableStore(), MockLLMClient([P1_REPLY]))
        code, output = self._run(["bootstrap", "--merchant", MERCHANT], pipeline, capsys)
        assert code == cli.EXIT_FAILED
        assert output["ok"] is False
        assert "catalog offline" in output["error"]

    def test_index(self, catalog_store, capsys):
        pipeline = make_pipeline(catalog_store, MockLLMClient([P1_REPLY]))
        code, output = self._run(["index", "-m", MERCHANT, "-p", "p1", "--commit"], pipeline, capsys)

        assert code == cli.EXIT_OK
        assert output["mode"] == "index"
        assert output["tier"] == "attempt_full"
        assert output["wrote"] is True

    def test_index_not_found(self, catalog_store, capsys):
        pipeline = make_pipeline(catalog_store, MockLLMClient([P1_REPLY]))
        code, output = self._run(["index", "--merchant", MERCHANT, "--product", "missing"], pipeline, capsys)
        assert code == cli.EXIT_NOT_FOUND
        assert output["ok"] is False

    def test_enqueue(self, capsys):
        with patch("entity_indexer.cli._enqueue", new=AsyncMock(return_value="job-1")) as enqueue:
            code = cli.main(["index", "--merchant", MERCHANT, "--product", "p1", "--enqueue"])
        output = json.loads(capsys.readouterr().out)

        assert code == cli.EXIT_OK
        assert output == {"ok": True, "enqueued": "index_product_task", "job_id": "job-1"}
        enqueue.assert_awaited_once_with(
            "index_product_task", merchant_id=MERCHANT, product_id="p1", commit=False
        )

    def test_merchant_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["bootstrap"])

    @pytest.mark.parametrize("value", ["0", "-5"])
    def test_limit_below_one_rejected(self, value):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["bootstrap", "-m", "m1", "--limit", value])

    def test_limit_parsed(self):
        args = cli.build_parser().parse_args(["bootstrap", "-m", "m1", "--limit", "5"])
        assert args.limit == 5


class TestIndexingTasks:
    """Test arq task wrappers."""

    @pytest.mark.asyncio
    async def test_bootstrap_task(self, catalog_store):
        ctx = {"pipeline": make_pipeline(catalog_store, MockLLMClient([P1_REPLY])), "job_id": "j1"}
        result = await bootstrap_catalog_task(ctx, MERCHANT)
        assert result["status"] == "ok"
        assert result["commit"] is True
        assert result["written"] == 3

    @pytest.mark.asyncio
    async def test_bootstrap_task_catalog_error(self):
        ctx = {"pipeline": make_pipeline(UnreadableStore(), MockLLMClient([P1_REPLY]))}
        result = await bootstrap_catalog_task(ctx, MERCHANT)
        assert result["status"] == "error"
        assert result["merchant_id"] == MERCHANT

    @pytest.mark.asyncio
    async def test_index_task(self, catalog_store):
        ctx = {"pipeline": make_pipeline(catalog_store, MockLLMClient([P1_REPLY]))}
        result = await index_product_task(ctx, MERCHANT, "p1")
        assert result["status"] == "success"
        assert result["product_id"] == "p1"
        assert result["entities"] == 2

    @pytest.mark.asyncio
    async def test_index_task_not_found(self, catalog_store):
        ctx = {"pipeline": make_pipeline(catalog_store, MockLLMClient([P1_REPLY]))}
        result = await index_product_task(ctx, MERCHANT, "missing")
        assert result["status"] == "not_found"

    @pytest.mark.asyncio
    async def test_index_task_write_failure_raises(self, catalog_store):
        """Write failures propagate so arq retries the job."""
        failing = AsyncMock(side_effect=PersistenceError("store unavailable"))
        writer = PersistenceWriter(catalog_store)
        writer.commit = failing
        ctx = {"pipeline": make_pipeline(catalog_store, MockLLMClient([P1_REPLY]), writer=writer)}
        with pytest.raises(PersistenceError):
            await index_product_task(ctx, MERCHANT, "p1")

    @pytest.mark.asyncio
    async def test_missing_pipeline(self):
        with pytest.raises(RuntimeError):
            await index_product_task({}, MERCHANT, "p1")


class TestWorkerHooks:
    """Test worker startup/shutdown and registration."""

    @pytest.mark.asyncio
    async def test_startup_and_shutdown(self):
        from entity_indexer import worker

        pipeline = Mock()
        pipeline.close = AsyncMock()
        with patch("entity_indexer.worker.SqlDocumentStore"), \
                patch("entity_indexer.worker.create_pipeline", return_value=pipeline), \
                patch("entity_indexer.worker.dispose_engine", new=AsyncMock()) as dispose:
            ctx = {}
            await worker.startup(ctx)
            assert ctx["pipeline"] is pipeline
            await worker.shutdown(ctx)

        pipeline.close.assert_awaited_once()
        dispose.assert_awaited_once()
        assert "pipeline" not in ctx

    def test_registered_functions(self):
        from entity_indexer import worker

        names = {f.__name__ for f in worker.WorkerSettings.functions}
        assert names == {"bootstrap_catalog_task", "index_product_task"}
        assert worker.WorkerSettings.max_tries == 3
