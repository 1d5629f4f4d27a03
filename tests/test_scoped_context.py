"""Tests for strand-local scoped values."""

import asyncio
import threading

import pytest

from support_table_cache import ScopedContext


class TestScopedContext:

    @pytest.fixture
    def context(self):
        return ScopedContext()

    def test_unset_keys_are_none(self, context):
        assert context.get("key") is None
        assert context.get("key", "default") == "default"

    def test_value_is_set_for_the_block(self, context):
        with context.scoped("key", "value"):
            assert context.get("key") == "value"
        assert context.get("key") is None

    def test_run_returns_the_function_result(self, context):
        result = context.run("key", "value", lambda suffix: context.get("key") + suffix, "!")
        assert result == "value!"

    def test_nested_blocks_restore_the_enclosing_value(self, context):
        with context.scoped("key", "first"):
            with context.scoped("key", "second"):
                assert context.get("key") == "second"
                with context.scoped("key", "third"):
                    assert context.get("key") == "third"
                assert context.get("key") == "second"
            assert context.get("key") == "first"
        assert context.get("key") is None

    def test_nested_blocks_for_different_keys(self, context):
        with context.scoped("key_1", "value_1"):
            with context.scoped("key_2", "value_2"):
                assert context.get("key_1") == "value_1"
                assert context.get("key_2") == "value_2"
            assert context.get("key_1") == "value_1"
            assert context.get("key_2") is None

    def test_value_is_restored_after_an_error(self, context):
        with context.scoped("key", "outer"):
            with pytest.raises(ValueError):
                with context.scoped("key", "inner"):
                    raise ValueError("boom")
            assert context.get("key") == "outer"
        assert context.get("key") is None
        assert context.active_strands == 0

    def test_storage_is_removed_when_the_outermost_block_exits(self, context):
        with context.scoped("key_1", 1):
            with context.scoped("key_2", 2):
                assert context.active_strands == 1
        assert context.active_strands == 0

    def test_values_are_not_visible_to_other_threads(self, context):
        seen = {}
        inside = threading.Event()
        release = threading.Event()

        def sibling():
            with context.scoped("key", "sibling"):
                inside.set()
                release.wait(5)
                seen["sibling"] = context.get("key")

        with context.scoped("key", "main"):
            thread = threading.Thread(target=sibling)
            thread.start()
            inside.wait(5)
            seen["main_during"] = context.get("key")
            release.set()
            thread.join()
            seen["main_after"] = context.get("key")

        assert seen == {"sibling": "sibling", "main_during": "main", "main_after": "main"}
        assert context.active_strands == 0

    def test_threads_do_not_see_values_from_the_spawning_thread(self, context):
        seen = []
        with context.scoped("key", "main"):
            thread = threading.Thread(target=lambda: seen.append(context.get("key")))
            thread.start()
            thread.join()
        assert seen == [None]

    def test_many_threads_leave_no_storage_behind(self, context):
        errors = []

        def worker(n):
            try:
                for i in range(100):
                    with context.scoped("key", (n, i)):
                        with context.scoped("key", (n, i, "inner")):
                            assert context.get("key") == (n, i, "inner")
                        assert context.get("key") == (n, i)
            except AssertionError as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(16)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert context.active_strands == 0

    @pytest.mark.asyncio
    async def test_values_are_isolated_between_tasks(self, context):
        sibling_started = asyncio.Event()
        main_checked = asyncio.Event()
        seen = {}

        async def sibling():
            with context.scoped("key", "sibling"):
                sibling_started.set()
                await main_checked.wait()
                seen["sibling"] = context.get("key")

        with context.scoped("key", "main"):
            task = asyncio.create_task(sibling())
            await sibling_started.wait()
            seen["main_during"] = context.get("key")
            main_checked.set()
            await task
            seen["main_after"] = context.get("key")

        assert seen == {"sibling": "sibling", "main_during": "main", "main_after": "main"}
        assert context.active_strands == 0

    @pytest.mark.asyncio
    async def test_interleaved_tasks_restore_their_own_values(self, context):
        async def worker(name):
            with context.scoped("key", name):
                for _ in range(5):
                    await asyncio.sleep(0)
                    assert context.get("key") == name
                return context.get("key")

        results = await asyncio.gather(*(worker(f"task-{n}") for n in range(10)))

        assert results == [f"task-{n}" for n in range(10)]
        assert context.active_strands == 0
