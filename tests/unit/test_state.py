import pytest

from parley.context import Context, RunContext
from parley.history import ConversationHistory
from parley.state import StateOperation, apply_operations


def op(path, value=None, kind="replace"):
    return StateOperation(op=kind, path=path, value=value)


class TestApplyOperations:
    def test_replace_top_level_field(self):
        doc = {"title": "", "content": ""}
        assert apply_operations(doc, [op("/title", "Grants v2")]) == {
            "title": "Grants v2", "content": "",
        }

    def test_input_not_mutated(self):
        doc = {"evaluation": {"complete": {"pass": False}}}
        apply_operations(doc, [op("/evaluation/complete/pass", True)])
        assert doc == {"evaluation": {"complete": {"pass": False}}}

    def test_operations_apply_in_order(self):
        result = apply_operations({}, [op("/title", "a"), op("/title", "b")])
        assert result == {"title": "b"}

    def test_intermediate_objects_created(self):
        assert apply_operations({}, [op("/a/b", 1)]) == {"a": {"b": 1}}

    def test_remove(self):
        assert apply_operations({"a": 1, "b": 2}, [op("/a", kind="remove")]) == {"b": 2}
        assert apply_operations({"b": 2}, [op("/a", kind="remove")]) == {"b": 2}

    def test_list_operations(self):
        doc = {"tags": ["x", "z"]}
        result = apply_operations(doc, [
            op("/tags/1", "y", kind="add"),
            op("/tags/-", "w", kind="add"),
            op("/tags/0", kind="remove"),
        ])
        assert result == {"tags": ["y", "z", "w"]}

    def test_escaped_pointer(self):
        assert apply_operations({}, [op("/a~1b", 1), op("/c~0d", 2)]) == {"a/b": 1, "c~d": 2}

    def test_root_replace(self):
        assert apply_operations({"old": 1}, [op("", {"new": 2})]) == {"new": 2}

    def test_invalid_pointer(self):
        with pytest.raises(ValueError, match="Invalid JSON pointer"):
            apply_operations({}, [op("title", "x")])

    @pytest.mark.parametrize(
        "doc,path",
        [
            ({"title": "Grants"}, "/title/text"),
            ({"count": 3}, "/count/a/b"),
            ({"evaluation": None}, "/evaluation/complete"),
        ],
    )
    def test_path_through_scalar(self, doc, path):
        with pytest.raises(ValueError, match="Cannot resolve"):
            apply_operations(doc, [op(path, True)])

    @pytest.mark.parametrize("path", ["/tags/5", "/tags/x", "/tags/-1"])
    def test_bad_list_index(self, path):
        with pytest.raises(ValueError, match="Invalid list index"):
            apply_operations({"tags": ["a"]}, [op(path, "b")])


class TestContextPatch:
    def test_patch_applies_and_records(self):
        ctx = Context(
            history=ConversationHistory(thread_id="t"),
            state={"title": ""},
            run=RunContext.create(),
        )
        ctx.patch("/title", "New")
        ctx.patch("/content", "Body")

        assert ctx.state == {"title": "New", "content": "Body"}
        drained = ctx.drain()
        assert [(o.path, o.value) for o in drained] == [("/title", "New"), ("/content", "Body")]
        assert ctx.drain() == []


class TestRunContext:
    def test_generates_missing_ids(self):
        run = RunContext.create()
        assert run.thread_id.startswith("thread_")
        assert run.run_id.startswith("run_")

    def test_keeps_supplied_ids(self):
        run = RunContext.create(thread_id="t1", run_id="r1")
        assert (run.thread_id, run.run_id) == ("t1", "r1")
