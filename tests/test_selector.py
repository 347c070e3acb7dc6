import pytest
from vimrest.rest_datatypes import SubstitutionError
from vimrest.rest_selector import SelectorEvaluator
from vimrest.rest_ssh import SessionPool
from vimrest.rest_store import EnvironmentStore, MemoryBackend

DOC = {
    "num": 1,
    "arr": ["obj", 2, {"k": "v"}],
    "obj": {"a": "success", "b": 3},
    "obj1": "success",
}

def make_evaluator(doc=None, environ=None, sessions=None):
    store = EnvironmentStore(MemoryBackend(DOC if doc is None else doc))
    return SelectorEvaluator(store, sessions, environ=environ or {})

class FakeSession:
    def __init__(self, reply):
        self.reply = reply
        self.commands = []
        self.closed = False

    async def raw(self, command_line):
        self.commands.append(command_line)
        return self.reply

    async def close(self):
        self.closed = True

@pytest.mark.asyncio
@pytest.mark.parametrize("selector,expected", [
    (".num", 1),
    (".arr[0]", "obj"),
    (".arr[2].k", "v"),
    (".obj.a", "success"),
    (".obj", {"a": "success", "b": 3}),
    (".num < 5", True),
    (".num + 1", 2),
])
async def test_evaluate_values(selector, expected):
    assert await make_evaluator().evaluate(selector) == expected

@pytest.mark.asyncio
@pytest.mark.parametrize("selector", [".arr[3]", ".obj.c", ".DNE_KEY"])
async def test_missing_values_are_errors(selector):
    with pytest.raises(SubstitutionError) as exc:
        await make_evaluator().evaluate(selector)
    assert str(exc.value) == f"failed to get resource at {selector}"
    assert exc.value.expression == selector

@pytest.mark.asyncio
async def test_invalid_program_is_substitution_error():
    with pytest.raises(SubstitutionError):
        await make_evaluator().evaluate(".[")

@pytest.mark.asyncio
async def test_multiple_results_are_an_error():
    with pytest.raises(SubstitutionError):
        await make_evaluator().evaluate(".arr[]")

@pytest.mark.asyncio
async def test_false_is_a_value():
    assert await make_evaluator().evaluate(".num > 5") is False

@pytest.mark.asyncio
async def test_local_env_var():
    ev = make_evaluator(environ={"TOKEN": "abc"})
    assert await ev.evaluate("$TOKEN") == "abc"
    assert await ev.evaluate("$UNSET_THING") == ""

@pytest.mark.asyncio
async def test_remote_env_var_uses_session():
    session = FakeSession("/home/remote\n")

    async def connect(target):
        assert target.destination == "box"
        return session

    pool = SessionPool(connect=connect)
    ev = make_evaluator(doc={"sshTo": "box"}, sessions=pool, environ={"HOME": "/local"})
    assert await ev.evaluate("$HOME") == "/home/remote"
    assert session.commands == ["echo $HOME"]
    assert len(pool) == 1
