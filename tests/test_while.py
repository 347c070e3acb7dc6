import pytest
from vimrest.rest_http import HttpClient
from vimrest.rest_interpreter import Interpreter
from vimrest.rest_selector import SelectorEvaluator
from vimrest.rest_store import EnvironmentStore, MemoryBackend
from vimrest.rest_template import TemplateEngine
from vimrest.rest_while import WhileLoop

class CountingExecutor:
    program = "curl"

    def __init__(self):
        self.calls = []

    async def run(self, args):
        self.calls.append(list(args))
        return "HTTP/1.1 200 OK\n\nok", ""

async def run_doc(text, doc):
    backend = MemoryBackend(doc)
    store = EnvironmentStore(backend)
    templates = TemplateEngine(SelectorEvaluator(store, environ={}), store)
    executor = CountingExecutor()
    interp = Interpreter(templates, HttpClient(templates, executor), store)
    out = await interp.parse_input(text.split("\n"))
    return out, backend, executor

LOOP = "###{ while {{.i < 5}}\n@i = {{.i + 1}}\n###} endwhile"

LOOP_DONE = (
    "###{ while {{.i < 5}} executed (SUCCESS)\n"
    "@i = {{.i + 1}}\n"
    "########## while {{.i < 5}} RESULT\n"
    "@i = 5\n"
    "###} endwhile"
)

@pytest.mark.asyncio
async def test_loop_runs_until_condition_is_false():
    out, backend, _ = await run_doc(LOOP, {"i": 0})
    assert out == LOOP_DONE
    assert backend.saved["i"] == 5
    assert backend.writes == 5

@pytest.mark.asyncio
async def test_rerun_of_finished_loop_does_not_iterate():
    out, backend, _ = await run_doc(LOOP_DONE, {"i": 5})
    assert out == (
        "###{ while {{.i < 5}} executed (SUCCESS)\n"
        "@i = {{.i + 1}}\n"
        "########## while {{.i < 5}} RESULT\n"
        "###} endwhile"
    )
    assert backend.writes == 0

@pytest.mark.asyncio
async def test_rerun_from_start_replaces_stale_output():
    out, backend, _ = await run_doc(LOOP_DONE, {"i": 2})
    assert out == LOOP_DONE
    assert backend.saved["i"] == 5

@pytest.mark.asyncio
async def test_condition_error_is_rendered():
    out, _, _ = await run_doc("###{ while {{.missing}}\n@i = 1\n###} endwhile", {})
    assert out == (
        "###{ while {{.missing}} executed (ERROR)\n"
        "@i = 1\n"
        "########## while {{.missing}} ERROR\n"
        "failed to get resource at .missing\n"
        "###} endwhile"
    )

@pytest.mark.asyncio
async def test_body_error_stops_loop():
    out, backend, _ = await run_doc("###{ while {{.i < 5}}\n@i = {{.nope}}\n###} endwhile", {"i": 0})
    assert out == (
        "###{ while {{.i < 5}} executed (ERROR)\n"
        "@i = {{.nope}}\n"
        "########## while {{.i < 5}} ERROR\n"
        "failed to get resource at .nope\n"
        "###} endwhile"
    )
    assert backend.saved == {"i": 0}

@pytest.mark.asyncio
async def test_loop_issues_request_each_iteration():
    text = "###{ while {{.i < 3}}\n@i = {{.i + 1}}\nGET https://x/{{.i}}\n###} endwhile"
    out, _, executor = await run_doc(text, {"i": 0})
    assert [call[2] for call in executor.calls] == ["https://x/1", "https://x/2", "https://x/3"]
    assert out.endswith("########## while {{.i < 3}} RESULT\n@i = 3\nHTTP/1.1 200 OK\n\nok\n###} endwhile")

@pytest.mark.asyncio
async def test_loop_inside_fold():
    text = "###{ outer\n@i = 0\n" + LOOP + "\n###}"
    out, backend, _ = await run_doc(text, {})
    assert backend.saved["i"] == 5
    assert out == (
        "###{ outer executed (SUCCESS)\n"
        "@i = 0\n"
        "###{ while {{.i < 5}} executed (SUCCESS)\n"
        "@i = {{.i + 1}}\n"
        "###} endwhile\n"
        "########## outer RESULT\n"
        "@i = 0\n"
        "### while {{.i < 5}} RESULT\n"
        "@i = 5\n"
        "###\n"
        "###}"
    )

@pytest.mark.asyncio
async def test_text_around_top_level_loop():
    out, _, _ = await run_doc("before\n" + LOOP + "\nafter", {"i": 4})
    assert out == (
        "before\n"
        "###{ while {{.i < 5}} executed (SUCCESS)\n"
        "@i = {{.i + 1}}\n"
        "########## while {{.i < 5}} RESULT\n"
        "@i = 5\n"
        "###} endwhile\n"
        "after"
    )

def test_collect_counts_nested_loops():
    lines = iter([
        "###{ while {{.b}}",
        "@x = 1",
        "###} endwhile",
        "###} endwhile",
        "after",
    ])
    loop = WhileLoop.collect("###{ while {{.a}}", lines)
    assert loop.condition == "{{.a}}"
    assert loop.block[-1] == "###} endwhile"
    assert len(loop.block) == 5
    assert next(lines) == "after"

def test_collect_strips_executed_suffix_from_condition():
    loop = WhileLoop.collect("###{ while {{.i < 5}} executed (ERROR)", iter(["###} endwhile"]))
    assert loop.condition == "{{.i < 5}}"
