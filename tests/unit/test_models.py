import pytest

from setlist.models import (
    SLUG_ALPHABET,
    RunContext,
    Step,
    Strategy,
    generate_slug,
)


def test_chain_follows_next_pointers_from_entry(strategy):
    shuffled = strategy.model_copy(update={"steps": list(reversed(strategy.steps))})
    assert [step.id for step in shuffled.chain()] == [10, 20, 30]


def test_only_the_last_step_is_terminal(strategy):
    assert [step.is_terminal for step in strategy.chain()] == [False, False, True]


def test_chain_skips_unreachable_steps(strategy):
    strategy.steps.append(Step(id=99, strategy_id=1, plugin_id=1))
    assert [step.id for step in strategy.chain()] == [10, 20, 30]


def test_chain_rejects_cycles_and_dangling_pointers():
    looped = Strategy(
        id=2,
        slug="loop",
        entry_step_id=1,
        steps=[
            Step(id=1, strategy_id=2, plugin_id=1, default_next_step_id=2),
            Step(id=2, strategy_id=2, plugin_id=1, default_next_step_id=1),
        ],
    )
    with pytest.raises(ValueError, match="cycle"):
        looped.chain()

    dangling = Strategy(
        id=3,
        slug="dangling",
        entry_step_id=1,
        steps=[Step(id=1, strategy_id=3, plugin_id=1, default_next_step_id=7)],
    )
    with pytest.raises(ValueError, match="unknown step 7"):
        dangling.chain()


def test_materialize_copies_steps_without_plugin_keys(strategy, plugin_list):
    by_id = {p.id: p for p in plugin_list}
    for step in strategy.steps:
        step.plugin = by_id[step.plugin_id]

    context = RunContext.materialize(5, strategy, {"k": "v"}, "http://caller:9000")

    assert context.playlist_id == 5
    assert [s.id for s in context.sequence] == [10, 20, 30]
    assert context.sequence[0].plugin.host == "worker-a"
    assert context.sequence[0].plugin.plugin_key is None
    assert all(not s.has_output for s in context.sequence)

    context.sequence[0].output = {"x": 1}
    assert strategy.steps[0].model_dump().get("output") is None
    assert context.find_step(10).has_output
    assert context.find_step(None) is None
    assert context.find_step(404) is None


def test_generate_slug_is_random_alphanumeric():
    slugs = {generate_slug() for _ in range(50)}
    assert len(slugs) == 50
    for slug in slugs:
        assert len(slug) == 21
        assert set(slug) <= set(SLUG_ALPHABET)
