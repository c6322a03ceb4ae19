import pytest
from unittest.mock import AsyncMock

from app.exceptions import CyclicMoveError, InvalidMoveError, RemoteServiceException, SuiteNotFoundError
from app.schemas.suite import DropIntent, MovePlan, OrderShift, SuiteRecord
from app.services.suite_tree import (
    SuiteIndex,
    SuiteReorderEngine,
    build_suite_tree,
    intent_from_pointer,
    plan_move,
)


def suite(suite_id, parent_id=None, order=None, title=None):
    return SuiteRecord(id=suite_id, title=title or suite_id.upper(), parent_id=parent_id, order=order)


@pytest.fixture
def forest():
    """
    root1(1)
      x(1) y(2) z(3)
    root2(2)
      child(1)
    """
    return SuiteIndex([
        suite("root1", order=1),
        suite("root2", order=2),
        suite("x", "root1", 1),
        suite("y", "root1", 2),
        suite("z", "root1", 3),
        suite("child", "root2", 1),
    ])


def test_build_suite_tree_sorts_and_drops_orphans():
    """兄弟が order 順に並び、親が存在しないスイートは含まれないことをテスト"""
    suites = [
        suite("b", order=2),
        suite("a", order=1),
        suite("orphan", parent_id="missing", order=1),
        suite("a2", "a", 3),
        suite("a1", "a", None),
        suite("a3", "a", 3),
    ]

    tree = build_suite_tree(suites)

    assert [n.suite.id for n in tree] == ["a", "b"]
    assert [n.suite.id for n in tree[0].children] == ["a1", "a2", "a3"]
    all_ids = [n.suite.id for root in tree for n in root.walk()]
    assert "orphan" not in all_ids
    assert len(all_ids) == 5


def test_build_suite_tree_from_wire_records():
    suites = [
        SuiteRecord.model_validate({"id": 1, "title": "Root", "parentId": None, "order": 1, "counts": {"children": 1, "testCases": 4}}),
        SuiteRecord.model_validate({"id": 2, "title": "Child", "parentId": 1, "order": 1}),
    ]

    tree = build_suite_tree(suites)

    assert tree[0].suite.id == "1"
    assert tree[0].suite.test_case_count == 4
    assert tree[0].children[0].suite.id == "2"


def test_move_to_root_empty_forest_gets_order_one():
    index = SuiteIndex([suite("only", order=3)])
    plan = plan_move(index, "only", None, DropIntent.ROOT)
    assert plan == MovePlan(suite_id="only", intent=DropIntent.ROOT, parent_id=None, order=1)


def test_move_to_root_after_last_root():
    """ルートへの移動は既存ルートの最大 order + 1 になることをテスト"""
    index = SuiteIndex([suite("r1", order=1), suite("r2", order=5), suite("c", "r1", 1)])
    plan = plan_move(index, "c", None, DropIntent.ROOT)
    assert plan.parent_id is None
    assert plan.order == 6
    assert plan.shifts == []


def test_cyclic_move_rejected():
    """自分の子孫への移動は拒否されることをテスト"""
    index = SuiteIndex([suite("a", order=1), suite("b", "a", 1), suite("c", "b", 1)])

    with pytest.raises(CyclicMoveError):
        plan_move(index, "a", "c", DropIntent.CHILD)
    with pytest.raises(CyclicMoveError):
        plan_move(index, "a", "b", DropIntent.AFTER)


def test_drop_onto_self_is_noop(forest):
    assert plan_move(forest, "x", "x", DropIntent.CHILD) is None


def test_target_required_for_non_root_intent(forest):
    with pytest.raises(InvalidMoveError):
        plan_move(forest, "x", None, DropIntent.CHILD)


def test_unknown_suite(forest):
    with pytest.raises(SuiteNotFoundError):
        plan_move(forest, "nope", "x", DropIntent.CHILD)
    with pytest.raises(SuiteNotFoundError):
        plan_move(forest, "x", "nope", DropIntent.CHILD)


def test_move_as_child(forest):
    """子として追加すると既存の子の最大 order + 1 になることをテスト"""
    plan = plan_move(forest, "x", "root2", DropIntent.CHILD)
    assert (plan.parent_id, plan.order, plan.shifts) == ("root2", 2, [])

    plan = plan_move(forest, "child", "z", DropIntent.CHILD)
    assert (plan.parent_id, plan.order) == ("z", 1)


def test_move_before_shifts_target_and_later_siblings(forest):
    """直前への移動でドロップ先以降の兄弟が1つずつ後ろへずれることをテスト"""
    plan = plan_move(forest, "child", "y", DropIntent.BEFORE)

    assert plan.parent_id == "root1"
    assert plan.order == 2
    assert sorted(plan.shifts, key=lambda s: s.suite_id) == [
        OrderShift(suite_id="y", order=3),
        OrderShift(suite_id="z", order=4),
    ]


def test_move_after_shifts_later_siblings(forest):
    plan = plan_move(forest, "child", "y", DropIntent.AFTER)

    assert plan.parent_id == "root1"
    assert plan.order == 3
    assert plan.shifts == [OrderShift(suite_id="z", order=4)]


def test_reorder_within_same_parent_does_not_shift_dragged(forest):
    plan = plan_move(forest, "z", "x", DropIntent.BEFORE)

    assert plan.order == 1
    assert {s.suite_id for s in plan.shifts} == {"x", "y"}


def test_move_up_one_level(forest):
    """1階層上への移動でドロップ先（元の親）の直後に入ることをテスト"""
    plan = plan_move(forest, "child", "root2", DropIntent.PARENT)
    assert plan.parent_id is None
    assert plan.order == 3

    plan = plan_move(forest, "x", "root1", DropIntent.PARENT)
    assert plan.parent_id is None
    assert plan.order == 2
    assert plan.shifts == [OrderShift(suite_id="root2", order=3)]


def test_move_up_one_level_requires_child(forest):
    with pytest.raises(InvalidMoveError):
        plan_move(forest, "x", "root2", DropIntent.PARENT)


@pytest.mark.parametrize("offset, is_child, expected", [
    (0, False, DropIntent.BEFORE),
    (9.9, False, DropIntent.BEFORE),
    (12, False, DropIntent.AFTER),
    (12, True, DropIntent.PARENT),
    (15, False, DropIntent.CHILD),
    (29, True, DropIntent.CHILD),
])
def test_intent_from_pointer(offset, is_child, expected):
    """行内のポインタ位置から移動意図を決めることをテスト（行の高さ30）"""
    assert intent_from_pointer(offset, 30, is_child) == expected


@pytest.mark.asyncio
async def test_apply_updates_siblings_before_dragged():
    """兄弟の並び替えを先に適用し、最後にドラッグしたスイートを更新することをテスト"""
    service = AsyncMock()
    plan = MovePlan(
        suite_id="d",
        intent=DropIntent.BEFORE,
        parent_id=None,
        order=2,
        shifts=[OrderShift(suite_id="y", order=3), OrderShift(suite_id="z", order=4)],
    )

    await SuiteReorderEngine(service).apply(plan)

    calls = service.update_suite.await_args_list
    assert [c.args[0] for c in calls] == ["y", "z", "d"]
    assert calls[0].args[1].to_payload() == {"order": 3}
    # ルートへの移動は parentId: null を明示的に送る
    assert calls[2].args[1].to_payload() == {"parentId": None, "order": 2}


@pytest.mark.asyncio
async def test_move_refetches_tree_on_failure():
    """更新に失敗した場合はツリーを取り直してから例外を再送出することをテスト"""
    service = AsyncMock()
    service.list_suites.return_value = [suite("a", order=1), suite("b", order=2)]
    service.update_suite.side_effect = RemoteServiceException(500, "Database unavailable")
    engine = SuiteReorderEngine(service)

    with pytest.raises(RemoteServiceException):
        await engine.move("b", "a", DropIntent.CHILD)

    assert service.list_suites.await_count == 2
    assert [n.suite.id for n in engine.tree] == ["a", "b"]


@pytest.mark.asyncio
async def test_move_with_sql_store(store, make_suite):
    """SQLストアでの移動後のツリーをテスト"""
    a = make_suite("A", order=1)
    b = make_suite("B", order=2)
    c = make_suite("C", parent_id=a.id, order=1)

    response = await SuiteReorderEngine(store).move(b.id, c.id, DropIntent.BEFORE)

    assert response.plan.parent_id == a.id
    assert [n.suite.id for n in response.tree] == [a.id]
    assert [(n.suite.id, n.suite.order) for n in response.tree[0].children] == [(b.id, 1), (c.id, 2)]


@pytest.mark.asyncio
async def test_move_onto_self_makes_no_calls():
    service = AsyncMock()
    service.list_suites.return_value = [suite("a", order=1)]

    response = await SuiteReorderEngine(service).move("a", "a", DropIntent.CHILD)

    assert response.plan is None
    service.update_suite.assert_not_called()
