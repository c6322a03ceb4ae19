"""
スイートツリーの構築と並べ替え

スイートは id をキーにしたフラットな辞書（アリーナ）と、親ID → 子IDの隣接インデックスで扱う。
循環チェックは親IDを辿るだけで行い、ノード同士の相互参照は持たない。
"""

from typing import Dict, Iterable, List, Optional

from app.exceptions import (
    AuthenticationException,
    CyclicMoveError,
    InvalidMoveError,
    QaHubException,
    SuiteNotFoundError,
)
from app.logging_config import logger
from app.schemas.suite import (
    DropIntent,
    MovePlan,
    MoveSuiteResponse,
    OrderShift,
    SuiteNode,
    SuiteRecord,
    SuiteUpdate,
)
from app.services.store.base import TestCaseRepositoryService


class SuiteIndex:
    """スイートのアリーナと隣接インデックス"""

    def __init__(self, suites: Iterable[SuiteRecord]):
        self.suites: Dict[str, SuiteRecord] = {}
        self.children: Dict[Optional[str], List[str]] = {}
        for suite in suites:
            self.suites[suite.id] = suite
            self.children.setdefault(suite.parent_id, []).append(suite.id)

    def __contains__(self, suite_id: str) -> bool:
        return suite_id in self.suites

    def get(self, suite_id: str) -> SuiteRecord:
        suite = self.suites.get(suite_id)
        if suite is None:
            raise SuiteNotFoundError(details={"suite_id": suite_id})
        return suite

    def children_of(self, parent_id: Optional[str]) -> List[SuiteRecord]:
        return [self.suites[child_id] for child_id in self.children.get(parent_id, [])]

    def is_descendant(self, ancestor_id: str, suite_id: str) -> bool:
        """suite_id から親を辿って ancestor_id に到達するか"""
        seen = set()
        current = self.suites.get(suite_id)
        while current is not None and current.parent_id is not None:
            if current.parent_id == ancestor_id:
                return True
            if current.parent_id in seen:
                # 既に壊れている親子関係で無限ループしないようにする
                return False
            seen.add(current.parent_id)
            current = self.suites.get(current.parent_id)
        return False


def _sorted(suites: List[SuiteRecord]) -> List[SuiteRecord]:
    return sorted(suites, key=lambda s: s.sort_order)


def build_suite_tree(suites: Iterable[SuiteRecord]) -> List[SuiteNode]:
    """
    フラットなスイート一覧から森を構築する

    親が一覧に存在しないスイートはツリーに含めない（ルートには昇格しない）。
    兄弟は order の昇順（None は 0 扱い）で、同順位は入力順を保つ。

    Args:
        suites: スイート一覧

    Returns:
        ルートスイートのノード
    """
    index = suites if isinstance(suites, SuiteIndex) else SuiteIndex(suites)

    def build(suite: SuiteRecord, path: set) -> SuiteNode:
        path = path | {suite.id}
        children = [c for c in _sorted(index.children_of(suite.id)) if c.id not in path]
        return SuiteNode(suite=suite, children=[build(c, path) for c in children])

    return [build(root, set()) for root in _sorted(index.children_of(None))]


def _max_order(suites: Iterable[SuiteRecord]) -> Optional[int]:
    orders = [s.sort_order for s in suites]
    return max(orders) if orders else None


def _shifts(siblings: Iterable[SuiteRecord]) -> List[OrderShift]:
    return [OrderShift(suite_id=s.id, order=s.sort_order + 1) for s in siblings]


def plan_move(
    index: SuiteIndex,
    dragged_id: str,
    target_id: Optional[str],
    intent: DropIntent,
) -> Optional[MovePlan]:
    """
    ドロップ意図から移動計画を作る（通信は行わない）

    Args:
        index: 現在のスイート
        dragged_id: ドラッグしたスイート
        target_id: ドロップ先のスイート（ROOT の場合は不要）
        intent: 移動意図

    Returns:
        移動計画。自分自身へのドロップの場合は None（何もしない）

    Raises:
        SuiteNotFoundError: スイートが存在しない
        CyclicMoveError: ドロップ先がドラッグしたスイートの子孫
        InvalidMoveError: PARENT 指定だがドラッグしたスイートがドロップ先の子でない、または対象未指定
    """
    dragged = index.get(dragged_id)

    if intent == DropIntent.ROOT:
        roots = [s for s in index.children_of(None) if s.id != dragged_id]
        top = _max_order(roots)
        return MovePlan(suite_id=dragged_id, intent=intent, parent_id=None, order=1 if top is None else top + 1)

    if target_id is None:
        raise InvalidMoveError("A target suite is required for this move", details={"intent": intent.value})
    if target_id == dragged_id:
        return None
    target = index.get(target_id)

    if index.is_descendant(dragged_id, target_id):
        raise CyclicMoveError(details={"suite_id": dragged_id, "target_suite_id": target_id})

    if intent == DropIntent.CHILD:
        children = [s for s in index.children_of(target_id) if s.id != dragged_id]
        top = _max_order(children)
        return MovePlan(suite_id=dragged_id, intent=intent, parent_id=target_id, order=1 if top is None else top + 1)

    siblings = [
        s for s in index.children_of(target.parent_id)
        if s.id not in (dragged_id, target_id)
    ]

    if intent == DropIntent.BEFORE:
        order = target.sort_order
        to_shift = [s for s in siblings if s.sort_order >= order] + [target]
        return MovePlan(
            suite_id=dragged_id, intent=intent, parent_id=target.parent_id,
            order=order, shifts=_shifts(to_shift),
        )

    if intent == DropIntent.PARENT and dragged.parent_id != target_id:
        raise InvalidMoveError(
            "Suite can only move up one level from its own parent",
            details={"suite_id": dragged_id, "target_suite_id": target_id},
        )

    # AFTER と PARENT はどちらもドロップ先の直後（ドロップ先と同じ親）に入る
    order = target.sort_order + 1
    to_shift = [s for s in siblings if s.sort_order >= order]
    return MovePlan(
        suite_id=dragged_id, intent=intent, parent_id=target.parent_id,
        order=order, shifts=_shifts(to_shift),
    )


def intent_from_pointer(offset_y: float, height: float, dragged_is_child: bool) -> DropIntent:
    """
    ドロップ先の行内でのポインタ位置から移動意図を決める

    上1/3 は直前、上半分の残りは直後（ドラッグ中のスイートがドロップ先の子なら1階層上へ）、下半分は子。
    """
    if offset_y < height / 3:
        return DropIntent.BEFORE
    if offset_y < height / 2:
        return DropIntent.PARENT if dragged_is_child else DropIntent.AFTER
    return DropIntent.CHILD


class SuiteReorderEngine:
    """移動計画をリポジトリサービスに適用する"""

    def __init__(self, service: TestCaseRepositoryService):
        self.service = service
        self.tree: List[SuiteNode] = []

    async def load_index(self) -> SuiteIndex:
        return SuiteIndex(await self.service.list_suites())

    async def refresh(self) -> List[SuiteNode]:
        """サーバー側の状態からツリーを取り直す"""
        self.tree = build_suite_tree(await self.load_index())
        return self.tree

    async def apply(self, plan: MovePlan) -> None:
        """兄弟の並び順をずらし終えてから、ドラッグしたスイート本体を更新する"""
        for shift in plan.shifts:
            await self.service.update_suite(shift.suite_id, SuiteUpdate(order=shift.order))
        await self.service.update_suite(
            plan.suite_id,
            SuiteUpdate(parent_id=plan.parent_id, order=plan.order),
        )

    async def move(self, dragged_id: str, target_id: Optional[str], intent: DropIntent) -> MoveSuiteResponse:
        """
        スイートを移動してサーバー側の最新ツリーを返す

        途中で失敗した場合はローカルでのロールバックは行わず、ツリーを取り直してから例外を再送出する。

        Args:
            dragged_id: ドラッグしたスイート
            target_id: ドロップ先のスイート
            intent: 移動意図

        Returns:
            適用した計画と移動後のツリー
        """
        index = await self.load_index()
        plan = plan_move(index, dragged_id, target_id, intent)
        if plan is None:
            self.tree = build_suite_tree(index)
            return MoveSuiteResponse(plan=None, tree=self.tree)

        try:
            await self.apply(plan)
        except AuthenticationException:
            raise
        except QaHubException as e:
            logger.error(f"Move suite error for {dragged_id} ({intent.value}): {e}")
            try:
                await self.refresh()
            except QaHubException as refresh_error:
                logger.error(f"Failed to refresh suites after move error: {refresh_error}")
            raise

        logger.info(
            f"Moved suite {dragged_id} ({intent.value}) to parent={plan.parent_id} order={plan.order}, "
            f"{len(plan.shifts)} siblings shifted"
        )
        return MoveSuiteResponse(plan=plan, tree=await self.refresh())
