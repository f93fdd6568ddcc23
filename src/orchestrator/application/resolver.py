from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from uuid import uuid4

from src.orchestrator.application.skill_registry import SkillRegistry
from src.orchestrator.domain.exceptions import BatchValidationError, Violation, ViolationKind
from src.orchestrator.domain.models.skill import SkillCategory
from src.orchestrator.domain.models.task import CRITIQUES_TASKS_KEY, Task
from src.orchestrator.domain.models.task_spec import TaskSpec
from src.orchestrator.domain.repositories import TaskRepository

logger = logging.getLogger(__name__)

_WHITE, _GREY, _BLACK = 0, 1, 2


@dataclass
class ResolvedBatch:
    tasks: list[Task]
    id_map: dict[int, str] = field(default_factory=dict)
    external_ids: set[str] = field(default_factory=set)


@dataclass
class _Node:
    index: int
    spec: TaskSpec
    edges: list[int] = field(default_factory=list)
    critique_targets: list[int | str] = field(default_factory=list)


class DependencyResolver:
    """
    Validates a batch of task specs and resolves batch-local references to real ids.

    Validation is read-only against persisted tasks; nothing is written here.
    """

    def __init__(
        self,
        repository: TaskRepository,
        registry: SkillRegistry,
        *,
        default_timeout_seconds: int = 1800,
    ) -> None:
        self._repository = repository
        self._registry = registry
        self._default_timeout = default_timeout_seconds

    async def resolve(self, specs: Sequence[TaskSpec], *, parent: Task | None = None) -> ResolvedBatch:
        violations: list[Violation] = []
        nodes = [_Node(index=i, spec=spec) for i, spec in enumerate(specs)]
        by_uid = self._index_unique_ids(nodes, violations)

        external_ids = {dep for spec in specs for dep in spec.dependencies}
        for spec in specs:
            external_ids.update(t for t in _critique_targets(spec) if isinstance(t, str))
        existing = await self._repository.get_tasks(external_ids) if external_ids else {}

        for node in nodes:
            self._check_skill(node, violations)
            self._link_logical_dependencies(node, by_uid, violations)
            self._check_external_dependencies(node, existing, parent, violations)
            self._link_critique_targets(node, by_uid, existing, parent, violations)

        violations.extend(self._find_cycles(nodes))
        if violations:
            logger.info(
                "Task batch rejected",
                extra={"violations": [v.kind.value for v in violations], "size": len(specs)},
            )
            raise BatchValidationError(violations)

        return self._build(nodes, parent, set(existing))

    @staticmethod
    def _index_unique_ids(nodes: list[_Node], violations: list[Violation]) -> dict[int, _Node]:
        by_uid: dict[int, _Node] = {}
        for node in nodes:
            uid = node.spec.unique_id
            if uid is None:
                continue
            if uid in by_uid:
                violations.append(
                    Violation(
                        ViolationKind.DUPLICATE_UNIQUE_ID,
                        f"uniqueId {uid} is used by more than one task",
                        (uid,),
                    )
                )
                continue
            by_uid[uid] = node
        return by_uid

    def _check_skill(self, node: _Node, violations: list[Violation]) -> None:
        spec = node.spec
        uids = _uids(spec)
        skill = self._registry.find(spec.skill_id)
        if skill is None:
            violations.append(
                Violation(ViolationKind.UNKNOWN_SKILL, f"Unknown skill '{spec.skill_id}'", uids)
            )
            return
        if not skill.category.allowed_in_graph:
            violations.append(
                Violation(
                    ViolationKind.INVALID_SKILL_CATEGORY,
                    f"Skill '{spec.skill_id}' is a {skill.category.value} and cannot run as a task",
                    uids,
                )
            )
        if spec.inputs.get(CRITIQUES_TASKS_KEY) and skill.category is not SkillCategory.CRITIQUE:
            violations.append(
                Violation(
                    ViolationKind.INVALID_SKILL_CATEGORY,
                    f"Only critique skills may declare {CRITIQUES_TASKS_KEY}; "
                    f"'{spec.skill_id}' is {skill.category.value}",
                    uids,
                )
            )

    @staticmethod
    def _link_logical_dependencies(
        node: _Node, by_uid: dict[int, _Node], violations: list[Violation]
    ) -> None:
        uid = node.spec.unique_id
        for ref in node.spec.logical_dependencies:
            if uid is not None and ref == uid:
                violations.extend(_self_reference(uid, "depends on itself"))
            elif ref not in by_uid:
                violations.append(
                    Violation(
                        ViolationKind.MISSING_REFERENCE,
                        f"Task {_label(node.spec)} depends on unknown uniqueId {ref}",
                        (*_uids(node.spec), ref),
                    )
                )
            else:
                node.edges.append(by_uid[ref].index)

    @staticmethod
    def _check_external_dependencies(
        node: _Node,
        existing: dict[str, Task],
        parent: Task | None,
        violations: list[Violation],
    ) -> None:
        for dep in node.spec.dependencies:
            if parent is not None and dep == parent.id:
                violations.append(
                    Violation(
                        ViolationKind.SELF_DEPENDENCY,
                        f"Sub-task {_label(node.spec)} cannot depend on its own parent",
                        _uids(node.spec),
                        (dep,),
                    )
                )
            elif dep not in existing:
                violations.append(
                    Violation(
                        ViolationKind.MISSING_REFERENCE,
                        f"Task {_label(node.spec)} depends on unknown task '{dep}'",
                        _uids(node.spec),
                        (dep,),
                    )
                )

    @staticmethod
    def _link_critique_targets(
        node: _Node,
        by_uid: dict[int, _Node],
        existing: dict[str, Task],
        parent: Task | None,
        violations: list[Violation],
    ) -> None:
        uid = node.spec.unique_id
        raw = node.spec.inputs.get(CRITIQUES_TASKS_KEY)
        if raw is not None and not isinstance(raw, list):
            violations.append(
                Violation(
                    ViolationKind.MISSING_REFERENCE,
                    f"{CRITIQUES_TASKS_KEY} of task {_label(node.spec)} must be a list of task "
                    f"references, got {raw!r}",
                    _uids(node.spec),
                )
            )
            return
        for target in _critique_targets(node.spec):
            if isinstance(target, int) and not isinstance(target, bool):
                if uid is not None and target == uid:
                    violations.extend(_self_reference(uid, "critiques itself"))
                elif target not in by_uid:
                    violations.append(
                        Violation(
                            ViolationKind.MISSING_REFERENCE,
                            f"Task {_label(node.spec)} critiques unknown uniqueId {target}",
                            (*_uids(node.spec), target),
                        )
                    )
                elif parent is not None:
                    violations.append(
                        Violation(
                            ViolationKind.INVALID_PARENT_NESTING,
                            f"Task {_label(node.spec)} critiques sub-task uniqueId {target}",
                            (*_uids(node.spec), target),
                        )
                    )
                else:
                    node.edges.append(by_uid[target].index)
                    node.critique_targets.append(target)
            elif isinstance(target, str) and target in existing:
                if existing[target].parent_id is not None:
                    violations.append(
                        Violation(
                            ViolationKind.INVALID_PARENT_NESTING,
                            f"Task {_label(node.spec)} critiques sub-task '{target}'; "
                            "critiques must target top-level tasks",
                            _uids(node.spec),
                            (target,),
                        )
                    )
                else:
                    node.critique_targets.append(target)
            else:
                violations.append(
                    Violation(
                        ViolationKind.MISSING_REFERENCE,
                        f"Task {_label(node.spec)} critiques unknown task {target!r}",
                        _uids(node.spec),
                        (str(target),),
                    )
                )

    @staticmethod
    def _find_cycles(nodes: list[_Node]) -> list[Violation]:
        """Iterative three-colour DFS; every back edge reports the cycle it closes."""
        colour = [_WHITE] * len(nodes)
        violations: list[Violation] = []
        for root in range(len(nodes)):
            if colour[root] != _WHITE:
                continue
            path: list[int] = [root]
            cursors: list[int] = [0]
            colour[root] = _GREY
            while path:
                current = path[-1]
                edges = nodes[current].edges
                if cursors[-1] < len(edges):
                    nxt = edges[cursors[-1]]
                    cursors[-1] += 1
                    if colour[nxt] == _WHITE:
                        colour[nxt] = _GREY
                        path.append(nxt)
                        cursors.append(0)
                    elif colour[nxt] == _GREY:
                        cycle = path[path.index(nxt):]
                        uids = tuple(
                            nodes[i].spec.unique_id
                            for i in cycle
                            if nodes[i].spec.unique_id is not None
                        )
                        violations.append(
                            Violation(
                                ViolationKind.CYCLE_DETECTED,
                                f"Circular dependency between uniqueIds {sorted(uids)}",
                                tuple(sorted(uids)),
                            )
                        )
                else:
                    colour[current] = _BLACK
                    path.pop()
                    cursors.pop()
        return violations

    def _build(self, nodes: list[_Node], parent: Task | None, external_ids: set[str]) -> ResolvedBatch:
        positions = sorted(
            nodes,
            key=lambda n: (n.spec.unique_id is None, n.spec.unique_id or 0, n.index),
        )
        ids = {node.index: uuid4().hex for node in nodes}
        id_map = {
            node.spec.unique_id: ids[node.index]
            for node in nodes
            if node.spec.unique_id is not None
        }

        tasks: list[Task] = []
        for position, node in enumerate(positions):
            spec = node.spec
            targets = [
                id_map[target] if isinstance(target, int) else target
                for target in node.critique_targets
            ]
            dependencies = [ids[edge] for edge in node.edges] + list(spec.dependencies) + targets
            inputs = dict(spec.inputs)
            if targets:
                inputs[CRITIQUES_TASKS_KEY] = targets
            tasks.append(
                Task(
                    id=ids[node.index],
                    skill_id=spec.skill_id,
                    name=spec.task_name,
                    description=spec.description,
                    order=spec.task_order,
                    inputs=inputs,
                    validation_criteria=spec.validation_criteria,
                    dependencies=list(dict.fromkeys(dependencies)),
                    parent_id=parent.id if parent is not None else None,
                    timeout_seconds=spec.timeout_seconds or self._default_timeout,
                    batch_position=position,
                )
            )
        return ResolvedBatch(tasks=tasks, id_map=id_map, external_ids=external_ids)


def _uids(spec: TaskSpec) -> tuple[int, ...]:
    return (spec.unique_id,) if spec.unique_id is not None else ()


def _critique_targets(spec: TaskSpec) -> list:
    targets = spec.inputs.get(CRITIQUES_TASKS_KEY)
    return targets if isinstance(targets, list) else []


def _label(spec: TaskSpec) -> str:
    return f"uniqueId {spec.unique_id}" if spec.unique_id is not None else f"'{spec.task_name}'"


def _self_reference(uid: int, what: str) -> list[Violation]:
    message = f"Task uniqueId {uid} {what}"
    return [
        Violation(ViolationKind.CYCLE_DETECTED, message, (uid,)),
        Violation(ViolationKind.SELF_DEPENDENCY, message, (uid,)),
    ]
