"""State definitions and the state machine definition that links them.

States are small frozen dataclasses (a tagged variant keyed by ``type``).
A :class:`StateMachineDefinition` validates itself on construction, so an
invalid definition can never reach the engine.

Definitions serialise to and from a States-Language style JSON object::

    {
      "StartAt": "Wait",
      "States": {
        "Wait": {"Type": "Wait", "SecondsPath": "$.waitSeconds", "Next": "Done"},
        "Done": {"Type": "Succeed"}
      }
    }
"""

from __future__ import annotations

import math
from collections import deque
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Protocol, Union

from .document import Document, parse_path
from .errors import DefinitionInvalid, NoChoiceMatch

# ---------------------------------------------------------------------------
# Choice predicates
# ---------------------------------------------------------------------------


class Condition(Protocol):
    """A predicate evaluated by a Choice rule against the current document."""

    def evaluate(self, document: Document) -> bool: ...

    def paths(self) -> Iterator[str]: ...

    def to_json(self) -> dict[str, Any]: ...


def _is_number(value: object) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


@dataclass(frozen=True, slots=True)
class StringEquals:
    variable: str
    value: str

    def evaluate(self, document: Document) -> bool:
        actual = document.get(self.variable)
        return isinstance(actual, str) and actual == self.value

    def paths(self) -> Iterator[str]:
        yield self.variable

    def to_json(self) -> dict[str, Any]:
        return {"Variable": self.variable, "StringEquals": self.value}


@dataclass(frozen=True, slots=True)
class NumericEquals:
    variable: str
    value: float

    def evaluate(self, document: Document) -> bool:
        actual = document.get(self.variable)
        return _is_number(actual) and actual == self.value

    def paths(self) -> Iterator[str]:
        yield self.variable

    def to_json(self) -> dict[str, Any]:
        return {"Variable": self.variable, "NumericEquals": self.value}


@dataclass(frozen=True, slots=True)
class NumericLessThan:
    variable: str
    value: float

    def evaluate(self, document: Document) -> bool:
        actual = document.get(self.variable)
        return _is_number(actual) and actual < self.value

    def paths(self) -> Iterator[str]:
        yield self.variable

    def to_json(self) -> dict[str, Any]:
        return {"Variable": self.variable, "NumericLessThan": self.value}


@dataclass(frozen=True, slots=True)
class NumericGreaterThan:
    variable: str
    value: float

    def evaluate(self, document: Document) -> bool:
        actual = document.get(self.variable)
        return _is_number(actual) and actual > self.value

    def paths(self) -> Iterator[str]:
        yield self.variable

    def to_json(self) -> dict[str, Any]:
        return {"Variable": self.variable, "NumericGreaterThan": self.value}


@dataclass(frozen=True, slots=True)
class BooleanEquals:
    variable: str
    value: bool

    def evaluate(self, document: Document) -> bool:
        actual = document.get(self.variable)
        return isinstance(actual, bool) and actual is self.value

    def paths(self) -> Iterator[str]:
        yield self.variable

    def to_json(self) -> dict[str, Any]:
        return {"Variable": self.variable, "BooleanEquals": self.value}


@dataclass(frozen=True, slots=True)
class IsPresent:
    """Matches when ``variable`` exists (``value=True``) or is absent (``value=False``)."""

    variable: str
    value: bool = True

    def evaluate(self, document: Document) -> bool:
        return document.contains(self.variable) is self.value

    def paths(self) -> Iterator[str]:
        yield self.variable

    def to_json(self) -> dict[str, Any]:
        return {"Variable": self.variable, "IsPresent": self.value}


@dataclass(frozen=True, slots=True)
class And:
    conditions: tuple[Condition, ...]

    def evaluate(self, document: Document) -> bool:
        return all(c.evaluate(document) for c in self.conditions)

    def paths(self) -> Iterator[str]:
        for c in self.conditions:
            yield from c.paths()

    def to_json(self) -> dict[str, Any]:
        return {"And": [c.to_json() for c in self.conditions]}


@dataclass(frozen=True, slots=True)
class Or:
    conditions: tuple[Condition, ...]

    def evaluate(self, document: Document) -> bool:
        return any(c.evaluate(document) for c in self.conditions)

    def paths(self) -> Iterator[str]:
        for c in self.conditions:
            yield from c.paths()

    def to_json(self) -> dict[str, Any]:
        return {"Or": [c.to_json() for c in self.conditions]}


@dataclass(frozen=True, slots=True)
class Not:
    condition: Condition

    def evaluate(self, document: Document) -> bool:
        return not self.condition.evaluate(document)

    def paths(self) -> Iterator[str]:
        yield from self.condition.paths()

    def to_json(self) -> dict[str, Any]:
        return {"Not": self.condition.to_json()}


_COMPARISONS: dict[str, type] = {
    "StringEquals": StringEquals,
    "NumericEquals": NumericEquals,
    "NumericLessThan": NumericLessThan,
    "NumericGreaterThan": NumericGreaterThan,
    "BooleanEquals": BooleanEquals,
    "IsPresent": IsPresent,
}


def _condition_list(obj: Mapping[str, Any], key: str) -> tuple[Condition, ...]:
    items = obj[key]
    if not isinstance(items, list) or not items:
        raise DefinitionInvalid(f"'{key}' must be a non-empty list of choice rules")
    return tuple(condition_from_json(c) for c in items)


def condition_from_json(obj: Mapping[str, Any]) -> Condition:
    if not isinstance(obj, Mapping):
        raise DefinitionInvalid(f"Choice rule must be a JSON object: {obj!r}")
    if "And" in obj:
        return And(_condition_list(obj, "And"))
    if "Or" in obj:
        return Or(_condition_list(obj, "Or"))
    if "Not" in obj:
        return Not(condition_from_json(obj["Not"]))

    variable = obj.get("Variable")
    if not isinstance(variable, str):
        raise DefinitionInvalid(f"Choice rule is missing 'Variable': {dict(obj)!r}")
    operators = [key for key in obj if key in _COMPARISONS]
    if len(operators) != 1:
        raise DefinitionInvalid(
            f"Choice rule must have exactly one comparison operator: {dict(obj)!r}"
        )
    op = operators[0]
    return _COMPARISONS[op](variable, obj[op])


# ---------------------------------------------------------------------------
# States
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class WaitState:
    """Suspend the branch for a fixed or document-supplied number of seconds."""

    seconds_path: str | None = None
    seconds: float | None = None
    next: str | None = None
    type: str = field(default="Wait", init=False)


@dataclass(frozen=True, slots=True)
class TaskState:
    """Invoke a registered task executor.

    ``input_path`` selects what the executor receives; ``output_path`` says where
    its result is written. The default ``$`` replaces the whole document.
    """

    executor_id: str
    input_path: str = "$"
    output_path: str = "$"
    next: str | None = None
    type: str = field(default="Task", init=False)


@dataclass(frozen=True, slots=True)
class ChoiceRule:
    condition: Condition
    next: str


@dataclass(frozen=True, slots=True)
class ChoiceState:
    rules: tuple[ChoiceRule, ...]
    default: str | None = None
    type: str = field(default="Choice", init=False)


@dataclass(frozen=True, slots=True)
class ParallelState:
    branches: tuple[StateMachineDefinition, ...]
    next: str | None = None
    type: str = field(default="Parallel", init=False)


@dataclass(frozen=True, slots=True)
class PassState:
    next: str | None = None
    type: str = field(default="Pass", init=False)


@dataclass(frozen=True, slots=True)
class FailState:
    cause: str
    error: str = "States.Fail"
    type: str = field(default="Fail", init=False)


@dataclass(frozen=True, slots=True)
class SucceedState:
    type: str = field(default="Succeed", init=False)


State = Union[
    WaitState, TaskState, ChoiceState, ParallelState, PassState, FailState, SucceedState
]


def successors(state: State) -> list[str]:
    """Names of every state that may follow ``state``."""

    if isinstance(state, ChoiceState):
        out = [rule.next for rule in state.rules]
        if state.default is not None:
            out.append(state.default)
        return out
    if isinstance(state, FailState | SucceedState):
        return []
    return [state.next] if state.next is not None else []


def is_terminal(state: State) -> bool:
    if isinstance(state, FailState | SucceedState):
        return True
    if isinstance(state, ChoiceState):
        return False
    return state.next is None


# ---------------------------------------------------------------------------
# State machine definition
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StateMachineDefinition:
    """A validated graph of named states starting at ``start_at``."""

    start_at: str
    states: Mapping[str, State]
    comment: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "states", MappingProxyType(dict(self.states)))
        _validate(self)

    def executor_ids(self) -> set[str]:
        """Every executor id referenced by Task states, including inside branches."""

        ids: set[str] = set()
        for state in self.states.values():
            if isinstance(state, TaskState):
                ids.add(state.executor_id)
            elif isinstance(state, ParallelState):
                for branch in state.branches:
                    ids |= branch.executor_ids()
        return ids

    def to_json(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.comment:
            out["Comment"] = self.comment
        out["StartAt"] = self.start_at
        out["States"] = {name: _state_to_json(state) for name, state in self.states.items()}
        return out

    @staticmethod
    def from_json(obj: Mapping[str, Any]) -> StateMachineDefinition:
        if not isinstance(obj, Mapping):
            raise DefinitionInvalid("State machine definition must be a JSON object")
        start_at = obj.get("StartAt")
        states_raw = obj.get("States")
        if not isinstance(start_at, str):
            raise DefinitionInvalid("State machine definition is missing 'StartAt'")
        if not isinstance(states_raw, Mapping) or not states_raw:
            raise DefinitionInvalid("State machine definition is missing 'States'")
        comment = obj.get("Comment", "")
        return StateMachineDefinition(
            start_at=start_at,
            states={name: _state_from_json(name, raw) for name, raw in states_raw.items()},
            comment=comment if isinstance(comment, str) else "",
        )


def _next_or_end(state: Any) -> dict[str, Any]:
    return {"Next": state.next} if state.next is not None else {"End": True}


def _state_to_json(state: State) -> dict[str, Any]:
    if isinstance(state, WaitState):
        out: dict[str, Any] = {"Type": "Wait"}
        if state.seconds_path is not None:
            out["SecondsPath"] = state.seconds_path
        else:
            out["Seconds"] = state.seconds
        return {**out, **_next_or_end(state)}
    if isinstance(state, TaskState):
        return {
            "Type": "Task",
            "Resource": state.executor_id,
            "InputPath": state.input_path,
            "OutputPath": state.output_path,
            **_next_or_end(state),
        }
    if isinstance(state, ChoiceState):
        out = {
            "Type": "Choice",
            "Choices": [{**rule.condition.to_json(), "Next": rule.next} for rule in state.rules],
        }
        if state.default is not None:
            out["Default"] = state.default
        return out
    if isinstance(state, ParallelState):
        return {
            "Type": "Parallel",
            "Branches": [branch.to_json() for branch in state.branches],
            **_next_or_end(state),
        }
    if isinstance(state, PassState):
        return {"Type": "Pass", **_next_or_end(state)}
    if isinstance(state, FailState):
        return {"Type": "Fail", "Error": state.error, "Cause": state.cause}
    return {"Type": "Succeed"}


def _state_from_json(name: str, raw: Any) -> State:
    if not isinstance(raw, Mapping):
        raise DefinitionInvalid(f"State {name!r} must be a JSON object")
    kind = raw.get("Type")
    nxt = raw.get("Next")

    if kind == "Wait":
        return WaitState(seconds_path=raw.get("SecondsPath"), seconds=raw.get("Seconds"), next=nxt)
    if kind == "Task":
        resource = raw.get("Resource")
        if not isinstance(resource, str) or not resource:
            raise DefinitionInvalid(f"Task state {name!r} is missing 'Resource'")
        return TaskState(
            executor_id=resource,
            input_path=raw.get("InputPath", "$"),
            output_path=raw.get("OutputPath", "$"),
            next=nxt,
        )
    if kind == "Choice":
        choices = raw.get("Choices", [])
        if not isinstance(choices, list):
            raise DefinitionInvalid(f"Choice state {name!r} needs a list of 'Choices'")
        rules = []
        for rule in choices:
            target = rule.get("Next") if isinstance(rule, Mapping) else None
            if not isinstance(target, str):
                raise DefinitionInvalid(f"Choice rule in {name!r} is missing 'Next'")
            condition = condition_from_json({k: v for k, v in rule.items() if k != "Next"})
            rules.append(ChoiceRule(condition=condition, next=target))
        return ChoiceState(rules=tuple(rules), default=raw.get("Default"))
    if kind == "Parallel":
        branches = tuple(
            StateMachineDefinition.from_json(branch) for branch in raw.get("Branches", [])
        )
        return ParallelState(branches=branches, next=nxt)
    if kind == "Pass":
        return PassState(next=nxt)
    if kind == "Fail":
        return FailState(cause=raw.get("Cause", ""), error=raw.get("Error", "States.Fail"))
    if kind == "Succeed":
        return SucceedState()
    raise DefinitionInvalid(f"State {name!r} has unknown type {kind!r}")


def _is_finite_number(value: object) -> bool:
    return _is_number(value) and math.isfinite(value)  # type: ignore[arg-type]


_OPERAND_CHECKS: dict[type, tuple[Callable[[object], bool], str]] = {
    StringEquals: (lambda v: isinstance(v, str), "a string"),
    NumericEquals: (_is_finite_number, "a number"),
    NumericLessThan: (_is_finite_number, "a number"),
    NumericGreaterThan: (_is_finite_number, "a number"),
    BooleanEquals: (lambda v: isinstance(v, bool), "a boolean"),
    IsPresent: (lambda v: isinstance(v, bool), "a boolean"),
}


def _validate_condition(name: str, condition: Condition) -> None:
    if isinstance(condition, And | Or):
        if not condition.conditions:
            raise DefinitionInvalid(
                f"Choice state {name!r} has an empty {type(condition).__name__} rule"
            )
        for child in condition.conditions:
            _validate_condition(name, child)
        return
    if isinstance(condition, Not):
        _validate_condition(name, condition.condition)
        return

    check = _OPERAND_CHECKS.get(type(condition))
    if check is not None:
        accepts, expected = check
        value = condition.value  # type: ignore[attr-defined]
        if not accepts(value):
            raise DefinitionInvalid(
                f"Choice state {name!r}: {type(condition).__name__} expects {expected}, "
                f"got {value!r}"
            )
    for path in condition.paths():
        if not isinstance(path, str):
            raise DefinitionInvalid(f"Choice state {name!r} has a non-string 'Variable'")
        parse_path(path)


def _validate_state(name: str, state: State) -> None:
    if isinstance(state, WaitState):
        if (state.seconds is None) == (state.seconds_path is None):
            raise DefinitionInvalid(
                f"Wait state {name!r} needs exactly one of 'seconds' or 'seconds_path'"
            )
        if state.seconds_path is not None:
            parse_path(state.seconds_path)
        elif (
            not isinstance(state.seconds, int | float)
            or isinstance(state.seconds, bool)
            or not math.isfinite(state.seconds)
            or state.seconds < 0
        ):
            raise DefinitionInvalid(f"Wait state {name!r} has an invalid duration")
    elif isinstance(state, TaskState):
        if not state.executor_id:
            raise DefinitionInvalid(f"Task state {name!r} has no executor id")
        parse_path(state.input_path)
        parse_path(state.output_path)
    elif isinstance(state, ChoiceState):
        if not state.rules:
            raise DefinitionInvalid(f"Choice state {name!r} has no rules")
        if state.default is None:
            raise NoChoiceMatch(f"Choice state {name!r} has no default successor")
        for rule in state.rules:
            _validate_condition(name, rule.condition)
    elif isinstance(state, ParallelState):
        if not state.branches:
            raise DefinitionInvalid(f"Parallel state {name!r} has no branches")
        for branch in state.branches:
            if not isinstance(branch, StateMachineDefinition):
                raise DefinitionInvalid(f"Parallel state {name!r} has a malformed branch")


def _validate(definition: StateMachineDefinition) -> None:
    states = definition.states
    if not states:
        raise DefinitionInvalid("State machine definition has no states")
    if definition.start_at not in states:
        raise DefinitionInvalid(f"StartAt {definition.start_at!r} is not a defined state")

    for name, state in states.items():
        _validate_state(name, state)
        for target in successors(state):
            if target not in states:
                raise DefinitionInvalid(f"State {name!r} transitions to unknown state {target!r}")

    reachable = {definition.start_at}
    queue = deque([definition.start_at])
    while queue:
        for target in successors(states[queue.popleft()]):
            if target not in reachable:
                reachable.add(target)
                queue.append(target)
    unreachable = sorted(set(states) - reachable)
    if unreachable:
        raise DefinitionInvalid(f"Unreachable states: {', '.join(unreachable)}")

    predecessors: dict[str, set[str]] = {name: set() for name in states}
    for name, state in states.items():
        for target in successors(state):
            predecessors[target].add(name)
    terminates = {name for name, state in states.items() if is_terminal(state)}
    queue = deque(terminates)
    while queue:
        for source in predecessors[queue.popleft()]:
            if source not in terminates:
                terminates.add(source)
                queue.append(source)
    stuck = sorted(set(states) - terminates)
    if stuck:
        raise DefinitionInvalid(f"States that can never terminate: {', '.join(stuck)}")
