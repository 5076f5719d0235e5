"""
Query Builder - Fluent Criteria

🔎 Storage-Neutral Queries:
A Query collects conditions, sort order and paging in a plain
structure that adapters translate for their storage. Conditions map a
property path either to a value (equality) or to a dict of operator
name -> operand.

Example:
    Query().where("age").gte(18).lt(65).sort({"name": "asc"}).limit(10)
"""

import copy
import json
import logging
import re
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from ..exceptions import InvalidOperationError

logger = logging.getLogger(__name__)


class QueryOperator(Enum):
    """Query operators for filtering"""
    EQUALS = "eq"
    NOT_EQUALS = "ne"
    GREATER_THAN = "gt"
    GREATER_THAN_OR_EQUAL = "gte"
    LESS_THAN = "lt"
    LESS_THAN_OR_EQUAL = "lte"
    IN = "in"
    NOT_IN = "nin"
    ALL = "all"
    REGEX = "regex"
    SIZE = "size"


class SortDirection(Enum):
    """Sort direction for ordering"""
    ASC = 1
    DESC = -1

    @classmethod
    def parse(cls, value: Any) -> "SortDirection":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            lowered = value.lower()
            if lowered == "asc":
                return cls.ASC
            if lowered == "desc":
                return cls.DESC
        if value in (1, -1):
            return cls(value)
        raise InvalidOperationError(f"Invalid sort direction: {value!r}")


_NO_VALUE = object()


_OPERATOR_NAMES = {operator.value for operator in QueryOperator}


def evaluate_condition(operator: str, actual: Any, operand: Any) -> bool:
    """Check a single operator condition against a value"""
    try:
        if operator == QueryOperator.EQUALS.value:
            return actual == operand
        elif operator == QueryOperator.NOT_EQUALS.value:
            return actual != operand
        elif operator == QueryOperator.GREATER_THAN.value:
            return actual is not None and actual > operand
        elif operator == QueryOperator.GREATER_THAN_OR_EQUAL.value:
            return actual is not None and actual >= operand
        elif operator == QueryOperator.LESS_THAN.value:
            return actual is not None and actual < operand
        elif operator == QueryOperator.LESS_THAN_OR_EQUAL.value:
            return actual is not None and actual <= operand
        elif operator == QueryOperator.IN.value:
            if isinstance(actual, list):
                return any(item in operand for item in actual)
            return actual in operand if operand else False
        elif operator == QueryOperator.NOT_IN.value:
            if isinstance(actual, list):
                return not any(item in operand for item in actual)
            return actual not in operand if operand else True
        elif operator == QueryOperator.ALL.value:
            return isinstance(actual, list) and all(item in actual for item in operand)
        elif operator == QueryOperator.REGEX.value:
            return actual is not None and re.search(operand, str(actual)) is not None
        elif operator == QueryOperator.SIZE.value:
            return isinstance(actual, list) and len(actual) == operand
        return False
    except TypeError as e:
        logger.warning(f"Condition evaluation failed: {e}")
        return False


def conditions_match(get_value: Callable[[str], Any], conditions: Dict[str, Any]) -> bool:
    """Check equality values and operator dicts against values read by path"""
    for path, expected in conditions.items():
        actual = get_value(path)
        if isinstance(expected, dict) and expected and set(expected) <= _OPERATOR_NAMES:
            for operator, operand in expected.items():
                if not evaluate_condition(operator, actual, operand):
                    return False
        elif not evaluate_condition(QueryOperator.EQUALS.value, actual, expected):
            return False
    return True


class Query:
    """Fluent query builder"""

    def __init__(self, conditions: Optional[Dict[str, Any]] = None):
        self._conditions: Dict[str, Any] = dict(conditions or {})
        self._sort: Dict[str, SortDirection] = {}
        self._limit: Optional[int] = None
        self._skip: Optional[int] = None
        self._count_found_rows = False
        self._condition_alias: Optional[str] = None
        self._current_field: Optional[str] = None

    def where(self, field: str) -> "Query":
        self._current_field = field
        return self

    def _target(self, path: Any, value: Any, name: str):
        if value is _NO_VALUE:
            if self._current_field is None:
                raise InvalidOperationError(f"{name} must be called after where()")
            return self._current_field, path
        return path, value

    def equals(self, path: Any, value: Any = _NO_VALUE) -> "Query":
        path, value = self._target(path, value, "equals")
        self._conditions[path] = value
        return self

    def eq(self, path: Any, value: Any = _NO_VALUE) -> "Query":
        return self.equals(path, value)

    def _operator(self, operator: QueryOperator, path: Any, value: Any) -> "Query":
        path, value = self._target(path, value, operator.value)
        condition = self._conditions.get(path)
        if not isinstance(condition, dict):
            condition = {}
            self._conditions[path] = condition
        condition[operator.value] = value
        return self

    def gt(self, path: Any, value: Any = _NO_VALUE) -> "Query":
        return self._operator(QueryOperator.GREATER_THAN, path, value)

    def gte(self, path: Any, value: Any = _NO_VALUE) -> "Query":
        return self._operator(QueryOperator.GREATER_THAN_OR_EQUAL, path, value)

    def lt(self, path: Any, value: Any = _NO_VALUE) -> "Query":
        return self._operator(QueryOperator.LESS_THAN, path, value)

    def lte(self, path: Any, value: Any = _NO_VALUE) -> "Query":
        return self._operator(QueryOperator.LESS_THAN_OR_EQUAL, path, value)

    def ne(self, path: Any, value: Any = _NO_VALUE) -> "Query":
        return self._operator(QueryOperator.NOT_EQUALS, path, value)

    def in_(self, path: Any, value: Any = _NO_VALUE) -> "Query":
        return self._operator(QueryOperator.IN, path, value)

    def nin(self, path: Any, value: Any = _NO_VALUE) -> "Query":
        return self._operator(QueryOperator.NOT_IN, path, value)

    def all(self, path: Any, value: Any = _NO_VALUE) -> "Query":
        return self._operator(QueryOperator.ALL, path, value)

    def regex(self, path: Any, value: Any = _NO_VALUE) -> "Query":
        return self._operator(QueryOperator.REGEX, path, value)

    def size(self, path: Any, value: Any = _NO_VALUE) -> "Query":
        return self._operator(QueryOperator.SIZE, path, value)

    def set_conditions(self, conditions: Union[Dict[str, Any], str]) -> "Query":
        """Replace all conditions with a dict or its JSON text"""
        if isinstance(conditions, str):
            try:
                conditions = json.loads(conditions)
            except ValueError as e:
                raise InvalidOperationError(f"Invalid query conditions: {e}") from e
        if not isinstance(conditions, dict):
            raise InvalidOperationError("Query conditions must be an object")
        self._conditions = dict(conditions)
        return self

    def condition_alias(self, alias: str) -> "Query":
        """Prefix every unqualified condition path with an alias"""
        self._conditions = {
            (path if "." in path else f"{alias}.{path}"): value
            for path, value in self._conditions.items()
        }
        self._condition_alias = alias
        return self

    def sort_conditions(self, keys: Union[str, List[str], None]) -> "Query":
        """Move the given condition paths to the front, keeping the rest in order"""
        if not keys:
            return self
        if isinstance(keys, str):
            keys = [keys]
        ordered = {k: self._conditions[k] for k in keys if k in self._conditions}
        for path, value in self._conditions.items():
            ordered.setdefault(path, value)
        self._conditions = ordered
        return self

    def sort(self, sort: Union[str, Dict[str, Any]], direction: Any = "asc") -> "Query":
        if isinstance(sort, str):
            sort = {sort: direction}
        for field, value in sort.items():
            self._sort[field] = SortDirection.parse(value)
        return self

    def limit(self, limit: Optional[int]) -> "Query":
        self._limit = int(limit) if limit is not None else None
        return self

    def skip(self, skip: Optional[int]) -> "Query":
        self._skip = int(skip) if skip is not None else None
        return self

    def count_found_rows(self, flag: bool = True) -> "Query":
        self._count_found_rows = bool(flag)
        return self

    def get_conditions(self) -> Dict[str, Any]:
        return self._conditions

    def get_condition_alias(self) -> str:
        return self._condition_alias or ""

    def get_sort(self) -> Dict[str, SortDirection]:
        return self._sort

    def has_sort(self) -> bool:
        return bool(self._sort)

    def get_limit(self) -> Optional[int]:
        return self._limit

    def get_skip(self) -> Optional[int]:
        return self._skip

    def get_count_found_rows(self) -> bool:
        return self._count_found_rows

    def copy(self) -> "Query":
        return copy.deepcopy(self)

    def __repr__(self):
        return (f"Query(conditions={self._conditions!r}, sort={self._sort!r}, "
                f"skip={self._skip!r}, limit={self._limit!r})")


# Export main components
__all__ = ['Query', 'QueryOperator', 'SortDirection', 'evaluate_condition', 'conditions_match']
