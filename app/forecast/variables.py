"""Variable lookup - resolves a variable's value for a (shifted) month."""
from datetime import date
from typing import Dict, Iterable, Optional

from app.forecast.months import DateLike, add_months, normalize_to_month_start
from app.forecast.types import Variable


class VariableDataService:
    """
    Month-indexed view over the variables of one calculation run.

    A missing variable and a missing month both yield None; callers that need
    to tell them apart use ``has_variable``.
    """

    def __init__(self, variables: Iterable[Variable]):
        self._variables: Dict[str, Variable] = {}
        self._values: Dict[str, Dict[date, Optional[float]]] = {}
        for variable in variables:
            self._variables[variable.id] = variable
            by_month: Dict[date, Optional[float]] = {}
            for point in variable.time_series:
                # First entry for a month wins
                by_month.setdefault(normalize_to_month_start(point.date), point.value)
            self._values[variable.id] = by_month

    def has_variable(self, variable_id: str) -> bool:
        return variable_id in self._variables

    def get_variable(self, variable_id: str) -> Optional[Variable]:
        return self._variables.get(variable_id)

    def get_variable_value_for_month(self, variable_id: str, target_month: DateLike) -> Optional[float]:
        """Value recorded for the month containing ``target_month``, or None."""
        by_month = self._values.get(variable_id)
        if by_month is None:
            return None
        return by_month.get(normalize_to_month_start(target_month))

    def get_variable_value_with_offset(
        self,
        variable_id: str,
        target_month: DateLike,
        offset_months: int = 0,
    ) -> Optional[float]:
        """
        Value for ``target_month`` shifted by ``offset_months`` calendar months.

        A shift past the supported calendar range has no data and yields None.
        """
        try:
            shifted = add_months(target_month, offset_months)
        except (ValueError, OverflowError):
            return None
        return self.get_variable_value_for_month(variable_id, shifted)


def get_variable_value(
    variable_id: str,
    target_month: DateLike,
    variables: Iterable[Variable],
    offset_months: int = 0,
) -> Optional[float]:
    """One-off lookup without building a reusable index."""
    return VariableDataService(variables).get_variable_value_with_offset(
        variable_id, target_month, offset_months
    )
