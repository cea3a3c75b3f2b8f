"""
Regression formulas and design matrices.

A formula is parsed once into a response name plus an ordered predictor list.
Adding a marker or principal-component term appends to that list; the text
form is only regenerated for display.
"""

import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from ..association.families import Family
from ..utils.errors import ConfigurationError

SEX_COLUMN = 'Sex'
DEFAULT_MALE_DESIGNATORS: Tuple[str, ...] = ('male', 'm', '1')

_INTERCEPT_ON = ('1', '+1')
_INTERCEPT_OFF = ('0', '-1')


@dataclass(frozen=True)
class Formula:
    """Structured `response ~ predictor + ...` regression formula."""

    response: str
    predictors: Tuple[str, ...] = ()
    intercept: bool = True

    def with_term(self, name: str) -> "Formula":
        """Formula with one more predictor appended."""
        if name in self.predictors:
            raise ConfigurationError(f"term '{name}' is already in the formula",
                                     keyword='regression_formula')
        return Formula(self.response, self.predictors + (name,), self.intercept)

    def with_terms(self, names: Iterable[str]) -> "Formula":
        formula = self
        for name in names:
            formula = formula.with_term(name)
        return formula

    @property
    def column_names(self) -> List[str]:
        """Design-matrix column names in order"""
        names = ['(Intercept)'] if self.intercept else []
        return names + list(self.predictors)

    def __str__(self) -> str:
        terms = list(self.predictors)
        if not self.intercept:
            terms = ['0'] + terms
        rhs = ' + '.join(terms) if terms else '1'
        return f"{self.response} ~ {rhs}"


def parse_formula(text: str) -> Formula:
    """Parse `trait ~ a + b` into a Formula.

    A blank right side means an intercept-only model; `0` or `-1` among the
    terms drops the intercept.

    Raises:
        ConfigurationError: blank formula, missing '~', blank left side,
            or an empty term
    """
    if text is None or str(text).strip() == '':
        raise ConfigurationError("A regression formula must be provided.",
                                 keyword='regression_formula')
    text = str(text)
    if '~' not in text:
        raise ConfigurationError(
            f"'{text}' does not contain the required '~' separating the trait "
            "and the predictors.", keyword='regression_formula')
    lhs, _, rhs = text.partition('~')
    lhs = lhs.strip()
    if lhs == '':
        raise ConfigurationError(
            "The left hand side of the formula is blank; it should name the trait field.",
            keyword='regression_formula')
    if '~' in rhs:
        raise ConfigurationError(f"'{text}' contains more than one '~'.",
                                 keyword='regression_formula')

    intercept = True
    predictors: List[str] = []
    rhs = rhs.strip()
    if rhs:
        rhs = re.sub(r'\+?\s*-\s*1\b', ' + -1', rhs).strip().lstrip('+')
        for raw in rhs.split('+'):
            term = raw.strip()
            if term == '':
                raise ConfigurationError(f"'{text}' has an empty term.",
                                         keyword='regression_formula')
            if term in _INTERCEPT_ON:
                continue
            if term in _INTERCEPT_OFF:
                intercept = False
                continue
            if term not in predictors:
                predictors.append(term)
    return Formula(lhs, tuple(predictors), intercept)


def recode_sex(values: Union[pd.Series, Sequence],
               male_designators: Sequence[str] = DEFAULT_MALE_DESIGNATORS) -> np.ndarray:
    """Map sex labels to +1.0 (male) / -1.0 (female); missing stays NaN."""
    male_set = {str(m).strip().lower() for m in male_designators}
    series = pd.Series(values, dtype=object)
    out = np.full(len(series), np.nan)
    for i, value in enumerate(series):
        if value is None or pd.isna(value):
            continue
        label = str(value).strip().lower()
        if label == '':
            continue
        if isinstance(value, (int, float, np.integer, np.floating)):
            # 1.0 and 1 share a label
            label = f"{float(value):g}"
        out[i] = 1.0 if label in male_set else -1.0
    return out


def recode_case_control(values: Union[pd.Series, Sequence], case_label: str) -> np.ndarray:
    """Map a case/control trait to 1.0 (case) / 0.0 (other); blank is NaN."""
    case_label = str(case_label).strip()
    series = pd.Series(values, dtype=object)
    out = np.zeros(len(series))
    for i, value in enumerate(series):
        if value is None or pd.isna(value):
            out[i] = np.nan
            continue
        label = str(value).strip()
        if label == '':
            out[i] = np.nan
        elif label == case_label:
            out[i] = 1.0
        elif isinstance(value, (int, float, np.integer, np.floating)) and f"{float(value):g}" == case_label:
            out[i] = 1.0
    return out


def male_mask(values: Union[pd.Series, Sequence],
              male_designators: Sequence[str] = DEFAULT_MALE_DESIGNATORS) -> np.ndarray:
    """Boolean male indicator for the sex-aware Hardy-Weinberg test."""
    return recode_sex(values, male_designators) > 0


@dataclass
class ModelFrame:
    """Design matrix and response restricted to complete-case individuals.

    Rows of X and y follow the order of the source frame, so row i of X
    belongs to the i-th True entry of `complete`.
    """

    X: np.ndarray
    y: np.ndarray
    complete: np.ndarray
    formula: Formula
    family: Family
    column_names: List[str] = field(default_factory=list)

    @property
    def n_complete(self) -> int:
        return int(self.X.shape[0])

    @property
    def n_individuals(self) -> int:
        return int(self.complete.shape[0])

    @property
    def complete_indices(self) -> np.ndarray:
        return np.flatnonzero(self.complete)


def _numeric_column(frame: pd.DataFrame, name: str) -> np.ndarray:
    values = pd.to_numeric(frame[name], errors='coerce').to_numpy(dtype=np.float64)
    raw = frame[name]
    non_numeric = raw.notna() & np.isnan(values) & (raw.astype(str).str.strip() != '')
    if non_numeric.any():
        example = raw[non_numeric].iloc[0]
        raise ConfigurationError(
            f"field '{name}' has non-numeric value '{example}'",
            keyword='regression_formula')
    return values


def build_model(frame: pd.DataFrame,
                formula: Union[Formula, str],
                family: Union[Family, str],
                affected_designator: str = '',
                male_designators: Sequence[str] = DEFAULT_MALE_DESIGNATORS,
                sex_column: str = SEX_COLUMN) -> ModelFrame:
    """Resolve a formula against a data frame into X, y and the complete-case mask.

    The Sex predictor is recoded to +/-1 and, for logistic regression with
    an affected designator, the trait is recoded to 1/0/NaN. Both are pure
    transformations of the source columns.

    Raises:
        ConfigurationError: unknown field, non-numeric predictor, or no
            complete cases
    """
    if isinstance(formula, str):
        formula = parse_formula(formula)
    family = Family.parse(family)

    missing = [name for name in (formula.response,) + formula.predictors if name not in frame.columns]
    if missing:
        where = 'left hand side' if formula.response in missing else 'right hand side'
        raise ConfigurationError(
            f"field(s) {missing} on the {where} of '{formula}' are not in the data",
            keyword='regression_formula')

    if family is Family.LOGISTIC and affected_designator:
        y = recode_case_control(frame[formula.response], affected_designator)
    else:
        y = _numeric_column(frame, formula.response)

    columns = []
    if formula.intercept:
        columns.append(np.ones(len(frame)))
    for name in formula.predictors:
        if name == sex_column:
            columns.append(recode_sex(frame[name], male_designators))
        else:
            columns.append(_numeric_column(frame, name))
    X_full = np.column_stack(columns) if columns else np.empty((len(frame), 0))

    complete = np.isfinite(y) & np.all(np.isfinite(X_full), axis=1)
    if not complete.any():
        raise ConfigurationError(
            f"no individual has complete data for '{formula}'",
            keyword='regression_formula')

    X = np.ascontiguousarray(X_full[complete])
    y = y[complete]
    family.validate_response(y)
    return ModelFrame(X=X, y=y, complete=complete, formula=formula,
                      family=family, column_names=formula.column_names)


def sex_vector(frame: pd.DataFrame,
               male_designators: Sequence[str] = DEFAULT_MALE_DESIGNATORS,
               sex_column: str = SEX_COLUMN) -> Optional[np.ndarray]:
    """Male indicator for every row of the frame, or None without a sex column."""
    if sex_column not in frame.columns:
        return None
    return male_mask(frame[sex_column], male_designators)
