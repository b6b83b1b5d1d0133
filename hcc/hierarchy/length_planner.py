"""Length planning: word-count targets and length mode.

Pure functions: nothing here calls the generator or touches the store.
"""

import re

from hcc.config.policy import PipelinePolicy
from hcc.errors.exceptions import DataValidationError
from hcc.hierarchy.text_utils import round_half_up
from hcc.state.enums import ContentAddition, LengthConstraint, LengthMode
from hcc.state.models import LengthEnforcementConfig, UserInstructions


# =============================================================================
# Mode Classification
# =============================================================================


def classify_mode(ratio: float) -> LengthMode:
    """Classify an output/input ratio.

    Each band includes its lower bound: 0.5 is moderate compression, 0.8 is
    maintain, 1.2 is moderate expansion. 2.0 is the inclusive upper bound of
    moderate expansion.
    """
    if ratio < 0.5:
        return LengthMode.HEAVY_COMPRESSION
    if ratio < 0.8:
        return LengthMode.MODERATE_COMPRESSION
    if ratio < 1.2:
        return LengthMode.MAINTAIN
    if ratio <= 2.0:
        return LengthMode.MODERATE_EXPANSION
    return LengthMode.HEAVY_EXPANSION


def band(target: int, tolerance: float) -> tuple[int, int]:
    """±tolerance band around ``target`` that strictly brackets it."""
    low = round_half_up(target * (1 - tolerance))
    high = round_half_up(target * (1 + tolerance))
    low = max(0, min(low, target - 1))
    high = max(high, target + 1)
    return low, high


# =============================================================================
# Planning
# =============================================================================


def plan_length(
    input_words: int,
    instructions: UserInstructions | None = None,
    policy: PipelinePolicy | None = None,
) -> LengthEnforcementConfig:
    """
    Compute the document-level length band.

    Args:
        input_words: Words in the unit being transformed.
        instructions: Parsed user instructions (length request, additions).
        policy: Tolerance and small-input defaults.

    Returns:
        LengthEnforcementConfig with min < mid < max.

    Raises:
        DataValidationError: If input_words is not positive.
    """
    if input_words <= 0:
        raise DataValidationError("input_words must be positive", field="input_words")
    policy = policy or PipelinePolicy()
    ui = instructions or UserInstructions()
    tolerance = policy.length_tolerance

    if ui.length_range is not None:
        low, high = sorted(ui.length_range)
        if low == high:
            mid = max(1, low)
            low, high = band(mid, tolerance)
        else:
            mid = round_half_up((low + high) / 2)
    elif ui.length_target is not None:
        n = ui.length_target
        if ui.length_constraint == LengthConstraint.NO_LESS_THAN:
            low, high = n, round_half_up(n * (1 + 2 * tolerance))
            mid = round_half_up((low + high) / 2)
        elif ui.length_constraint == LengthConstraint.NO_MORE_THAN:
            low, high = round_half_up(n * (1 - 2 * tolerance)), n
            mid = round_half_up((low + high) / 2)
        else:
            mid = max(1, n)
            low, high = band(mid, tolerance)
    else:
        if input_words < policy.small_input_words and ui.is_empty and not ui.raw.strip():
            mid = policy.small_input_default_target
        else:
            mid = input_words
        low, high = band(mid, tolerance)

    mid = max(1, mid)
    low = max(0, min(low, mid - 1))
    high = max(high, mid + 1)
    ratio = mid / input_words

    return LengthEnforcementConfig(
        input_words=input_words,
        target_min=low,
        target_mid=mid,
        target_max=high,
        ratio=ratio,
        mode=classify_mode(ratio),
    )


def apportion(
    config: LengthEnforcementConfig,
    unit_input_words: int,
    tolerance: float,
) -> tuple[int, int, int]:
    """
    Share of the document target for one unit.

    Returns:
        (target, min, max) for the unit.
    """
    share = config.target_mid * unit_input_words / config.input_words
    target = max(1, round_half_up(share))
    low, high = band(target, tolerance)
    return target, low, high


class LengthPlanner:
    """Policy-bound wrapper around the planning functions."""

    def __init__(self, policy: PipelinePolicy | None = None):
        self.policy = policy or PipelinePolicy()

    def plan(
        self,
        input_words: int,
        instructions: UserInstructions | None = None,
    ) -> LengthEnforcementConfig:
        return plan_length(input_words, instructions, self.policy)

    def plan_target(self, input_words: int, target: int) -> LengthEnforcementConfig:
        """Plan around a stage-computed target rather than a user request."""
        ui = UserInstructions(
            length_target=target,
            length_constraint=LengthConstraint.APPROXIMATELY,
        )
        return plan_length(input_words, ui, self.policy)

    def apportion(self, config: LengthEnforcementConfig, unit_input_words: int) -> tuple[int, int, int]:
        return apportion(config, unit_input_words, self.policy.length_tolerance)

    def band(self, target: int) -> tuple[int, int]:
        return band(max(1, target), self.policy.length_tolerance)


# =============================================================================
# User Instruction Parsing
# =============================================================================

_NUM = r"(\d{1,3}(?:,\d{3})+|\d+(?:\.\d+)?)\s*(k\b)?"

_RANGE = re.compile(
    rf"(?:between\s+)?{_NUM}\s*(?:-|–|to|and)\s*{_NUM}[\s-]*words?\b",
    re.IGNORECASE,
)

_TARGET = re.compile(
    r"(?P<prefix>no less than|not less than|a minimum of|minimum of|at least|"
    r"no more than|not more than|a maximum of|maximum of|at most|up to|fewer than|"
    r"less than|under|exactly|precisely|approximately|roughly|around|about|~)?\s*"
    rf"{_NUM}[\s-]*words?\b",
    re.IGNORECASE,
)

_PREFIX_CONSTRAINT: dict[str, LengthConstraint] = {
    "no less than": LengthConstraint.NO_LESS_THAN,
    "not less than": LengthConstraint.NO_LESS_THAN,
    "a minimum of": LengthConstraint.NO_LESS_THAN,
    "minimum of": LengthConstraint.NO_LESS_THAN,
    "at least": LengthConstraint.NO_LESS_THAN,
    "no more than": LengthConstraint.NO_MORE_THAN,
    "not more than": LengthConstraint.NO_MORE_THAN,
    "a maximum of": LengthConstraint.NO_MORE_THAN,
    "maximum of": LengthConstraint.NO_MORE_THAN,
    "at most": LengthConstraint.NO_MORE_THAN,
    "up to": LengthConstraint.NO_MORE_THAN,
    "fewer than": LengthConstraint.NO_MORE_THAN,
    "less than": LengthConstraint.NO_MORE_THAN,
    "under": LengthConstraint.NO_MORE_THAN,
    "exactly": LengthConstraint.EXACTLY,
    "precisely": LengthConstraint.EXACTLY,
}

_ADDITIONS: list[tuple[re.Pattern, ContentAddition]] = [
    (re.compile(r"conclu(?:ding|sion|sive)\s+(?:chapter|section)|add(?:ing)?\s+(?:a\s+)?conclusion", re.I),
     ContentAddition.CONCLUDING_CHAPTER),
    (re.compile(r"(?:add|include|write|with)\s+(?:an?\s+)?(?:new\s+)?introduction", re.I),
     ContentAddition.INTRODUCTION),
    (re.compile(r"(?:add|include|write|with)\s+(?:an?\s+)?(?:executive\s+|brief\s+)?summary", re.I),
     ContentAddition.SUMMARY),
]

_MUST_ADD = re.compile(r"^(?:please\s+)?(?:add|include|incorporate|mention|discuss)\s+(?P<item>.+)$", re.I)
_MUST_PRESERVE = re.compile(
    r"^(?:please\s+)?(?:preserve|keep|retain|maintain|do not (?:change|alter|remove)|don't (?:change|alter|remove))\s+(?P<item>.+)$",
    re.I,
)


def _to_int(number: str, k: str | None) -> int:
    value = float(number.replace(",", ""))
    if k:
        value *= 1000
    return int(round(value))


def parse_user_instructions(text: str | None) -> UserInstructions:
    """
    Extract length requests, additions, and preservation items.

    Args:
        text: Free-text instructions from the user.

    Returns:
        UserInstructions; fields stay empty when nothing matches.
    """
    ui = UserInstructions(raw=(text or "").strip())
    if not ui.raw:
        return ui

    range_match = _RANGE.search(ui.raw)
    if range_match:
        low = _to_int(range_match.group(1), range_match.group(2))
        high = _to_int(range_match.group(3), range_match.group(4))
        ui.length_range = (min(low, high), max(low, high))
        ui.length_constraint = LengthConstraint.RANGE
    else:
        target_match = _TARGET.search(ui.raw)
        if target_match:
            prefix = (target_match.group("prefix") or "").lower()
            ui.length_target = _to_int(target_match.group(2), target_match.group(3))
            ui.length_constraint = _PREFIX_CONSTRAINT.get(prefix, LengthConstraint.APPROXIMATELY)

    for pattern, addition in _ADDITIONS:
        if pattern.search(ui.raw) and addition not in ui.content_additions:
            ui.content_additions.append(addition)

    for clause in re.split(r"[.;\n]+", ui.raw):
        clause = clause.strip()
        if not clause or _TARGET.search(clause) or _RANGE.search(clause):
            continue
        if any(pattern.search(clause) for pattern, _ in _ADDITIONS):
            continue
        preserve = _MUST_PRESERVE.match(clause)
        if preserve:
            ui.must_preserve.append(preserve.group("item").strip())
            continue
        add = _MUST_ADD.match(clause)
        if add:
            ui.must_add.append(add.group("item").strip())
            if ContentAddition.CUSTOM not in ui.content_additions:
                ui.content_additions.append(ContentAddition.CUSTOM)

    return ui
