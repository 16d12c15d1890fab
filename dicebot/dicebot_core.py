"""
Dicebot Core Module

The dice-expression engine. Pure functions with no Discord or Red-Bot
dependencies, so it can be imported and tested without the bot framework.

An expression such as ``(3d3*2)+1d10`` is rolled term by term. Each dice term is
replaced twice in the original text: once with its per-die breakdown (the
display string) and once with its kept sum (the value string). The value string
is then handed to d20 as plain arithmetic.
"""

import enum
import logging
import math
import random
import re
from collections import Counter
from typing import Callable, List, NamedTuple, Optional, Tuple

import d20

log = logging.getLogger("red.dicebot.core")

# --- CONSTANTS ---

DICE_INT_MIN = -(2 ** 31)
DICE_INT_MAX = 2 ** 31 - 1

MAX_ROLLED_DICE = 500
MAX_DICE_SIDES = 10_000
MAX_EXPLOSION_DRAWS = 100_000

MAX_ROLL_MANY = 100
MAX_BINCOUNT_ROLLS = 500

DEFAULT_EXPRESSION = "1d20"

# MfD Fudge dice faces
FUDGE_FACES = (-3, 0, 3)

# Leading boundary, dice term body, trailing boundary
ROLL_REGEX = re.compile(r"(^|[+\- (])(\d+d[^+\-*/ )]+)($|[+\-*/ )])")
ROLL_OPTION_DELIMITER_REGEX = re.compile(r"(\d+|!{1,2}|F)")
INLINE_ROLL_REGEX = re.compile(r"\[\[([^\]]+)\]\]")

# What may reach the arithmetic evaluator once every dice term is substituted
ARITHMETIC_REGEX = re.compile(r"[\d\s.+\-*/()]*")
LEFTOVER_DICE_REGEX = re.compile(r"\S*[dD]\S*")
INTEGER_REGEX = re.compile(r"-?\d+")


# --- ERRORS ---

class DiceError(Exception):
    """Base class for everything the engine can refuse to roll."""


class DiceParseError(DiceError):
    """Malformed dice term or empty expression."""


class DiceRangeError(DiceError):
    """Dice count, side count or explosion draws outside the configured limits."""


class DiceOverflowError(DiceError):
    """Accumulated dice total left the engine's integer range."""


class EvaluationError(DiceError):
    """The arithmetic evaluator couldn't evaluate the value string."""


class ResultRangeError(DiceError):
    """The evaluated result doesn't fit the engine's integer range."""


# --- TYPES ---

class Explode(enum.Enum):
    STANDARD = "!"
    COMPOUNDING = "!!"


class RollLimits(NamedTuple):
    """Upper bounds (exclusive for dice and sides) enforced on every dice term."""
    max_rolled_dice: int = MAX_ROLLED_DICE
    max_dice_sides: int = MAX_DICE_SIDES
    max_explosion_draws: int = MAX_EXPLOSION_DRAWS


DEFAULT_LIMITS = RollLimits()


class RollOptions(NamedTuple):
    """Parsed configuration for one dice term, e.g. ``10d20!!>20``."""
    count: int
    faces: Tuple[int, ...]
    explode: Optional[Explode] = None
    minimum: Optional[int] = None
    maximum: Optional[int] = None

    @property
    def max_face(self) -> int:
        return max(self.faces)

    @property
    def filtered(self) -> bool:
        return self.minimum is not None or self.maximum is not None

    def keep(self, value: int) -> bool:
        """Whether a rolled total survives the exclusive ``>min`` and ``<max`` filters."""
        if self.minimum is not None and value <= self.minimum:
            return False
        if self.maximum is not None and value >= self.maximum:
            return False
        return True


class DiceTermResult(NamedTuple):
    """One rolled dice term. ``rolls`` holds one total per logical die."""
    options: RollOptions
    rolls: Tuple[int, ...]

    def display(self) -> str:
        """Bracketed breakdown, filtered-out totals struck through: ``[~~8~~, 2]``."""
        rendered = []
        for value in self.rolls:
            if self.options.keep(value):
                rendered.append(str(value))
            else:
                rendered.append(f"~~{value}~~")
        return f"[{', '.join(rendered)}]"

    def total(self) -> int:
        """Sum of the kept totals."""
        total = 0
        for value in self.rolls:
            if self.options.keep(value):
                total = checked_add(total, value, "summing dice values")
        return total


def checked_add(left: int, right: int, context: str) -> int:
    result = left + right
    if result < DICE_INT_MIN or result > DICE_INT_MAX:
        raise DiceOverflowError(f"Overflow while {context}.")
    return result


# --- OPTION PARSING ---

def split_roll_options(body: str) -> List[str]:
    """Split a dice term body into option tokens, keeping the delimiters.

    Examples:
    - "10d20!!>20" -> ["10", "d", "20", "!!", ">", "20"]
    - "4dF" -> ["4", "d", "F"]
    """
    return [part for part in ROLL_OPTION_DELIMITER_REGEX.split(body) if part]


def _parse_bound(token: str, value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise DiceParseError(f"Expected a number after '{token}', got '{value}'.") from None


def parse_options(body: str, limits: RollLimits = DEFAULT_LIMITS) -> RollOptions:
    """Parse a dice term body (``<count>d<sides>[!|!!][<max][>min]``) into RollOptions.

    Raises DiceParseError for malformed terms and DiceRangeError for counts or
    side counts outside ``limits``.
    """
    body = body.strip()
    if not body:
        raise DiceParseError("Can't roll an empty string.")

    parts = split_roll_options(body)
    try:
        count = int(parts[0])
    except ValueError:
        raise DiceParseError(
            f"Must roll at least one die, couldn't read a number of dice from '{parts[0]}'."
        ) from None

    faces = None
    explode = None
    minimum = None
    maximum = None

    idx = 1
    while idx < len(parts):
        token = parts[idx]
        idx += 1

        if token == "!":
            # A repeated explode marker never downgrades compounding
            if explode is not Explode.COMPOUNDING:
                explode = Explode.STANDARD
            continue
        if token == "!!":
            explode = Explode.COMPOUNDING
            continue
        if token not in ("d", "<", ">"):
            raise DiceParseError(f"Unknown roll option '{token}'.")

        if idx >= len(parts):
            raise DiceParseError(f"Missing value for '{token}'.")
        value = parts[idx]
        idx += 1

        if token == "d":
            if value == "F":
                faces = FUDGE_FACES
                continue
            sides = _parse_bound(token, value)
            # Checked before building the face list so huge side counts never allocate
            if sides >= limits.max_dice_sides:
                raise DiceRangeError(
                    f"Must have < {limits.max_dice_sides} dice sides to roll. Tried: {sides}"
                )
            faces = tuple(range(1, sides + 1))
        elif token == "<":
            maximum = _parse_bound(token, value)
        else:
            minimum = _parse_bound(token, value)

    if faces is None:
        raise DiceParseError("Must set dice sides (eg d20).")
    if not faces:
        raise DiceRangeError(f"Must have > 0 sides on dice to roll. Tried: {body}")
    if len(faces) >= limits.max_dice_sides:
        raise DiceRangeError(
            f"Must have < {limits.max_dice_sides} dice sides to roll. Tried: {len(faces)}"
        )
    if count <= 0:
        raise DiceRangeError(f"Must have > 0 dice to roll. Tried: {count}")
    if count >= limits.max_rolled_dice:
        raise DiceRangeError(
            f"Must have < {limits.max_rolled_dice} dice to roll. Tried: {count}"
        )
    if explode is not None and len(set(faces)) == 1:
        raise DiceRangeError(
            f"Can't explode a die whose every face is {faces[0]}. Tried: {body}"
        )

    return RollOptions(count, faces, explode, minimum, maximum)


# --- ROLLING ---

def _draw(faces: Tuple[int, ...], rng) -> int:
    return faces[rng.randrange(len(faces))]


def roll_dice(options: RollOptions, rng=None, limits: RollLimits = DEFAULT_LIMITS) -> DiceTermResult:
    """Roll one dice term, honouring standard and compounding explosions.

    Standard explosions roll extra dice in waves until a wave has no maxed die.
    Compounding explosions keep adding draws onto the same die while it maxes.
    ``rng`` is anything with ``randrange``; defaults to the ``random`` module.
    """
    if rng is None:
        rng = random
    max_face = options.max_face
    rolls = []
    draws = 0

    def draw() -> int:
        nonlocal draws
        draws += 1
        if draws > limits.max_explosion_draws:
            raise DiceRangeError(
                f"Exploding dice needed more than {limits.max_explosion_draws} rolls."
            )
        return _draw(options.faces, rng)

    dice_to_roll = options.count
    while dice_to_roll > 0:
        maxed = 0
        for _ in range(dice_to_roll):
            current = draw()
            total = current
            if current == max_face and options.explode is not None:
                maxed += 1
                if options.explode is Explode.COMPOUNDING:
                    while current == max_face:
                        current = draw()
                        total = checked_add(total, current, "compounding exploded dice")
            rolls.append(total)

        dice_to_roll = maxed if options.explode is Explode.STANDARD else 0

    return DiceTermResult(options, tuple(rolls))


def roll_term(body: str, rng=None, limits: RollLimits = DEFAULT_LIMITS) -> DiceTermResult:
    """Parse and roll a single dice term body such as ``3d6!``."""
    result = roll_dice(parse_options(body, limits), rng, limits)
    log.debug(f"Rolled {body}: {list(result.rolls)}")
    return result


# --- TERM EXTRACTION ---

def replace_dice_terms(expression: str, render: Callable[[str], str]) -> str:
    """Replace every dice term in ``expression`` with ``render(term_body)``.

    Only the leftmost term is replaced per pass and the text is rescanned until
    a pass finds nothing. Boundary characters consumed by one match are put
    back, so terms separated by a single space or operator are all found, in
    left-to-right order. Replacement text never contains a dice term.
    """
    def substitute(match: re.Match) -> str:
        return f"{match.group(1)}{render(match.group(2))}{match.group(3)}"

    result = expression
    while True:
        result, replaced = ROLL_REGEX.subn(substitute, result, count=1)
        if not replaced:
            return result


# --- EVALUATION ---

def format_number(value) -> str:
    """Render an evaluated result, dropping the ``.0`` of integral floats.

    Other floats are shown to two decimal places: 1/3 -> "0.33", 2.5 -> "2.5".
    """
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        if math.isfinite(value):
            rendered = f"{value:.2f}".rstrip("0").rstrip(".")
            return "0" if rendered == "-0" else rendered
    return str(value)


def evaluate_arithmetic(text: str):
    """Evaluate plain arithmetic (numbers, ``+ - * /``, unary minus, parentheses) with d20."""
    if not ARITHMETIC_REGEX.fullmatch(text) or "//" in text:
        raise EvaluationError(f"Couldn't evaluate {text}")
    try:
        return d20.roll(text).expr.total
    except (d20.RollError, ZeroDivisionError, OverflowError, RecursionError) as e:
        raise EvaluationError(f"Couldn't evaluate {text}") from e


def roll_expressions(
    expression: str, rng=None, limits: RollLimits = DEFAULT_LIMITS
) -> Tuple[List[DiceTermResult], str, str]:
    """Roll every dice term in ``expression`` once.

    Returns the rolled terms plus the display and value renderings of the
    expression. Term ``i`` of the list belongs to the ``i``-th dice term from
    the left in both renderings.

    Examples:
    - "(1d1+1d1)" -> (rolls, "([1]+[1])", "(1+1)")
    - "(5d11<5)" -> (rolls, "([~~8~~, ~~7~~, 2, ~~9~~, ~~6~~])", "(2)")
    """
    if not expression or not expression.strip():
        raise DiceParseError("Can't roll an empty expression.")

    rolls = []

    def render_display(body: str) -> str:
        result = roll_term(body, rng, limits)
        rolls.append(result)
        return result.display()

    display = replace_dice_terms(expression, render_display)

    # Summed before the second pass so an overflow aborts with no partial output
    sums = iter([roll.total() for roll in rolls])
    value = replace_dice_terms(expression, lambda body: str(next(sums)))

    leftover = LEFTOVER_DICE_REGEX.search(value)
    if leftover:
        raise DiceParseError(f"Couldn't read dice term '{leftover.group(0)}'.")

    return rolls, display, value


def _is_single_simple_roll(rolls: List[DiceTermResult], value: str) -> bool:
    if len(rolls) != 1:
        return False
    options = rolls[0].options
    return (
        options.count == 1
        and options.explode is None
        and not options.filtered
        and INTEGER_REGEX.fullmatch(value) is not None
    )


def evaluate_to_string(expression: str, rng=None, limits: RollLimits = DEFAULT_LIMITS) -> str:
    """Roll ``expression`` and return ``"<breakdown> => **<result>**"``.

    A lone single die with no modifiers skips the evaluator: ``"**<result>**"``.
    """
    rolls, display, value = roll_expressions(expression, rng, limits)
    if _is_single_simple_roll(rolls, value):
        return f"**{value}**"

    evaluated = evaluate_arithmetic(value)
    log.debug(f"Evaluated {expression!r} as {value!r} = {evaluated}")
    return f"{display} => **{format_number(evaluated)}**"


def evaluate_to_integer(expression: str, rng=None, limits: RollLimits = DEFAULT_LIMITS) -> int:
    """Roll ``expression`` and return its result truncated to an integer."""
    _, _, value = roll_expressions(expression, rng, limits)
    evaluated = evaluate_arithmetic(value)

    if isinstance(evaluated, float) and not math.isfinite(evaluated):
        raise ResultRangeError(f"Result out of range: {evaluated}")
    result = int(evaluated)
    if result < DICE_INT_MIN or result > DICE_INT_MAX:
        raise ResultRangeError(f"Result out of range: {result}")
    return result


# --- BATCH AND INLINE ROLLS ---

def roll_many(expression: str, times: int, rng=None, limits: RollLimits = DEFAULT_LIMITS) -> List[str]:
    """Roll ``expression`` ``times`` times, one numbered line per roll.

    Examples:
    - roll_many("1d1+1", 2) -> ["1: [1]+1 => **2**", "2: [1]+1 => **2**"]
    """
    if times < 1 or times > MAX_ROLL_MANY:
        raise DiceRangeError(f"Roll many is limited to between 1 and {MAX_ROLL_MANY} rolls. Tried: {times}")
    return [f"{i}: {evaluate_to_string(expression, rng, limits)}" for i in range(1, times + 1)]


def roll_bincount(
    expression: str, times: int, rng=None, limits: RollLimits = DEFAULT_LIMITS
) -> List[Tuple[int, int]]:
    """Roll ``expression`` ``times`` times and count how often each result came up.

    Returns ``(result, count)`` pairs sorted by result.
    """
    if times < 1 or times > MAX_BINCOUNT_ROLLS:
        raise DiceRangeError(
            f"Roll bincount is limited to between 1 and {MAX_BINCOUNT_ROLLS} rolls. Tried: {times}"
        )
    counts = Counter(evaluate_to_integer(expression, rng, limits) for _ in range(times))
    return sorted(counts.items())


def inline_rolls(message: str, rng=None, limits: RollLimits = DEFAULT_LIMITS) -> str:
    """Replace every ``[[expression]]`` in a message with its rolled result.

    Examples:
    - "I attack [[1d1+4]]." -> "I attack [1]+4 => **5**."
    """
    return INLINE_ROLL_REGEX.sub(
        lambda match: evaluate_to_string(match.group(1), rng, limits), message
    )


def display_name_for(name: str) -> str:
    """Drop a trailing ``| pronouns``-style suffix from a nickname."""
    if "|" in name:
        name = name[:name.rfind("|")].strip()
    return name
