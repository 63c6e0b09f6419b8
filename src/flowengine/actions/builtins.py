"""Built-in actions.

Each action carries Python source for one top-level function. The compiler
splices that source into the generated program, where the analysis library
names (`traced`, `transforms`, `ComparisonModel`, ...) and `json` are in
scope.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from ..flow.models import Action, ActionConfigField, ActionType


EXTRACT_JSON_ATTRIBUTE = '''\
def extract_json_attribute(input: Any, config: Config) -> Any:
    try:
        data = json.loads(input) if isinstance(input, str) else input
    except ValueError:
        return None
    path = config.get("attribute_path")
    if not path:
        return None
    result = data
    for key in str(path).split("."):
        if result is None:
            return None
        if isinstance(result, list):
            try:
                result = result[int(key)]
            except (ValueError, IndexError):
                return None
        elif isinstance(result, dict):
            result = result.get(key)
        else:
            return None
    return result
'''

EXTRACT_CSV_CELL = '''\
def extract_csv_cell(input: Any, config: Config) -> Any:
    text = input.get("data") if isinstance(input, dict) else input
    if not isinstance(text, str) or not text:
        return None
    try:
        row_index = int(config.get("row_number")) - 1
        col_index = int(config.get("column_number")) - 1
    except (TypeError, ValueError):
        return None
    lines = text.split("\\n")
    if row_index < 0 or col_index < 0 or row_index >= len(lines):
        return None
    row = lines[row_index].split(",")
    if col_index >= len(row):
        return None
    return row[col_index].strip()
'''

# Unwrapped transforms receive only the config and return a caller.
LLM_ANALYSIS = '''\
def process(config: Config) -> Caller:
    prompt = str(config["prompt"])
    return traced(prompt, config["actionName"])
'''


def _transform_ref(name: str) -> str:
    return f"def process(config: Config) -> Caller:\n    return transforms.{name}\n"


RAW_EXPORT = '''\
def process(input: List[Response], config: Config) -> Any:
    return input
'''

EXPORT_JSON = '''\
def process(input: List[Response], config: Config) -> str:
    outputs = [item.output for item in input]
    return json.dumps(outputs)
'''

EXPORT_CSV = '''\
def process(input: List[Response], config: Config) -> str:
    outputs = [item.output for item in input]
    return "\\n".join(str(output) for output in outputs)
'''

KRIPPENDORFFS_ALPHA = '''\
def process(list1, list2, config: Config) -> dict:
    model = KrippendorffsComparisonModel(config["categories"])
    return ComparisonModel.compare_multiple(list1, list2, model)
'''

COHENS_KAPPA = '''\
def process(list1, list2, config):
    model = CohensComparisonModel(config["label"])
    kappa = ComparisonModel.compare_multiple(list1, list2, model)
    return kappa
'''


BUILTIN_ACTIONS: List[Action] = [
    Action(
        id="built-in-1",
        name="Extract JSON Attribute",
        type=ActionType.INPUT,
        code=EXTRACT_JSON_ATTRIBUTE,
        config=(
            ActionConfigField(
                type="text",
                label="Attribute Path",
                required=True,
                description='Dot path to the attribute (e.g. "user.address.city"); list indices are numbers.',
            ),
        ),
        description="Extracts one attribute from a JSON record. Returns None when the path does not resolve.",
        is_builtin=True,
    ),
    Action(
        id="built-in-2",
        name="Extract CSV Cell",
        type=ActionType.INPUT,
        code=EXTRACT_CSV_CELL,
        config=(
            ActionConfigField(type="number", label="Row Number", required=True, description="1-based row index"),
            ActionConfigField(type="number", label="Column Number", required=True, description="1-based column index"),
        ),
        description="Extracts one cell from CSV text by 1-based row and column.",
        is_builtin=True,
    ),
    Action(
        id="built-in-3",
        name="LLM Analysis",
        type=ActionType.TRANSFORM,
        code=LLM_ANALYSIS,
        config=(
            ActionConfigField(type="text", label="prompt", required=True, description="System prompt for the analysis"),
        ),
        wrap_in_analysis=False,
        description="Runs each record through the configured local LLM with the given prompt.",
        is_builtin=True,
    ),
    Action(
        id="built-in-4",
        name="To Lowercase",
        type=ActionType.TRANSFORM,
        code=_transform_ref("lower_case"),
        wrap_in_analysis=False,
        description="Converts text to lowercase.",
        is_builtin=True,
    ),
    Action(
        id="built-in-5",
        name="To Uppercase",
        type=ActionType.TRANSFORM,
        code=_transform_ref("upper_case"),
        wrap_in_analysis=False,
        description="Converts text to uppercase.",
        is_builtin=True,
    ),
    Action(
        id="built-in-6",
        name="Stringify",
        type=ActionType.TRANSFORM,
        code=_transform_ref("json_to_string"),
        wrap_in_analysis=False,
        description="Serializes a JSON value to a string.",
        is_builtin=True,
    ),
    Action(
        id="built-in-7",
        name="Parse JSON",
        type=ActionType.TRANSFORM,
        code=_transform_ref("string_to_json"),
        wrap_in_analysis=False,
        description="Parses text into a JSON value.",
        is_builtin=True,
    ),
    Action(
        id="built-in-8",
        name="Raw Export",
        type=ActionType.OUTPUT,
        code=RAW_EXPORT,
        wrap_in_analysis=False,
        description="Exports the input records without any transformation.",
        is_builtin=True,
    ),
    Action(
        id="built-in-9",
        name="Export JSON",
        type=ActionType.OUTPUT,
        code=EXPORT_JSON,
        wrap_in_analysis=False,
        description="Exports each record's final output as a JSON array.",
        is_builtin=True,
    ),
    Action(
        id="built-in-10",
        name="Export CSV",
        type=ActionType.OUTPUT,
        code=EXPORT_CSV,
        wrap_in_analysis=False,
        description="Exports each record's final output, one per line.",
        is_builtin=True,
    ),
    Action(
        id="built-in-11",
        name="Krippendorff's Alpha",
        type=ActionType.COMPARISON,
        code=KRIPPENDORFFS_ALPHA,
        config=(
            ActionConfigField(
                type="list",
                label="categories",
                required=True,
                default_value=[],
                has_default=True,
                description='Categories to compare (e.g. ["positive", "negative", "neutral"])',
            ),
        ),
        wrap_in_analysis=False,
        description="Krippendorff's alpha between two lists of categorical outputs.",
        is_builtin=True,
    ),
    Action(
        id="built-in-12",
        name="Cohen's Kappa",
        type=ActionType.COMPARISON,
        code=COHENS_KAPPA,
        config=(
            ActionConfigField(
                type="text",
                label="label",
                required=True,
                description="Label whose presence/absence is compared",
            ),
        ),
        wrap_in_analysis=False,
        description="Cohen's kappa for the presence of one label across two raters.",
        is_builtin=True,
    ),
]

_BY_ID: Dict[str, Action] = {a.id: a for a in BUILTIN_ACTIONS}


def get_builtin_action(action_id: str) -> Optional[Action]:
    """Get a built-in action by id."""
    return _BY_ID.get(str(action_id or ""))
