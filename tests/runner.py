
# Test runner that uses the test model in tests/test.json.

import os
import json
import re
from typing import Any, Dict, Callable, TypedDict

from reactive_struct import (
    ALL,
    CONTEXT,
    DEFAULT,
    META,
    STRUCTURE,
    Symbol,
    clone,
    isnode,
    ismap,
    stringify,
)


NULLMARK = '__NULL__'  # Value is JSON null
UNDEFMARK = '__UNDEF__'  # Value is not present (thus, undefined)

# Operator keys as written in the JSON test model.
SYMBOLS = {
    '`$ALL`': ALL,
    '`$DEFAULT`': DEFAULT,
    '`$CONTEXT`': CONTEXT,
    '`$META`': META,
    '`$STRUCTURE`': STRUCTURE,
}
SYMBOLNAMES = {sym: name for name, sym in SYMBOLS.items()}


class RunPack(TypedDict):
    spec: Dict[str, Any]
    runset: Callable
    runsetflags: Callable


def makeRunner(testfile: str):

    def runner(name: str) -> RunPack:
        spec = resolve_spec(name, testfile)

        def runsetflags(testspec, flags, subject):
            flags = resolve_flags(flags)
            testspecmap = fixJSON(testspec, flags)
            testset = testspecmap['set']

            for entry in testset:
                try:
                    entry = resolve_entry(entry, flags)
                    args = resolve_args(entry)

                    res = subject(*args)
                    res = fixJSON(res, flags)
                    entry['res'] = res
                    check_result(entry, res)

                except Exception as err:
                    handle_error(entry, err)

        def runset(testspec, subject):
            return runsetflags(testspec, {}, subject)

        return {
            "spec": spec,
            "runset": runset,
            "runsetflags": runsetflags,
        }

    return runner


def resolve_spec(name: str, testfile: str) -> Dict[str, Any]:
    with open(os.path.join(os.path.dirname(__file__), testfile), 'r', encoding='utf-8') as f:
        alltests = json.load(f)

    if name in alltests:
        spec = alltests[name]
    else:
        spec = alltests

    return spec


def check_result(entry, res):
    matched = False

    if 'match' in entry:
        match(entry['match'], {'in': entry.get('in'), 'out': res})
        matched = True

    out = entry.get('out')

    if out == res:
        return

    # NOTE: allow match with no out
    if matched and (NULLMARK == out or out is None):
        return

    raise AssertionError(
        f"Expected: {out}, got: {res}\n"
        f"Entry: {json.dumps(entry, indent=2, default=jsonfallback)}"
    )


def handle_error(entry, err):
    entry['thrown'] = err
    entry_err = entry.get('err')

    # If the test expects an error
    if entry_err is not None:
        if entry_err is True or matchval(entry_err, str(err)):
            if 'match' in entry:
                match(entry['match'], {
                    'in': entry.get('in'),
                    'out': entry.get('res'),
                    'err': {"message": str(err)},
                })
            return True

        raise AssertionError(
            f"ERROR MATCH: [{stringify(entry_err)}] <=> [{str(err)}]"
        )

    elif isinstance(err, AssertionError):
        raise AssertionError(
            f"{str(err)}\n\nENTRY: {json.dumps(entry, indent=2, default=jsonfallback)}"
        )

    else:
        import traceback
        raise AssertionError(
            f"{traceback.format_exc()}\nENTRY: " +
            f"{json.dumps(entry, indent=2, default=jsonfallback)}"
        )


def resolve_args(entry):
    if 'args' in entry:
        return [symbolize(arg) for arg in entry['args']]
    elif 'in' in entry:
        return [symbolize(clone(entry['in']))]
    return []


def resolve_flags(flags: Dict[str, Any] = None) -> Dict[str, bool]:
    if flags is None:
        flags = {}

    flags["null"] = flags.get("null", True)

    return flags


def resolve_entry(entry: Dict[str, Any], flags: Dict[str, bool]) -> Dict[str, Any]:
    # Set default output value for missing 'out' field
    if 'out' not in entry and flags.get("null", True):
        entry["out"] = NULLMARK

    return entry


def symbolize(obj):
    "Replace operator names from the JSON test model with symbols."
    if isinstance(obj, str):
        return SYMBOLS.get(obj, obj)
    elif isinstance(obj, list):
        return [symbolize(item) for item in obj]
    elif isinstance(obj, dict):
        return {SYMBOLS.get(k, k): symbolize(v) for k, v in obj.items()}
    return obj


def fixJSON(obj, flags):
    # Handle nulls
    if obj is None:
        return NULLMARK if flags.get("null", True) else None

    # Handle errors
    if isinstance(obj, Exception):
        return {
            **vars(obj),
            'name': type(obj).__name__,
            'message': str(obj)
        }

    # Handle collections recursively, naming symbol keys.
    elif isinstance(obj, list):
        return [fixJSON(item, flags) for item in obj]
    elif isinstance(obj, dict):
        return {
            (SYMBOLNAMES.get(k, '`' + k.name + '`') if isinstance(k, Symbol) else k):
            fixJSON(v, flags) for k, v in obj.items()
        }

    return obj


def jsonfallback(obj):
    return f"<non-serializable: {type(obj).__name__}>"


def match(check, base, path=None):
    path = path or []

    if isnode(check):
        for key, val in (check.items() if ismap(check) else enumerate(check)):
            match(val, base, path + [key])
        return

    baseval = base
    for part in path:
        if ismap(baseval):
            baseval = baseval.get(part)
        elif isinstance(baseval, list) and isinstance(part, int) and part < len(baseval):
            baseval = baseval[part]
        else:
            baseval = None
            break

    if baseval == check:
        return

    # Explicit undefined expected
    if UNDEFMARK == check and baseval is None:
        return

    if not matchval(check, baseval):
        raise AssertionError(
            f"MATCH: {'.'.join(map(str, path))}: "
            f"[{stringify(check)}] <=> [{stringify(baseval)}]"
        )


def matchval(check, base):
    # Handle undefined special case
    if check == UNDEFMARK or check == NULLMARK:
        check = None

    if check == base:
        return True

    # String-based pattern matching
    if isinstance(check, str):
        base_str = stringify(base)

        # Check for regex pattern with /pattern/ syntax
        regex_match = re.match(r'^/(.+)/$', check)

        if regex_match:
            pattern = regex_match.group(1)
            return re.search(pattern, base_str) is not None
        else:
            # Case-insensitive substring check
            return stringify(check).lower() in base_str.lower()

    # Functions automatically pass
    elif callable(check):
        return True

    return False


__all__ = [
    'NULLMARK',
    'UNDEFMARK',
    'makeRunner',
    'symbolize',
]
