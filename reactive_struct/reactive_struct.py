# Copyright (c) 2025 Voxgig Ltd. MIT LICENSE.
#
# Reactive Struct
# ===============
#
# Declarative updates of in-memory JSON-like data structures.
# A statement is shaped like the data it changes. Applying it mutates
# the data in place and returns a diff of exactly what changed, with
# enough metadata to undo the change. Bindings watch paths in the diff
# and derive further statements, which are applied into the same diff.
#
# Main utilities
# - update: apply a statement to data, returning the diff.
# - undoupdate: restore data to its state before a diff.
# - haschanges: test a diff against a tree of change detectors.
# - selectbypath: project data along a path of keys and ALL.
# - select: project data by a select statement.
# - transaction: accumulate updates, then commit or revert.
# - applybinding, applybindings: run bindings against a diff.
# - state: hold data plus bindings, with one binding sweep per update.
#
# Minor utilities
# - isnode, islist, ismap, iskey, isfunc: identify value kinds.
# - anychange, typechange: change detectors.
# - keysof: data keys of a node, in insertion order.
# - clone: create a copy of a JSON-like data structure.
# - getprop: safely get a property value by key.
# - typify: type category of a value.
# - stringify: human-friendly string version of a value.
# - pathify: human-friendly string version of a path.


from typing import *
import inspect
import json
import logging


log = logging.getLogger(__name__)


class Symbol:
    """
    Operator token. Identity hashed, so never equal to a string data key.
    """
    __slots__ = ('name',)

    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return 'Symbol(' + self.name + ')'


# Statement operators.
ALL = Symbol('*')          # Apply to every key not listed explicitly.
WHERE = Symbol('?')        # Predicate over the current data level.
DEFAULT = Symbol('{}')     # Template installed when the target is not a node.
CONTEXT = Symbol('$')      # Variables passed to functions and predicates.

# Diff slots.
META = Symbol('#')         # Per key original value records.
STRUCTURE = Symbol('structure')  # Per key structural change tags.

# Structural change tags.
S_delete = 'delete'
S_replace = 'replace'

# General strings.
S_original = 'original'
S_onchange = 'onchange'
S_update = 'update'
S_init = 'init'
S_errs = 'errs'
S_context = 'context'
S_array = 'array'
S_boolean = 'boolean'
S_function = 'function'
S_number = 'number'
S_object = 'object'
S_string = 'string'
S_null = 'null'
S_absent = 'absent'
S_MT = ''
S_DT = '.'
S_CN = ':'


# The standard undefined value for this language.
UNDEF = None


def isnode(val: Any = UNDEF) -> bool:
    "Value is a node - defined, and a map (hash) or list (array)."
    return isinstance(val, (dict, list))


def ismap(val: Any = UNDEF) -> bool:
    "Value is a defined map (hash) with string keys."
    return isinstance(val, dict)


def islist(val: Any = UNDEF) -> bool:
    "Value is a defined list (array) with integer keys (indexes)."
    return isinstance(val, list)


def iskey(key: Any = UNDEF) -> bool:
    "Value is a defined string (non-empty) or integer key."
    if isinstance(key, str):
        return len(key) > 0
    # Exclude bool (which is a subclass of int)
    if isinstance(key, bool):
        return False
    if isinstance(key, int):
        return True
    return False


def isfunc(val: Any = UNDEF) -> bool:
    "Value is a function."
    return callable(val)


def issymbol(val: Any = UNDEF) -> bool:
    "Value is an operator or diff slot token."
    return isinstance(val, Symbol)


def strkey(key: Any = UNDEF) -> str:
    if UNDEF == key:
        return S_MT

    if isinstance(key, str):
        return key

    if isinstance(key, bool):
        return S_MT

    if isinstance(key, int):
        return str(key)

    return S_MT


def typify(value: Any = UNDEF) -> str:
    if value is UNDEF:
        return S_null
    if isinstance(value, bool):
        return S_boolean
    if isinstance(value, (int, float)):
        return S_number
    if isinstance(value, str):
        return S_string
    if callable(value):
        return S_function
    if isinstance(value, list):
        return S_array
    return S_object


def getprop(val: Any = UNDEF, key: Any = UNDEF, alt: Any = UNDEF) -> Any:
    """
    Safely get a property of a node. Undefined arguments return undefined.
    If the key is not found, return the alternative value.
    """
    if UNDEF == val or UNDEF == key:
        return alt

    if ismap(val):
        return val.get(key, alt)

    if islist(val):
        try:
            key = int(key)
        except (ValueError, TypeError):
            return alt

        if 0 <= key < len(val):
            return val[key]

    return alt


def keysof(val: Any = UNDEF) -> List[str]:
    "Data keys of a map in insertion order, or indexes of a list."
    if ismap(val):
        return [k for k in val.keys() if not issymbol(k)]
    elif islist(val):
        return [str(x) for x in range(len(val))]
    return []


def clone(val: Any = UNDEF):
    """
    Clone a JSON-like data structure.
    NOTE: function value references are copied, *not* cloned.
    """
    if isinstance(val, dict):
        return {k: clone(v) for k, v in val.items()}
    elif isinstance(val, (list, tuple)):
        return [clone(elem) for elem in val]
    return val


def stringify(val: Any, maxlen: int = UNDEF):
    "Safely stringify a value for printing (NOT JSON!)."

    valstr = S_MT

    if UNDEF == val:
        return valstr

    if isinstance(val, str):
        valstr = val
    else:
        try:
            valstr = json.dumps(val, sort_keys=True, separators=(',', ':'))
            valstr = valstr.replace('"', '')
        except Exception:
            valstr = str(val)

    if maxlen is not UNDEF:
        json_len = len(valstr)
        valstr = valstr[:maxlen]

        if 3 < maxlen < json_len:
            valstr = valstr[:maxlen - 3] + '...'

    return valstr


def pathify(val: Any = UNDEF) -> str:
    "Path parts joined with dots; operator tokens show by name."
    path = val if islist(val) else \
        [val] if iskey(val) or issymbol(val) or ismap(val) or isfunc(val) else \
        UNDEF

    if UNDEF == path:
        return f"<unknown-path{S_MT if UNDEF == val else S_CN+stringify(val, 47)}>"

    if 0 == len(path):
        return "<root>"

    parts = []
    for p in path:
        if issymbol(p):
            parts.append(p.name)
        elif islist(p):
            parts.append('[' + pathify(p) + ']')
        elif ismap(p):
            parts.append('{' + ','.join(pathify(k) for k in p.keys()) + '}')
        elif isfunc(p):
            parts.append('<' + getattr(p, '__name__', S_function) + '>')
        elif iskey(p):
            parts.append(strkey(p).replace(S_DT, S_MT))
    return S_DT.join(parts)


# Key access that distinguishes an absent key from a None value.

def _haskey(node: Any, key: Any) -> bool:
    if ismap(node):
        return key in node
    if islist(node):
        try:
            return 0 <= int(key) < len(node)
        except (ValueError, TypeError):
            return False
    return False


def _setkey(node: Any, key: Any, val: Any) -> None:
    if ismap(node):
        node[key] = val
    elif islist(node):
        idx = int(key)
        if idx < len(node):
            node[idx] = val
        else:
            node.append(val)


def _delkey(node: Any, key: Any) -> None:
    if ismap(node):
        node.pop(key, UNDEF)
    elif islist(node):
        idx = int(key)
        if idx == len(node) - 1:
            node.pop()
        elif 0 <= idx < len(node):
            node[idx] = UNDEF


def _same(a: Any, b: Any) -> bool:
    # Containers and functions compare by identity, scalars by value with
    # booleans kept apart from numbers.
    if a is b:
        return True
    if isnode(a) or isnode(b) or callable(a) or callable(b):
        return False
    if isinstance(a, bool) or isinstance(b, bool):
        return type(a) is type(b) and a == b
    return a == b


def _call(fn: Callable, *args: Any) -> Any:
    # Pass only as many leading arguments as the function accepts.
    try:
        params = list(inspect.signature(fn).parameters.values())
    except (ValueError, TypeError):
        return fn(*args)

    if any(p.kind == p.VAR_POSITIONAL for p in params):
        return fn(*args)

    num_params = len([p for p in params
                      if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)])
    return fn(*args[:num_params])


def _report(errs: Any, msg: str) -> None:
    if islist(errs):
        errs.append(msg)
    else:
        log.warning(msg)


# Update engine
# =============

def update(data: Any, statement: Any = UNDEF, changes: Any = UNDEF, opts: Any = UNDEF) -> Any:
    """
    Apply a statement to data, in place. Returns the diff of what changed,
    or None if nothing changed. An existing diff may be passed to
    accumulate several statements into one diff; it is modified.

    Statement values at each key:
    - a scalar: overwrite.
    - a map: merge recursively.
    - [value]: replace outright with a clone of value.
    - []: delete the key.
    - a function (value, data, key, context): computed, then as above.

    The ALL key applies its value to every key not listed explicitly, the
    WHERE key is a predicate (data, context) that must hold for the level
    to apply. Options: errs (list collector for skipped keys) and context.
    """
    return _updateimpl(
        data,
        statement,
        changes,
        getprop(opts, S_context),
        getprop(opts, S_errs),
        [],
    )


def _updateimpl(data, statement, changes, context, errs, path):
    if statement is UNDEF:
        return UNDEF

    if not ismap(statement):
        raise ValueError('Statement must be a map at ' + pathify(path) +
                         ', but found ' + typify(statement) + ': ' + stringify(statement, 33))

    if not isnode(data):
        raise ValueError('Cannot update ' + typify(data) + ' at ' + pathify(path) +
                         ': data must be a map or list.')

    where = statement.get(WHERE)
    allop = statement.get(ALL)
    ctxvars = statement.get(CONTEXT)

    staticupdate = {strkey(k) if islist(data) else k: v
                    for k, v in statement.items() if not issymbol(k)}

    if ctxvars:
        context = {**context, **ctxvars} if context else ctxvars

    if where is not UNDEF and not _call(where, data, context):
        return changes

    # Wildcard keys are taken from the data as it is now.
    if allop is not UNDEF:
        for key in keysof(data):
            if key not in staticupdate:
                staticupdate[key] = allop

    def metaof():
        return getprop(changes, META, {})

    def addvaluechange(key, oldvalue, present, kind=UNDEF):
        nonlocal changes

        if isnode(oldvalue) and key not in metaof():
            # Unwind changes already made inside the displaced node.
            oldchanges = getprop(changes, key)
            if ismap(oldchanges):
                undoupdate(oldvalue, oldchanges)

        if changes is UNDEF:
            changes = {}

        changes[key] = getprop(data, key)

        meta = changes.get(META)
        if meta is UNDEF:
            meta = changes[META] = {}

        # Only the first original in a pass is kept.
        if key not in meta:
            meta[key] = {S_original: oldvalue} if present else {}

        structure = changes.get(STRUCTURE)
        if kind is not UNDEF:
            if structure is UNDEF:
                structure = changes[STRUCTURE] = {}
            structure[key] = kind
        elif structure is not UNDEF:
            structure.pop(key, UNDEF)
            if 0 == len(structure):
                del changes[STRUCTURE]

    def setkey(key, val):
        # Gap slots before an index past the end are recorded as new keys.
        if islist(data):
            for idx in range(len(data), int(key)):
                data.append(UNDEF)
                addvaluechange(strkey(idx), UNDEF, False)
        _setkey(data, key, val)

    def updatekey(key, oldvalue, present, newvalue, replace=False):
        nonlocal changes

        if present and _same(oldvalue, newvalue):
            return

        if not replace and ismap(newvalue):
            if not isnode(oldvalue):
                kwhere = newvalue.get(WHERE)
                if kwhere is not UNDEF and not _call(kwhere, oldvalue, context):
                    return

                default = newvalue.get(DEFAULT)
                if default is not UNDEF:
                    setkey(key, clone(default))
                    _updateimpl(getprop(data, key), newvalue, UNDEF, context, errs, path + [key])
                    addvaluechange(key, oldvalue, present)
                    return

                _report(errs, "Can't partially update a non-object: " + pathify(path + [key]) +
                        ' is ' + typify(oldvalue))
                return

            if key in metaof():
                # The node is already a recorded value change in this pass,
                # so the diff holds the node itself rather than a sub-diff.
                _updateimpl(oldvalue, newvalue, UNDEF, context, errs, path + [key])
                return

            change = _updateimpl(oldvalue, newvalue, getprop(changes, key), context, errs, path + [key])
            if change is not UNDEF:
                if changes is UNDEF:
                    changes = {}
                changes[key] = change
            return

        setkey(key, newvalue)
        addvaluechange(key, oldvalue, present, S_replace if replace else UNDEF)

    for key, operand in staticupdate.items():
        present = _haskey(data, key)
        oldvalue = getprop(data, key)

        staticoperand = _call(operand, oldvalue, data, key, context) if isfunc(operand) else operand

        if islist(staticoperand):
            if 0 == len(staticoperand):
                if present:
                    _delkey(data, key)
                    addvaluechange(key, oldvalue, present, S_delete)
                continue

            if 1 == len(staticoperand):
                newvalue = staticoperand[0]
                if not isfunc(newvalue):
                    newvalue = clone(newvalue)
                updatekey(key, oldvalue, present, newvalue, True)
            else:
                raise ValueError('Multiple element lists not allowed: ' +
                                 pathify(path + [key]) + ' = ' + stringify(staticoperand, 33))
        else:
            updatekey(key, oldvalue, present, staticoperand)

    return changes if changes else UNDEF


# Diff and undo
# =============

def undoupdate(data: Any, changes: Any = UNDEF) -> Any:
    """
    Restore every key recorded in a diff to its original value. Keys that
    did not exist before are removed. Discard the diff afterwards.
    """
    if not isnode(data) or not ismap(changes):
        return data

    meta = changes.get(META) or {}

    # Reverse order, so list appends are removed from the end.
    for key in reversed(keysof(changes)):
        if key in meta:
            record = meta[key]
            if S_original in record:
                _setkey(data, key, record[S_original])
            else:
                _delkey(data, key)
        else:
            undoupdate(getprop(data, key), changes[key])

    return data


class Transaction:
    """
    Accumulates the diffs of several updates, which can then be committed
    (returned) or reverted (undone) together.
    """

    def __init__(self, data: Any, opts: Any = UNDEF) -> None:
        self.data = data
        self.opts = opts
        self.changes = UNDEF

    def update(self, statement: Any) -> 'Transaction':
        self.changes = update(self.data, statement, self.changes, self.opts)
        return self

    def commit(self) -> Any:
        changes = self.changes
        self.changes = UNDEF
        return changes

    def revert(self) -> None:
        if self.changes is not UNDEF:
            undoupdate(self.data, self.changes)
        self.changes = UNDEF


def transaction(data: Any, opts: Any = UNDEF) -> Transaction:
    return Transaction(data, opts)


# Change detection
# ================

def anychange(key: str, changes: Any = UNDEF) -> bool:
    "The key changed in any way."
    return ismap(changes) and key in changes


def typechange(key: str, changes: Any = UNDEF) -> bool:
    "The key changed its type category (absent, null, or typify category)."
    meta = getprop(changes, META)
    if not meta or key not in changes or key not in meta:
        return False

    if S_delete == getprop(changes.get(STRUCTURE), key):
        newtype = S_absent
    else:
        newtype = typify(changes[key])

    record = meta[key]
    oldtype = typify(record[S_original]) if S_original in record else S_absent

    return newtype != oldtype


def haschanges(changes: Any, detector: Any) -> bool:
    """
    Walk a detector tree shaped like the diff. Leaves are detector
    functions (key, changes) -> bool; ALL applies its detector to every
    changed key not listed explicitly. True if any leaf detector matches.
    """
    if not ismap(changes) or not ismap(detector):
        return False

    allop = detector.get(ALL)
    rest = {k: v for k, v in detector.items() if not issymbol(k)}

    if allop is not UNDEF:
        for key in keysof(changes):
            if key not in rest:
                rest[key] = allop

    for key, keydetector in rest.items():
        if isfunc(keydetector):
            if _call(keydetector, key, changes):
                return True
        elif keydetector is not UNDEF:
            if haschanges(changes.get(key), keydetector):
                return True

    return False


# Selection
# =========

def selectbypath(data: Any, path: List[Any]) -> Any:
    """
    Project data along a path of keys and ALL. Maps only are descended;
    other values end the path. Returns None if nothing is found.
    """
    if 0 == len(path) or not ismap(data):
        return data

    head, tail = path[0], path[1:]

    if head is ALL:
        keys = keysof(data)
    elif isinstance(head, str):
        keys = [head] if head in data else []
    else:
        keys = []

    out = {}
    for key in keys:
        val = selectbypath(data[key], tail)
        if val is not UNDEF:
            out[key] = val

    return out if out else UNDEF


_NORESULT = Symbol('none')


def select(data: Any, statement: Any) -> Any:
    """
    Project data by a select statement: key: True selects the value,
    key: {...} selects inside it, ALL applies to every key and WHERE is a
    predicate on the current value. Returns None if nothing is selected.
    """
    out = _selectimpl(data, statement)
    return UNDEF if out is _NORESULT else out


def _selectimpl(data, statement):
    where = statement.get(WHERE)
    allop = statement.get(ALL)

    if where is not UNDEF and not _call(where, data):
        return _NORESULT

    if not isnode(data):
        return data

    keystmts = []
    if allop is not UNDEF:
        keystmts = [(key, allop) for key in keysof(data)]
    keystmts += [(k, v) for k, v in statement.items() if not issymbol(k)]

    found = {}
    for key, keystmt in keystmts:
        if islist(data):
            try:
                if int(key) < 0:
                    continue
            except (ValueError, TypeError):
                continue
            key = strkey(int(key))

        if not _haskey(data, key):
            continue

        val = _NORESULT
        if keystmt is True:
            val = getprop(data, key)
        elif ismap(keystmt):
            val = _selectimpl(getprop(data, key), keystmt)

        if val is not _NORESULT:
            found[key] = val

    if 0 == len(found):
        return _NORESULT

    if islist(data):
        return [found[k] for k in sorted(found.keys(), key=int)]

    return found


# Bindings
# ========

class Binding:
    """
    A watched path plus a function that derives a statement when the
    path changes.

    The path is a list of keys and ALL. A key or ALL wrapped in a list,
    such as ['users', [ALL], 'age'], is a capture point: the function is
    then called with the captured values in path order. Without capture
    points the function is called with the full data followed by the key
    matched at each ALL. The last path part, or the whole path, may be a
    detector tree (see haschanges) or a detector function (changes) -> bool.
    Bindings with init set also run when state data is set.
    """

    def __init__(self, onchange: Any, update: Callable, init: bool = False) -> None:
        self.onchange = onchange
        self.update = update
        self.init = init

    def __repr__(self) -> str:
        return 'Binding(' + pathify(self.onchange) + ')'


def _bindingparts(binding):
    if ismap(binding):
        return (getprop(binding, S_onchange),
                getprop(binding, S_update),
                bool(getprop(binding, S_init, False)))
    return binding.onchange, binding.update, bool(binding.init)


def _hascapture(path: Any) -> bool:
    return islist(path) and any(islist(part) for part in path)


def _detect(change, detector):
    if change is True:
        return True
    if isfunc(detector):
        return bool(_call(detector, change))
    return haschanges(change, detector)


def extractbindingupdates(data, change, path, fn, args, capture):
    """
    Match a binding path against a diff (or True, meaning everything
    changed) and call fn for each match. Returns a statement, or a list of
    statements when the path has ALL parts.
    """
    if ismap(path) or isfunc(path):
        return _call(fn, *args) if _detect(change, path) else {}

    if not islist(path) or 0 == len(path):
        return {}

    head, tail = path[0], path[1:]

    if ismap(head) or isfunc(head):
        return _call(fn, *args) if _detect(change, head) else {}

    captured = islist(head)
    field = head[0] if captured and 0 < len(head) else head

    def extractsingle(key, addkey=False):
        if change is True:
            keychange = True
        elif _haskey(change, key):
            keychange = getprop(change, key)
        else:
            return {}

        keyargs = args + [key] if addkey else args

        keydata = getprop(data, key)
        if captured:
            keyargs = keyargs + [keydata]

        if 0 == len(tail):
            return _call(fn, *keyargs)

        return extractbindingupdates(keydata, keychange, tail, fn, keyargs, capture)

    if field is ALL:
        keys = keysof(data) if change is True else keysof(change)
        updates = []
        for key in keys:
            result = extractsingle(key, not capture)
            if islist(result):
                updates.extend(result)
            else:
                updates.append(result)
        return updates

    if iskey(field):
        return extractsingle(strkey(field))

    return {}


def applybinding(data: Any, changes: Any, binding: Any, init: bool = False, opts: Any = UNDEF) -> Any:
    """
    Run one binding against a diff. Statements produced by the binding are
    applied to data and merged into changes, which is modified and returned.
    In init mode every path is treated as changed, and only bindings with
    init set run.
    """
    onchange, fn, isinit = _bindingparts(binding)

    if init and not isinit:
        return changes

    if changes is UNDEF:
        changes = {}

    capture = _hascapture(onchange)
    args = [] if capture else [data]

    updates = extractbindingupdates(data, True if init else changes, onchange, fn, args, capture)

    if not islist(updates):
        updates = [updates]

    for statement in updates:
        if statement:
            log.debug('binding %s applies %s', pathify(onchange), stringify(statement, 77))
        update(data, statement, changes, opts)

    return changes


def applybindings(data: Any, changes: Any, bindings: List[Any], init: bool = False, opts: Any = UNDEF) -> Any:
    "Run each binding once, in order, against the same diff."
    if changes is UNDEF:
        changes = {}
    for binding in bindings:
        applybinding(data, changes, binding, init, opts)
    return changes


# State
# =====

class State:
    """
    Holds one data object and a list of bindings. Every change made
    through the state is followed by exactly one sweep of all bindings,
    in declaration order. Later bindings see the effects of earlier ones;
    nothing is swept twice.
    """

    def __init__(self, bindings: List[Any] = UNDEF, opts: Any = UNDEF) -> None:
        self.bindings = list(bindings or [])
        self.opts = opts
        self.data = UNDEF

    def setdata(self, data: Any) -> Any:
        "Replace the data, then run the init bindings against it."
        self.data = data
        changes = applybindings(data, {}, self.bindings, True, self.opts)
        return changes if changes else UNDEF

    def update(self, statement: Any, changes: Any = UNDEF) -> Any:
        self._checkdata()
        changes = update(self.data, statement, changes, self.opts)
        if changes:
            applybindings(self.data, changes, self.bindings, False, self.opts)
        return changes if changes else UNDEF

    def updateall(self, statements: List[Any], changes: Any = UNDEF) -> Any:
        "Apply each statement into one diff, then sweep the bindings once."
        self._checkdata()
        for statement in statements:
            changes = update(self.data, statement, changes, self.opts)
        if changes:
            applybindings(self.data, changes, self.bindings, False, self.opts)
        return changes if changes else UNDEF

    def _checkdata(self):
        if self.data is UNDEF:
            raise RuntimeError('State has no data: call setdata first.')


def state(bindings: List[Any] = UNDEF, opts: Any = UNDEF) -> State:
    return State(bindings, opts)


__all__ = [
    'ALL',
    'Binding',
    'CONTEXT',
    'DEFAULT',
    'META',
    'STRUCTURE',
    'S_delete',
    'S_original',
    'S_replace',
    'State',
    'Symbol',
    'Transaction',
    'UNDEF',
    'WHERE',
    'anychange',
    'applybinding',
    'applybindings',
    'clone',
    'extractbindingupdates',
    'getprop',
    'haschanges',
    'isfunc',
    'iskey',
    'islist',
    'ismap',
    'isnode',
    'issymbol',
    'keysof',
    'pathify',
    'select',
    'selectbypath',
    'state',
    'stringify',
    'strkey',
    'transaction',
    'typechange',
    'typify',
    'undoupdate',
    'update',
]
