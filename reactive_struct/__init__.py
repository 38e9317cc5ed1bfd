# reactive_struct init

from .reactive_struct import (
    ALL,
    CONTEXT,
    DEFAULT,
    META,
    STRUCTURE,
    WHERE,
    S_delete,
    S_original,
    S_replace,
    Binding,
    State,
    Symbol,
    Transaction,
    anychange,
    applybinding,
    applybindings,
    clone,
    getprop,
    haschanges,
    isfunc,
    islist,
    ismap,
    isnode,
    keysof,
    select,
    selectbypath,
    state,
    stringify,
    transaction,
    typechange,
    typify,
    undoupdate,
    update,
)


__all__ = [
    'ALL',
    'CONTEXT',
    'DEFAULT',
    'META',
    'STRUCTURE',
    'WHERE',
    'S_delete',
    'S_original',
    'S_replace',
    'Binding',
    'State',
    'Symbol',
    'Transaction',
    'anychange',
    'applybinding',
    'applybindings',
    'clone',
    'getprop',
    'haschanges',
    'isfunc',
    'islist',
    'ismap',
    'isnode',
    'keysof',
    'select',
    'selectbypath',
    'state',
    'stringify',
    'transaction',
    'typechange',
    'typify',
    'undoupdate',
    'update',
]
