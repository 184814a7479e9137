"""
scadkit runtime - tree-walking evaluator for the declarative language.

This module provides:
- Interpreter: Executes statements and builds geometry through the kernel
- Value: Runtime value wrappers with type tags
- Scope / EvaluationContext: Lexical and dynamic ($-variable) scoping
- BuiltinRegistry / ModuleRegistry: Built-in functions and modules
"""

from .values import (
    Value,
    ValueType,
    Range,
    FunctionClosure,
    ModuleClosure,
    UNDEF,
    TRUE,
    FALSE,
    number_val,
    string_val,
    bool_val,
    vector_val,
    range_val,
    from_python,
    to_python,
    format_value,
    values_equal,
)

from .context import (
    SPECIAL_DEFAULTS,
    Scope,
    ChildrenFrame,
    CancellationToken,
    EvaluationContext,
    create_context,
)

from .builtins import (
    ArgumentError,
    BuiltinFunction,
    BuiltinRegistry,
    get_builtin_registry,
    call_builtin,
)

from .modules import (
    BuiltinModule,
    ModuleCall,
    ModuleRegistry,
    get_module_registry,
    get_fragments_from_r,
    parse_color,
)

from .interpreter import (
    Interpreter,
    EvaluationResult,
    evaluate,
    run_source,
)

__all__ = [
    # Values
    "Value", "ValueType", "Range", "FunctionClosure", "ModuleClosure",
    "UNDEF", "TRUE", "FALSE",
    "number_val", "string_val", "bool_val", "vector_val", "range_val",
    "from_python", "to_python", "format_value", "values_equal",
    # Context
    "SPECIAL_DEFAULTS", "Scope", "ChildrenFrame", "CancellationToken",
    "EvaluationContext", "create_context",
    # Built-ins
    "ArgumentError", "BuiltinFunction", "BuiltinRegistry", "get_builtin_registry", "call_builtin",
    "BuiltinModule", "ModuleCall", "ModuleRegistry", "get_module_registry",
    "get_fragments_from_r", "parse_color",
    # Interpreter
    "Interpreter", "EvaluationResult", "evaluate", "run_source",
]
