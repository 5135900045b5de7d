"""
Flow analysis prompts.

The oracle is asked for a fixed markdown layout that
``response_parser.parse_oracle_response`` understands.  The parser is
tolerant of drift, but the closer the model sticks to this layout the
fewer calls get dropped.
"""

FLOW_SYSTEM_PROMPT = """\
You are a code execution tracer that documents method execution flow \
step-by-step, like a debugger walkthrough.

Use the provided file content thoroughly: examine imports, check \
inheritance clauses (extends / implements / base classes) and look for \
overloads, private and static methods before deciding a method is absent. \
Only suggest classes you can see in imports, inheritance or the same file.
"""

METHOD_ANALYSIS_PROMPT = """\
ANALYSIS TASK:
Analyze the specified method within the provided source file. FIRST, \
determine if the method exists in the type.

TARGET METHOD:
Type: {type_name}
Method: {method_name}
Language: {language}

FULL SOURCE FILE:
```{language}
{source}
```

STEP 1 - METHOD DETECTION:
Check whether "{method_name}" is declared in "{type_name}" (instance, \
static, private or package-private declarations all count).

STEP 2 - IF THE METHOD EXISTS, answer with exactly this layout:

## Method Analysis: {type_name}.{method_name}()

### Method Detection Result:
Found

#### Block 1: [Block Description]
**Type**: [assignment|methodCall|conditional|loop|shortCircuit|return|exception]
**Description**: [What this block does in plain English]

**Execution Flow**:
[Detailed step-by-step execution description]

**Method Calls**:
- **Call**: `TypeName.methodName(parameters)`
  - **Classification**: [stepInto|objectLookup|external|notFound] ([Reasoning])
  - **Expected Behavior**: [What this method likely does]
  - **Condition**: [Only if the call runs conditionally, e.g. "only if validate() returns true"]

#### Block 2: [Next Block Description]
[Continue with remaining blocks in execution order...]

Classification rules:
- stepInto: application code in this codebase that should be traced further
- objectLookup: getters, field or collection access, simple data lookups
- external: standard library, framework, third-party or remote calls
- notFound: you cannot tell what the call targets

For short-circuit expressions such as `a() && b()` use a shortCircuit \
block, list both calls in evaluation order and give the second one a \
**Condition**.  Use the receiver's type name where you can infer it \
(`UserRepository.save(user)`, not `repo.save(user)`).  Calls on the \
current object use `{type_name}.method(...)`.

STEP 3 - IF THE METHOD IS NOT FOUND, answer with exactly this layout:

### Method Not Found

Method `{method_name}` not found in type `{type_name}`

#### Check Parent Types:
- **Extends**: `ParentTypeName`
- **Implements**: `InterfaceName`

#### Alternative Classes:
- `ImportedTypeName` - [why it might define {method_name}]

Generate the complete analysis following this format exactly.
"""


def build_method_analysis_prompt(
    type_name: str,
    method_name: str,
    source: str,
    language: str,
) -> str:
    """Fill the method analysis template for one (type, method) pair."""
    return METHOD_ANALYSIS_PROMPT.format(
        type_name=type_name,
        method_name=method_name,
        source=source,
        language=language,
    )
