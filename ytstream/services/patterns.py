"""
Pattern tables for locating transforms inside the player script.

Tables are versioned: when a player revision stops matching, add a pattern
under a new name instead of editing an old one, so a regression can be
traced back to the revision that introduced it. Every table entry maps a
name to ``(pattern, group)`` where ``group`` is the capture holding the
function name.
"""
import re
from typing import Dict, Tuple

PATTERN_TABLE_VERSION = "2025.01"

PatternTable = Dict[str, Tuple[str, int]]

VARIABLE_PART = r"[a-zA-Z_\$][a-zA-Z_0-9\$]*"
VARIABLE_PART_DEFINE = r"\"?" + VARIABLE_PART + r"\"?"
BEFORE_ACCESS = r"(?:\[\"|\.)"
AFTER_ACCESS = r"(?:\"\]|)"
VARIABLE_PART_ACCESS = BEFORE_ACCESS + VARIABLE_PART + AFTER_ACCESS

# The four array operations a decipher helper object may define
REVERSE_PART = r":function\(\w\)\{(?:return )?\w\.reverse\(\)\}"
SLICE_PART = r":function\(\w,\w\)\{return \w\.slice\(\w\)\}"
SPLICE_PART = r":function\(\w,\w\)\{\w\.splice\(0,\w\)\}"
SWAP_PART = (
    r":function\(\w,\w\)\{var \w=\w\[0\];\w\[0\]=\w\[\w%\w\.length\];"
    r"\w\[\w(?:%\w.length|)\]=\w(?:;return \w)?\}"
)

HELPER_REGEXP = (
    r"var (" + VARIABLE_PART + r")=\{((?:(?:"
    + VARIABLE_PART_DEFINE + REVERSE_PART + "|"
    + VARIABLE_PART_DEFINE + SLICE_PART + "|"
    + VARIABLE_PART_DEFINE + SPLICE_PART + "|"
    + VARIABLE_PART_DEFINE + SWAP_PART
    + r"),?\n?)+)\};"
)

DECIPHER_REGEXP = (
    r"function(?: " + VARIABLE_PART + r")?\(([a-zA-Z])\)\{"
    r"\1=\1\.split\(\"\"\);\s*"
    r"((?:(?:\1=)?" + VARIABLE_PART + VARIABLE_PART_ACCESS + r"\(\1,\d+\);)+)"
    r"return \1\.join\(\"\"\)"
    r"\}"
)

N_TRANSFORM_REGEXP = (
    r"function\(\s*(\w+)\s*\)\s*\{"
    r"var\s*(\w+)=(?:\1\.split\(.*?\)|String\.prototype\.split\.call\(\1,.*?\)),"
    r"\s*(\w+)=(\[.*?]);\s*\3\[\d+]"
    r"(.*?try)\s*(\{.*?\})\s*catch\(\s*(\w+)\s*\)\s*\{"
    r"\s*return\s*\"[\w-]+([A-z0-9-]+)\"\s*\+\s*\1\s*\}"
    r"\s*return\s*(\2\.join\(\"\"\)|Array\.prototype\.join\.call\(\2,.*?\))\s*\};"
)

N_TRANSFORM_SPLIT_JOIN_REGEXP = (
    r"function\s*\(\s*a\s*\)\s*\{\s*a\s*=\s*a\.split\(\s*(?:\"\"|''|``)\s*\)\s*;"
    r"([\s\S]+?)\s*return\s*a\.join\(\s*(?:\"\"|''|``)\s*\)\s*\}"
)

SCVR = r"[a-zA-Z0-9$_]"
MCR = SCVR + "+"
AAR = r"\[(\d+)]"

DECIPHER_NAME_REGEXPS: PatternTable = {
    "decode_uri_assign": (r"\b([a-zA-Z0-9_$]+)&&\(\1=([a-zA-Z0-9_$]{2,})\(decodeURIComponent\(\1\)\)", 2),
    "split_join_assign": (
        r"([a-zA-Z0-9_$]+)\s*=\s*function\(\s*([a-zA-Z0-9_$]+)\s*\)\s*{\s*\2\s*=\s*\2\.split\(\s*\"\"\s*\)"
        r"\s*;\s*[^}]+;\s*return\s+\2\.join\(\s*\"\"\s*\)",
        1,
    ),
    "split_with_helper_call": (
        r"(?:\b|[^a-zA-Z0-9_$])([a-zA-Z0-9_$]{2,})\s*=\s*function\(\s*a\s*\)\s*{\s*a\s*=\s*a\.split\(\s*\"\"\s*\)"
        r"(?:;[a-zA-Z0-9_$]{2}\.[a-zA-Z0-9_$]{2}\(a,\d+\))?",
        1,
    ),
    "h_s_decode": (r"\bm=([a-zA-Z0-9$]{2,})\(decodeURIComponent\(h\.s\)\)", 1),
    "c_decode": (r"\bc&&\(c=([a-zA-Z0-9$]{2,})\(decodeURIComponent\(c\)\)", 1),
    "split_a": (
        r"(?:\b|[^a-zA-Z0-9$])([a-zA-Z0-9$]{2,})\s*=\s*function\(\s*a\s*\)\s*\{\s*a\s*=\s*a\.split\(\s*\"\"\s*\)",
        1,
    ),
    "split_any_arg": (r"([\w$]+)\s*=\s*function\((\w+)\)\{\s*\2=\s*\2\.split\(\"\"\)\s*;", 1),
}

N_TRANSFORM_NAME_REGEXPS: PatternTable = {
    "nn_index_call_or_empty": (
        SCVR + r"=\"nn\"\[\+" + MCR + r"\." + MCR + r"]," + MCR + r"\(" + MCR + r"\)," + MCR + r"="
        + MCR + r"\." + MCR + r"\[" + MCR + r"]\|\|null\).+\|\|(" + MCR + r")\(\"\"\)",
        1,
    ),
    "nn_index_call_array": (
        SCVR + r"=\"nn\"\[\+" + MCR + r"\." + MCR + r"]," + MCR + r"\(" + MCR + r"\)," + MCR + r"="
        + MCR + r"\." + MCR + r"\[" + MCR + r"]\|\|null\)&&\(" + MCR + r"=(" + MCR + r")" + AAR,
        1,
    ),
    "nn_get_or_empty": (
        SCVR + r"=\"nn\"\[\+" + MCR + r"\." + MCR + r"]," + MCR + r"=" + MCR + r"\.get\(" + MCR
        + r"\)\).+\|\|(" + MCR + r")\(\"\"\)",
        1,
    ),
    "nn_get_array": (
        SCVR + r"=\"nn\"\[\+" + MCR + r"\." + MCR + r"]," + MCR + r"=" + MCR + r"\.get\(" + MCR
        + r"\)\)&&\(" + MCR + r"=(" + MCR + r")\[(\d+)]",
        1,
    ),
    "from_char_code_get": (
        r"\(" + SCVR + r"=String\.fromCharCode\(110\)," + SCVR + r"=" + SCVR + r"\.get\(" + SCVR
        + r"\)\)&&\(" + SCVR + r"=(" + MCR + r")(?:" + AAR + r")?\(" + SCVR + r"\)",
        1,
    ),
    "get_n": (r"\.get\(\"n\"\)\)&&\(" + SCVR + r"=(" + MCR + r")(?:" + AAR + r")?\(" + SCVR + r"\)", 1),
    "array_n_get": (
        r"\(" + SCVR + r"=\[" + SCVR + r"=\"n\"\]," + SCVR + r"=" + MCR + r"\.get\(" + SCVR
        + r"\)\)(?:&&)?(?:\()?" + SCVR + r"=(" + MCR + r")(?:\()?" + SCVR + r"\)?",
        1,
    ),
    "array_from_char_code_get": (
        r"\(" + SCVR + r"=\[" + SCVR + r"=String\.fromCharCode\(110\)\]," + SCVR + r"=" + MCR
        + r"\.get\(" + SCVR + r"\)\)(?:&&)?(?:\()?" + SCVR + r"=(" + MCR + r")(?:\()?" + SCVR + r"\)?",
        1,
    ),
    "n_index_get_empty": (
        r"\(" + SCVR + r"=\"n\"\[\+" + MCR + r"\." + MCR + r"\]," + MCR + r"\.get\(" + MCR
        + r"\)\)(\()?" + SCVR + r"=(" + MCR + r")(?:" + AAR + r")?(?:\()?\"\"",
        2,
    ),
}

# Name given to a function by array indirection: NAME=[realName]
ARRAY_INDIRECTION = r"{name}=\[([a-zA-Z0-9$\[\]]{{2,}})\]"

# Start of a named function definition; the body is then brace-scanned
FUNCTION_DEFINITION = (
    r"(?:function\s+{name}|(?<![\w$.]){name}\s*=\s*function)\s*\(\s*([\w$]+(?:\s*,\s*[\w$]+)*)?\s*\)\s*\{{"
)

# Helper object called by a named decipher function: ;XY.ab(a,3)
HELPER_CALL = r";([A-Za-z0-9_\$]{2,})\.\w+\("

# Object literal definition for a helper name
OBJECT_DEFINITION = r"(?<![\w$.]){name}\s*=\s*\{{"

# Early exit guard the n-transform uses to detect it runs outside the player
TYPEOF_GUARD = re.compile(r"if\s*\(\s*typeof\s*[\w$]+\s*===?.*?\)\s*return\s+[\w$]+\s*;?")

SIGNATURE_TIMESTAMP = re.compile(r"(signatureTimestamp|sts):(\d+)")


def compile_table(table: PatternTable) -> Dict[str, Tuple["re.Pattern", int]]:
    return {name: (re.compile(pattern, re.S), group) for name, (pattern, group) in table.items()}
