"""Tests for variable substitution."""

import pytest
import shlex

from engine.src.errors import ResolutionError
from engine.src.services.variables import (
    VariableScopes,
    escape_for_shell,
    extract_variables,
    resolve,
    sanitize,
    validate,
)

def test_scope_precedence():
    scopes = VariableScopes(
        project={"env": "dev", "region": "eu"},
        pipeline={"env": "prod"},
        secrets={"token": "s3cret"},
    )

    assert resolve("deploy --env=${env:staging} --key=${token} ${region}", scopes) == (
        "deploy --env=prod --key=s3cret eu"
    )

def test_secret_wins_over_pipeline():
    scopes = VariableScopes(pipeline={"key": "plain"}, secrets={"key": "hidden"})

    assert resolve("${key}", scopes) == "hidden"

def test_default_used_when_missing():
    scopes = VariableScopes(secrets={"secret": "abc123"})

    assert resolve("deploy --env=${env:staging} --key=${secret}", scopes) == (
        "deploy --env=staging --key=abc123"
    )

def test_names_and_defaults_are_trimmed():
    scopes = VariableScopes(pipeline={"name": "world"})

    assert resolve("${ name }-${ other : fallback }", scopes) == "world-fallback"

def test_empty_default():
    assert resolve("a${missing:}b", VariableScopes()) == "ab"

def test_unknown_token_kept():
    assert resolve("echo ${missing}", VariableScopes()) == "echo ${missing}"

def test_strict_mode_raises():
    with pytest.raises(ResolutionError, match="missing") as exc_info:
        resolve("echo ${missing} ${also:ok}", VariableScopes(), strict=True)

    assert exc_info.value.missing == ["missing"]

def test_values_are_stringified():
    scopes = VariableScopes(pipeline={"count": 3, "debug": True, "empty": None})

    assert resolve("${count} ${debug} [${empty}]", scopes) == "3 true []"

def test_resolve_is_idempotent_on_resolved_output():
    scopes = VariableScopes(pipeline={"env": "prod"})
    once = resolve("deploy ${env} ${region:eu}", scopes)

    assert resolve(once, scopes) == once

def test_extract_variables():
    assert extract_variables("${a} ${b:1} ${ a } $c {d}") == {"a", "b"}

def test_validate_reports_missing():
    scopes = VariableScopes(project={"a": "1"})

    result = validate("${a} ${b} ${c:default} ${b}", scopes)

    assert not result.valid
    assert result.missing == ["b"]

def test_validate_name_with_default_elsewhere_is_missing():
    result = validate("${b:x} ${b}", VariableScopes())

    assert result.missing == ["b"]

def test_validate_ok():
    assert validate("${a:1} plain text", VariableScopes()).valid

def test_sanitize():
    assert sanitize("  rm -rf /; echo $(whoami) | cat\r\nnext  ") == "rm -rf / echo whoami  cat next"

@pytest.mark.parametrize("value", [
    "plain",
    "with space",
    "it's quoted",
    "''",
    "$(rm -rf /)",
    "line\nbreak",
    "",
])
def test_escape_for_shell_round_trips(value):
    assert shlex.split(escape_for_shell(value)) == [value]

def test_unclosed_token_is_plain_text():
    scopes = VariableScopes(pipeline={"oops": "x"})

    assert resolve("echo ${oops", scopes) == "echo ${oops"
    assert extract_variables("echo ${oops") == set()
