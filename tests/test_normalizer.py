"""Tests for metrics_reporter/normalizer.py"""

import pytest

from metrics_reporter.normalizer import (
    GLOBAL_NAMESPACE,
    extract_method_name,
    is_compiler_generated,
    iterator_state_machine,
    namespace_of_type,
    normalize,
    normalize_method_signature,
    normalize_type_name,
    simple_type_name,
    split_member_fqn,
)


# ---------------------------------------------------------------------------
# normalize()
# ---------------------------------------------------------------------------

CANONICAL_FORMS = [
    ("System.Int32 MyApp.Core.Calculator::Add(System.Int32,System.Int32)", "MyApp.Core.Calculator.Add(...)"),
    ("System.Void MyApp.Core.Calculator::.ctor()", "MyApp.Core.Calculator..ctor(...)"),
    ("System.Void MyApp.Core.Calculator::.cctor()", "MyApp.Core.Calculator..cctor(...)"),
    ("System.Void MyApp.Outer/Inner::Run()", "MyApp.Outer+Inner.Run(...)"),
    ("System.Void MyApp.Repository`1::Save(T)", "MyApp.Repository.Save(...)"),
    ("MyApp.Repository<T>.Find(System.Func<T, bool>)", "MyApp.Repository.Find(...)"),
    ("System.Threading.Tasks.Task<System.Int32> MyApp.Api::GetAsync(System.String)", "MyApp.Api.GetAsync(...)"),
    ("MyApp.Core.Calculator", "MyApp.Core.Calculator"),
]


@pytest.mark.parametrize("raw, expected", CANONICAL_FORMS)
def test_normalize_canonical_forms(raw, expected):
    assert normalize(raw) == expected


@pytest.mark.parametrize("raw", [raw for raw, _ in CANONICAL_FORMS] + [
    "System.Void MyApp.Repo`1/Item::Save(System.String)",
    "MyApp.Core.Calculator..ctor(...)",
    "<global>",
    "MyApp.Broken(int",
    "int Calculator.Add(int a, int b)",
    "Calculator.Calculator()",
    "MyApp.Svc+<RunAsync>d__3.MoveNext(...)",
])
def test_normalize_is_idempotent(raw):
    once = normalize(raw)
    assert normalize(once) == once


def test_normalize_none_and_blank():
    assert normalize(None) == ""
    assert normalize("   ") == ""


def test_normalize_unbalanced_returned_unchanged():
    assert normalize("MyApp.Broken(int") == "MyApp.Broken(int"


def test_normalize_method_signature_nested_parentheses():
    assert normalize_method_signature("Run(Func<(int, int)> f)") == "Run(...)"


# ---------------------------------------------------------------------------
# Type names
# ---------------------------------------------------------------------------

def test_normalize_type_name_nested_and_generic():
    assert normalize_type_name("MyApp.Cache`2/Entry") == "MyApp.Cache+Entry"
    assert normalize_type_name("MyApp.Cache<TKey, TValue>") == "MyApp.Cache"


def test_namespace_of_type():
    assert namespace_of_type("MyApp.Core.Calculator") == "MyApp.Core"
    assert namespace_of_type("MyApp.Outer+Inner") == "MyApp"
    assert namespace_of_type("Program") == GLOBAL_NAMESPACE


def test_simple_type_name():
    assert simple_type_name("MyApp.Outer+Inner") == "Inner"
    assert simple_type_name("Program") == "Program"


# ---------------------------------------------------------------------------
# Member names
# ---------------------------------------------------------------------------

def test_extract_method_name():
    assert extract_method_name("System.Int32 MyApp.Calc::Add(System.Int32)") == "Add"
    assert extract_method_name("MyApp.Calc..ctor(...)") == ".ctor"
    assert extract_method_name("MyApp.Calc..cctor(...)") == ".cctor"
    assert extract_method_name(None) is None


def test_split_member_fqn():
    assert split_member_fqn("MyApp.Calc.Add(...)") == ("MyApp.Calc", "Add(...)")
    assert split_member_fqn("MyApp.Calc..ctor(...)") == ("MyApp.Calc", ".ctor(...)")
    assert split_member_fqn("Main(...)") == ("", "Main(...)")


# ---------------------------------------------------------------------------
# is_compiler_generated()
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("name", [
    "MyApp.Calculator/<>c__DisplayClass0_0",
    "MyApp.Worker+<RunAsync>d__4",
    "<Clone>$",
])
def test_compiler_generated_names(name):
    assert is_compiler_generated(name)


@pytest.mark.parametrize("name", ["MyApp.Calculator", "<global>", "<Module>", "get_Total", None])
def test_regular_names_are_not_compiler_generated(name):
    assert not is_compiler_generated(name)


# ---------------------------------------------------------------------------
# iterator_state_machine()
# ---------------------------------------------------------------------------

def test_iterator_state_machine():
    assert iterator_state_machine("MyApp.Svc+<RunAsync>d__3") == ("MyApp.Svc", "RunAsync")
    assert iterator_state_machine("MyApp.Outer+Inner+<Items>d__12") == ("MyApp.Outer+Inner", "Items")


@pytest.mark.parametrize("name", [
    "MyApp.Svc",
    "MyApp.Svc+<>c__DisplayClass0_0",
    "MyApp.Svc+<RunAsync>b__3_0",
    "<RunAsync>d__3",
    None,
])
def test_other_types_are_not_state_machines(name):
    assert iterator_state_machine(name) is None
